"""
Cache pulse events for TierPulse.

A pulse describes the outcome of one cache operation (hit, miss, write,
invalidation).  Pulses feed statistics dashboards and the activity
monitor only; nothing on the correctness path depends on them.
"""

import logging
import threading
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, List

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class PulseType(str, Enum):
    """Kind of cache operation a pulse reports."""

    HIT = "hit"
    MISS = "miss"
    WRITE = "write"
    INVALIDATION = "invalidation"


class CachePulse(BaseModel):
    """An immutable record of one cache operation.

    Attributes:
        layer_name: Name of the layer (or ``"Orchestrator"``) that emitted it.
        pulse_type: Kind of operation.
        key: Cache key involved.
        timestamp: UTC instant the pulse was created.
    """

    layer_name: str
    pulse_type: PulseType
    key: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"frozen": True}


PulseObserver = Callable[[CachePulse], None]


class PulseBroadcaster:
    """Synchronous in-process fan-out of pulses to registered observers.

    Observers run on the publishing thread, in no guaranteed order.  An
    observer that raises is logged and skipped; the publisher and the
    remaining observers are unaffected.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._observers: List[PulseObserver] = []

    def subscribe(self, observer: PulseObserver) -> None:
        with self._lock:
            self._observers.append(observer)

    def unsubscribe(self, observer: PulseObserver) -> bool:
        """Remove one registration of *observer*.

        Returns:
            ``True`` if the observer was registered.
        """
        with self._lock:
            try:
                self._observers.remove(observer)
            except ValueError:
                return False
            return True

    def publish(self, pulse: CachePulse) -> None:
        """Deliver *pulse* to every observer registered at call time."""
        with self._lock:
            observers = list(self._observers)

        for observer in observers:
            try:
                observer(pulse)
            except Exception as exc:
                logger.warning(
                    "Pulse observer failed",
                    extra={
                        "layer_name": pulse.layer_name,
                        "pulse_type": pulse.pulse_type.value,
                        "error": str(exc),
                    },
                    exc_info=True,
                )

    def emit(self, layer_name: str, pulse_type: PulseType, key: str) -> None:
        """Build and publish a pulse, skipping construction with no observers."""
        if not self._observers:
            return
        self.publish(CachePulse(layer_name=layer_name, pulse_type=pulse_type, key=key))

    @property
    def observer_count(self) -> int:
        with self._lock:
            return len(self._observers)
