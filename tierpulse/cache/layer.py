"""
Cache layer contract for TierPulse.

Every tier composed by :class:`~tierpulse.cache.orchestrator.CacheOrchestrator`
implements :class:`CacheLayer`.  The in-memory reference tier lives in
:mod:`tierpulse.cache.memory`; distributed or persistent tiers are
expected to honour the same contract.
"""

import logging
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Any, Optional

from pydantic import BaseModel

from tierpulse.cache.pulse import PulseBroadcaster
from tierpulse.exceptions import InvalidCacheInputError

logger = logging.getLogger(__name__)


def validate_key(key: Any) -> None:
    """Reject ``None``, non-string, and empty/blank keys.

    Raises:
        InvalidCacheInputError: If the key is unusable.
    """
    if not isinstance(key, str) or not key.strip():
        logger.warning("Rejected cache key", extra={"key": repr(key)[:40]})
        raise InvalidCacheInputError("Cache key must be a non-empty string")


def validate_entry(key: Any, value: Any, ttl: Optional[timedelta] = None) -> None:
    """Validate the arguments of a ``set`` call.

    ``None`` is the absent sentinel, so it cannot be stored.

    Raises:
        InvalidCacheInputError: On a bad key, a ``None`` value, or a
            non-positive TTL.
    """
    validate_key(key)
    if value is None:
        logger.warning("Rejected None cache value", extra={"key": key})
        raise InvalidCacheInputError("Cache value must not be None")
    if ttl is not None and ttl <= timedelta(0):
        logger.warning("Rejected non-positive TTL", extra={"key": key, "ttl": str(ttl)})
        raise InvalidCacheInputError("TTL must be positive")


class LayerInfo(BaseModel):
    """Point-in-time description of a cache layer.

    Attributes:
        name: Stable layer identifier (e.g. ``"L1-Memory"``).
        priority: Lower values are faster and are checked first.
        expected_latency: Informational typical access latency.
        current_size_bytes: Estimated bytes currently held.
        max_size_bytes: Byte budget for the layer.
    """

    name: str
    priority: int
    expected_latency: timedelta
    current_size_bytes: int
    max_size_bytes: int

    model_config = {"frozen": True}


class CacheLayer(ABC):
    """Abstract cache tier.

    Implementations must be safe under concurrent callers.  ``get`` returns
    ``None`` for an absent key and must lazily purge any entry whose
    expiry has passed, reporting it as a miss.

    Layers may publish pulses through :attr:`pulses`; a layer that never
    publishes simply leaves the broadcaster without traffic.
    """

    def __init__(self) -> None:
        self._pulses = PulseBroadcaster()

    @property
    def pulses(self) -> PulseBroadcaster:
        """Broadcaster for pulses emitted by this layer."""
        return self._pulses

    @property
    @abstractmethod
    def name(self) -> str:
        """Stable layer identifier."""

    @property
    @abstractmethod
    def priority(self) -> int:
        """Lower is faster; the orchestrator checks ascending priority."""

    @property
    @abstractmethod
    def expected_latency(self) -> timedelta:
        """Typical access latency (informational)."""

    @property
    @abstractmethod
    def max_size_bytes(self) -> int:
        """Byte budget."""

    @property
    @abstractmethod
    def current_size_bytes(self) -> int:
        """Estimated bytes currently held; never negative."""

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or ``None`` when absent or expired."""

    @abstractmethod
    def set(self, key: str, value: Any, ttl: Optional[timedelta] = None) -> None:
        """Store *value* under *key*, expiring after *ttl* when given."""

    @abstractmethod
    def remove(self, key: str) -> None:
        """Remove *key* if present."""

    @abstractmethod
    def exists(self, key: str) -> bool:
        """Whether *key* is present and not expired."""

    @abstractmethod
    def clear(self) -> None:
        """Drop every entry."""

    def info(self) -> LayerInfo:
        """Snapshot of this layer's descriptor."""
        return LayerInfo(
            name=self.name,
            priority=self.priority,
            expected_latency=self.expected_latency,
            current_size_bytes=self.current_size_bytes,
            max_size_bytes=self.max_size_bytes,
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, priority={self.priority})"
