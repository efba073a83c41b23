"""
Data pulse monitor for TierPulse.

Turns the orchestrator's pulse stream into per-tier activity levels that
decay over time, and records those levels into fixed-size circular
waveform buffers for visualisation.  Also derives an events-per-second
figure.  The monitor is a pure side channel: it never influences cache
behaviour.
"""

import logging
import threading
import time
from typing import Callable, Dict, Optional, Tuple

import numpy as np

from tierpulse.cache.orchestrator import CacheOrchestrator
from tierpulse.cache.pulse import CachePulse, PulseType
from tierpulse.config import get_settings
from tierpulse.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

_PULSE_INTENSITY: Dict[PulseType, float] = {
    PulseType.HIT: 0.8,
    PulseType.MISS: 0.3,
    PulseType.WRITE: 1.0,
    PulseType.INVALIDATION: 0.5,
}

# Tier number -> layer-name fragments that map onto it (first match wins)
_TIER_MATCHERS: Tuple[Tuple[int, Tuple[str, ...]], ...] = (
    (1, ("L1", "Memory")),
    (2, ("L2", "Redis")),
    (3, ("L3", "Mongo")),
)

TIER_COUNT = len(_TIER_MATCHERS)


def tier_for_layer(layer_name: str) -> Optional[int]:
    """Map a layer name onto tier 1-3 by substring, or ``None``."""
    for tier, fragments in _TIER_MATCHERS:
        if any(fragment in layer_name for fragment in fragments):
            return tier
    return None


class DataPulseMonitor:
    """Decaying per-tier activity levels plus circular waveform buffers.

    Call :meth:`update` once per frame/tick.  Pulse handling and
    :meth:`update` may run on different threads; activity values, the
    event counter and the buffers are all guarded by one lock.

    Args:
        buffer_size: Samples kept per tier.  Defaults to
            ``settings.monitor.buffer_size``.
        decay_rate: Activity units lost per second.  Defaults to
            ``settings.monitor.decay_rate``.
        clock: Monotonic seconds source for the events-per-second window.

    Raises:
        ConfigurationError: If ``buffer_size`` or ``decay_rate`` is not
            positive.
    """

    def __init__(
        self,
        buffer_size: Optional[int] = None,
        decay_rate: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        settings = get_settings().monitor
        self._buffer_size = int(buffer_size if buffer_size is not None else settings.buffer_size)
        self._decay_rate = float(decay_rate if decay_rate is not None else settings.decay_rate)
        if self._buffer_size <= 0:
            raise ConfigurationError(f"buffer_size must be positive, got {self._buffer_size}")
        if self._decay_rate <= 0:
            raise ConfigurationError(f"decay_rate must be positive, got {self._decay_rate}")

        self._clock = clock
        self._lock = threading.Lock()
        self._closed = False

        self._waveforms = np.zeros((TIER_COUNT, self._buffer_size), dtype=np.float32)
        self._write_index: int = 0
        self._activity = [0.0] * TIER_COUNT

        self._events_this_second: int = 0
        self._events_per_second: int = 0
        self._last_rollover = clock()

        logger.info(
            "DataPulseMonitor initialised",
            extra={"buffer_size": self._buffer_size, "decay_rate": self._decay_rate},
        )

    # ------------------------------------------------------------------
    # Subscription
    # ------------------------------------------------------------------

    def connect(self, orchestrator: CacheOrchestrator) -> None:
        """Start receiving *orchestrator*'s pulses."""
        orchestrator.pulses.subscribe(self.on_pulse)

    def disconnect(self, orchestrator: CacheOrchestrator) -> None:
        """Stop receiving *orchestrator*'s pulses."""
        orchestrator.pulses.unsubscribe(self.on_pulse)

    def on_pulse(self, pulse: CachePulse) -> None:
        """Count the pulse and bump the matching tier's activity."""
        intensity = _PULSE_INTENSITY.get(pulse.pulse_type, 0.5)
        tier = tier_for_layer(pulse.layer_name)
        with self._lock:
            if self._closed:
                return
            self._events_this_second += 1
            if tier is not None:
                slot = tier - 1
                self._activity[slot] = min(1.0, self._activity[slot] + intensity)

    # ------------------------------------------------------------------
    # Ticking
    # ------------------------------------------------------------------

    def update(self, delta_time: float) -> None:
        """Advance the monitor by *delta_time* seconds.

        Decays every tier's activity, appends the decayed values to the
        waveform buffers, and rolls the events-per-second counter over
        once a full second has elapsed.

        Raises:
            ValueError: If *delta_time* is negative.
        """
        if delta_time < 0:
            raise ValueError(f"delta_time must be non-negative, got {delta_time}")

        decay = self._decay_rate * delta_time
        now = self._clock()
        with self._lock:
            if self._closed:
                return
            for slot in range(TIER_COUNT):
                self._activity[slot] = max(0.0, self._activity[slot] - decay)
            self._waveforms[:, self._write_index] = self._activity
            self._write_index = (self._write_index + 1) % self._buffer_size

            if now - self._last_rollover >= 1.0:
                self._events_per_second = self._events_this_second
                self._events_this_second = 0
                self._last_rollover = now

    # ------------------------------------------------------------------
    # Readers
    # ------------------------------------------------------------------

    def get_ordered_waveform(self, tier: int) -> np.ndarray:
        """Copy of *tier*'s buffer ordered oldest sample first.

        Unknown tier numbers fall back to tier 1.
        """
        row = tier - 1 if 1 <= tier <= TIER_COUNT else 0
        with self._lock:
            return np.roll(self._waveforms[row], -self._write_index)

    def activity(self, tier: int) -> float:
        """Current activity (0.0 to 1.0) of tier 1, 2 or 3."""
        if not 1 <= tier <= TIER_COUNT:
            raise ValueError(f"tier must be between 1 and {TIER_COUNT}, got {tier}")
        with self._lock:
            return self._activity[tier - 1]

    @property
    def l1_activity(self) -> float:
        return self.activity(1)

    @property
    def l2_activity(self) -> float:
        return self.activity(2)

    @property
    def l3_activity(self) -> float:
        return self.activity(3)

    @property
    def events_per_second(self) -> int:
        with self._lock:
            return self._events_per_second

    @property
    def buffer_size(self) -> int:
        return self._buffer_size

    @property
    def decay_rate(self) -> float:
        return self._decay_rate

    def close(self) -> None:
        """Freeze the monitor; later pulses and ticks are ignored."""
        with self._lock:
            self._closed = True
