"""
Multi-tier cache orchestrator for TierPulse.

Composes an ordered set of :class:`~tierpulse.cache.layer.CacheLayer`
tiers behind one facade.  Reads scan tiers fastest-first and populate
the faster tiers they skipped (read-through).  Writes follow a
configurable :class:`WriteStrategy`.  Every operation feeds the
hit/miss statistics and the pulse stream consumed by
:class:`~tierpulse.observability.monitor.DataPulseMonitor`.
"""

import logging
import queue
import threading
from datetime import timedelta
from enum import Enum
from typing import Any, Callable, Iterable, List, Optional, Tuple, Union

from tierpulse.cache.layer import CacheLayer, LayerInfo, validate_entry, validate_key
from tierpulse.cache.memory import MemoryCacheLayer
from tierpulse.cache.pulse import CachePulse, PulseBroadcaster, PulseType
from tierpulse.cache.statistics import CacheStatistics
from tierpulse.config import get_settings
from tierpulse.exceptions import (
    ConfigurationError,
    LayerWriteError,
    OrchestratorClosedError,
)

logger = logging.getLogger(__name__)

ORCHESTRATOR_PULSE_NAME = "Orchestrator"

# (key, value, ttl) queued for the slower tiers under write-behind
_WriteJob = Tuple[str, Any, Optional[timedelta]]


class WriteStrategy(str, Enum):
    """How :meth:`CacheOrchestrator.set` fans a write out across tiers."""

    WRITE_THROUGH = "write_through"
    FASTEST_ONLY = "fastest_only"
    WRITE_BEHIND = "write_behind"

    @classmethod
    def parse(cls, value: Union["WriteStrategy", str]) -> "WriteStrategy":
        """Resolve a strategy from an enum member or its config string.

        Raises:
            ConfigurationError: If the name is not a known strategy.
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            valid = ", ".join(s.value for s in cls)
            raise ConfigurationError(
                f"Unknown write strategy '{value}'. Expected one of: {valid}"
            ) from None


class CacheOrchestrator:
    """Facade over an ordered set of cache tiers.

    Tiers are sorted by ascending priority once, at construction, and
    every operation walks them in that order.  There is no global lock:
    each tier protects its own state.

    Tier pulses are re-published on :attr:`pulses` alongside the
    orchestrator's own ``"Orchestrator"`` pulses, so a single subscription
    observes the whole hierarchy.

    Args:
        layers: Tiers to compose.  ``None`` or empty yields a single
            :class:`MemoryCacheLayer` with the configured byte budget.
        write_strategy: Strategy for :meth:`set`.  Defaults to
            ``settings.cache.write_strategy``.

    Raises:
        ConfigurationError: On duplicate layer names or an unknown
            write strategy.
    """

    def __init__(
        self,
        layers: Optional[Iterable[CacheLayer]] = None,
        write_strategy: Optional[Union[WriteStrategy, str]] = None,
    ) -> None:
        settings = get_settings().cache
        ordered = sorted(layers or [], key=lambda layer: layer.priority)
        if not ordered:
            ordered = [MemoryCacheLayer(max_size_bytes=settings.max_size_bytes)]

        names = [layer.name for layer in ordered]
        if len(set(names)) != len(names):
            raise ConfigurationError(f"Duplicate cache layer names: {names}")

        self._layers: Tuple[CacheLayer, ...] = tuple(ordered)
        self._write_strategy = WriteStrategy.parse(
            write_strategy if write_strategy is not None else settings.write_strategy
        )
        self._default_ttl: Optional[timedelta] = (
            timedelta(seconds=settings.default_ttl_seconds)
            if settings.default_ttl_seconds > 0
            else None
        )

        self._statistics = CacheStatistics()
        self._pulses = PulseBroadcaster()
        self._closed = False

        # Write-behind bookkeeping
        self._background_cond = threading.Condition()
        self._pending_background: int = 0
        self._background_failures: int = 0
        self._background_queue: "queue.Queue[Optional[_WriteJob]]" = queue.Queue()
        self._background_thread: Optional[threading.Thread] = None

        for layer in self._layers:
            layer.pulses.subscribe(self._forward_pulse)

        logger.info(
            "CacheOrchestrator initialised",
            extra={
                "layer_count": len(self._layers),
                "layers": names,
                "write_strategy": self._write_strategy.value,
            },
        )

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def layers(self) -> Tuple[CacheLayer, ...]:
        """Tiers in ascending priority order."""
        return self._layers

    @property
    def write_strategy(self) -> WriteStrategy:
        return self._write_strategy

    @property
    def statistics(self) -> CacheStatistics:
        return self._statistics

    @property
    def pulses(self) -> PulseBroadcaster:
        """Pulse stream covering tier and orchestrator events."""
        return self._pulses

    @property
    def background_failures(self) -> int:
        """Write-behind tier writes that failed since construction."""
        with self._background_cond:
            return self._background_failures

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, key: str) -> Optional[Any]:
        """Return the value for *key* from the fastest tier holding it.

        Tiers scanned before the hit are counted as misses and then
        receive the value (read-through).  A tier that raises is logged
        and treated as a miss.

        Returns:
            The cached value, or ``None`` if no tier holds it.
        """
        self._ensure_open()
        validate_key(key)

        for index, layer in enumerate(self._layers):
            try:
                value = layer.get(key)
            except Exception as exc:
                logger.warning(
                    "Cache layer read failed; treating as miss",
                    extra={"layer_name": layer.name, "key": key, "error": str(exc)},
                )
                value = None

            if value is None:
                self._record(self._statistics.record_miss, layer.name)
                continue

            self._record(self._statistics.record_hit, layer.name)
            logger.debug(
                "Cache hit",
                extra={"layer_name": layer.name, "key": key, "layer_index": index},
            )
            self._populate_faster(key, value, index)
            return value

        logger.debug("Cache miss on all layers", extra={"key": key})
        return None

    def get_or_create(
        self,
        key: str,
        factory: Callable[[], Any],
        ttl: Optional[timedelta] = None,
    ) -> Any:
        """Return the cached value, or build, store, and return it.

        Concurrent callers missing on the same key may each invoke
        *factory*; there is no single-flight coordination.

        Args:
            key: Cache key.
            factory: Zero-argument callable producing the value.
            ttl: Optional time-to-live for a newly created value.
        """
        cached = self.get(key)
        if cached is not None:
            return cached

        value = factory()
        self.set(key, value, ttl)
        return value

    def exists(self, key: str) -> bool:
        """Whether any tier holds a live entry for *key*."""
        self._ensure_open()
        validate_key(key)
        for layer in self._layers:
            try:
                if layer.exists(key):
                    return True
            except Exception as exc:
                logger.warning(
                    "Cache layer exists check failed",
                    extra={"layer_name": layer.name, "key": key, "error": str(exc)},
                )
        return False

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def set(self, key: str, value: Any, ttl: Optional[timedelta] = None) -> None:
        """Store *value* according to the configured write strategy.

        Args:
            key: Cache key.
            value: Value to cache (not ``None``).
            ttl: Optional time-to-live; falls back to
                ``settings.cache.default_ttl_seconds`` when positive.

        Raises:
            InvalidCacheInputError: On a bad key, value, or TTL.
            LayerWriteError: If a synchronously written tier fails.  Tiers
                written before the failure keep the value.
        """
        self._ensure_open()
        if ttl is None:
            ttl = self._default_ttl
        validate_entry(key, value, ttl)

        if self._write_strategy is WriteStrategy.WRITE_THROUGH:
            for layer in self._layers:
                self._write_layer(layer, key, value, ttl)

        elif self._write_strategy is WriteStrategy.FASTEST_ONLY:
            self._write_layer(self._layers[0], key, value, ttl)

        else:
            self._write_layer(self._layers[0], key, value, ttl)
            if len(self._layers) > 1:
                self._start_write_behind(key, value, ttl)

        self._emit(PulseType.WRITE, key)

    def remove(self, key: str) -> None:
        """Remove *key* from every tier.

        Every tier is attempted even if an earlier one fails.

        Raises:
            LayerWriteError: For the first tier that failed, after all
                tiers were attempted.
        """
        self._ensure_open()
        validate_key(key)
        failure = self._for_each_layer("remove", lambda layer: layer.remove(key), key)
        self._emit(PulseType.INVALIDATION, key)
        if failure is not None:
            raise failure

    def clear(self) -> None:
        """Clear every tier.

        Raises:
            LayerWriteError: For the first tier that failed, after all
                tiers were attempted.
        """
        self._ensure_open()
        failure = self._for_each_layer("clear", lambda layer: layer.clear())
        logger.info("All cache layers cleared", extra={"layer_count": len(self._layers)})
        if failure is not None:
            raise failure

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_layer_info(self) -> List[LayerInfo]:
        """Descriptor snapshot of every tier, fastest first."""
        return [layer.info() for layer in self._layers]

    def pending_background_writes(self) -> int:
        with self._background_cond:
            return self._pending_background

    def wait_for_background_writes(self, timeout: Optional[float] = None) -> bool:
        """Block until no write-behind task is in flight.

        Diagnostic helper; :meth:`set` never waits on background work.

        Returns:
            ``True`` if all background writes finished within *timeout*.
        """
        with self._background_cond:
            return self._background_cond.wait_for(
                lambda: self._pending_background == 0, timeout=timeout
            )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Detach from tier pulse streams and reject further operations.

        Queued write-behind jobs are abandoned, not drained, and the
        call does not wait for the worker to stop.
        """
        with self._background_cond:
            if self._closed:
                return
            self._closed = True
            if self._background_thread is not None:
                self._background_queue.put(None)
        for layer in self._layers:
            layer.pulses.unsubscribe(self._forward_pulse)
        logger.info(
            "CacheOrchestrator closed",
            extra={"pending_background_writes": self.pending_background_writes()},
        )

    def __enter__(self) -> "CacheOrchestrator":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _ensure_open(self) -> None:
        if self._closed:
            raise OrchestratorClosedError("CacheOrchestrator is closed")

    def _populate_faster(self, key: str, value: Any, hit_index: int) -> None:
        """Write the exact value just read into every faster tier."""
        for layer in self._layers[:hit_index]:
            try:
                layer.set(key, value)
            except Exception as exc:
                logger.warning(
                    "Read-through population failed",
                    extra={"layer_name": layer.name, "key": key, "error": str(exc)},
                )

    def _write_layer(
        self, layer: CacheLayer, key: str, value: Any, ttl: Optional[timedelta]
    ) -> None:
        try:
            layer.set(key, value, ttl)
        except Exception as exc:
            logger.error(
                "Cache layer write failed",
                extra={"layer_name": layer.name, "key": key, "error": str(exc)},
            )
            raise LayerWriteError(layer.name) from exc

    def _for_each_layer(
        self,
        operation: str,
        action: Callable[[CacheLayer], None],
        key: Optional[str] = None,
    ) -> Optional[LayerWriteError]:
        first_failure: Optional[LayerWriteError] = None
        for layer in self._layers:
            try:
                action(layer)
            except Exception as exc:
                logger.error(
                    "Cache layer %s failed",
                    operation,
                    extra={"layer_name": layer.name, "key": key, "error": str(exc)},
                )
                if first_failure is None:
                    first_failure = LayerWriteError(
                        layer.name, f"Cache layer '{layer.name}' failed during {operation}"
                    )
                    first_failure.__cause__ = exc
        return first_failure

    def _start_write_behind(
        self, key: str, value: Any, ttl: Optional[timedelta]
    ) -> None:
        """Queue the remaining tiers of a write for the background worker.

        One worker drains the queue in FIFO order, so sequential writes
        to a key land on the slower tiers in the order they were made.
        """
        with self._background_cond:
            if self._closed:
                return
            self._pending_background += 1
            self._background_queue.put((key, value, ttl))
            if self._background_thread is None:
                self._background_thread = threading.Thread(
                    target=self._run_write_behind,
                    name="tierpulse-write-behind",
                    daemon=True,
                )
                try:
                    self._background_thread.start()
                except RuntimeError as exc:
                    self._background_thread = None
                    logger.error(
                        "Could not start write-behind thread",
                        extra={"key": key, "error": str(exc)},
                    )
                    self._background_queue.get_nowait()
                    self._pending_background -= 1
                    self._background_failures += 1
                    self._background_cond.notify_all()

    def _run_write_behind(self) -> None:
        """Worker loop: write queued jobs to the remaining tiers in order."""
        logger.debug("Write-behind worker started")
        while True:
            job = self._background_queue.get()
            if job is None:
                break
            key, value, ttl = job
            if self._closed:
                logger.debug("Write-behind abandoned after close", extra={"key": key})
                self._finish_background(failed=False)
                continue
            self._write_remaining(key, value, ttl)
        logger.debug("Write-behind worker stopped")

    def _write_remaining(
        self, key: str, value: Any, ttl: Optional[timedelta]
    ) -> None:
        """Write one job to every tier after the first.  Failures never propagate."""
        failed = False
        try:
            for layer in self._layers[1:]:
                if self._closed:
                    logger.debug(
                        "Write-behind abandoned after close",
                        extra={"key": key, "layer_name": layer.name},
                    )
                    break
                layer.set(key, value, ttl)
        except Exception as exc:
            failed = True
            logger.error(
                "Write-behind failed",
                extra={"key": key, "error": str(exc)},
                exc_info=True,
            )
        finally:
            self._finish_background(failed)

    def _finish_background(self, failed: bool) -> None:
        with self._background_cond:
            self._pending_background -= 1
            if failed:
                self._background_failures += 1
            self._background_cond.notify_all()

    def _forward_pulse(self, pulse: CachePulse) -> None:
        self._pulses.publish(pulse)

    def _emit(self, pulse_type: PulseType, key: str) -> None:
        try:
            self._pulses.emit(ORCHESTRATOR_PULSE_NAME, pulse_type, key)
        except Exception as exc:
            logger.warning(
                "Pulse emission failed",
                extra={"pulse_type": pulse_type.value, "key": key, "error": str(exc)},
            )

    @staticmethod
    def _record(recorder: Callable[[str], None], layer_name: str) -> None:
        try:
            recorder(layer_name)
        except Exception as exc:
            logger.warning(
                "Statistics update failed",
                extra={"layer_name": layer_name, "error": str(exc)},
            )
