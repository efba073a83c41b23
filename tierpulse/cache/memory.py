"""
In-memory cache layer for TierPulse (L1).

The fastest tier: a lock-guarded key -> entry store with lazy TTL
expiry and least-recently-used eviction under a byte budget.  Entry
sizes come from a pluggable estimator since Python objects have no
cheap exact footprint.
"""

import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, List, Optional

from tierpulse.cache.layer import CacheLayer, validate_entry, validate_key
from tierpulse.cache.pulse import PulseType
from tierpulse.config import get_settings
from tierpulse.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

SizeEstimator = Callable[[Any], int]

_ENTRY_OVERHEAD_BYTES = 100
_BYTES_PER_CHAR = 2
_OBJECT_SIZE_BYTES = 500


def estimate_size(value: Any) -> int:
    """Rough byte footprint of a cached value.

    Text costs a fixed overhead plus two bytes per character; anything
    else is assumed to be about 500 bytes.

    Args:
        value: The value about to be cached.

    Returns:
        Estimated size in bytes.
    """
    if isinstance(value, str):
        return _ENTRY_OVERHEAD_BYTES + len(value) * _BYTES_PER_CHAR
    return _OBJECT_SIZE_BYTES


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _CacheEntry:
    value: Any
    size_bytes: int
    expires_at: Optional[datetime] = None
    last_accessed: datetime = field(default_factory=_utcnow)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class MemoryCacheLayer(CacheLayer):
    """L1 in-memory cache with TTL expiry and LRU eviction.

    Entries are kept in an ``OrderedDict`` ordered by last access, so the
    least-recently-accessed entry is always at the front and eviction is
    O(1).  All state changes happen under one lock; pulses are published
    after the lock is released.

    Args:
        max_size_bytes: Byte budget.  Defaults to
            ``settings.cache.max_size_bytes`` (100 MiB).
        name: Layer name.
        priority: Layer priority (lower is checked first).
        expected_latency: Informational access latency.
        size_estimator: Callable returning an entry's size in bytes.

    Raises:
        ConfigurationError: If ``max_size_bytes`` is not positive.
    """

    def __init__(
        self,
        max_size_bytes: Optional[int] = None,
        name: str = "L1-Memory",
        priority: int = 1,
        expected_latency: timedelta = timedelta(microseconds=100),
        size_estimator: Optional[SizeEstimator] = None,
    ) -> None:
        super().__init__()
        if max_size_bytes is None:
            max_size_bytes = get_settings().cache.max_size_bytes
        if max_size_bytes <= 0:
            raise ConfigurationError(
                f"max_size_bytes must be positive, got {max_size_bytes}"
            )

        self._name = name
        self._priority = priority
        self._expected_latency = expected_latency
        self._max_size_bytes = max_size_bytes
        self._estimate = size_estimator or estimate_size

        self._lock = threading.Lock()
        self._entries: "OrderedDict[str, _CacheEntry]" = OrderedDict()
        self._current_size_bytes: int = 0
        self._evictions: int = 0

        logger.info(
            "MemoryCacheLayer initialised",
            extra={"layer_name": name, "max_size_bytes": max_size_bytes},
        )

    # ------------------------------------------------------------------
    # Descriptor
    # ------------------------------------------------------------------

    @property
    def name(self) -> str:
        return self._name

    @property
    def priority(self) -> int:
        return self._priority

    @property
    def expected_latency(self) -> timedelta:
        return self._expected_latency

    @property
    def max_size_bytes(self) -> int:
        return self._max_size_bytes

    @property
    def current_size_bytes(self) -> int:
        with self._lock:
            return self._current_size_bytes

    @property
    def evictions(self) -> int:
        """Entries evicted to honour the byte budget so far."""
        with self._lock:
            return self._evictions

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------

    def get(self, key: str) -> Optional[Any]:
        """Look up *key*.

        A live entry has its access time refreshed and moves to the back
        of the LRU order.  An expired entry is purged and reported as a
        miss.

        Returns:
            The cached value, or ``None`` on a miss.
        """
        validate_key(key)
        now = _utcnow()
        value = None
        hit = False

        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                if entry.is_expired(now):
                    self._drop(key)
                    logger.debug(
                        "Cache entry expired",
                        extra={"layer_name": self._name, "key": key},
                    )
                else:
                    entry.last_accessed = now
                    self._entries.move_to_end(key)
                    value = entry.value
                    hit = True

        if hit:
            self._pulses.emit(self._name, PulseType.HIT, key)
            return value

        self._pulses.emit(self._name, PulseType.MISS, key)
        return None

    def set(self, key: str, value: Any, ttl: Optional[timedelta] = None) -> None:
        """Store *value*, evicting least-recently-used entries as needed.

        An entry larger than the whole budget is not stored; any older
        value under the same key is dropped so it cannot be served, and
        the drop is published as an invalidation.

        Args:
            key: Cache key.
            value: Value to cache (not ``None``).
            ttl: Optional time-to-live.

        Raises:
            InvalidCacheInputError: On a bad key, value, or TTL.
        """
        validate_entry(key, value, ttl)
        size = int(self._estimate(value))
        now = _utcnow()
        entry = _CacheEntry(
            value=value,
            size_bytes=size,
            expires_at=now + ttl if ttl is not None else None,
            last_accessed=now,
        )

        evicted: List[str] = []
        replaced = False
        with self._lock:
            if key in self._entries:
                replaced = self._drop(key)

            oversized = size > self._max_size_bytes
            if oversized:
                logger.warning(
                    "Entry exceeds layer budget; not cached",
                    extra={
                        "layer_name": self._name,
                        "key": key,
                        "size_bytes": size,
                        "max_size_bytes": self._max_size_bytes,
                    },
                )
            else:
                while self._entries and self._current_size_bytes + size > self._max_size_bytes:
                    evicted.append(self._evict_lru())

                self._entries[key] = entry
                self._current_size_bytes += size

        if oversized:
            # The old value is gone and nothing replaced it
            if replaced:
                self._pulses.emit(self._name, PulseType.INVALIDATION, key)
            return

        if evicted:
            logger.debug(
                "LRU eviction",
                extra={"layer_name": self._name, "evicted": evicted, "key": key},
            )
        self._pulses.emit(self._name, PulseType.WRITE, key)

    def remove(self, key: str) -> None:
        validate_key(key)
        with self._lock:
            removed = self._drop(key)
        if removed:
            self._pulses.emit(self._name, PulseType.INVALIDATION, key)

    def exists(self, key: str) -> bool:
        validate_key(key)
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not entry.is_expired(_utcnow())

    def clear(self) -> None:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            self._current_size_bytes = 0
        logger.info(
            "Cache layer cleared",
            extra={"layer_name": self._name, "entries_removed": count},
        )

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def cleanup_expired(self) -> int:
        """Remove all expired entries eagerly.

        Returns:
            Number of entries removed.
        """
        now = _utcnow()
        with self._lock:
            expired_keys = [
                key for key, entry in self._entries.items() if entry.is_expired(now)
            ]
            for key in expired_keys:
                self._drop(key)

        if expired_keys:
            logger.info(
                "Expired entries cleaned up",
                extra={"layer_name": self._name, "count": len(expired_keys)},
            )
        return len(expired_keys)

    # ------------------------------------------------------------------
    # Internals (caller holds self._lock)
    # ------------------------------------------------------------------

    def _drop(self, key: str) -> bool:
        entry = self._entries.pop(key, None)
        if entry is None:
            return False
        self._current_size_bytes = max(0, self._current_size_bytes - entry.size_bytes)
        return True

    def _evict_lru(self) -> str:
        key, entry = self._entries.popitem(last=False)
        self._current_size_bytes = max(0, self._current_size_bytes - entry.size_bytes)
        self._evictions += 1
        return key
