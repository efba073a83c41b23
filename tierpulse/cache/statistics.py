"""
Per-layer hit/miss statistics for TierPulse.

Counters are monotonic for the lifetime of the owning orchestrator and
every update takes a single lock; this path is not latency critical.
"""

import threading
from collections import defaultdict
from types import MappingProxyType
from typing import Dict, Mapping

from pydantic import BaseModel


class LayerStats(BaseModel):
    """Snapshot of one layer's counters.

    Attributes:
        hits: Lookups answered by the layer.
        misses: Lookups the layer could not answer.
        hit_rate: ``hits / (hits + misses)``, or 0.0 with no lookups.
    """

    hits: int = 0
    misses: int = 0
    hit_rate: float = 0.0

    model_config = {"frozen": True}


def _hit_rate(hits: int, misses: int) -> float:
    total = hits + misses
    return hits / total if total > 0 else 0.0


class CacheStatistics:
    """Thread-safe hit/miss counters keyed by layer name."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._hits: Dict[str, int] = defaultdict(int)
        self._misses: Dict[str, int] = defaultdict(int)

    def record_hit(self, layer_name: str) -> None:
        with self._lock:
            self._hits[layer_name] += 1
            self._misses.setdefault(layer_name, 0)

    def record_miss(self, layer_name: str) -> None:
        with self._lock:
            self._misses[layer_name] += 1
            self._hits.setdefault(layer_name, 0)

    def hits(self, layer_name: str) -> int:
        with self._lock:
            return self._hits.get(layer_name, 0)

    def misses(self, layer_name: str) -> int:
        with self._lock:
            return self._misses.get(layer_name, 0)

    def hit_rate(self, layer_name: str) -> float:
        """Hit rate for *layer_name*; 0.0 for an unknown or unused layer."""
        with self._lock:
            return _hit_rate(
                self._hits.get(layer_name, 0), self._misses.get(layer_name, 0)
            )

    def get_all_stats(self) -> Mapping[str, LayerStats]:
        """Return a read-only snapshot of every layer seen so far."""
        with self._lock:
            snapshot = {
                name: LayerStats(
                    hits=self._hits[name],
                    misses=self._misses[name],
                    hit_rate=_hit_rate(self._hits[name], self._misses[name]),
                )
                for name in self._hits
            }
        return MappingProxyType(snapshot)
