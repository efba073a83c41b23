"""Multi-tier caching: layer contract, in-memory tier, orchestrator."""

from tierpulse.cache.layer import CacheLayer, LayerInfo
from tierpulse.cache.memory import MemoryCacheLayer, estimate_size
from tierpulse.cache.orchestrator import CacheOrchestrator, WriteStrategy
from tierpulse.cache.pulse import CachePulse, PulseBroadcaster, PulseType
from tierpulse.cache.statistics import CacheStatistics, LayerStats

__all__ = [
    "CacheLayer",
    "CacheOrchestrator",
    "CachePulse",
    "CacheStatistics",
    "LayerInfo",
    "LayerStats",
    "MemoryCacheLayer",
    "PulseBroadcaster",
    "PulseType",
    "WriteStrategy",
    "estimate_size",
]
