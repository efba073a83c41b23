"""Tests for MemoryCacheLayer -- the in-memory reference tier."""

import threading
import time
from datetime import timedelta
from typing import List

import pytest

from tierpulse.cache.memory import MemoryCacheLayer, estimate_size
from tierpulse.cache.pulse import CachePulse, PulseType
from tierpulse.exceptions import ConfigurationError, InvalidCacheInputError


def _flat(size: int):
    """Estimator that prices every value at *size* bytes."""
    return lambda value: size


@pytest.fixture
def layer() -> MemoryCacheLayer:
    return MemoryCacheLayer(max_size_bytes=10_000)


@pytest.fixture
def pulses(layer: MemoryCacheLayer) -> List[CachePulse]:
    received: List[CachePulse] = []
    layer.pulses.subscribe(received.append)
    return received


class TestEstimateSize:
    def test_string_cost(self) -> None:
        assert estimate_size("") == 100
        assert estimate_size("abcde") == 110

    def test_object_cost(self) -> None:
        assert estimate_size({"a": 1}) == 500
        assert estimate_size(42) == 500


class TestDescriptor:
    def test_defaults(self, layer: MemoryCacheLayer) -> None:
        assert layer.name == "L1-Memory"
        assert layer.priority == 1
        assert layer.expected_latency == timedelta(microseconds=100)
        assert layer.max_size_bytes == 10_000
        assert layer.current_size_bytes == 0

    def test_info_snapshot(self, layer: MemoryCacheLayer) -> None:
        layer.set("k", "abc")
        info = layer.info()
        assert info.name == "L1-Memory"
        assert info.current_size_bytes == 106
        assert info.max_size_bytes == 10_000

    def test_non_positive_budget_rejected(self) -> None:
        with pytest.raises(ConfigurationError):
            MemoryCacheLayer(max_size_bytes=0)


class TestGetSet:
    def test_get_miss(self, layer: MemoryCacheLayer) -> None:
        assert layer.get("missing") is None

    def test_set_and_get(self, layer: MemoryCacheLayer) -> None:
        layer.set("k", "v")
        assert layer.get("k") == "v"
        assert layer.exists("k") is True

    def test_last_write_wins(self, layer: MemoryCacheLayer) -> None:
        for value in ["one", "two", "three"]:
            layer.set("k", value)
        assert layer.get("k") == "three"
        assert len(layer) == 1

    def test_replace_releases_old_size(self, layer: MemoryCacheLayer) -> None:
        layer.set("k", "a" * 50)   # 200 bytes
        layer.set("k", "b" * 10)   # 120 bytes
        assert layer.current_size_bytes == 120

    def test_ttl_expiry_purges_lazily(self, layer: MemoryCacheLayer) -> None:
        layer.set("short", "x" * 20, ttl=timedelta(milliseconds=50))
        layer.set("long", "y")
        before = layer.current_size_bytes
        assert layer.get("short") == "x" * 20

        time.sleep(0.1)
        # Still resident until touched
        assert len(layer) == 2
        assert layer.exists("short") is False
        assert layer.get("short") is None
        assert layer.current_size_bytes == before - estimate_size("x" * 20)
        assert len(layer) == 1

    def test_cleanup_expired(self, layer: MemoryCacheLayer) -> None:
        layer.set("a", "1", ttl=timedelta(milliseconds=20))
        layer.set("b", "2", ttl=timedelta(milliseconds=20))
        layer.set("c", "3")
        time.sleep(0.05)
        assert layer.cleanup_expired() == 2
        assert len(layer) == 1
        assert layer.current_size_bytes == estimate_size("3")


class TestValidation:
    @pytest.mark.parametrize("key", [None, "", "   ", 123])
    def test_bad_keys_rejected(self, layer: MemoryCacheLayer, key) -> None:
        with pytest.raises(InvalidCacheInputError):
            layer.set(key, "v")
        with pytest.raises(InvalidCacheInputError):
            layer.get(key)

    def test_none_value_rejected(self, layer: MemoryCacheLayer) -> None:
        with pytest.raises(InvalidCacheInputError):
            layer.set("k", None)
        assert len(layer) == 0

    def test_non_positive_ttl_rejected(self, layer: MemoryCacheLayer) -> None:
        with pytest.raises(InvalidCacheInputError):
            layer.set("k", "v", ttl=timedelta(0))
        assert layer.current_size_bytes == 0


class TestEviction:
    def test_evicts_least_recently_set(self) -> None:
        layer = MemoryCacheLayer(max_size_bytes=600, size_estimator=_flat(500))
        layer.set("a", object())
        layer.set("b", object())
        assert layer.exists("a") is False
        assert layer.exists("b") is True
        assert layer.evictions == 1

    def test_read_refreshes_recency(self) -> None:
        layer = MemoryCacheLayer(max_size_bytes=300, size_estimator=_flat(100))
        layer.set("a", 1)
        layer.set("b", 2)
        layer.set("c", 3)
        layer.get("a")          # "b" is now least recently accessed
        layer.set("d", 4)
        assert layer.exists("a") is True
        assert layer.exists("b") is False
        assert layer.exists("c") is True
        assert layer.exists("d") is True

    def test_size_never_exceeds_budget(self) -> None:
        layer = MemoryCacheLayer(max_size_bytes=1_000)
        for i in range(200):
            layer.set(f"k{i}", "v" * (i % 37))
            assert layer.current_size_bytes <= layer.max_size_bytes

    def test_oversized_entry_not_cached(self) -> None:
        layer = MemoryCacheLayer(max_size_bytes=150)
        layer.set("k", "ok")
        layer.set("k", "x" * 500)
        assert layer.get("k") is None
        assert layer.current_size_bytes == 0


class TestRemoveClear:
    def test_remove_subtracts_size(self, layer: MemoryCacheLayer) -> None:
        layer.set("a", "1")
        layer.set("b", "22")
        layer.remove("a")
        assert layer.exists("a") is False
        assert layer.current_size_bytes == estimate_size("22")

    def test_remove_missing_is_noop(self, layer: MemoryCacheLayer) -> None:
        layer.remove("nope")
        assert layer.current_size_bytes == 0

    def test_clear(self, layer: MemoryCacheLayer) -> None:
        layer.set("a", "1")
        layer.set("b", "2")
        layer.clear()
        assert len(layer) == 0
        assert layer.current_size_bytes == 0


class TestPulses:
    def test_hit_miss_write_invalidation(
        self, layer: MemoryCacheLayer, pulses: List[CachePulse]
    ) -> None:
        layer.get("k")
        layer.set("k", "v")
        layer.get("k")
        layer.remove("k")
        layer.remove("k")
        assert [p.pulse_type for p in pulses] == [
            PulseType.MISS,
            PulseType.WRITE,
            PulseType.HIT,
            PulseType.INVALIDATION,
        ]
        assert all(p.layer_name == "L1-Memory" and p.key == "k" for p in pulses)

    def test_expired_get_emits_single_miss(
        self, layer: MemoryCacheLayer, pulses: List[CachePulse]
    ) -> None:
        layer.set("k", "v", ttl=timedelta(milliseconds=10))
        time.sleep(0.03)
        pulses.clear()
        layer.get("k")
        assert [p.pulse_type for p in pulses] == [PulseType.MISS]

    def test_oversized_replacement_emits_invalidation(self) -> None:
        layer = MemoryCacheLayer(max_size_bytes=150)
        received: List[CachePulse] = []
        layer.pulses.subscribe(received.append)

        layer.set("k", "ok")
        received.clear()
        layer.set("k", "x" * 500)
        assert [p.pulse_type for p in received] == [PulseType.INVALIDATION]
        assert received[0].key == "k"

    def test_oversized_new_key_emits_nothing(self) -> None:
        layer = MemoryCacheLayer(max_size_bytes=150)
        received: List[CachePulse] = []
        layer.pulses.subscribe(received.append)

        layer.set("k", "x" * 500)
        assert received == []

    def test_clear_emits_nothing(
        self, layer: MemoryCacheLayer, pulses: List[CachePulse]
    ) -> None:
        layer.set("k", "v")
        pulses.clear()
        layer.clear()
        assert pulses == []


class TestConcurrency:
    def test_parallel_writers_keep_accounting_consistent(self) -> None:
        layer = MemoryCacheLayer(max_size_bytes=5_000, size_estimator=_flat(100))

        def writer(worker: int) -> None:
            for i in range(200):
                key = f"w{worker}-{i % 25}"
                layer.set(key, i)
                layer.get(key)
                if i % 7 == 0:
                    layer.remove(key)

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert layer.current_size_bytes == len(layer) * 100
        assert layer.current_size_bytes <= layer.max_size_bytes
