# tests/test_cache.py
import pytest

from packhouse.cache import ResultCache


def test_hit_until_ttl_expires(clock):
    cache = ResultCache(max_entries=10, ttl=5.0, clock=clock)
    cache.put(("ORD-1", None), ["line"])

    clock.advance(4)
    assert cache.get(("ORD-1", None)) == ["line"]

    clock.advance(1)
    assert cache.get(("ORD-1", None)) is None
    assert len(cache) == 0


def test_oldest_entry_evicted_when_full(clock):
    cache = ResultCache(max_entries=2, ttl=60, clock=clock)
    cache.put("a", 1)
    cache.put("b", 2)
    cache.put("c", 3)

    assert cache.get("a") is None
    assert cache.get("b") == 2
    assert cache.get("c") == 3


def test_put_refreshes_position_and_timestamp(clock):
    cache = ResultCache(max_entries=2, ttl=5, clock=clock)
    cache.put("a", 1)
    clock.advance(3)
    cache.put("b", 2)
    cache.put("a", 10)  # now newest
    cache.put("c", 3)

    assert cache.get("b") is None
    clock.advance(3)
    assert cache.get("a") == 10


def test_empty_list_is_a_hit(clock):
    cache = ResultCache(clock=clock)
    cache.put("k", [])
    assert cache.get("k") == []


def test_discard_and_clear(clock):
    cache = ResultCache(clock=clock)
    cache.put("a", 1)
    cache.put("b", 2)
    cache.discard("a")
    cache.discard("missing")
    assert cache.get("a") is None
    assert len(cache) == 1

    cache.clear()
    assert len(cache) == 0


def test_rejects_zero_capacity():
    with pytest.raises(ValueError):
        ResultCache(max_entries=0)
