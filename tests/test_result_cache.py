"""Tests for the in-process result cache."""

from __future__ import annotations

import pytest

from keyword_tracker.cache.result_cache import ResultCache


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


class TestResultCache:
    def test_hit_and_miss(self, clock):
        cache = ResultCache(ttl=60, max_entries=4, clock=clock)
        assert cache.get("a") is None
        cache.put("a", 1)
        assert cache.get("a") == 1
        stats = cache.stats()
        assert (stats.hits, stats.misses) == (1, 1)
        assert stats.hit_rate == 0.5

    def test_expired_entry_never_returned(self, clock):
        cache = ResultCache(ttl=60, max_entries=4, clock=clock)
        cache.put("a", 1)
        clock.advance(59)
        assert cache.get("a") == 1
        clock.advance(1)
        assert cache.get("a") is None
        assert len(cache) == 0
        assert cache.stats().expirations == 1

    def test_reads_do_not_extend_ttl(self, clock):
        cache = ResultCache(ttl=60, max_entries=4, clock=clock)
        cache.put("a", 1)
        clock.advance(40)
        assert cache.get("a") == 1
        clock.advance(40)
        assert cache.get("a") is None

    def test_put_resets_ttl(self, clock):
        cache = ResultCache(ttl=60, max_entries=4, clock=clock)
        cache.put("a", 1)
        clock.advance(50)
        cache.put("a", 2)
        clock.advance(50)
        assert cache.get("a") == 2

    def test_least_recently_used_evicted(self, clock):
        cache = ResultCache(ttl=60, max_entries=2, clock=clock)
        cache.put("a", 1)
        cache.put("b", 2)
        assert cache.get("a") == 1
        cache.put("c", 3)
        assert cache.get("b") is None
        assert cache.get("a") == 1
        assert cache.get("c") == 3
        assert cache.stats().evictions == 1

    def test_invalidate_by_predicate(self, clock):
        cache = ResultCache(ttl=60, max_entries=8, clock=clock)
        for key in ("acme:1", "acme:2", "globex:1"):
            cache.put(key, key)
        assert cache.invalidate(lambda key: key.startswith("acme:")) == 2
        assert cache.get("globex:1") == "globex:1"
        assert len(cache) == 1

    def test_put_lifetime_only_shortens(self, clock):
        cache = ResultCache(ttl=60, max_entries=8, clock=clock)
        cache.put("short", 1, ttl=10)
        cache.put("long", 2, ttl=600)
        cache.put("spent", 3, ttl=0)
        clock.advance(10)
        assert cache.get("short") is None
        assert cache.get("long") == 2
        assert cache.get("spent") is None
        clock.advance(50)
        assert cache.get("long") is None

    def test_clear(self, clock):
        cache = ResultCache(ttl=60, max_entries=8, clock=clock)
        cache.put("a", 1)
        cache.clear()
        assert cache.get("a") is None

    @pytest.mark.parametrize("kwargs", [{"ttl": 0, "max_entries": 1}, {"ttl": 1, "max_entries": 0}])
    def test_rejects_bad_limits(self, kwargs):
        with pytest.raises(ValueError):
            ResultCache(**kwargs)
