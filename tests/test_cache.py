"""
Tests for the response cache and cache key normalization.
"""

from helpscout_mcp.cache import ResponseCache, build_cache_key


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestCacheKey:

    def test_param_order_does_not_matter(self):
        a = build_cache_key("get", "/conversations", {"status": "active", "page": 1})
        b = build_cache_key("GET", "/conversations", {"page": 1, "status": "active"})
        assert a == b
        assert a.startswith("GET:/conversations?")

    def test_none_params_are_dropped(self):
        assert build_cache_key("GET", "/mailboxes", {"page": None}) == "GET:/mailboxes"
        assert build_cache_key("GET", "/mailboxes") == "GET:/mailboxes"


class TestResponseCache:

    def test_entries_expire_after_ttl(self):
        clock = FakeClock()
        cache = ResponseCache(default_ttl=10, clock=clock)
        cache.set("k", {"v": 1})

        clock.now = 9.9
        assert cache.get("k") == {"v": 1}
        clock.now = 10.0
        assert cache.get("k") is None
        assert len(cache) == 0

    def test_explicit_ttl_overrides_default(self):
        clock = FakeClock()
        cache = ResponseCache(default_ttl=10, clock=clock)
        cache.set("k", "v", ttl=100)

        clock.now = 50
        assert cache.get("k") == "v"

    def test_non_positive_ttl_is_not_stored(self):
        cache = ResponseCache()
        cache.set("k", "v", ttl=0)
        assert cache.get("k") is None

    def test_oldest_entries_evicted_when_full(self):
        cache = ResponseCache(max_size=2)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("c", 3)

        assert cache.get("a") is None
        assert cache.get("b") == 2
        assert cache.get("c") == 3

    def test_clear_by_prefix(self):
        cache = ResponseCache()
        cache.set("GET:/conversations/1", 1)
        cache.set("GET:/conversations?{}", 2)
        cache.set("GET:/mailboxes", 3)

        assert cache.clear("GET:/conversations") == 2
        assert cache.get("GET:/mailboxes") == 3
        assert cache.clear() == 1

    def test_stats_count_hits_and_misses(self):
        cache = ResponseCache()
        cache.set("k", "v")
        cache.get("k")
        cache.get("missing")

        assert cache.stats() == {"size": 1, "hits": 1, "misses": 1}
