from gamecompare.core.cache import TTLCache


class Ticker:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_set_then_get_returns_value():
    cache = TTLCache(clock=Ticker())
    cache.set("steam:applist", [1, 2, 3], ttl=60)
    assert cache.get("steam:applist") == [1, 2, 3]
    assert "steam:applist" in cache


def test_entry_expires_after_ttl_and_is_evicted():
    ticker = Ticker()
    cache = TTLCache(clock=ticker)
    cache.set("gog:details:1", {"name": "Witcher"}, ttl=60)

    ticker.now += 60
    assert cache.get("gog:details:1") == {"name": "Witcher"}

    ticker.now += 0.001
    assert cache.get("gog:details:1") is None
    assert len(cache) == 0


def test_set_overwrites_existing_entry_and_expiry():
    ticker = Ticker()
    cache = TTLCache(clock=ticker)
    cache.set("k", "old", ttl=10)
    ticker.now += 5
    cache.set("k", "new", ttl=10)
    ticker.now += 8
    assert cache.get("k") == "new"


def test_invalidate_removes_matching_keys_only():
    cache = TTLCache(clock=Ticker())
    cache.set("steam:search:a", 1, ttl=60)
    cache.set("steam:search:b", 2, ttl=60)
    cache.set("epic:search:a", 3, ttl=60)

    removed = cache.invalidate(r"^steam:search:")

    assert removed == 2
    assert cache.get("steam:search:a") is None
    assert cache.get("epic:search:a") == 3


def test_clear_empties_cache():
    cache = TTLCache(clock=Ticker())
    cache.set("a", 1, ttl=60)
    cache.set("b", 2, ttl=60)
    cache.clear()
    assert len(cache) == 0
