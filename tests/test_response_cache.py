"""Tests for the expiring response cache."""

from listing_watch.ingest.response_cache import ResponseCache


def test_value_available_until_expiry(clock):
    cache = ResponseCache(clock=clock)
    cache.set("catalog:a", ["x"], ttl=300)

    clock.advance(299)
    assert cache.get("catalog:a") == ["x"]
    assert cache.has("catalog:a")

    clock.advance(1)
    assert cache.get("catalog:a") is None
    assert not cache.has("catalog:a")


def test_has_agrees_with_get(clock):
    cache = ResponseCache(clock=clock)
    cache.set("fresh", 1, ttl=10)
    cache.set("stale", 2, ttl=1)
    clock.advance(5)

    for key in ("fresh", "stale", "missing"):
        assert cache.has(key) == (cache.get(key) is not None)


def test_expired_entry_evicted_on_read(clock):
    cache = ResponseCache(clock=clock)
    cache.set("item:1", "payload", ttl=1)
    clock.advance(2)

    assert len(cache) == 1
    assert cache.get("item:1") is None
    assert len(cache) == 0


def test_default_ttl_used_when_not_given(clock):
    cache = ResponseCache(default_ttl=60, clock=clock)
    cache.set("k", "v")

    clock.advance(59)
    assert cache.get("k") == "v"
    clock.advance(1)
    assert cache.get("k") is None


def test_set_overwrites_value_and_expiry(clock):
    cache = ResponseCache(clock=clock)
    cache.set("k", "old", ttl=1)
    cache.set("k", "new", ttl=100)
    clock.advance(50)

    assert cache.get("k") == "new"


def test_sweep_removes_only_expired(clock):
    cache = ResponseCache(clock=clock)
    cache.set("short", 1, ttl=10)
    cache.set("long", 2, ttl=1000)
    clock.advance(10)

    assert cache.sweep() == 1
    assert len(cache) == 1
    assert cache.get("long") == 2


def test_delete_and_clear(clock):
    cache = ResponseCache(clock=clock)
    cache.set("a", 1)
    cache.set("b", 2)

    cache.delete("a")
    cache.delete("never-set")
    assert cache.get("a") is None
    assert len(cache) == 1

    cache.clear()
    assert len(cache) == 0


def test_stored_none_distinguished_from_miss(clock):
    cache = ResponseCache(clock=clock)
    missing = object()
    cache.set("item:1", None, ttl=10)

    assert cache.get("item:1", missing) is None
    assert cache.get("item:2", missing) is missing

    clock.advance(10)
    assert cache.get("item:1", missing) is missing
