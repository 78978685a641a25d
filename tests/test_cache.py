"""Tests for the TTL cache."""
import time

from pricemap.services.cache import TTLCache


def test_get_after_set():
    """A value reads back until it expires."""
    with TTLCache(ttl=60) as cache:
        cache.set("a", 1)
        assert cache.get("a") == 1
        assert cache.get("missing") is None
        assert cache.get("missing", "default") == "default"


def test_expired_entry_reads_as_absent():
    """Entries past their TTL are not returned."""
    with TTLCache(ttl=0.05) as cache:
        cache.set("a", 1)
        time.sleep(0.1)
        assert cache.get("a") is None


def test_delete_and_clear():
    """delete removes one key, clear empties the cache."""
    with TTLCache(ttl=60) as cache:
        cache.set("a", 1)
        cache.set("b", 2)
        cache.delete("a")
        assert cache.get("a") is None
        assert cache.stats()["size"] == 1

        cache.clear()
        assert cache.get("b") is None
        assert cache.stats() == {"size": 0, "ttl_seconds": 60}


def test_sweep_removes_expired():
    """sweep() purges expired entries and reports how many."""
    with TTLCache(ttl=0.05) as cache:
        cache.set("a", 1)
        cache.set("b", 2)
        time.sleep(0.1)
        cache.set("c", 3)
        assert cache.sweep() == 2
        assert cache.stats()["size"] == 1


def test_background_sweeper():
    """The sweeper thread purges entries without any reads."""
    cache = TTLCache(ttl=0.01, sweep_interval=0.02)
    try:
        cache.set("a", 1)
        deadline = time.monotonic() + 2
        while cache.stats()["size"] and time.monotonic() < deadline:
            time.sleep(0.02)
        assert cache.stats()["size"] == 0
    finally:
        cache.close()
