"""Unit tests for the in-memory ResponseCache."""

import threading

import pytest

from feedcore.utils import simple_cache
from feedcore.utils.simple_cache import ResponseCache, build_cache_key


class FakeTime:
    """Deterministic clock used to test expiration logic."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.current = start

    def time(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


def test_build_cache_key_scopes_by_body_and_auth() -> None:
    public = build_cache_key("/latest.json", authenticated=False)
    signed_in = build_cache_key("/latest.json", authenticated=True)
    with_body = build_cache_key("/search.json", {"q": "python"}, authenticated=False)
    other_body = build_cache_key("/search.json", {"q": "rust"}, authenticated=False)

    assert public == "/latest.json__public"
    assert signed_in == "/latest.json__auth"
    assert with_body != other_body
    assert with_body == build_cache_key("/search.json", {"q": "python"}, authenticated=False)
    assert with_body.startswith("/search.json_") and with_body.endswith("_public")


def test_set_and_get_updates_hit_miss_counters() -> None:
    cache = ResponseCache(ttl_seconds=10)

    assert cache.get("missing") is None

    cache.set("key", "/latest.json", {"topic_list": {"topics": []}})

    assert cache.get("key") == {"topic_list": {"topics": []}}

    stats = cache.stats()
    assert stats["hits"] == 1
    assert stats["misses"] == 1
    assert stats["keys"] == ["key"]


def test_entry_is_fresh_until_ttl_elapses(monkeypatch: pytest.MonkeyPatch) -> None:
    fake_time = FakeTime()
    monkeypatch.setattr(simple_cache, "time", fake_time)

    cache = ResponseCache(ttl_seconds=300)
    cache.set("key", "/latest.json", {"data": True})

    fake_time.advance(299.9)
    assert cache.get("key") == {"data": True}

    fake_time.advance(0.1)
    assert cache.get("key") is None
    stats = cache.stats()
    assert stats["evictions"] == 1
    assert stats["entries"] == 0


def test_fresh_entry_replaces_stale_one(monkeypatch: pytest.MonkeyPatch) -> None:
    fake_time = FakeTime()
    monkeypatch.setattr(simple_cache, "time", fake_time)

    cache = ResponseCache(ttl_seconds=5)
    cache.set("key", "/site.json", {"v": 1})
    fake_time.advance(10)
    cache.set("key", "/site.json", {"v": 2})

    assert cache.get("key") == {"v": 2}


def test_lru_eviction_removes_least_recently_used() -> None:
    cache = ResponseCache(ttl_seconds=100, max_entries=2)
    cache.set("a", "/a", {"v": 1})
    cache.set("b", "/b", {"v": 2})

    # Access "a" so that "b" becomes least recently used
    assert cache.get("a") == {"v": 1}

    cache.set("c", "/c", {"v": 3})

    assert cache.get("a") == {"v": 1}
    assert cache.get("c") == {"v": 3}
    assert cache.get("b") is None


def test_invalidate_endpoint_drops_every_scope() -> None:
    cache = ResponseCache(ttl_seconds=100)
    cache.set(build_cache_key("/t/1.json", authenticated=True), "/t/1.json", {"v": 1})
    cache.set(build_cache_key("/t/1.json", authenticated=False), "/t/1.json", {"v": 1})
    cache.set(build_cache_key("/t/2.json", authenticated=False), "/t/2.json", {"v": 2})

    assert cache.invalidate_endpoint("/t/1.json") == 2
    assert cache.stats()["entries"] == 1
    assert cache.invalidate("/t/2.json__public") is True
    assert cache.invalidate("/t/2.json__public") is False


def test_clear_resets_state() -> None:
    cache = ResponseCache(ttl_seconds=10)
    cache.set("a", "/a", {"v": 1})
    cache.set("b", "/b", {"v": 2})
    cache.get("a")

    cache.clear()

    stats = cache.stats()
    assert stats["entries"] == 0
    assert stats["hits"] == 0
    assert stats["misses"] == 0
    assert stats["evictions"] == 0


def test_thread_safety_under_concurrent_sets() -> None:
    cache = ResponseCache(ttl_seconds=30, max_entries=None)
    total_keys = 50

    def _writer(idx: int) -> None:
        cache.set(f"k-{idx}", f"/t/{idx}.json", {"v": idx})

    threads = [threading.Thread(target=_writer, args=(i,)) for i in range(total_keys)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert cache.stats()["entries"] == total_keys
    assert cache.get("k-0") == {"v": 0}
    assert cache.get("k-49") == {"v": 49}
