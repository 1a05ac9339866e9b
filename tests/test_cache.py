import threading
import time

import pytest

from recommendation_service.cache import RecommendationCache


def test_second_call_is_served_from_cache():
    cache = RecommendationCache(ttl_seconds=30)
    calls = []
    first = cache.get_or_compute("k", lambda: calls.append(1) or "value")
    second = cache.get_or_compute("k", lambda: calls.append(1) or "other")
    assert first == ("value", False)
    assert second == ("value", True)
    assert len(calls) == 1


def test_entries_expire_after_ttl():
    now = [0.0]
    cache = RecommendationCache(ttl_seconds=10, clock=lambda: now[0])
    cache.get_or_compute("k", lambda: "old")
    now[0] = 11.0
    assert cache.get_or_compute("k", lambda: "new") == ("new", False)


def test_disabled_cache_always_computes():
    cache = RecommendationCache(ttl_seconds=0)
    cache.get_or_compute("k", lambda: 1)
    assert cache.get_or_compute("k", lambda: 2) == (2, False)
    assert len(cache) == 0


def test_concurrent_misses_compute_once():
    cache = RecommendationCache(ttl_seconds=30)
    calls = []
    started = threading.Event()

    def slow():
        calls.append(1)
        started.set()
        time.sleep(0.2)
        return "value"

    results = []
    leader = threading.Thread(target=lambda: results.append(cache.get_or_compute("k", slow)))
    leader.start()
    started.wait(1.0)
    followers = [threading.Thread(target=lambda: results.append(cache.get_or_compute("k", slow))) for _ in range(4)]
    for t in followers:
        t.start()
    for t in [leader] + followers:
        t.join()

    assert len(calls) == 1
    assert sorted(results, key=lambda r: r[1]) == [("value", False)] + [("value", True)] * 4


def test_stale_value_served_while_refreshing():
    now = [0.0]
    cache = RecommendationCache(ttl_seconds=10, clock=lambda: now[0])
    cache.get_or_compute("k", lambda: "stale")
    now[0] = 20.0

    refreshing = threading.Event()
    release = threading.Event()

    def refresh():
        refreshing.set()
        release.wait(1.0)
        return "fresh"

    worker = threading.Thread(target=cache.get_or_compute, args=("k", refresh))
    worker.start()
    refreshing.wait(1.0)
    assert cache.get_or_compute("k", lambda: pytest.fail("must not recompute")) == ("stale", True)
    release.set()
    worker.join()
    assert cache.get_or_compute("k", lambda: "unused") == ("fresh", True)


def test_failed_computation_is_not_cached():
    cache = RecommendationCache(ttl_seconds=30)

    def broken():
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        cache.get_or_compute("k", broken)
    assert cache.get_or_compute("k", lambda: "ok") == ("ok", False)
