"""Tests for the sliding-window rate limiter."""

from insights.rate_limit import InMemoryCounterStore, RateLimiter, client_key


def test_limit_per_window():
    limiter = RateLimiter(InMemoryCounterStore(), limit=3, window_seconds=60)
    assert [limiter.allow("1.2.3.4", now=100 + i) for i in range(4)] == [True, True, True, False]
    assert limiter.allow("5.6.7.8", now=104)


def test_window_slides():
    limiter = RateLimiter(InMemoryCounterStore(), limit=2, window_seconds=60)
    assert limiter.allow("ip", now=0)
    assert limiter.allow("ip", now=30)
    assert not limiter.allow("ip", now=59)
    assert limiter.allow("ip", now=60.5)


class RecordingStore:
    """Counter store that admits a fixed number of requests and logs each call."""

    def __init__(self, admits):
        self.admits = admits
        self.calls = []

    def try_hit(self, key, now, window_seconds, limit):
        self.calls.append("try_hit")
        self.admits -= 1
        return self.admits >= 0

    def count(self, key, now, window_seconds):
        self.calls.append("count")
        return 0


def test_check_and_record_is_one_store_call():
    store = RecordingStore(admits=1)
    limiter = RateLimiter(store, limit=1, window_seconds=60)
    assert limiter.allow("ip", now=0)
    assert not limiter.allow("ip", now=1)
    assert store.calls == ["try_hit", "try_hit"]


def test_try_hit_respects_limit():
    store = InMemoryCounterStore()
    assert store.try_hit("ip", 0, 60, limit=2)
    assert store.try_hit("ip", 1, 60, limit=2)
    assert not store.try_hit("ip", 2, 60, limit=2)
    assert store.count("ip", 3, 60) == 2


def test_rejected_requests_are_not_counted():
    store = InMemoryCounterStore()
    limiter = RateLimiter(store, limit=1, window_seconds=10)
    limiter.allow("ip", now=0)
    for t in range(1, 5):
        limiter.allow("ip", now=t)
    assert store.count("ip", now=5, window_seconds=10) == 1


def test_oldest_key_evicted_past_capacity():
    store = InMemoryCounterStore(max_keys=2)
    store.hit("a", 0, 60)
    store.hit("b", 1, 60)
    store.hit("c", 2, 60)
    assert len(store) == 2
    assert store.count("a", 3, 60) == 0
    assert store.count("c", 3, 60) == 1


def test_prune_drops_idle_keys():
    store = InMemoryCounterStore()
    store.hit("old", 0, 60)
    store.hit("new", 100, 60)
    store.prune(now=120, window_seconds=60)
    assert len(store) == 1


def test_client_key():
    assert client_key("203.0.113.7, 10.0.0.1") == "203.0.113.7"
    assert client_key(None) == "unknown"
    assert client_key(" , ") == "unknown"
