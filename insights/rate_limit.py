"""
rate_limit.py -- Sliding-window request limiting over an injected counter store.

The limiter holds no state of its own. Counts live in a CounterStore, so a
deployment with several workers can supply a shared store; the in-memory
store is the single-process default. The check and the record are a single
store operation (try_hit) so a shared store can make them atomic.
"""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from typing import Optional, Protocol

logger = logging.getLogger(__name__)

MAX_TRACKED_KEYS: int = 10_000


class CounterStore(Protocol):
    def try_hit(self, key: str, now: float, window_seconds: float, limit: int) -> bool:
        """Record one request for key if fewer than limit fall inside the window."""
        ...

    def count(self, key: str, now: float, window_seconds: float) -> int:
        """Requests for key inside the window, without recording a new one."""
        ...


class InMemoryCounterStore:
    """Per-key timestamp lists. Oldest key is evicted past max_keys."""

    def __init__(self, max_keys: int = MAX_TRACKED_KEYS) -> None:
        self.max_keys = max_keys
        self._hits: OrderedDict[str, list[float]] = OrderedDict()

    def _recent(self, key: str, now: float, window_seconds: float) -> list[float]:
        return [t for t in self._hits.get(key, []) if now - t < window_seconds]

    def count(self, key: str, now: float, window_seconds: float) -> int:
        return len(self._recent(key, now, window_seconds))

    def hit(self, key: str, now: float, window_seconds: float) -> int:
        """Record one request unconditionally; return the count in the window."""
        recent = self._recent(key, now, window_seconds)
        if key not in self._hits and len(self._hits) >= self.max_keys:
            self._hits.popitem(last=False)
        recent.append(now)
        self._hits[key] = recent
        return len(recent)

    def try_hit(self, key: str, now: float, window_seconds: float, limit: int) -> bool:
        # Single-threaded event loop: no await between the check and the append.
        if self.count(key, now, window_seconds) >= limit:
            return False
        self.hit(key, now, window_seconds)
        return True

    def prune(self, now: float, window_seconds: float) -> None:
        """Drop keys with no requests left in the window."""
        for key in list(self._hits):
            recent = self._recent(key, now, window_seconds)
            if recent:
                self._hits[key] = recent
            else:
                del self._hits[key]

    def __len__(self) -> int:
        return len(self._hits)


class RateLimiter:
    def __init__(self, store: CounterStore, limit: int = 30, window_seconds: float = 60.0) -> None:
        self.store = store
        self.limit = limit
        self.window_seconds = window_seconds

    def allow(self, key: str, now: Optional[float] = None) -> bool:
        """True if the request may proceed. Rejected requests are not counted."""
        now = time.time() if now is None else now
        if not self.store.try_hit(key, now, self.window_seconds, self.limit):
            logger.warning("Rate limit exceeded for %s", key)
            return False
        return True


def client_key(forwarded_for: Optional[str]) -> str:
    """First address of X-Forwarded-For, or "unknown"."""
    if not forwarded_for:
        return "unknown"
    return forwarded_for.split(",")[0].strip() or "unknown"
