"""
Short-lived response cache with single-flight computation.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, Hashable, Optional, Tuple

logger = logging.getLogger(__name__)


class RecommendationCache:
    """TTL cache where concurrent misses for one key compute only once.

    While a key is being computed, other callers get the stale value if one
    is still held, otherwise they wait for the in-flight computation.
    """

    def __init__(
        self,
        ttl_seconds: float = 30.0,
        max_entries: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
        wait_timeout: Optional[float] = 5.0,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.wait_timeout = wait_timeout
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: "OrderedDict[Hashable, Tuple[float, Any]]" = OrderedDict()
        self._inflight: Dict[Hashable, threading.Event] = {}

    @property
    def enabled(self) -> bool:
        return self.ttl_seconds > 0

    def get_or_compute(self, key: Hashable, compute: Callable[[], Any]) -> Tuple[Any, bool]:
        """Return ``(value, from_cache)``."""
        if not self.enabled:
            return compute(), False

        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and self._clock() - entry[0] < self.ttl_seconds:
                return entry[1], True
            event = self._inflight.get(key)
            if event is not None and entry is not None:
                return entry[1], True
            leader = event is None
            if leader:
                event = threading.Event()
                self._inflight[key] = event

        if not leader:
            event.wait(self.wait_timeout)
            with self._lock:
                entry = self._entries.get(key)
            if entry is not None:
                return entry[1], True
            # Leader failed or timed out; compute without caching
            return compute(), False

        try:
            value = compute()
            with self._lock:
                self._entries[key] = (self._clock(), value)
                self._entries.move_to_end(key)
                while len(self._entries) > self.max_entries:
                    self._entries.popitem(last=False)
            return value, False
        finally:
            with self._lock:
                self._inflight.pop(key, None)
            event.set()

    def invalidate(self, key: Optional[Hashable] = None) -> None:
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)
