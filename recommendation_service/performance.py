"""
Time-bucketed performance counters per strategy and per category.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from .models import Attribution, InteractionEvent, InteractionType, PerformanceMetrics

logger = logging.getLogger(__name__)

STRATEGY = "strategy"
CATEGORY = "category"


@dataclass
class _Counters:
    impressions: int = 0
    clicks: int = 0
    conversions: int = 0
    revenue: float = 0.0


class PerformanceTracker:
    """Rolling CTR / conversion / revenue counters.

    Events land in fixed-width time buckets; a snapshot merges the buckets
    inside the requested window. Buckets older than the retention window are
    dropped as new events arrive.
    """

    def __init__(self, bucket_seconds: float = 300.0, retention_seconds: float = 7 * 24 * 3600):
        if bucket_seconds <= 0:
            raise ValueError("bucket_seconds must be positive")
        self.bucket_seconds = bucket_seconds
        self.retention_seconds = retention_seconds
        self._lock = threading.Lock()
        self._buckets: Dict[Tuple[str, str], Dict[int, _Counters]] = {}

    def _bucket_of(self, timestamp: float) -> int:
        return int(timestamp // self.bucket_seconds)

    def record(self, event: InteractionEvent, attribution: Optional[Attribution] = None) -> None:
        """Count ``event`` against its strategies and the game's category."""
        keys: List[Tuple[str, str]] = []
        if attribution is not None:
            keys.extend((STRATEGY, name) for name in attribution.strategies)
            if attribution.category:
                keys.append((CATEGORY, attribution.category))
        if not keys:
            return

        bucket = self._bucket_of(event.timestamp)
        with self._lock:
            for key in keys:
                counters = self._buckets.setdefault(key, {}).setdefault(bucket, _Counters())
                if event.event_type is InteractionType.IMPRESSION:
                    counters.impressions += 1
                elif event.event_type is InteractionType.CLICK:
                    counters.clicks += 1
                elif event.event_type is InteractionType.PLAY:
                    counters.conversions += 1
                    counters.revenue += event.value
            self._prune_locked(time.time())

    def _prune_locked(self, now: float) -> None:
        oldest = self._bucket_of(now - self.retention_seconds)
        for key in list(self._buckets):
            series = self._buckets[key]
            for bucket in [b for b in series if b < oldest]:
                del series[bucket]
            if not series:
                del self._buckets[key]

    def snapshot(
        self,
        dimension: str,
        key: str,
        window_seconds: float,
        now: Optional[float] = None,
    ) -> PerformanceMetrics:
        now = time.time() if now is None else now
        first = self._bucket_of(now - window_seconds)
        total = _Counters()
        with self._lock:
            for bucket, counters in self._buckets.get((dimension, key), {}).items():
                if bucket < first:
                    continue
                total.impressions += counters.impressions
                total.clicks += counters.clicks
                total.conversions += counters.conversions
                total.revenue += counters.revenue
        return PerformanceMetrics(
            dimension=dimension,
            key=key,
            window_seconds=window_seconds,
            impressions=total.impressions,
            clicks=total.clicks,
            conversions=total.conversions,
            revenue=total.revenue,
        )

    def keys(self, dimension: str) -> List[str]:
        with self._lock:
            return sorted(key for dim, key in self._buckets if dim == dimension)

    def rank_strategies(self, window_seconds: float, now: Optional[float] = None) -> List[Dict[str, Any]]:
        """Strategies ordered by a blended score of conversion, CTR, revenue and coverage."""
        metrics = [self.snapshot(STRATEGY, name, window_seconds, now) for name in self.keys(STRATEGY)]
        total_impressions = sum(m.impressions for m in metrics)

        ranking = []
        for m in metrics:
            coverage = m.impressions / total_impressions if total_impressions else 0.0
            overall = (
                0.4 * m.conversion_rate
                + 0.3 * m.ctr
                + 0.2 * min(m.revenue_per_impression / 10.0, 1.0)
                + 0.1 * coverage
            )
            entry = m.to_dict()
            entry["coverage"] = round(coverage, 6)
            entry["overall_score"] = round(overall, 6)
            ranking.append(entry)

        ranking.sort(key=lambda e: (-e["overall_score"], e["key"]))
        for position, entry in enumerate(ranking, start=1):
            entry["rank"] = position
        return ranking
