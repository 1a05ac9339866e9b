import threading
import time

import pytest

from recommendation_service.models import Attribution, InteractionEvent, InteractionType
from recommendation_service.performance import PerformanceTracker


def _record(tracker, event_type, strategies=("bandit",), category="slots", timestamp=None, value=0.0):
    event = InteractionEvent("r", 1, 1, event_type, timestamp=time.time() if timestamp is None else timestamp, value=value)
    tracker.record(event, Attribution("r", 1, 1, category=category, strategies=strategies))


class TestPerformanceTracker:

    def test_counts_and_rates(self):
        tracker = PerformanceTracker()
        for _ in range(10):
            _record(tracker, InteractionType.IMPRESSION)
        for _ in range(3):
            _record(tracker, InteractionType.CLICK)
        _record(tracker, InteractionType.PLAY, value=25.0)
        _record(tracker, InteractionType.DISMISS)

        metrics = tracker.snapshot("strategy", "bandit", 3600)
        assert (metrics.impressions, metrics.clicks, metrics.conversions) == (10, 3, 1)
        assert metrics.ctr == pytest.approx(0.3)
        assert metrics.conversion_rate == pytest.approx(0.1)
        assert metrics.revenue_per_impression == pytest.approx(2.5)
        assert tracker.snapshot("category", "slots", 3600).impressions == 10

    def test_window_excludes_old_buckets(self):
        tracker = PerformanceTracker(bucket_seconds=300)
        now = time.time()
        _record(tracker, InteractionType.IMPRESSION, timestamp=now - 2 * 3600)
        _record(tracker, InteractionType.IMPRESSION, timestamp=now)

        assert tracker.snapshot("strategy", "bandit", 3600, now=now).impressions == 1
        assert tracker.snapshot("strategy", "bandit", 3 * 3600, now=now).impressions == 2

    def test_retention_drops_expired_buckets(self):
        tracker = PerformanceTracker(bucket_seconds=60, retention_seconds=600)
        _record(tracker, InteractionType.IMPRESSION, timestamp=time.time() - 3600)
        assert tracker.snapshot("strategy", "bandit", 7200).impressions == 0

    def test_unattributed_events_are_ignored(self):
        tracker = PerformanceTracker()
        tracker.record(InteractionEvent("r", 1, 1, InteractionType.CLICK))
        assert tracker.keys("strategy") == []

    def test_empty_metrics(self):
        metrics = PerformanceTracker().snapshot("strategy", "nobody", 3600)
        assert metrics.impressions == 0
        assert metrics.ctr == 0.0
        assert metrics.to_dict()["revenue_per_impression"] == 0.0

    def test_rank_strategies(self):
        tracker = PerformanceTracker()
        for _ in range(10):
            _record(tracker, InteractionType.IMPRESSION, strategies=("bandit",))
            _record(tracker, InteractionType.IMPRESSION, strategies=("popularity_based",))
        for _ in range(5):
            _record(tracker, InteractionType.CLICK, strategies=("bandit",))
            _record(tracker, InteractionType.PLAY, strategies=("bandit",), value=100.0)
        _record(tracker, InteractionType.CLICK, strategies=("popularity_based",))

        ranking = tracker.rank_strategies(3600)
        assert [r["key"] for r in ranking] == ["bandit", "popularity_based"]
        assert [r["rank"] for r in ranking] == [1, 2]
        # 0.4 * 0.5 + 0.3 * 0.5 + 0.2 * min(50 / 10, 1) + 0.1 * 0.5
        assert ranking[0]["overall_score"] == pytest.approx(0.6)
        assert ranking[1]["coverage"] == pytest.approx(0.5)

    def test_concurrent_records(self):
        tracker = PerformanceTracker()

        def worker():
            for _ in range(200):
                _record(tracker, InteractionType.IMPRESSION)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert tracker.snapshot("strategy", "bandit", 3600).impressions == 1600
