"""
Feedback ingestion.

Interaction events arrive fire-and-forget from the web layer and are applied
asynchronously on worker threads, one per shard. A player's events always go
to the same shard, so bandit updates for that player are applied by a single
writer in arrival order.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections import OrderedDict, deque
from typing import Callable, Deque, Dict, FrozenSet, List, Optional, Tuple

from .bandit_state import BanditStateStore
from .errors import FeedbackProcessingError
from .models import Attribution, IngestStatus, InteractionEvent, InteractionType
from .performance import PerformanceTracker

logger = logging.getLogger(__name__)


class RecommendationLog:
    """Bounded, expiring map of recommendation id to its attribution."""

    def __init__(self, ttl_seconds: float = 86400.0, max_entries: int = 100_000, clock: Callable[[], float] = time.time):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: "OrderedDict[str, Attribution]" = OrderedDict()

    def put(self, attribution: Attribution) -> None:
        with self._lock:
            self._entries[attribution.recommendation_id] = attribution
            self._entries.move_to_end(attribution.recommendation_id)
            self._evict_locked()

    def get(self, recommendation_id: str) -> Optional[Attribution]:
        with self._lock:
            entry = self._entries.get(recommendation_id)
            if entry is None:
                return None
            if self._clock() - entry.created_at > self.ttl_seconds:
                del self._entries[recommendation_id]
                return None
            return entry

    def _evict_locked(self) -> None:
        cutoff = self._clock() - self.ttl_seconds
        while self._entries:
            oldest = next(iter(self._entries.values()))
            if len(self._entries) > self.max_entries or oldest.created_at < cutoff:
                self._entries.popitem(last=False)
            else:
                break

    def __len__(self) -> int:
        return len(self._entries)


class ImpressionHistory:
    """Recent impressions per player, for the recommendation cooldown rule.

    Impressions older than ``retention_seconds`` are pruned as they are read
    or written, players with nothing left are forgotten, and at most
    ``max_players`` players are kept, least recently shown evicted first.
    """

    def __init__(
        self,
        retention_seconds: float = 86400.0,
        max_per_player: int = 200,
        max_players: int = 100_000,
        clock: Callable[[], float] = time.time,
    ):
        self.retention_seconds = retention_seconds
        self.max_per_player = max_per_player
        self.max_players = max_players
        self._clock = clock
        self._lock = threading.Lock()
        self._by_player: "OrderedDict[int, Deque[Tuple[float, int]]]" = OrderedDict()

    def record(self, player_id: int, game_id: int, timestamp: float) -> None:
        cutoff = self._clock() - self.retention_seconds
        with self._lock:
            if timestamp >= cutoff:
                history = self._by_player.get(player_id)
                if history is None:
                    history = self._by_player[player_id] = deque(maxlen=self.max_per_player)
                history.append((timestamp, game_id))
                self._by_player.move_to_end(player_id)
            self._evict_locked(cutoff)

    def recent(self, player_id: int, within_seconds: float, now: Optional[float] = None) -> FrozenSet[int]:
        now = self._clock() if now is None else now
        cutoff = now - min(within_seconds, self.retention_seconds)
        with self._lock:
            history = self._by_player.get(player_id)
            if history is None:
                return frozenset()
            _prune(history, self._clock() - self.retention_seconds)
            if not history:
                del self._by_player[player_id]
                return frozenset()
            return frozenset(game_id for ts, game_id in history if ts >= cutoff)

    def _evict_locked(self, cutoff: float) -> None:
        # Front of the map is the player shown longest ago
        while self._by_player:
            player_id, history = next(iter(self._by_player.items()))
            _prune(history, cutoff)
            if history and len(self._by_player) <= self.max_players:
                break
            del self._by_player[player_id]

    def __len__(self) -> int:
        with self._lock:
            return len(self._by_player)


def _prune(history: Deque[Tuple[float, int]], cutoff: float) -> None:
    while history and history[0][0] < cutoff:
        history.popleft()


_STOP = object()


class FeedbackIngestor:
    """Applies interaction events to the bandit state and performance counters."""

    def __init__(
        self,
        bandit_state: BanditStateStore,
        tracker: PerformanceTracker,
        recommendation_log: RecommendationLog,
        impressions: Optional[ImpressionHistory] = None,
        shards: int = 4,
        queue_maxsize: int = 10000,
        grace_period_seconds: float = 1800.0,
        dedup_retention_seconds: float = 86400.0,
        dedup_max_entries: int = 100_000,
        sweep_interval_seconds: float = 5.0,
        clock: Callable[[], float] = time.time,
    ):
        self.bandit_state = bandit_state
        self.tracker = tracker
        self.recommendation_log = recommendation_log
        self.impressions = impressions or ImpressionHistory()
        self.shards = max(1, shards)
        self.grace_period_seconds = grace_period_seconds
        self.dedup_retention_seconds = dedup_retention_seconds
        self.dedup_max_entries = dedup_max_entries
        self.sweep_interval_seconds = sweep_interval_seconds
        self._clock = clock

        self._queues: List[queue.Queue] = [queue.Queue(maxsize=queue_maxsize) for _ in range(self.shards)]
        self._workers: List[threading.Thread] = []
        self._running = False
        self._state_lock = threading.Lock()

        self._seen_lock = threading.Lock()
        self._seen: "OrderedDict[tuple, float]" = OrderedDict()

        self._pending_lock = threading.Lock()
        # recommendation_id -> (player_id, bandit arms, impression time)
        self._pending: Dict[str, Tuple[int, tuple, float]] = {}

        self._stats_lock = threading.Lock()
        self.stats = {"processed": 0, "duplicates": 0, "errors": 0, "rejected": 0}

    def _count(self, key: str) -> None:
        with self._stats_lock:
            self.stats[key] += 1

    def stats_snapshot(self) -> Dict[str, int]:
        with self._stats_lock:
            return dict(self.stats)

    # Lifecycle

    def start(self) -> None:
        with self._state_lock:
            if self._running:
                return
            self._running = True
            self._workers = [
                threading.Thread(target=self._worker, args=(i,), name=f"feedback-shard-{i}", daemon=True)
                for i in range(self.shards)
            ]
            for worker in self._workers:
                worker.start()
        logger.info(f"Feedback ingestor started with {self.shards} shards")

    def stop(self, timeout: float = 5.0) -> None:
        """Stop accepting events, drain the queues and join the workers."""
        with self._state_lock:
            if not self._running:
                return
            self._running = False
            workers = self._workers
            self._workers = []
        for q in self._queues:
            q.put(_STOP)
        for worker in workers:
            worker.join(timeout)
        logger.info("Feedback ingestor stopped")

    @property
    def running(self) -> bool:
        return self._running

    def drain(self) -> None:
        """Block until every queued event has been applied."""
        for q in self._queues:
            q.join()

    # Intake

    def shard_for(self, player_id: int) -> int:
        return player_id % self.shards

    def submit(self, event: InteractionEvent) -> IngestStatus:
        """Queue ``event`` for asynchronous processing. Never raises."""
        try:
            if not self._running:
                self._count("rejected")
                return IngestStatus.REJECTED
            self._queues[self.shard_for(event.player_id)].put_nowait(event)
            return IngestStatus.ACCEPTED
        except queue.Full:
            logger.warning(f"Feedback shard {self.shard_for(event.player_id)} is full, rejecting event")
            self._count("rejected")
            return IngestStatus.REJECTED
        except Exception:
            logger.exception("Unexpected error while queueing feedback event")
            self._count("rejected")
            return IngestStatus.REJECTED

    def _worker(self, shard: int) -> None:
        q = self._queues[shard]
        last_sweep = self._clock()
        while True:
            try:
                item = q.get(timeout=self.sweep_interval_seconds)
            except queue.Empty:
                item = None
            try:
                if item is _STOP:
                    return
                if item is not None:
                    self.ingest(item)
                # A busy shard never idles, so the sweep is also due by time
                if self._clock() - last_sweep >= self.sweep_interval_seconds:
                    self.sweep_expired_impressions()
                    last_sweep = self._clock()
            finally:
                if item is not None:
                    q.task_done()

    # Processing

    def ingest(self, event: InteractionEvent) -> bool:
        """Apply one event synchronously.

        Returns False for duplicates and for events that failed to apply;
        failures are logged, never raised.
        """
        if not self._mark_seen(event.dedup_key):
            self._count("duplicates")
            return False
        try:
            self._apply(event)
        except Exception as exc:
            self._unmark_seen(event.dedup_key)
            self._count("errors")
            error = FeedbackProcessingError(f"failed to apply {event.event_type.value} for {event.recommendation_id}: {exc}")
            logger.exception(str(error))
            return False
        self._count("processed")
        return True

    def _apply(self, event: InteractionEvent) -> None:
        attribution = self.recommendation_log.get(event.recommendation_id)
        arms = attribution.bandit_arms if attribution is not None else ()

        if event.event_type is InteractionType.IMPRESSION:
            self.impressions.record(event.player_id, event.game_id, event.timestamp)
            if arms:
                with self._pending_lock:
                    self._pending[event.recommendation_id] = (event.player_id, arms, event.timestamp)
        elif event.event_type.is_positive:
            self._clear_pending(event.recommendation_id)
            for arm in arms:
                self.bandit_state.record_success(event.player_id, arm)
        elif event.event_type is InteractionType.DISMISS:
            self._clear_pending(event.recommendation_id)
            for arm in arms:
                self.bandit_state.record_failure(event.player_id, arm)

        self.tracker.record(event, attribution)

    def _clear_pending(self, recommendation_id: str) -> None:
        with self._pending_lock:
            self._pending.pop(recommendation_id, None)

    def pending_count(self) -> int:
        with self._pending_lock:
            return len(self._pending)

    def sweep_expired_impressions(self, now: Optional[float] = None) -> int:
        """Turn impressions with no click or play after the grace period into failures."""
        now = self._clock() if now is None else now
        cutoff = now - self.grace_period_seconds
        with self._pending_lock:
            expired = [(rec_id, entry) for rec_id, entry in self._pending.items() if entry[2] <= cutoff]
            for rec_id, _ in expired:
                del self._pending[rec_id]

        for _, (player_id, arms, _) in expired:
            for arm in arms:
                self.bandit_state.record_failure(player_id, arm)
        if expired:
            logger.debug(f"Expired {len(expired)} unanswered impressions")
        return len(expired)

    # Dedup

    def _mark_seen(self, key: tuple) -> bool:
        now = self._clock()
        with self._seen_lock:
            cutoff = now - self.dedup_retention_seconds
            while self._seen:
                oldest_key, seen_at = next(iter(self._seen.items()))
                if seen_at < cutoff or len(self._seen) >= self.dedup_max_entries:
                    del self._seen[oldest_key]
                else:
                    break
            if key in self._seen:
                return False
            self._seen[key] = now
            return True

    def _unmark_seen(self, key: tuple) -> None:
        with self._seen_lock:
            self._seen.pop(key, None)
