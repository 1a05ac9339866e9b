"""
Recommendation engine: the request path from a validated request to a ranked,
filtered list of games.

This module has no Flask or configuration-file dependency so it can be used
by the web application, batch jobs, or tests alike.
"""

from __future__ import annotations

import json
import logging
import math
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from pydantic import ValidationError

from .assembler import BusinessRules, RecommendationAssembler
from .bandit_state import BanditStateStore
from .cache import RecommendationCache
from .combiner import HybridCombiner
from .errors import AllStrategiesFailedError, InvalidRequestError, StrategyFailure
from .feedback import FeedbackIngestor, ImpressionHistory, RecommendationLog
from .features import FeatureProvider
from .models import (
    Attribution,
    FeatureSnapshot,
    FeedbackPayload,
    GameFeatures,
    GameRecommendation,
    InteractionEvent,
    InteractionType,
    PlayerFeatures,
    RecommendationRequest,
    RecommendationResponse,
    ResponseMetadata,
    ScoredCandidate,
)
from .performance import PerformanceTracker
from .registry import StrategyEntry, StrategyRegistry
from .selector import AdaptiveWeightUpdater, Experiment, StrategySelection, StrategySelector
from .strategies import (
    FALLBACK_NAME,
    PopularityBasedStrategy,
    StrategyContext,
    StrategyDependencies,
    StrategyKind,
    game_similarity,
    rng_for_request,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Request parsing
# ---------------------------------------------------------------------------


def _validation_details(exc: ValidationError) -> List[Dict[str, Any]]:
    return [
        {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
        for err in exc.errors()
    ]


def parse_request(data: Mapping[str, Any], default_count: Optional[int] = None) -> RecommendationRequest:
    """Build a request from a JSON body, raising InvalidRequestError on bad input."""
    body = dict(data)
    if default_count is not None and "count" not in body:
        body["count"] = default_count
    try:
        return RecommendationRequest.model_validate(body)
    except ValidationError as exc:
        raise InvalidRequestError("invalid recommendation request", _validation_details(exc)) from exc


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class RecommendationEngine:
    """Orchestrates selection, concurrent scoring, combination and assembly.

    Each strategy runs on its own small thread pool guarded by a bounded
    semaphore of ``max_workers`` permits. A call that overruns its deadline
    keeps its permit until it actually returns, and a strategy with no free
    permit is skipped for the request instead of queued, so a hung strategy
    can never starve the others of threads.
    """

    def __init__(
        self,
        features: FeatureProvider,
        registry: StrategyRegistry,
        selector: Optional[StrategySelector] = None,
        bandit_state: Optional[BanditStateStore] = None,
        tracker: Optional[PerformanceTracker] = None,
        ingestor: Optional[FeedbackIngestor] = None,
        recommendation_log: Optional[RecommendationLog] = None,
        impressions: Optional[ImpressionHistory] = None,
        cache: Optional[RecommendationCache] = None,
        rules: BusinessRules = BusinessRules(),
        max_count: int = 50,
        default_count: int = 10,
        candidate_pool_size: int = 200,
        request_timeout_ms: int = 800,
        max_workers: int = 8,
        adaptive_updater: Optional[AdaptiveWeightUpdater] = None,
    ):
        self.features = features
        self.registry = registry
        self.selector = selector or StrategySelector(registry)
        self.bandit_state = bandit_state or BanditStateStore()
        self.tracker = tracker or PerformanceTracker()
        self.recommendation_log = recommendation_log or RecommendationLog()
        self.impressions = impressions or ImpressionHistory()
        self.ingestor = ingestor or FeedbackIngestor(
            self.bandit_state, self.tracker, self.recommendation_log, self.impressions
        )
        self.cache = cache or RecommendationCache(ttl_seconds=0)
        self.combiner = HybridCombiner()
        self.assembler = RecommendationAssembler(rules)
        self.popularity = PopularityBasedStrategy()
        self.max_count = max_count
        self.default_count = default_count
        self.candidate_pool_size = candidate_pool_size
        self.request_timeout_ms = request_timeout_ms
        self.adaptive_updater = adaptive_updater
        self.max_workers = max(1, max_workers)
        self._bulkheads: Dict[str, Tuple[threading.BoundedSemaphore, ThreadPoolExecutor]] = {}
        self._bulkheads_lock = threading.Lock()
        self._closed = False

    # Lifecycle ---------------------------------------------------------------

    def start(self) -> None:
        self.ingestor.start()
        if self.adaptive_updater is not None:
            self.adaptive_updater.start()

    def close(self) -> None:
        if self.adaptive_updater is not None:
            self.adaptive_updater.stop()
        self.ingestor.stop()
        with self._bulkheads_lock:
            self._closed = True
            executors = [executor for _, executor in self._bulkheads.values()]
        for executor in executors:
            executor.shutdown(wait=False, cancel_futures=True)

    def _bulkhead(self, name: str) -> Tuple[threading.BoundedSemaphore, ThreadPoolExecutor]:
        with self._bulkheads_lock:
            if self._closed:
                raise RuntimeError("engine is closed")
            bulkhead = self._bulkheads.get(name)
            if bulkhead is None:
                bulkhead = (
                    threading.BoundedSemaphore(self.max_workers),
                    ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix=f"strategy-{name}"),
                )
                self._bulkheads[name] = bulkhead
            return bulkhead

    # Generate ----------------------------------------------------------------

    def parse(self, data: Mapping[str, Any]) -> RecommendationRequest:
        request = parse_request(data, self.default_count)
        self.validate(request)
        return request

    def validate(self, request: RecommendationRequest) -> None:
        if request.count > self.max_count:
            raise InvalidRequestError(
                "count exceeds the configured maximum",
                [{"field": "count", "message": f"must be <= {self.max_count}"}],
            )

    def generate(self, request: RecommendationRequest) -> RecommendationResponse:
        """Produce a ranked recommendation list for ``request``.

        Raises InvalidRequestError before any work is done; every later
        failure degrades to a popularity ranking instead of surfacing.
        """
        self.validate(request)
        started = time.monotonic()
        snapshot = self.features.get_snapshot()

        key = (
            request.player_id,
            request.context,
            snapshot.version,
            request.count,
            frozenset(request.exclude_game_ids),
            _device(request),
        )
        response, cached = self.cache.get_or_compute(
            key, lambda: self._generate(request, snapshot, started)
        )
        if not cached:
            return response

        metadata = response.metadata.model_copy(update={
            "cached": True,
            "processing_time_ms": round((time.monotonic() - started) * 1000, 3),
        })
        return response.model_copy(update={"request_id": request.request_id, "metadata": metadata})

    def _generate(
        self, request: RecommendationRequest, snapshot: FeatureSnapshot, started: float
    ) -> RecommendationResponse:
        player = snapshot.player(request.player_id)
        pool = self.candidate_pool(snapshot, request)
        selection = self.selector.select(request.player_id, request.context)

        request_deadline = started + (request.deadline_ms or self.request_timeout_ms) / 1000.0
        results = self._fan_out(selection, player, pool, request, request_deadline)

        fallback = False
        try:
            if not results:
                raise AllStrategiesFailedError([entry.name for entry, _ in selection.strategies])
            weights = {name: selection.weights[name] for name in results}
            combined = self.combiner.combine(results, weights)
            algorithms_used = [entry.name for entry, _ in selection.strategies if entry.name in results]
        except AllStrategiesFailedError as exc:
            logger.warning(f"Request {request.request_id}: {exc}; serving popularity fallback")
            combined = self.popularity.fallback(pool)
            algorithms_used = [FALLBACK_NAME]
            fallback = True

        recently_shown = self.impressions.recent(
            request.player_id, self.assembler.rules.cooldown_minutes * 60
        )
        recommendations = self.assembler.assemble(
            combined, request, player, snapshot.game_index, recently_shown
        )
        self._log_recommendations(recommendations, request.player_id, combined, snapshot)

        elapsed_ms = round((time.monotonic() - started) * 1000, 3)
        logger.info(
            f"Request {request.request_id}: player={request.player_id} context={request.context} "
            f"returned {len(recommendations)} via {','.join(algorithms_used)} in {elapsed_ms}ms"
        )
        return RecommendationResponse(
            player_id=request.player_id,
            request_id=request.request_id,
            recommendations=recommendations,
            metadata=ResponseMetadata(
                processing_time_ms=elapsed_ms,
                algorithms_used=algorithms_used,
                ab_variant=selection.ab_variant,
                experiment_id=selection.experiment_id,
                feature_version=snapshot.version,
                fallback=fallback,
                cached=False,
            ),
        )

    def candidate_pool(self, snapshot: FeatureSnapshot, request: RecommendationRequest) -> List[GameFeatures]:
        """Games eligible for scoring: not excluded, playable on the device, most popular first."""
        device = _device(request)
        pool = [
            g for g in snapshot.games
            if g.game_id not in request.exclude_game_ids
            and (device != "mobile" or g.is_mobile)
            and (device != "desktop" or g.is_desktop)
        ]
        if len(pool) > self.candidate_pool_size:
            pool.sort(key=lambda g: (-g.popularity_score, g.game_id))
            pool = pool[: self.candidate_pool_size]
        return pool

    def _fan_out(
        self,
        selection: StrategySelection,
        player: PlayerFeatures,
        pool: Sequence[GameFeatures],
        request: RecommendationRequest,
        request_deadline: float,
    ) -> Dict[str, List[ScoredCandidate]]:
        """Run the selected strategies concurrently, each against its own deadline.

        Results that completed in time are kept even when others fail. A
        strategy whose earlier calls still hold every permit is skipped.
        """
        if not pool:
            return {}

        pending: List[Tuple[StrategyEntry, float, Future]] = []
        for entry, _ in selection.strategies:
            permits, executor = self._bulkhead(entry.name)
            if not permits.acquire(blocking=False):
                logger.warning(
                    f"Strategy {entry.name} has {self.max_workers} calls still running, skipped"
                )
                continue

            deadline = min(time.monotonic() + entry.timeout_ms / 1000.0, request_deadline)
            context = StrategyContext(
                request_id=request.request_id,
                context=request.context,
                contextual_factors=dict(request.contextual_factors),
                deadline=deadline,
                rng=rng_for_request(f"{request.request_id}:{entry.name}"),
            )
            try:
                future = executor.submit(entry.strategy.score, player, pool, context)
            except RuntimeError:
                permits.release()
                raise
            future.add_done_callback(lambda _, permits=permits: permits.release())
            pending.append((entry, deadline, future))

        pool_ids = {g.game_id for g in pool}
        results: Dict[str, List[ScoredCandidate]] = {}
        for entry, deadline, future in pending:
            try:
                candidates = future.result(timeout=max(0.0, deadline - time.monotonic()))
            except FutureTimeoutError:
                future.cancel()
                logger.warning(f"Strategy {entry.name} timed out after {entry.timeout_ms}ms, excluded")
                continue
            except StrategyFailure as exc:
                logger.warning(f"Strategy {entry.name} failed, excluded: {exc}")
                continue
            except Exception as exc:
                logger.warning(f"Strategy {entry.name} raised {type(exc).__name__}, excluded: {exc}")
                continue

            valid = [
                c for c in candidates
                if c.game_id in pool_ids and math.isfinite(c.score) and 0.0 <= c.score <= 1.0
            ]
            if len(valid) != len(candidates):
                logger.warning(f"Strategy {entry.name}: dropped {len(candidates) - len(valid)} invalid candidates")
            if valid:
                results[entry.name] = valid
        return results

    def _log_recommendations(
        self,
        recommendations: Sequence[GameRecommendation],
        player_id: int,
        combined: Sequence[ScoredCandidate],
        snapshot: FeatureSnapshot,
    ) -> None:
        by_game = {c.game_id: c for c in combined}
        snapshot_games = snapshot.game_index
        for rec in recommendations:
            candidate = by_game.get(rec.game_id)
            strategies = tuple(candidate.contributions) if candidate and candidate.contributions else (rec.algorithm,)
            arms = []
            game = snapshot_games.get(rec.game_id)
            for name in strategies:
                if name not in self.registry or game is None:
                    continue
                entry = self.registry.resolve(name)
                if entry.kind is StrategyKind.BANDIT:
                    arms.append(entry.strategy.arm_for(game))
            self.recommendation_log.put(Attribution(
                recommendation_id=rec.recommendation_id,
                player_id=player_id,
                game_id=rec.game_id,
                category=rec.category,
                strategies=strategies,
                bandit_arms=tuple(dict.fromkeys(arms)),
            ))

    # Similar and trending games ---------------------------------------------

    def _check_count(self, count: int) -> None:
        if count < 1 or count > self.max_count:
            raise InvalidRequestError(
                "count out of range",
                [{"field": "count", "message": f"must be between 1 and {self.max_count}"}],
            )

    def similar_games(self, game_id: int, count: int = 10) -> List[Dict[str, Any]]:
        """Games most similar to ``game_id`` by category, provider, volatility and RTP."""
        self._check_count(count)
        snapshot = self.features.get_snapshot()
        base = snapshot.game_index.get(game_id)
        if base is None:
            raise InvalidRequestError("unknown game", [{"field": "game_id", "message": f"game {game_id} not found"}])

        scored = sorted(
            ((game_similarity(base, other), other) for other in snapshot.games if other.game_id != game_id),
            key=lambda item: (-item[0], -item[1].popularity_score, item[1].game_id),
        )
        return [
            {
                "gameId": other.game_id,
                "similarity": round(similarity, 6),
                "category": other.category,
                "provider": other.provider,
                "rank": rank,
            }
            for rank, (similarity, other) in enumerate(scored[:count], start=1)
        ]

    def trending_games(self, count: int = 10) -> List[Dict[str, Any]]:
        """Most popular games across the whole catalogue."""
        self._check_count(count)
        snapshot = self.features.get_snapshot()
        ranked = self.popularity.rank(snapshot.games, "trending")[:count]
        return [
            {
                "gameId": candidate.game_id,
                "score": round(candidate.score, 6),
                "category": snapshot.game_index[candidate.game_id].category,
                "playCount": snapshot.game_index[candidate.game_id].play_count,
                "rank": rank,
            }
            for rank, candidate in enumerate(ranked, start=1)
        ]

    # Feedback and reporting --------------------------------------------------

    def record_feedback(self, payload: Any) -> Dict[str, Any]:
        """Validate and enqueue an interaction event. Always returns a status dict."""
        try:
            if not isinstance(payload, FeedbackPayload):
                payload = FeedbackPayload.model_validate(dict(payload or {}))
        except (ValidationError, TypeError, ValueError) as exc:
            details = _validation_details(exc) if isinstance(exc, ValidationError) else [str(exc)]
            logger.debug(f"Rejected feedback payload: {details}")
            return {"status": "rejected", "details": details}

        if not InteractionType.is_valid(payload.event_type):
            return {
                "status": "rejected",
                "details": [{
                    "field": "eventType",
                    "message": f"must be one of {sorted(InteractionType.get_allowed_types())}",
                }],
            }

        event = InteractionEvent(
            recommendation_id=payload.recommendation_id,
            player_id=payload.player_id,
            game_id=payload.game_id,
            event_type=InteractionType(payload.event_type),
            timestamp=payload.timestamp or time.time(),
            session_id=payload.session_id,
            value=payload.value,
        )
        return {"status": self.ingestor.submit(event).value}

    def performance(self, dimension: str, key: Optional[str], window_hours: float) -> List[Dict[str, Any]]:
        window = window_hours * 3600
        keys = [key] if key else self.tracker.keys(dimension)
        return [self.tracker.snapshot(dimension, k, window).to_dict() for k in keys]

    def strategy_ranking(self, window_hours: float) -> List[Dict[str, Any]]:
        return self.tracker.rank_strategies(window_hours * 3600)

    # Bandit persistence ------------------------------------------------------

    def load_bandit_state(self, path: Path) -> int:
        path = Path(path)
        if not path.exists():
            return 0
        rows = json.loads(path.read_text(encoding="utf-8"))
        self.bandit_state.load(rows)
        logger.info(f"Loaded {len(rows)} bandit arms from {path}")
        return len(rows)

    def save_bandit_state(self, path: Path) -> int:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        rows = self.bandit_state.snapshot()
        path.write_text(json.dumps(rows), encoding="utf-8")
        logger.info(f"Saved {len(rows)} bandit arms to {path}")
        return len(rows)


def _device(request: RecommendationRequest) -> Optional[str]:
    device = request.contextual_factors.get("device")
    return str(device).lower() if device else None


# ---------------------------------------------------------------------------
# Construction from configuration
# ---------------------------------------------------------------------------


def build_engine(
    features: FeatureProvider,
    recommendation_config,
    strategy_settings,
    rules_config,
    feedback_config,
    experiments=(),
    predictor=None,
) -> RecommendationEngine:
    """Wire up an engine from the typed configuration sections."""
    bandit_state = BanditStateStore()
    deps = StrategyDependencies(
        histories=lambda: features.get_snapshot().histories,
        bandit_state=bandit_state,
        predictor=predictor,
    )
    registry = StrategyRegistry.from_config(strategy_settings, deps)
    selector = StrategySelector(
        registry,
        experiments=[Experiment.from_config(ec) for ec in experiments],
        context_strategies=recommendation_config.context_strategies,
        adaptive=recommendation_config.adaptive_weights,
    )

    tracker = PerformanceTracker(
        bucket_seconds=feedback_config.bucket_seconds,
        retention_seconds=feedback_config.metrics_retention_hours * 3600,
    )
    recommendation_log = RecommendationLog(ttl_seconds=recommendation_config.recommendation_log_ttl_seconds)
    impressions = ImpressionHistory()
    ingestor = FeedbackIngestor(
        bandit_state,
        tracker,
        recommendation_log,
        impressions,
        shards=feedback_config.shards,
        queue_maxsize=feedback_config.queue_maxsize,
        grace_period_seconds=feedback_config.grace_period_seconds,
        dedup_retention_seconds=feedback_config.dedup_retention_seconds,
        dedup_max_entries=feedback_config.dedup_max_entries,
    )

    updater = None
    if recommendation_config.adaptive_weights:
        updater = AdaptiveWeightUpdater(
            selector,
            tracker,
            window_seconds=recommendation_config.adaptive_window_hours * 3600,
            interval_seconds=recommendation_config.adaptive_interval_seconds,
            min_impressions=recommendation_config.adaptive_min_impressions,
        )

    return RecommendationEngine(
        features=features,
        registry=registry,
        selector=selector,
        bandit_state=bandit_state,
        tracker=tracker,
        ingestor=ingestor,
        recommendation_log=recommendation_log,
        impressions=impressions,
        cache=RecommendationCache(ttl_seconds=recommendation_config.cache_ttl_seconds),
        rules=BusinessRules.from_config(rules_config),
        max_count=recommendation_config.max_count,
        default_count=recommendation_config.default_count,
        candidate_pool_size=recommendation_config.candidate_pool_size,
        request_timeout_ms=recommendation_config.request_timeout_ms,
        max_workers=recommendation_config.max_workers,
        adaptive_updater=updater,
    )
