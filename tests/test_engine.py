"""
End-to-end tests of the recommendation engine request path.
"""

import logging
import threading
import time

import pytest

from recommendation_service.bandit_state import BanditStateStore
from recommendation_service.engine import RecommendationEngine, parse_request
from recommendation_service.errors import InvalidRequestError, StrategyFailure
from recommendation_service.models import InteractionEvent, InteractionType, RecommendationRequest, ScoredCandidate
from recommendation_service.registry import StrategyEntry, StrategyRegistry
from recommendation_service.selector import Experiment, StrategySelector, Variant
from recommendation_service.strategies import (
    FALLBACK_NAME,
    BanditStrategy,
    CollaborativeFilteringStrategy,
    ContentBasedStrategy,
    PopularityBasedStrategy,
    StrategyKind,
)
from recommendation_service.cache import RecommendationCache


class FixedStrategy:
    """Returns a fixed score map, optionally after a delay or with an error."""

    kind = StrategyKind.POPULARITY

    def __init__(self, name, scores, delay=0.0, error=None):
        self.name = name
        self.scores = scores
        self.delay = delay
        self.error = error

    def score(self, player, games, context):
        if self.delay:
            time.sleep(self.delay)
        if self.error:
            raise self.error
        pool = {g.game_id for g in games}
        return [ScoredCandidate(gid, s, self.name) for gid, s in self.scores.items() if gid in pool]


class BlockingStrategy:
    """Blocks every call until ``release`` is set, counting calls."""

    kind = StrategyKind.POPULARITY

    def __init__(self, name, release):
        self.name = name
        self.release = release
        self.calls = 0
        self._lock = threading.Lock()

    def score(self, player, games, context):
        with self._lock:
            self.calls += 1
        self.release.wait(timeout=10)
        return []


def _engine(provider, entries, **kwargs):
    registry = StrategyRegistry(entries)
    return RecommendationEngine(provider, registry, **kwargs)


def _entry(strategy, weight=1.0, priority=1, timeout_ms=500, kind=None):
    return StrategyEntry(
        name=strategy.name,
        kind=kind or strategy.kind,
        strategy=strategy,
        weight=weight,
        priority=priority,
        timeout_ms=timeout_ms,
    )


@pytest.fixture
def default_engine(provider):
    state = BanditStateStore()
    engine = _engine(
        provider,
        [
            _entry(CollaborativeFilteringStrategy(lambda: provider.get_snapshot().histories), weight=0.4, priority=1),
            _entry(ContentBasedStrategy(), weight=0.3, priority=2),
            _entry(PopularityBasedStrategy(), weight=0.2, priority=3),
            _entry(BanditStrategy(state), weight=0.1, priority=4),
        ],
        bandit_state=state,
    )
    yield engine
    engine.close()


class TestGenerate:

    def test_combination_scenario(self, provider):
        engine = _engine(provider, [
            _entry(FixedStrategy("a", {1: 0.9, 2: 0.5}), weight=0.6, priority=1),
            _entry(FixedStrategy("b", {1: 0.4, 3: 0.8}), weight=0.4, priority=2),
        ])
        try:
            response = engine.generate(RecommendationRequest(player_id=10, count=3))
        finally:
            engine.close()

        assert [r.game_id for r in response.recommendations] == [3, 1, 2]
        assert [r.score for r in response.recommendations] == pytest.approx([0.8, 0.7, 0.5])
        assert [r.algorithm for r in response.recommendations] == ["b", "hybrid", "a"]
        assert response.metadata.algorithms_used == ["a", "b"]
        assert response.metadata.fallback is False

    def test_all_strategies_time_out_falls_back_to_popularity(self, provider):
        engine = _engine(provider, [
            _entry(FixedStrategy("slow_a", {1: 0.9}, delay=0.5), timeout_ms=50),
            _entry(FixedStrategy("slow_b", {2: 0.9}, delay=0.5), timeout_ms=50, priority=2),
        ])
        try:
            response = engine.generate(RecommendationRequest(player_id=10, count=5))
        finally:
            engine.close()

        assert response.metadata.algorithms_used == [FALLBACK_NAME]
        assert response.metadata.fallback is True
        assert len(response.recommendations) == 5
        assert response.recommendations[0].game_id == 1
        assert response.recommendations[0].algorithm == FALLBACK_NAME

    def test_failing_strategy_is_excluded(self, provider):
        engine = _engine(provider, [
            _entry(FixedStrategy("ok", {5: 0.9, 7: 0.3}), priority=1),
            _entry(FixedStrategy("broken", {}, error=StrategyFailure("broken", "boom")), priority=2),
            _entry(FixedStrategy("crashing", {}, error=RuntimeError("bug")), priority=3),
        ])
        try:
            response = engine.generate(RecommendationRequest(player_id=10))
        finally:
            engine.close()

        assert response.metadata.algorithms_used == ["ok"]
        assert [r.game_id for r in response.recommendations] == [5, 7]

    def test_slow_strategy_does_not_drop_completed_results(self, provider):
        engine = _engine(provider, [
            _entry(FixedStrategy("slow", {1: 1.0}, delay=0.5), timeout_ms=50, priority=1),
            _entry(FixedStrategy("fast", {5: 0.9}), priority=2),
        ])
        try:
            response = engine.generate(RecommendationRequest(player_id=10))
        finally:
            engine.close()

        assert response.metadata.algorithms_used == ["fast"]
        assert [r.game_id for r in response.recommendations] == [5]

    def test_hung_strategy_cannot_starve_healthy_ones(self, provider, caplog):
        release = threading.Event()
        hung = BlockingStrategy("hung", release)
        engine = _engine(
            provider,
            [
                _entry(hung, timeout_ms=50, priority=1),
                _entry(FixedStrategy("fast", {5: 0.9}), timeout_ms=200, priority=2),
            ],
            max_workers=2,
        )
        try:
            with caplog.at_level(logging.WARNING, logger="recommendation_service.engine"):
                responses = [
                    engine.generate(RecommendationRequest(player_id=10, request_id=f"burst-{i}"))
                    for i in range(10)
                ]
        finally:
            release.set()
            engine.close()

        assert [r.metadata.algorithms_used for r in responses] == [["fast"]] * 10
        assert not any(r.metadata.fallback for r in responses)
        # Two stuck calls hold both permits; later requests skip the strategy
        assert hung.calls == 2
        assert "Strategy hung has 2 calls still running, skipped" in caplog.text
        assert "Strategy fast timed out" not in caplog.text

    def test_invalid_scores_are_dropped(self, provider):
        engine = _engine(provider, [
            _entry(FixedStrategy("noisy", {1: 1.7, 2: float("nan"), 3: 0.4})),
        ])
        try:
            response = engine.generate(RecommendationRequest(player_id=10))
        finally:
            engine.close()
        assert [r.game_id for r in response.recommendations] == [3]

    def test_default_strategies_produce_ranked_unique_results(self, default_engine):
        response = default_engine.generate(RecommendationRequest(player_id=10, count=6, request_id="fixed"))
        ids = [r.game_id for r in response.recommendations]

        assert len(ids) == 6
        assert len(set(ids)) == 6
        assert [r.rank for r in response.recommendations] == list(range(1, 7))
        assert all(0.0 <= r.score <= 1.0 for r in response.recommendations)
        assert response.metadata.feature_version == 1
        assert set(response.metadata.algorithms_used) == {
            "collaborative_filtering", "content_based", "popularity_based", "bandit",
        }

    def test_same_request_id_is_reproducible(self, default_engine):
        first = default_engine.generate(RecommendationRequest(player_id=10, request_id="same"))
        second = default_engine.generate(RecommendationRequest(player_id=10, request_id="same"))
        assert first.recommendations == second.recommendations

    def test_exclusions_and_device_filter(self, default_engine):
        response = default_engine.generate(RecommendationRequest(
            player_id=10,
            count=20,
            exclude_game_ids={1, 2},
            contextual_factors={"device": "mobile"},
        ))
        ids = {r.game_id for r in response.recommendations}
        assert not ids & {1, 2, 6}

    def test_cold_start_player_still_gets_recommendations(self, default_engine):
        response = default_engine.generate(RecommendationRequest(player_id=999, count=3))
        assert len(response.recommendations) == 3
        assert "collaborative_filtering" not in response.metadata.algorithms_used

    def test_high_risk_player_filtered(self, default_engine):
        response = default_engine.generate(RecommendationRequest(player_id=14, count=20))
        ids = {r.game_id for r in response.recommendations}
        # Game 4 (volatility 5, min bet 10) and game 8 (volatility 5)
        assert not ids & {4, 8}

    def test_count_above_maximum_is_rejected(self, default_engine):
        with pytest.raises(InvalidRequestError) as exc_info:
            default_engine.generate(RecommendationRequest(player_id=10, count=51))
        assert exc_info.value.details[0]["field"] == "count"

    def test_experiment_metadata(self, provider):
        experiment = Experiment("exp-1", (Variant("only", 100, {"a": 1.0}),), contexts=("lobby",))
        registry = StrategyRegistry([_entry(FixedStrategy("a", {1: 0.5}))])
        engine = RecommendationEngine(provider, registry, selector=StrategySelector(registry, [experiment]))
        try:
            response = engine.generate(RecommendationRequest(player_id=10))
        finally:
            engine.close()
        assert response.metadata.experiment_id == "exp-1"
        assert response.metadata.ab_variant == "only"

    def test_cached_response(self, provider):
        engine = _engine(provider, [_entry(FixedStrategy("a", {1: 0.5}))], cache=RecommendationCache(ttl_seconds=30))
        try:
            first = engine.generate(RecommendationRequest(player_id=10, request_id="one"))
            second = engine.generate(RecommendationRequest(player_id=10, request_id="two"))
        finally:
            engine.close()
        assert first.metadata.cached is False
        assert second.metadata.cached is True
        assert second.request_id == "two"
        assert second.recommendations == first.recommendations

    def test_new_feature_version_bypasses_cache(self, provider):
        engine = _engine(provider, [_entry(FixedStrategy("a", {1: 0.5}))], cache=RecommendationCache(ttl_seconds=30))
        try:
            engine.generate(RecommendationRequest(player_id=10))
            provider.publish(games=provider.get_snapshot().games)
            response = engine.generate(RecommendationRequest(player_id=10))
        finally:
            engine.close()
        assert response.metadata.cached is False
        assert response.metadata.feature_version == 2


class TestParsing:

    def test_camel_case_body(self):
        request = parse_request({"playerId": 7, "context": " Lobby ", "excludeGameIds": [1, 2], "deadlineMs": 300})
        assert request.player_id == 7
        assert request.context == "lobby"
        assert request.exclude_game_ids == {1, 2}
        assert request.deadline_ms == 300
        assert request.request_id

    def test_default_count(self):
        assert parse_request({"playerId": 7}, default_count=4).count == 4
        assert parse_request({"playerId": 7, "count": 2}, default_count=4).count == 2

    @pytest.mark.parametrize("body", [
        {},
        {"playerId": 0},
        {"playerId": 1, "count": 0},
        {"playerId": 1, "context": ""},
        {"playerId": 1, "context": "x" * 65},
        {"playerId": 1, "deadlineMs": 0},
    ])
    def test_invalid_bodies(self, body):
        with pytest.raises(InvalidRequestError) as exc_info:
            parse_request(body)
        assert exc_info.value.details


class TestFeedbackLoop:

    def test_click_on_bandit_recommendation_updates_posterior(self, default_engine):
        response = default_engine.generate(RecommendationRequest(player_id=10, count=3, request_id="loop"))
        top = response.recommendations[0]

        result = default_engine.record_feedback({
            "recommendationId": top.recommendation_id,
            "playerId": 10,
            "gameId": top.game_id,
            "eventType": "click",
        })
        assert result == {"status": "rejected"}

        default_engine.start()
        result = default_engine.record_feedback({
            "recommendationId": top.recommendation_id,
            "playerId": 10,
            "gameId": top.game_id,
            "eventType": "CLICK",
        })
        assert result == {"status": "accepted"}
        default_engine.ingestor.drain()
        assert default_engine.bandit_state.get(10, f"game:{top.game_id}").successes == 1

    def test_impressions_feed_the_cooldown(self, default_engine):
        first = default_engine.generate(RecommendationRequest(player_id=10, count=3))
        for rec in first.recommendations:
            default_engine.ingestor.ingest(_impression(rec))
        second = default_engine.generate(RecommendationRequest(player_id=10, count=3))
        assert not {r.game_id for r in first.recommendations} & {r.game_id for r in second.recommendations}

    def test_invalid_feedback_is_rejected_not_raised(self, default_engine):
        assert default_engine.record_feedback({"playerId": 1})["status"] == "rejected"
        assert default_engine.record_feedback({
            "recommendationId": "x", "playerId": 1, "gameId": 1, "eventType": "purchase",
        })["status"] == "rejected"


def _impression(rec):
    return InteractionEvent(
        recommendation_id=rec.recommendation_id,
        player_id=10,
        game_id=rec.game_id,
        event_type=InteractionType.IMPRESSION,
    )


class TestCatalogueQueries:

    def test_similar_games(self, default_engine):
        similar = default_engine.similar_games(1, count=3)
        assert [s["rank"] for s in similar] == [1, 2, 3]
        assert similar[0]["gameId"] == 2
        assert all(s["gameId"] != 1 for s in similar)

    def test_similar_games_unknown_game(self, default_engine):
        with pytest.raises(InvalidRequestError):
            default_engine.similar_games(404)

    def test_trending_games(self, default_engine):
        trending = default_engine.trending_games(count=2)
        assert [t["gameId"] for t in trending] == [1, 2]
        assert trending[0]["score"] == 1.0

    def test_count_bounds(self, default_engine):
        with pytest.raises(InvalidRequestError):
            default_engine.trending_games(count=0)
        with pytest.raises(InvalidRequestError):
            default_engine.trending_games(count=51)
