"""
Basic import tests to verify the core functionality.
"""

import pytest


def test_engine_imports():
    """Test that the engine entry points can be imported."""
    from recommendation_service import (
        RecommendationEngine,
        build_engine,
        parse_request,
        InMemoryFeatureProvider,
    )

    assert callable(build_engine)
    assert callable(parse_request)
    assert isinstance(RecommendationEngine, type)
    assert len(InMemoryFeatureProvider().get_snapshot().games) == 0


def test_strategy_imports():
    """Test that every built-in strategy can be built from a kind name."""
    from recommendation_service import BanditStateStore
    from recommendation_service.strategies import StrategyDependencies, StrategyKind, build_strategy

    deps = StrategyDependencies(histories=dict, bandit_state=BanditStateStore())
    for kind in ("collaborative_filtering", "content_based", "popularity_based", "bandit"):
        strategy = build_strategy(kind, deps)
        assert strategy.kind is StrategyKind(kind)


def test_models_imports():
    """Test that the wire models can be imported and instantiated."""
    from recommendation_service.models import (
        RecommendationRequest,
        RecommendationResponse,
        InteractionType,
        GameFeatures,
    )

    request = RecommendationRequest(playerId=1)
    assert request.player_id == 1
    assert request.context == "lobby"
    assert request.count == 10

    response = RecommendationResponse(player_id=1, request_id="r")
    assert response.to_dict()["playerId"] == 1

    assert InteractionType.is_valid("click")
    assert not InteractionType.is_valid("purchase")

    game = GameFeatures(1, "slots", "netent")
    assert game.category == "slots"


def test_error_imports():
    """Test the error hierarchy."""
    from recommendation_service import (
        RecommendationError,
        InvalidRequestError,
        StrategyTimeoutError,
        UnknownStrategyError,
    )

    assert issubclass(InvalidRequestError, RecommendationError)
    assert issubclass(StrategyTimeoutError, RecommendationError)
    assert issubclass(UnknownStrategyError, KeyError)
    assert InvalidRequestError("bad").to_dict()["error"] == "invalid-request"


def test_app_factory_imports():
    """Test that the Flask factories can be imported."""
    from app.recommendations.factory import create_recommendations_module
    from app.feedback.factory import create_feedback_module

    assert callable(create_recommendations_module)
    assert callable(create_feedback_module)


if __name__ == "__main__":
    pytest.main([__file__])
