"""
Shared fixtures: a small game catalogue and a handful of players.
"""

import pytest

from recommendation_service.models import GameFeatures, PlayerFeatures
from recommendation_service.features import InMemoryFeatureProvider


def make_games():
    return [
        GameFeatures(1, "slots", "netent", volatility=3, rtp=96.5, popularity_score=0.9, play_count=1000, revenue_score=500),
        GameFeatures(2, "slots", "netent", volatility=4, rtp=96.0, popularity_score=0.8, play_count=800, revenue_score=900),
        GameFeatures(3, "slots", "pragmatic", volatility=2, rtp=95.0, popularity_score=0.7, play_count=600, revenue_score=200),
        GameFeatures(4, "slots", "pragmatic", volatility=5, rtp=94.0, popularity_score=0.6, play_count=400, revenue_score=100, min_bet=10.0),
        GameFeatures(5, "table", "evolution", volatility=1, rtp=99.0, popularity_score=0.5, play_count=300, revenue_score=300),
        GameFeatures(6, "table", "evolution", volatility=2, rtp=98.5, popularity_score=0.4, play_count=200, revenue_score=150, is_mobile=False),
        GameFeatures(7, "live", "evolution", volatility=2, rtp=97.0, popularity_score=0.3, play_count=100, revenue_score=50),
        GameFeatures(8, "crash", "spribe", volatility=5, rtp=97.0, popularity_score=0.2, play_count=50, revenue_score=20),
    ]


def make_players():
    return [
        PlayerFeatures(
            10,
            session_count=40,
            favorite_categories={"slots": 0.8, "table": 0.2},
            favorite_providers={"netent": 1.0},
            preferred_rtp=96.0,
            played_games=frozenset({1, 3}),
        ),
        PlayerFeatures(11, session_count=5, played_games=frozenset({1, 2, 5})),
        PlayerFeatures(12, session_count=5, played_games=frozenset({3, 5, 7})),
        PlayerFeatures(13, session_count=5, played_games=frozenset({1, 3, 8})),
        PlayerFeatures(14, risk_level=5, favorite_categories={"slots": 1.0}),
    ]


@pytest.fixture
def games():
    return make_games()


@pytest.fixture
def players():
    return make_players()


@pytest.fixture
def provider():
    return InMemoryFeatureProvider(players=make_players(), games=make_games())


@pytest.fixture
def snapshot(provider):
    return provider.get_snapshot()
