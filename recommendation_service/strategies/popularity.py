"""
Popularity scoring. Stateless and cheap; doubles as the engine's fallback.
"""

from __future__ import annotations

from typing import List, Sequence

from ..models import GameFeatures, PlayerFeatures, ScoredCandidate
from .base import StrategyContext, StrategyKind

FALLBACK_NAME = "popularity_based_fallback"


class PopularityBasedStrategy:
    """Rank-normalized blend of rolling play count and revenue.

    The most popular game in the pool scores 1.0 and the least popular
    scores 1/n, independent of the absolute magnitudes in the window.
    """

    kind = StrategyKind.POPULARITY

    def __init__(self, name: str = "popularity_based", revenue_weight: float = 0.3):
        if not 0.0 <= revenue_weight <= 1.0:
            raise ValueError("revenue_weight must be within [0, 1]")
        self.name = name
        self.revenue_weight = revenue_weight

    def popularity_values(self, games: Sequence[GameFeatures]) -> List[float]:
        max_plays = max((g.play_count for g in games), default=0) or 1
        max_revenue = max((g.revenue_score for g in games), default=0.0) or 1.0
        return [
            (1.0 - self.revenue_weight) * (max(g.play_count, 0) / max_plays)
            + self.revenue_weight * (max(g.revenue_score, 0.0) / max_revenue)
            for g in games
        ]

    def rank(self, games: Sequence[GameFeatures], strategy_name: str) -> List[ScoredCandidate]:
        if not games:
            return []
        values = self.popularity_values(games)
        ordered = sorted(zip(values, games), key=lambda item: (-item[0], -item[1].popularity_score, item[1].game_id))
        n = len(ordered)
        return [
            ScoredCandidate(
                game_id=game.game_id,
                score=(n - position) / n,
                strategy_name=strategy_name,
                explanation_tags=("trending",) if position < max(1, n // 10) else ("popular",),
            )
            for position, (_, game) in enumerate(ordered)
        ]

    def score(
        self,
        player: PlayerFeatures,
        games: Sequence[GameFeatures],
        context: StrategyContext,
    ) -> List[ScoredCandidate]:
        return self.rank(games, self.name)

    def fallback(self, games: Sequence[GameFeatures]) -> List[ScoredCandidate]:
        """Ranking used when every selected strategy failed."""
        return self.rank(games, FALLBACK_NAME)
