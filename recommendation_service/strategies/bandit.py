"""
Thompson Sampling bandit strategy.
"""

from __future__ import annotations

from typing import List, Sequence

from ..bandit_state import ARM_TYPES, BanditStateStore, arm_key
from ..models import GameFeatures, PlayerFeatures, ScoredCandidate
from .base import StrategyContext, StrategyKind, sort_candidates


class BanditStrategy:
    """Samples each arm's Beta posterior and uses the draw as the score.

    The sample comes from the request's seeded generator, so the same request
    id reproduces the same ranking. Equal draws favour the arm with larger
    posterior variance, i.e. the one with more exploration value.
    """

    kind = StrategyKind.BANDIT

    def __init__(
        self,
        state: BanditStateStore,
        name: str = "bandit",
        arm_type: str = "game",
        explore_threshold: int = 10,
    ):
        if arm_type not in ARM_TYPES:
            raise ValueError(f"arm_type must be one of {ARM_TYPES}")
        self.name = name
        self.state = state
        self.arm_type = arm_type
        self.explore_threshold = explore_threshold

    def arm_for(self, game: GameFeatures) -> str:
        return arm_key(game, self.arm_type)

    def score(
        self,
        player: PlayerFeatures,
        games: Sequence[GameFeatures],
        context: StrategyContext,
    ) -> List[ScoredCandidate]:
        if not games:
            return []

        arms = [self.arm_for(game) for game in games]
        # One draw per arm; games sharing an arm share its sample
        distinct = list(dict.fromkeys(arms))
        posteriors = self.state.get_many(player.player_id, distinct)
        draws = context.rng.beta(
            [posteriors[arm].alpha for arm in distinct],
            [posteriors[arm].beta for arm in distinct],
        )
        samples = dict(zip(distinct, draws))

        candidates = []
        for game, arm in zip(games, arms):
            params = posteriors[arm]
            tags = ["thompson_sample"]
            if params.trials < self.explore_threshold:
                tags.append("explore")
            candidates.append(ScoredCandidate(
                game_id=game.game_id,
                score=min(1.0, max(0.0, float(samples[arm]))),
                strategy_name=self.name,
                explanation_tags=tuple(tags),
                tiebreak=params.variance,
            ))
        return sort_candidates(candidates)
