"""
Turns a combined candidate ranking into the final recommendation list by
applying business rules.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import AbstractSet, Dict, List, Mapping, Sequence, Tuple

from .models import GameFeatures, GameRecommendation, PlayerFeatures, RecommendationRequest, ScoredCandidate

logger = logging.getLogger(__name__)

DIVERSITY_BACKFILL = "diversity_backfill"


@dataclass(frozen=True)
class BusinessRules:
    max_per_category: int = 3
    risk_threshold: int = 3
    max_volatility: int = 3
    max_bet_cap: float = 5.0
    cooldown_minutes: float = 30.0
    min_score: float = 0.0

    @classmethod
    def from_config(cls, rc) -> "BusinessRules":
        return cls(
            max_per_category=rc.max_per_category,
            risk_threshold=rc.risk_threshold,
            max_volatility=rc.max_volatility,
            max_bet_cap=rc.max_bet_cap,
            cooldown_minutes=rc.cooldown_minutes,
            min_score=rc.min_score,
        )


def recommendation_id(request_id: str, game_id: int) -> str:
    return f"{request_id}:{game_id}"


class RecommendationAssembler:
    """Filters, diversifies, truncates and ranks combined candidates.

    Pure and deterministic: the same inputs always give the same list.
    """

    def __init__(self, rules: BusinessRules = BusinessRules()):
        self.rules = rules

    def is_restricted(self, player: PlayerFeatures, game: GameFeatures) -> bool:
        """Responsible-gaming filter for players above the risk threshold."""
        if player.risk_level <= self.rules.risk_threshold:
            return False
        return game.volatility > self.rules.max_volatility or game.min_bet > self.rules.max_bet_cap

    def eligible(
        self,
        combined: Sequence[ScoredCandidate],
        request: RecommendationRequest,
        player: PlayerFeatures,
        games: Mapping[int, GameFeatures],
        recently_shown: AbstractSet[int],
    ) -> List[Tuple[ScoredCandidate, GameFeatures]]:
        kept = []
        for candidate in combined:
            game = games.get(candidate.game_id)
            if game is None:
                continue
            if candidate.game_id in request.exclude_game_ids or candidate.game_id in recently_shown:
                continue
            if candidate.score < self.rules.min_score:
                continue
            if self.is_restricted(player, game):
                continue
            kept.append((candidate, game))
        return kept

    def diversify(
        self, ranked: Sequence[Tuple[ScoredCandidate, GameFeatures]], count: int
    ) -> List[Tuple[ScoredCandidate, GameFeatures, bool]]:
        """Cap each category in a first pass, then backfill from the overflow.

        Returns ``(candidate, game, backfilled)`` triples in final order.
        """
        cap = self.rules.max_per_category
        picked: List[Tuple[ScoredCandidate, GameFeatures, bool]] = []
        deferred: List[Tuple[ScoredCandidate, GameFeatures]] = []
        per_category: Dict[str, int] = {}

        for candidate, game in ranked:
            if len(picked) >= count:
                break
            if cap > 0 and per_category.get(game.category, 0) >= cap:
                deferred.append((candidate, game))
                continue
            per_category[game.category] = per_category.get(game.category, 0) + 1
            picked.append((candidate, game, False))

        for candidate, game in deferred:
            if len(picked) >= count:
                break
            picked.append((candidate, game, True))
        return picked

    def assemble(
        self,
        combined: Sequence[ScoredCandidate],
        request: RecommendationRequest,
        player: PlayerFeatures,
        games: Mapping[int, GameFeatures],
        recently_shown: AbstractSet[int] = frozenset(),
    ) -> List[GameRecommendation]:
        ranked = self.eligible(combined, request, player, games, recently_shown)
        dropped = len(combined) - len(ranked)
        if dropped:
            logger.debug(f"Assembler dropped {dropped} candidates for player {player.player_id}")

        final = self.diversify(ranked, request.count)
        return [
            GameRecommendation(
                recommendation_id=recommendation_id(request.request_id, candidate.game_id),
                game_id=candidate.game_id,
                score=round(candidate.score, 6),
                algorithm=candidate.strategy_name,
                rank=rank,
                reasons=list(candidate.explanation_tags) + ([DIVERSITY_BACKFILL] if backfilled else []),
                category=game.category,
            )
            for rank, (candidate, game, backfilled) in enumerate(final, start=1)
        ]
