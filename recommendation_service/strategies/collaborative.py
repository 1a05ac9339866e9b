"""
Collaborative filtering over played-game sets.
"""

from __future__ import annotations

import heapq
import math
from typing import Callable, Dict, FrozenSet, List, Mapping, Sequence, Tuple

from ..errors import StrategyTimeoutError
from ..models import GameFeatures, PlayerFeatures, ScoredCandidate
from .base import StrategyContext, StrategyKind


def cosine_similarity(a: FrozenSet[int], b: FrozenSet[int]) -> float:
    if not a or not b:
        return 0.0
    return len(a & b) / math.sqrt(len(a) * len(b))


def jaccard_similarity(a: FrozenSet[int], b: FrozenSet[int]) -> float:
    union = len(a | b)
    return len(a & b) / union if union else 0.0


SIMILARITY_FUNCTIONS: Dict[str, Callable[[FrozenSet[int], FrozenSet[int]], float]] = {
    "cosine": cosine_similarity,
    "jaccard": jaccard_similarity,
}


class CollaborativeFilteringStrategy:
    """Scores games by how strongly the player's nearest neighbours played them.

    A candidate's score is the similarity mass of neighbours who played it
    divided by the total similarity mass of the neighbourhood, so it stays in
    [0, 1]. Games no neighbour played are omitted.
    """

    kind = StrategyKind.COLLABORATIVE

    def __init__(
        self,
        histories: Callable[[], Mapping[int, FrozenSet[int]]],
        name: str = "collaborative_filtering",
        k: int = 20,
        similarity: str = "cosine",
        deadline_check_every: int = 500,
    ):
        if similarity not in SIMILARITY_FUNCTIONS:
            raise ValueError(f"unsupported similarity '{similarity}'")
        self.name = name
        self.k = max(1, int(k))
        self.similarity = similarity
        self._similarity_fn = SIMILARITY_FUNCTIONS[similarity]
        self._histories = histories
        self._check_every = max(1, deadline_check_every)

    def nearest_neighbours(
        self, player: PlayerFeatures, context: StrategyContext
    ) -> List[Tuple[float, int]]:
        """Return up to ``k`` (similarity, player_id) pairs with similarity > 0."""
        own = player.played_games
        if not own:
            return []

        scored: List[Tuple[float, int]] = []
        for i, (other_id, other_games) in enumerate(self._histories().items()):
            if i % self._check_every == 0 and context.expired():
                raise StrategyTimeoutError(self.name, "deadline reached while scanning neighbours")
            if other_id == player.player_id:
                continue
            sim = self._similarity_fn(own, other_games)
            if sim > 0:
                scored.append((sim, other_id))

        # Ties on similarity resolve to the lower player id for determinism
        return heapq.nsmallest(self.k, scored, key=lambda item: (-item[0], item[1]))

    def score(
        self,
        player: PlayerFeatures,
        games: Sequence[GameFeatures],
        context: StrategyContext,
    ) -> List[ScoredCandidate]:
        neighbours = self.nearest_neighbours(player, context)
        if not neighbours:
            return []

        histories = self._histories()
        total_mass = sum(sim for sim, _ in neighbours)
        mass_by_game: Dict[int, float] = {}
        support_by_game: Dict[int, int] = {}
        for sim, other_id in neighbours:
            for game_id in histories.get(other_id, ()):
                mass_by_game[game_id] = mass_by_game.get(game_id, 0.0) + sim
                support_by_game[game_id] = support_by_game.get(game_id, 0) + 1

        candidates = []
        for game in games:
            mass = mass_by_game.get(game.game_id)
            if mass is None:
                continue
            score = min(1.0, mass / total_mass)
            candidates.append((
                score,
                game.popularity_score,
                ScoredCandidate(
                    game_id=game.game_id,
                    score=score,
                    strategy_name=self.name,
                    explanation_tags=(f"similar_players:{support_by_game[game.game_id]}",),
                ),
            ))

        # Equal scores go to the more popular game
        candidates.sort(key=lambda item: (-item[0], -item[1], item[2].game_id))
        return [candidate for _, _, candidate in candidates]
