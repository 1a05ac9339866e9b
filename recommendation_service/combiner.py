"""
Weighted hybrid of several strategies' candidate lists.
"""

from __future__ import annotations

import logging
import math
from typing import Dict, List, Mapping, Sequence

from .models import ScoredCandidate
from .strategies import sort_candidates

logger = logging.getLogger(__name__)

HYBRID_NAME = "hybrid"


def _valid_score(value: float) -> bool:
    return isinstance(value, (int, float)) and math.isfinite(value) and 0.0 <= value <= 1.0


class HybridCombiner:
    """Merges per-strategy candidates into one ranked list.

    For each game the combined score is the weighted mean of the scores of
    the strategies that actually scored it::

        score = sum(w_s * x_s) / sum(w_s)

    so a game one strategy has no opinion on is not penalized for it.

    Tiebreak keys are averaged the same way, so a game scored only by the
    Bandit keeps its posterior-variance tiebreak. Contributions are summed
    in strategy-name order, which makes the result independent of the order
    strategies finished in.
    """

    def combine(
        self,
        candidates_by_strategy: Mapping[str, Sequence[ScoredCandidate]],
        weights: Mapping[str, float],
    ) -> List[ScoredCandidate]:
        per_game: Dict[int, Dict[str, ScoredCandidate]] = {}
        for strategy_name in sorted(candidates_by_strategy):
            weight = weights.get(strategy_name, 0.0)
            if weight <= 0:
                continue
            for candidate in candidates_by_strategy[strategy_name]:
                if not _valid_score(candidate.score):
                    logger.debug(f"Dropping invalid score {candidate.score!r} from {strategy_name}")
                    continue
                # First opinion wins if a strategy lists a game twice
                per_game.setdefault(candidate.game_id, {}).setdefault(strategy_name, candidate)

        combined = []
        for game_id, by_strategy in per_game.items():
            names = sorted(by_strategy)
            weight_sum = sum(weights[name] for name in names)
            score = sum(weights[name] * by_strategy[name].score for name in names) / weight_sum
            tiebreak = sum(weights[name] * by_strategy[name].tiebreak for name in names) / weight_sum

            tags: List[str] = []
            for name in names:
                for tag in by_strategy[name].explanation_tags:
                    if tag not in tags:
                        tags.append(tag)

            combined.append(ScoredCandidate(
                game_id=game_id,
                score=min(1.0, max(0.0, score)),
                strategy_name=names[0] if len(names) == 1 else HYBRID_NAME,
                explanation_tags=tuple(tags),
                contributions={name: by_strategy[name].score for name in names},
                tiebreak=tiebreak,
            ))
        return sort_candidates(combined)
