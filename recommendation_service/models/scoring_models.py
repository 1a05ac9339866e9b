"""
Request-scoped scoring structures shared by strategies and the combiner.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Tuple


@dataclass(slots=True, frozen=True)
class ScoredCandidate:
    """One strategy's opinion about one game.

    ``score`` is normalized to [0, 1]. A strategy that has no opinion about a
    game omits it instead of emitting 0. ``tiebreak`` orders equal scores,
    higher first, before the game id does.
    """

    game_id: int
    score: float
    strategy_name: str
    explanation_tags: Tuple[str, ...] = ()
    contributions: Mapping[str, float] = field(default_factory=dict)
    tiebreak: float = 0.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "explanation_tags", tuple(self.explanation_tags))
        object.__setattr__(self, "contributions", MappingProxyType(dict(self.contributions)))
