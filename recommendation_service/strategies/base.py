"""
Shared strategy primitives.

Every scoring algorithm is one member of a closed family, tagged by
:class:`StrategyKind`. The engine only ever builds strategies through
``build_strategy`` so the set of kinds is fixed in code.
"""

from __future__ import annotations

import hashlib
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Sequence

import numpy as np

from ..models import GameFeatures, PlayerFeatures, ScoredCandidate


class StrategyKind(Enum):
    """The closed set of scoring algorithms."""

    COLLABORATIVE = "collaborative_filtering"
    CONTENT_BASED = "content_based"
    POPULARITY = "popularity_based"
    BANDIT = "bandit"
    EXTERNAL_MODEL = "external_model"


def rng_for_request(request_id: str) -> np.random.Generator:
    """Deterministic random source keyed by request id."""
    digest = hashlib.sha256(request_id.encode("utf-8")).digest()
    return np.random.default_rng(int.from_bytes(digest[:8], "big"))


@dataclass
class StrategyContext:
    """Per-request context handed to every strategy."""

    request_id: str
    context: str = "lobby"
    contextual_factors: Dict[str, Any] = field(default_factory=dict)
    deadline: Optional[float] = None  # time.monotonic() value
    rng: np.random.Generator = None  # type: ignore[assignment]

    def __post_init__(self) -> None:
        if self.rng is None:
            self.rng = rng_for_request(self.request_id)

    def expired(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    def remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())


class RecommendationStrategy(Protocol):
    """Interface every scoring algorithm implements."""

    name: str
    kind: StrategyKind

    def score(
        self,
        player: PlayerFeatures,
        games: Sequence[GameFeatures],
        context: StrategyContext,
    ) -> List[ScoredCandidate]:
        """Return scored candidates in [0, 1], omitting games with no opinion."""


def sort_candidates(candidates: List[ScoredCandidate]) -> List[ScoredCandidate]:
    """Order by score, then tiebreak, then game id."""
    return sorted(candidates, key=lambda c: (-c.score, -c.tiebreak, c.game_id))


def normalize_weights(weights: Dict[str, float]) -> Dict[str, float]:
    """Sum-normalize a weight map, dropping non-positive entries."""
    positive = {key: float(value) for key, value in weights.items() if float(value) > 0}
    total = sum(positive.values())
    if total <= 0:
        raise ValueError("at least one positive weight is required")
    return {key: value / total for key, value in positive.items()}
