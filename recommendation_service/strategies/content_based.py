"""
Content-based scoring: player preferences matched against game attributes.
"""

from __future__ import annotations

from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from ..models import GameFeatures, PlayerFeatures, ScoredCandidate
from .base import StrategyContext, StrategyKind, normalize_weights, sort_candidates

DEFAULT_COMPONENT_WEIGHTS = {"category": 0.5, "provider": 0.3, "rtp": 0.2}


def _relative_preference(preferences: Mapping[str, float], value: str) -> Optional[float]:
    if not preferences:
        return None
    top = max(preferences.values())
    return preferences.get(value, 0.0) / top if top > 0 else None


class ContentBasedStrategy:
    """Weighted match between a player's preferences and each game.

    Components without any player signal are left out and the remaining
    weights are renormalized, so a player with only category preferences is
    scored purely on category.
    """

    kind = StrategyKind.CONTENT_BASED

    def __init__(
        self,
        name: str = "content_based",
        weights: Optional[Dict[str, float]] = None,
        rtp_tolerance: float = 3.0,
    ):
        weights = dict(weights or DEFAULT_COMPONENT_WEIGHTS)
        unknown = set(weights) - set(DEFAULT_COMPONENT_WEIGHTS)
        if unknown:
            raise ValueError(f"unknown content components: {sorted(unknown)}")
        self.name = name
        self.weights = normalize_weights(weights)
        self.rtp_tolerance = max(0.01, float(rtp_tolerance))

    def match_components(self, player: PlayerFeatures, game: GameFeatures) -> Dict[str, float]:
        """Per-component match in [0, 1] for components the player has a signal for."""
        components: Dict[str, float] = {}
        category = _relative_preference(player.favorite_categories, game.category)
        if category is not None:
            components["category"] = category
        provider = _relative_preference(player.favorite_providers, game.provider)
        if provider is not None:
            components["provider"] = provider
        if player.preferred_rtp is not None:
            distance = abs(game.rtp - player.preferred_rtp) / self.rtp_tolerance
            components["rtp"] = 1.0 - min(distance, 1.0)
        return {key: value for key, value in components.items() if key in self.weights}

    def score(
        self,
        player: PlayerFeatures,
        games: Sequence[GameFeatures],
        context: StrategyContext,
    ) -> List[ScoredCandidate]:
        candidates: List[ScoredCandidate] = []
        for game in games:
            components = self.match_components(player, game)
            if not components:
                continue
            active_weight = sum(self.weights[key] for key in components)
            score = sum(self.weights[key] * value for key, value in components.items()) / active_weight
            candidates.append(ScoredCandidate(
                game_id=game.game_id,
                score=min(1.0, max(0.0, score)),
                strategy_name=self.name,
                explanation_tags=self._tags(components, game),
            ))
        return sort_candidates(candidates)

    @staticmethod
    def _tags(components: Dict[str, float], game: GameFeatures) -> Tuple[str, ...]:
        tags = []
        if components.get("category", 0.0) > 0:
            tags.append(f"category_match:{game.category}")
        if components.get("provider", 0.0) > 0:
            tags.append(f"provider_match:{game.provider}")
        if components.get("rtp", 0.0) >= 0.5:
            tags.append("rtp_band_match")
        return tuple(tags)


def game_similarity(
    base: GameFeatures,
    other: GameFeatures,
    weights: Optional[Dict[str, float]] = None,
    rtp_tolerance: float = 3.0,
) -> float:
    """Attribute similarity between two games, in [0, 1]."""
    weights = normalize_weights(weights or {"category": 0.4, "provider": 0.2, "volatility": 0.2, "rtp": 0.2})
    parts = {
        "category": 1.0 if base.category == other.category else 0.0,
        "provider": 1.0 if base.provider and base.provider == other.provider else 0.0,
        "volatility": 1.0 - min(abs(base.volatility - other.volatility) / 4.0, 1.0),
        "rtp": 1.0 - min(abs(base.rtp - other.rtp) / max(rtp_tolerance, 0.01), 1.0),
    }
    return sum(weights.get(key, 0.0) * value for key, value in parts.items())
