"""
Scoring strategies.

``build_strategy`` is the only way the engine constructs a strategy. The
builder table must cover every :class:`StrategyKind`; a kind without a
builder fails at import time rather than at request time.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, FrozenSet, Mapping, Optional

from ..bandit_state import BanditStateStore
from .base import (
    RecommendationStrategy,
    StrategyContext,
    StrategyKind,
    normalize_weights,
    rng_for_request,
    sort_candidates,
)
from .bandit import BanditStrategy
from .collaborative import CollaborativeFilteringStrategy, cosine_similarity, jaccard_similarity
from .content_based import ContentBasedStrategy, game_similarity
from .external_model import (
    FEATURE_NAMES,
    CircuitBreaker,
    ExternalModelStrategy,
    HttpModelPredictor,
    ModelPredictor,
    build_feature_vector,
)
from .popularity import FALLBACK_NAME, PopularityBasedStrategy


@dataclass
class StrategyDependencies:
    """Shared collaborators strategies may need."""

    histories: Callable[[], Mapping[int, FrozenSet[int]]]
    bandit_state: BanditStateStore
    predictor: Optional[ModelPredictor] = None


def _build_collaborative(name: str, params: Dict[str, Any], deps: StrategyDependencies):
    return CollaborativeFilteringStrategy(
        histories=deps.histories,
        name=name,
        k=params.get("k", 20),
        similarity=params.get("similarity", "cosine"),
    )


def _build_content_based(name: str, params: Dict[str, Any], deps: StrategyDependencies):
    return ContentBasedStrategy(
        name=name,
        weights=params.get("weights"),
        rtp_tolerance=params.get("rtp_tolerance", 3.0),
    )


def _build_popularity(name: str, params: Dict[str, Any], deps: StrategyDependencies):
    return PopularityBasedStrategy(name=name, revenue_weight=params.get("revenue_weight", 0.3))


def _build_bandit(name: str, params: Dict[str, Any], deps: StrategyDependencies):
    return BanditStrategy(
        state=deps.bandit_state,
        name=name,
        arm_type=params.get("arm_type", "game"),
        explore_threshold=params.get("explore_threshold", 10),
    )


def _build_external_model(name: str, params: Dict[str, Any], deps: StrategyDependencies):
    predictor = deps.predictor
    if predictor is None:
        endpoint = params.get("endpoint")
        if not endpoint:
            raise ValueError(f"strategy '{name}' needs an 'endpoint' or an injected predictor")
        predictor = HttpModelPredictor(endpoint, default_timeout=params.get("timeout_seconds", 0.5))
    breaker = CircuitBreaker(
        failure_threshold=params.get("failure_threshold", 3),
        cooldown_seconds=params.get("cooldown_seconds", 30.0),
    )
    return ExternalModelStrategy(predictor=predictor, name=name, breaker=breaker)


_BUILDERS: Dict[StrategyKind, Callable[[str, Dict[str, Any], StrategyDependencies], RecommendationStrategy]] = {
    StrategyKind.COLLABORATIVE: _build_collaborative,
    StrategyKind.CONTENT_BASED: _build_content_based,
    StrategyKind.POPULARITY: _build_popularity,
    StrategyKind.BANDIT: _build_bandit,
    StrategyKind.EXTERNAL_MODEL: _build_external_model,
}

_missing = set(StrategyKind) - set(_BUILDERS)
if _missing:
    raise RuntimeError(f"no builder for strategy kinds: {sorted(k.value for k in _missing)}")


def build_strategy(
    kind: StrategyKind | str,
    deps: StrategyDependencies,
    name: Optional[str] = None,
    params: Optional[Dict[str, Any]] = None,
) -> RecommendationStrategy:
    """Construct a strategy of ``kind`` with its configuration ``params``."""
    kind = StrategyKind(kind)
    return _BUILDERS[kind](name or kind.value, dict(params or {}), deps)


__all__ = [
    "BanditStrategy",
    "CircuitBreaker",
    "CollaborativeFilteringStrategy",
    "ContentBasedStrategy",
    "ExternalModelStrategy",
    "FALLBACK_NAME",
    "FEATURE_NAMES",
    "HttpModelPredictor",
    "ModelPredictor",
    "PopularityBasedStrategy",
    "RecommendationStrategy",
    "StrategyContext",
    "StrategyDependencies",
    "StrategyKind",
    "build_feature_vector",
    "build_strategy",
    "cosine_similarity",
    "game_similarity",
    "jaccard_similarity",
    "normalize_weights",
    "rng_for_request",
    "sort_candidates",
]
