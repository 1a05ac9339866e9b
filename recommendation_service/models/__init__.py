"""
Models package for the recommendation engine.

Internal, request-scoped values are frozen dataclasses; the shapes exchanged
with callers are Pydantic models.
"""

from .feature_models import FeatureSnapshot, GameFeatures, PlayerFeatures
from .scoring_models import ScoredCandidate
from .api_models import (
    FeedbackPayload,
    GameRecommendation,
    RecommendationRequest,
    RecommendationResponse,
    ResponseMetadata,
)
from .feedback_models import (
    Attribution,
    IngestStatus,
    InteractionEvent,
    InteractionType,
    PerformanceMetrics,
)

__all__ = [
    # Feature snapshots
    "FeatureSnapshot",
    "GameFeatures",
    "PlayerFeatures",

    # Scoring
    "ScoredCandidate",

    # External shapes
    "FeedbackPayload",
    "GameRecommendation",
    "RecommendationRequest",
    "RecommendationResponse",
    "ResponseMetadata",

    # Feedback
    "Attribution",
    "IngestStatus",
    "InteractionEvent",
    "InteractionType",
    "PerformanceMetrics",
]
