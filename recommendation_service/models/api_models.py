"""
External request/response models.

These are the shapes exchanged with callers of the engine (the web layer,
batch jobs). Field names are snake_case in Python and camelCase on the wire.
"""

import uuid
from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize with camelCase keys for JSON responses."""
        return self.model_dump(by_alias=True, mode="json")


class RecommendationRequest(_WireModel):
    """A request for ranked game recommendations."""

    player_id: int = Field(gt=0, description="Player identifier")
    context: str = Field(default="lobby", min_length=1, max_length=64, description="Placement tag (lobby, post_game, deposit, ...)")
    count: int = Field(default=10, ge=1, description="Requested number of recommendations")
    exclude_game_ids: Set[int] = Field(default_factory=set, description="Games that must not be returned")
    contextual_factors: Dict[str, Any] = Field(default_factory=dict, description="Optional signals such as device or time of day")
    request_id: str = Field(default_factory=lambda: uuid.uuid4().hex, min_length=1, description="Correlation id, also seeds randomness")
    deadline_ms: Optional[int] = Field(default=None, gt=0, description="Caller deadline for the whole request")

    @field_validator("context")
    @classmethod
    def _normalize_context(cls, value: str) -> str:
        clean = value.strip().lower()
        if not clean:
            raise ValueError("context must not be blank")
        return clean


class GameRecommendation(_WireModel):
    """A single ranked recommendation. Immutable once returned."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    recommendation_id: str
    game_id: int
    score: float = Field(ge=0.0, le=1.0)
    algorithm: str
    rank: int = Field(ge=1)
    reasons: List[str] = Field(default_factory=list)
    category: Optional[str] = None


class ResponseMetadata(_WireModel):
    processing_time_ms: float = 0.0
    algorithms_used: List[str] = Field(default_factory=list)
    ab_variant: Optional[str] = None
    experiment_id: Optional[str] = None
    feature_version: Optional[int] = None
    fallback: bool = False
    cached: bool = False


class RecommendationResponse(_WireModel):
    """Engine output for one request."""

    player_id: int
    request_id: str
    recommendations: List[GameRecommendation] = Field(default_factory=list)
    metadata: ResponseMetadata = Field(default_factory=ResponseMetadata)


class FeedbackPayload(_WireModel):
    """Interaction event as submitted by a client."""

    recommendation_id: str = Field(min_length=1)
    player_id: int = Field(gt=0)
    game_id: int
    event_type: str
    timestamp: Optional[float] = Field(default=None, description="Unix epoch seconds")
    session_id: Optional[str] = None
    value: float = Field(default=0.0, ge=0.0, description="Revenue attributed to the interaction")

    @field_validator("event_type")
    @classmethod
    def _normalize_event_type(cls, value: str) -> str:
        return value.strip().lower()
