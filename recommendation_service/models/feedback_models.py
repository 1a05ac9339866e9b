"""
Data models for interaction feedback and performance reporting.
"""

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class InteractionType(Enum):
    """Allowed interaction event types."""

    IMPRESSION = "impression"
    CLICK = "click"
    PLAY = "play"
    DISMISS = "dismiss"

    @classmethod
    def is_valid(cls, event_type: str) -> bool:
        """Check if an event type string is valid."""
        try:
            cls(event_type)
            return True
        except ValueError:
            return False

    @classmethod
    def get_allowed_types(cls) -> set[str]:
        """Get all allowed event type strings."""
        return {e.value for e in cls}

    @property
    def is_positive(self) -> bool:
        return self in (InteractionType.CLICK, InteractionType.PLAY)


class IngestStatus(Enum):
    """Result of handing an event to the feedback ingestor."""

    ACCEPTED = "accepted"
    REJECTED = "rejected"


@dataclass(frozen=True)
class InteractionEvent:
    """Append-only record of a player interacting with a recommendation."""

    recommendation_id: str
    player_id: int
    game_id: int
    event_type: InteractionType
    timestamp: float = field(default_factory=time.time)
    session_id: Optional[str] = None
    value: float = 0.0
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def dedup_key(self) -> tuple:
        return (self.recommendation_id, self.event_type.value)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "event_id": self.event_id,
            "recommendation_id": self.recommendation_id,
            "player_id": self.player_id,
            "game_id": self.game_id,
            "event_type": self.event_type.value,
            "timestamp": self.timestamp,
            "session_id": self.session_id,
            "value": self.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InteractionEvent":
        """Create InteractionEvent from dictionary."""
        return cls(
            recommendation_id=str(data["recommendation_id"]),
            player_id=int(data["player_id"]),
            game_id=int(data["game_id"]),
            event_type=InteractionType(data["event_type"]),
            timestamp=float(data.get("timestamp") or time.time()),
            session_id=data.get("session_id"),
            value=float(data.get("value", 0.0)),
            event_id=data.get("event_id") or uuid.uuid4().hex,
        )


@dataclass(frozen=True)
class PerformanceMetrics:
    """Aggregated counters for one strategy or category over a time window."""

    dimension: str
    key: str
    window_seconds: float
    impressions: int = 0
    clicks: int = 0
    conversions: int = 0
    revenue: float = 0.0

    @property
    def ctr(self) -> float:
        return self.clicks / self.impressions if self.impressions else 0.0

    @property
    def conversion_rate(self) -> float:
        return self.conversions / self.impressions if self.impressions else 0.0

    @property
    def revenue_per_impression(self) -> float:
        return self.revenue / self.impressions if self.impressions else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dimension": self.dimension,
            "key": self.key,
            "window_seconds": self.window_seconds,
            "impressions": self.impressions,
            "clicks": self.clicks,
            "conversions": self.conversions,
            "revenue": round(self.revenue, 4),
            "ctr": round(self.ctr, 6),
            "conversion_rate": round(self.conversion_rate, 6),
            "revenue_per_impression": round(self.revenue_per_impression, 6),
        }


@dataclass(frozen=True)
class Attribution:
    """Which strategies and bandit arms produced a served recommendation."""

    recommendation_id: str
    player_id: int
    game_id: int
    category: Optional[str] = None
    strategies: tuple = ()
    bandit_arms: tuple = ()
    created_at: float = field(default_factory=time.time)
