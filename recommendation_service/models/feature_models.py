"""
Feature snapshot models.

Player and game features are immutable snapshots produced by the external
feature store. Strategies read them and must never mutate them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional, Tuple


def _frozen_weights(values: Optional[Mapping[str, float]]) -> Mapping[str, float]:
    clean = {
        str(key).strip().lower(): float(weight)
        for key, weight in (values or {}).items()
        if str(key).strip() and float(weight) > 0
    }
    return MappingProxyType(clean)


@dataclass(slots=True, frozen=True)
class PlayerFeatures:
    """Per-player behavioral aggregates and preferences."""

    player_id: int
    avg_bet_size: float = 0.0
    session_count: int = 0
    days_since_last_play: int = 0
    risk_level: int = 1
    vip_tier: int = 0
    favorite_categories: Mapping[str, float] = field(default_factory=dict)
    favorite_providers: Mapping[str, float] = field(default_factory=dict)
    preferred_rtp: Optional[float] = None
    played_games: FrozenSet[int] = frozenset()

    def __post_init__(self) -> None:
        object.__setattr__(self, "favorite_categories", _frozen_weights(self.favorite_categories))
        object.__setattr__(self, "favorite_providers", _frozen_weights(self.favorite_providers))
        object.__setattr__(self, "played_games", frozenset(int(g) for g in self.played_games))

    @property
    def is_new_player(self) -> bool:
        return not self.played_games and self.session_count == 0

    @classmethod
    def cold_start(cls, player_id: int) -> "PlayerFeatures":
        """Default snapshot for players the feature store does not know yet."""
        return cls(player_id=player_id)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PlayerFeatures":
        return cls(
            player_id=int(data["player_id"]),
            avg_bet_size=float(data.get("avg_bet_size", 0.0)),
            session_count=int(data.get("session_count", 0)),
            days_since_last_play=int(data.get("days_since_last_play", 0)),
            risk_level=int(data.get("risk_level", 1)),
            vip_tier=int(data.get("vip_tier", 0)),
            favorite_categories=data.get("favorite_categories") or {},
            favorite_providers=data.get("favorite_providers") or {},
            preferred_rtp=data.get("preferred_rtp"),
            played_games=frozenset(data.get("played_games") or []),
        )


@dataclass(slots=True, frozen=True)
class GameFeatures:
    """Per-game attributes and rolling popularity aggregates."""

    game_id: int
    category: str
    provider: str = ""
    volatility: int = 3
    rtp: float = 96.0
    popularity_score: float = 0.0
    play_count: int = 0
    revenue_score: float = 0.0
    release_days: int = 0
    is_mobile: bool = True
    is_desktop: bool = True
    min_bet: float = 0.1

    def __post_init__(self) -> None:
        object.__setattr__(self, "category", str(self.category).strip().lower())
        object.__setattr__(self, "provider", str(self.provider).strip().lower())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GameFeatures":
        return cls(
            game_id=int(data["game_id"]),
            category=data.get("category", "unknown"),
            provider=data.get("provider", ""),
            volatility=int(data.get("volatility", 3)),
            rtp=float(data.get("rtp", 96.0)),
            popularity_score=float(data.get("popularity_score", 0.0)),
            play_count=int(data.get("play_count", 0)),
            revenue_score=float(data.get("revenue_score", 0.0)),
            release_days=int(data.get("release_days", 0)),
            is_mobile=bool(data.get("is_mobile", True)),
            is_desktop=bool(data.get("is_desktop", True)),
            min_bet=float(data.get("min_bet", 0.1)),
        )


@dataclass(slots=True, frozen=True)
class FeatureSnapshot:
    """A consistent, versioned view of every feature the engine reads."""

    version: int
    players: Mapping[int, PlayerFeatures]
    games: Tuple[GameFeatures, ...]
    histories: Mapping[int, FrozenSet[int]]
    game_index: Mapping[int, GameFeatures]

    @classmethod
    def build(
        cls,
        version: int,
        players: Iterable[PlayerFeatures],
        games: Iterable[GameFeatures],
    ) -> "FeatureSnapshot":
        player_map = {p.player_id: p for p in players}
        game_tuple = tuple(games)
        return cls(
            version=version,
            players=MappingProxyType(player_map),
            games=game_tuple,
            histories=MappingProxyType(
                {pid: p.played_games for pid, p in player_map.items() if p.played_games}
            ),
            game_index=MappingProxyType({g.game_id: g for g in game_tuple}),
        )

    def player(self, player_id: int) -> PlayerFeatures:
        return self.players.get(player_id) or PlayerFeatures.cold_start(player_id)
