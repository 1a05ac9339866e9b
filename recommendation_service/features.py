"""
Feature providers.

The engine never talks to the feature store directly: it asks a provider for
the current :class:`FeatureSnapshot` once per request and works on that
immutable view. Publishing a new snapshot swaps a single reference, so
in-flight requests keep reading the version they started with.
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Iterable, Optional, Protocol

from .models import FeatureSnapshot, GameFeatures, PlayerFeatures

logger = logging.getLogger(__name__)


class FeatureProvider(Protocol):
    """Interface for anything that can hand out feature snapshots."""

    def get_snapshot(self) -> FeatureSnapshot:
        """Return the current immutable snapshot."""


class InMemoryFeatureProvider:
    """Feature provider holding the latest published snapshot in memory."""

    def __init__(
        self,
        players: Optional[Iterable[PlayerFeatures]] = None,
        games: Optional[Iterable[GameFeatures]] = None,
    ):
        self._lock = threading.Lock()
        self._snapshot = FeatureSnapshot.build(version=1, players=players or [], games=games or [])

    def get_snapshot(self) -> FeatureSnapshot:
        return self._snapshot

    def publish(
        self,
        players: Optional[Iterable[PlayerFeatures]] = None,
        games: Optional[Iterable[GameFeatures]] = None,
    ) -> FeatureSnapshot:
        """Publish a refreshed snapshot.

        Omitted parts carry over from the current snapshot, since game
        features refresh on a slower cadence than player features.
        """
        with self._lock:
            current = self._snapshot
            snapshot = FeatureSnapshot.build(
                version=current.version + 1,
                players=players if players is not None else current.players.values(),
                games=games if games is not None else current.games,
            )
            self._snapshot = snapshot
        logger.info(
            f"Published feature snapshot v{snapshot.version}: "
            f"{len(snapshot.players)} players, {len(snapshot.games)} games"
        )
        return snapshot

    @classmethod
    def from_json_file(cls, path: Path) -> "InMemoryFeatureProvider":
        """Load a provider from a ``{"players": [...], "games": [...]}`` export.

        A missing or unreadable file yields an empty provider.
        """
        try:
            data = json.loads(Path(path).read_text(encoding="utf-8"))
        except FileNotFoundError:
            logger.warning(f"Feature file {path} not found, starting with empty features")
            return cls()
        except json.JSONDecodeError as exc:
            logger.error(f"Feature file {path} is not valid JSON: {exc}")
            return cls()

        players = [PlayerFeatures.from_dict(p) for p in data.get("players", [])]
        games = [GameFeatures.from_dict(g) for g in data.get("games", [])]
        return cls(players=players, games=games)
