"""
Bandit posterior state.

Counters are keyed by ``(player_id, arm)``. Writes are serialized per key
through lock striping, so concurrent feedback for different players never
contends on one global lock and concurrent feedback for the same key never
loses an update. The Bandit strategy only reads.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Dict, Iterable, List, Tuple

from .models import GameFeatures

ARM_TYPES = ("game", "category")


def arm_key(game: GameFeatures, arm_type: str = "game") -> str:
    if arm_type == "game":
        return f"game:{game.game_id}"
    if arm_type == "category":
        return f"category:{game.category}"
    raise ValueError(f"unsupported arm type '{arm_type}'")


@dataclass(frozen=True)
class BetaParams:
    """Success/failure counters; the posterior is Beta(successes + 1, failures + 1)."""

    successes: int = 0
    failures: int = 0

    @property
    def alpha(self) -> int:
        return self.successes + 1

    @property
    def beta(self) -> int:
        return self.failures + 1

    @property
    def trials(self) -> int:
        return self.successes + self.failures

    @property
    def mean(self) -> float:
        return self.alpha / (self.alpha + self.beta)

    @property
    def variance(self) -> float:
        a, b = self.alpha, self.beta
        return (a * b) / ((a + b) ** 2 * (a + b + 1))


class BanditStateStore:
    """Thread-safe store of per-(player, arm) Beta counters."""

    def __init__(self, stripes: int = 64):
        self._stripes = [threading.Lock() for _ in range(max(1, stripes))]
        self._counts: Dict[Tuple[int, str], BetaParams] = {}

    def _lock_for(self, key: Tuple[int, str]) -> threading.Lock:
        return self._stripes[hash(key) % len(self._stripes)]

    def get(self, player_id: int, arm: str) -> BetaParams:
        return self._counts.get((player_id, arm), BetaParams())

    def get_many(self, player_id: int, arms: Iterable[str]) -> Dict[str, BetaParams]:
        return {arm: self.get(player_id, arm) for arm in arms}

    def record_success(self, player_id: int, arm: str, amount: int = 1) -> BetaParams:
        return self._update(player_id, arm, successes=amount, failures=0)

    def record_failure(self, player_id: int, arm: str, amount: int = 1) -> BetaParams:
        return self._update(player_id, arm, successes=0, failures=amount)

    def _update(self, player_id: int, arm: str, successes: int, failures: int) -> BetaParams:
        key = (player_id, arm)
        with self._lock_for(key):
            current = self._counts.get(key, BetaParams())
            updated = BetaParams(current.successes + successes, current.failures + failures)
            # Single reference assignment; readers see old or new, never a mix
            self._counts[key] = updated
            return updated

    def snapshot(self) -> List[Dict[str, object]]:
        """Export counters for external persistence."""
        return [
            {"player_id": player_id, "arm": arm, "successes": p.successes, "failures": p.failures}
            for (player_id, arm), p in list(self._counts.items())
        ]

    def load(self, rows: Iterable[Dict[str, object]]) -> None:
        """Restore counters exported by :meth:`snapshot`."""
        for row in rows:
            key = (int(row["player_id"]), str(row["arm"]))
            with self._lock_for(key):
                self._counts[key] = BetaParams(int(row.get("successes", 0)), int(row.get("failures", 0)))

    def __len__(self) -> int:
        return len(self._counts)
