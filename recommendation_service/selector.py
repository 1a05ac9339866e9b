"""
Strategy selection and A/B experiment assignment.

Variant assignment is a pure function of ``(experiment_id, player_id)``: the
same player always lands in the same variant for the lifetime of an
experiment, across processes and restarts, and nothing is stored.
"""

from __future__ import annotations

import hashlib
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from .errors import UnknownStrategyError
from .registry import StrategyEntry, StrategyRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Variant:
    name: str
    traffic_units: int
    strategies: Mapping[str, float]


@dataclass(frozen=True)
class Experiment:
    """An A/B experiment over strategy mixes for a set of contexts."""

    experiment_id: str
    variants: Tuple[Variant, ...]
    contexts: Tuple[str, ...] = ()
    status: str = "running"
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    def __post_init__(self) -> None:
        if not self.variants:
            raise ValueError(f"experiment '{self.experiment_id}' has no variants")
        if any(v.traffic_units < 0 for v in self.variants) or self.total_traffic_units <= 0:
            raise ValueError(f"experiment '{self.experiment_id}' needs positive traffic units")

    @property
    def total_traffic_units(self) -> int:
        return sum(v.traffic_units for v in self.variants)

    def is_active(self, context: str, now: Optional[datetime] = None) -> bool:
        if self.status != "running":
            return False
        if self.contexts and context not in self.contexts:
            return False
        now = now or datetime.now(timezone.utc)
        if self.start is not None and now < _aware(self.start):
            return False
        if self.end is not None and now >= _aware(self.end):
            return False
        return True

    def bucket(self, player_id: int) -> int:
        digest = hashlib.sha256(f"{self.experiment_id}:{player_id}".encode("utf-8")).hexdigest()
        return int(digest, 16) % self.total_traffic_units

    def assign(self, player_id: int) -> Variant:
        """Map the player's hash bucket onto the cumulative traffic ranges."""
        bucket = self.bucket(player_id)
        upper = 0
        for variant in self.variants:
            upper += variant.traffic_units
            if bucket < upper:
                return variant
        return self.variants[-1]

    @classmethod
    def from_config(cls, ec) -> "Experiment":
        return cls(
            experiment_id=ec.experiment_id,
            variants=tuple(Variant(v.name, v.traffic_units, dict(v.strategies)) for v in ec.variants),
            contexts=tuple(ec.contexts),
            status=ec.status,
            start=ec.start,
            end=ec.end,
        )


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class StrategySelection:
    strategies: List[Tuple[StrategyEntry, float]] = field(default_factory=list)
    ab_variant: Optional[str] = None
    experiment_id: Optional[str] = None

    @property
    def weights(self) -> Dict[str, float]:
        return {entry.name: weight for entry, weight in self.strategies}


class StrategySelector:
    """Chooses the strategies and weights used for one request."""

    def __init__(
        self,
        registry: StrategyRegistry,
        experiments: Sequence[Experiment] = (),
        context_strategies: Optional[Mapping[str, Sequence[str]]] = None,
        adaptive: bool = False,
    ):
        self.registry = registry
        self.experiments = list(experiments)
        self.context_strategies = {
            ctx.lower(): list(names) for ctx, names in (context_strategies or {}).items()
        }
        self.adaptive = adaptive
        self._adaptive_weights: Dict[str, float] = {}

    def set_adaptive_weights(self, weights: Mapping[str, float]) -> None:
        # Whole-dict swap; readers never observe a partial update
        self._adaptive_weights = dict(weights)

    @property
    def adaptive_weights(self) -> Dict[str, float]:
        return dict(self._adaptive_weights)

    def select(self, player_id: int, context: str, now: Optional[datetime] = None) -> StrategySelection:
        for experiment in self.experiments:
            if not experiment.is_active(context, now):
                continue
            variant = experiment.assign(player_id)
            chosen = self._resolve_weighted(variant.strategies, source=f"experiment {experiment.experiment_id}")
            if chosen:
                return StrategySelection(chosen, ab_variant=variant.name, experiment_id=experiment.experiment_id)
            logger.warning(
                f"Variant '{variant.name}' of experiment {experiment.experiment_id} "
                f"has no usable strategies, using control"
            )
            break
        return StrategySelection(self.control(context))

    def control(self, context: str) -> List[Tuple[StrategyEntry, float]]:
        names = self.context_strategies.get(context)
        if names:
            entries = []
            for name in names:
                try:
                    entry = self.registry.resolve(name)
                except UnknownStrategyError:
                    logger.warning(f"Context '{context}' names unknown strategy '{name}'")
                    continue
                if entry.enabled:
                    entries.append(entry)
        else:
            entries = self.registry.enabled()

        adaptive = self._adaptive_weights if self.adaptive else {}
        chosen = []
        for entry in entries:
            weight = adaptive.get(entry.name, entry.weight)
            if weight > 0:
                chosen.append((entry, weight))
        return chosen

    def _resolve_weighted(self, weights: Mapping[str, float], source: str) -> List[Tuple[StrategyEntry, float]]:
        chosen = []
        for name, weight in weights.items():
            try:
                entry = self.registry.resolve(name)
            except UnknownStrategyError:
                logger.warning(f"Unknown strategy '{name}' in {source}, skipping")
                continue
            if weight > 0:
                chosen.append((entry, float(weight)))
        chosen.sort(key=lambda item: (item[0].priority, item[0].name))
        return chosen


class AdaptiveWeightUpdater:
    """Periodic job that re-weights strategies by observed click-through.

    Each strategy's estimate is ``(clicks + 1) / (impressions + 2)``.
    Strategies with fewer than ``min_impressions`` keep their static share of
    the total; the rest of the mass is split in proportion to the estimates.
    """

    def __init__(
        self,
        selector: StrategySelector,
        tracker,
        window_seconds: float = 24 * 3600,
        interval_seconds: float = 300.0,
        min_impressions: int = 100,
    ):
        self.selector = selector
        self.tracker = tracker
        self.window_seconds = window_seconds
        self.interval_seconds = interval_seconds
        self.min_impressions = min_impressions
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def compute_weights(self) -> Optional[Dict[str, float]]:
        entries = [e for e in self.selector.registry.enabled() if e.weight > 0]
        if not entries:
            return None
        static_total = sum(e.weight for e in entries)

        estimates: Dict[str, float] = {}
        weights: Dict[str, float] = {}
        for entry in entries:
            metrics = self.tracker.snapshot("strategy", entry.name, self.window_seconds)
            if metrics.impressions >= self.min_impressions:
                estimates[entry.name] = (metrics.clicks + 1) / (metrics.impressions + 2)
            else:
                weights[entry.name] = entry.weight / static_total

        if not estimates:
            return None

        remaining = 1.0 - sum(weights.values())
        estimate_total = sum(estimates.values())
        for name, estimate in estimates.items():
            weights[name] = remaining * estimate / estimate_total
        return weights

    def run_once(self) -> Optional[Dict[str, float]]:
        weights = self.compute_weights()
        if weights is None:
            logger.debug("Adaptive weights: not enough traffic yet")
            return None
        self.selector.set_adaptive_weights(weights)
        logger.info(
            "Adaptive weights updated: "
            + ", ".join(f"{name}={weight:.3f}" for name, weight in sorted(weights.items()))
        )
        return weights

    def _run(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            try:
                self.run_once()
            except Exception:
                logger.exception("Adaptive weight update failed")

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="adaptive-weights", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
