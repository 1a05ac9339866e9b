"""
Strategy registry: the configured set of strategies and their static weights.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from .errors import UnknownStrategyError
from .strategies import RecommendationStrategy, StrategyDependencies, StrategyKind, build_strategy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StrategyEntry:
    """A configured strategy instance plus its selection metadata."""

    name: str
    kind: StrategyKind
    strategy: RecommendationStrategy
    weight: float = 1.0
    priority: int = 100
    enabled: bool = True
    timeout_ms: int = 200


class StrategyRegistry:
    """Lookup of configured strategies by name."""

    def __init__(self, entries: Optional[Iterable[StrategyEntry]] = None):
        self._entries: Dict[str, StrategyEntry] = {}
        for entry in entries or []:
            self.register(entry)

    def register(self, entry: StrategyEntry) -> None:
        if entry.name in self._entries:
            raise ValueError(f"strategy '{entry.name}' is already registered")
        if entry.weight < 0:
            raise ValueError(f"strategy '{entry.name}' has a negative weight")
        self._entries[entry.name] = entry

    def resolve(self, name: str) -> StrategyEntry:
        try:
            return self._entries[name]
        except KeyError:
            raise UnknownStrategyError(name) from None

    def __contains__(self, name: str) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def names(self) -> List[str]:
        return sorted(self._entries)

    def enabled(self) -> List[StrategyEntry]:
        """Enabled entries ordered by priority, then name."""
        return sorted(
            (e for e in self._entries.values() if e.enabled),
            key=lambda e: (e.priority, e.name),
        )

    @classmethod
    def from_config(cls, settings, deps: StrategyDependencies) -> "StrategyRegistry":
        """Build the registry from ``StrategySettings`` records.

        A disabled strategy that cannot be constructed (for example an external
        model with no endpoint) is skipped. An enabled one is a configuration
        error and raises.
        """
        registry = cls()
        for s in settings:
            try:
                strategy = build_strategy(s.kind, deps, name=s.name, params=s.params)
            except ValueError:
                if s.enabled:
                    raise
                logger.info(f"Skipping disabled strategy '{s.name}': not constructible")
                continue
            registry.register(StrategyEntry(
                name=s.name,
                kind=StrategyKind(s.kind),
                strategy=strategy,
                weight=s.weight,
                priority=s.priority,
                enabled=s.enabled,
                timeout_ms=s.timeout_ms,
            ))
        logger.info(f"Strategy registry loaded: {', '.join(e.name for e in registry.enabled()) or 'none enabled'}")
        return registry
