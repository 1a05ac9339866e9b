"""
Adapter for an out-of-process prediction model.

The model is an opaque capability reached over a fixed feature-vector
contract. Everything it returns is treated as untrusted input: malformed
responses fail the strategy, out-of-range predictions drop the candidate.
Repeated failures open a circuit breaker so a sick model cannot add latency
to every request.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from typing import Callable, List, Optional, Protocol, Sequence

import requests

from ..errors import ExternalModelError, StrategyTimeoutError, StrategyUnavailableError
from ..models import GameFeatures, PlayerFeatures, ScoredCandidate
from .base import StrategyContext, StrategyKind, sort_candidates

logger = logging.getLogger(__name__)

# Order is part of the contract with the model server; append only.
FEATURE_NAMES = (
    "avg_bet_size",
    "session_count",
    "days_since_last_play",
    "risk_level",
    "vip_tier",
    "category_affinity",
    "provider_affinity",
    "rtp_distance",
    "volatility",
    "rtp",
    "popularity_score",
    "play_count",
    "revenue_score",
    "release_days",
    "is_mobile",
    "is_desktop",
    "min_bet",
    "hour_of_day",
    "mobile_device",
)


def build_feature_vector(
    player: PlayerFeatures, game: GameFeatures, context: StrategyContext
) -> List[float]:
    factors = context.contextual_factors or {}
    top_category = max(player.favorite_categories.values(), default=0.0)
    top_provider = max(player.favorite_providers.values(), default=0.0)
    rtp_distance = abs(game.rtp - player.preferred_rtp) if player.preferred_rtp is not None else -1.0
    try:
        hour = float(factors.get("hour_of_day", -1))
    except (TypeError, ValueError):
        hour = -1.0
    vector = [
        player.avg_bet_size,
        player.session_count,
        player.days_since_last_play,
        player.risk_level,
        player.vip_tier,
        player.favorite_categories.get(game.category, 0.0) / top_category if top_category else 0.0,
        player.favorite_providers.get(game.provider, 0.0) / top_provider if top_provider else 0.0,
        rtp_distance,
        game.volatility,
        game.rtp,
        game.popularity_score,
        game.play_count,
        game.revenue_score,
        game.release_days,
        1.0 if game.is_mobile else 0.0,
        1.0 if game.is_desktop else 0.0,
        game.min_bet,
        hour,
        1.0 if str(factors.get("device", "")).lower() == "mobile" else 0.0,
    ]
    return [float(value) for value in vector]


class ModelPredictor(Protocol):
    """Prediction interface of the external model."""

    def predict(self, vectors: Sequence[Sequence[float]], timeout: Optional[float]) -> Sequence[float]:
        """Return one prediction per input vector."""


class HttpModelPredictor:
    """Predictor served over HTTP: POST ``{"instances": [...]}``, read ``{"predictions": [...]}``."""

    def __init__(self, endpoint: str, session: Optional[requests.Session] = None, default_timeout: float = 0.5):
        self.endpoint = endpoint
        self.session = session or requests.Session()
        self.default_timeout = default_timeout

    def predict(self, vectors: Sequence[Sequence[float]], timeout: Optional[float]) -> Sequence[float]:
        if timeout is None:
            timeout = self.default_timeout
        elif timeout <= 0:
            raise ExternalModelError("external_model", "deadline passed before the request was sent")
        try:
            resp = self.session.post(
                self.endpoint,
                json={"feature_names": list(FEATURE_NAMES), "instances": [list(v) for v in vectors]},
                timeout=timeout,
            )
            resp.raise_for_status()
            payload = resp.json()
        except requests.exceptions.RequestException as exc:
            raise ExternalModelError("external_model", f"request failed: {exc}") from exc
        except ValueError as exc:
            raise ExternalModelError("external_model", f"response is not JSON: {exc}") from exc

        predictions = payload.get("predictions") if isinstance(payload, dict) else None
        if not isinstance(predictions, list):
            raise ExternalModelError("external_model", "response has no 'predictions' list")
        return predictions


class CircuitBreaker:
    """Consecutive-failure circuit breaker with a single half-open trial."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(
        self,
        failure_threshold: int = 3,
        cooldown_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = max(1, failure_threshold)
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._failures = 0
        self._opened_at: Optional[float] = None
        self._trial_in_flight = False

    @property
    def state(self) -> str:
        with self._lock:
            return self._state_locked()

    def _state_locked(self) -> str:
        if self._opened_at is None:
            return self.CLOSED
        if self._clock() - self._opened_at >= self.cooldown_seconds:
            return self.HALF_OPEN
        return self.OPEN

    def allow_request(self) -> bool:
        with self._lock:
            state = self._state_locked()
            if state == self.CLOSED:
                return True
            if state == self.HALF_OPEN and not self._trial_in_flight:
                self._trial_in_flight = True
                return True
            return False

    def record_success(self) -> None:
        with self._lock:
            self._failures = 0
            self._opened_at = None
            self._trial_in_flight = False

    def record_failure(self) -> None:
        with self._lock:
            self._failures += 1
            self._trial_in_flight = False
            if self._opened_at is not None or self._failures >= self.failure_threshold:
                self._opened_at = self._clock()


class ExternalModelStrategy:
    """Scores candidates with the external model's predicted engagement."""

    kind = StrategyKind.EXTERNAL_MODEL

    def __init__(
        self,
        predictor: ModelPredictor,
        name: str = "external_model",
        breaker: Optional[CircuitBreaker] = None,
    ):
        self.name = name
        self.predictor = predictor
        self.breaker = breaker or CircuitBreaker()

    def score(
        self,
        player: PlayerFeatures,
        games: Sequence[GameFeatures],
        context: StrategyContext,
    ) -> List[ScoredCandidate]:
        if not games:
            return []
        if context.expired():
            raise StrategyTimeoutError(self.name, "deadline passed before the model call")
        if not self.breaker.allow_request():
            raise StrategyUnavailableError(self.name, "circuit breaker open")

        vectors = [build_feature_vector(player, game, context) for game in games]
        try:
            predictions = list(self.predictor.predict(vectors, timeout=context.remaining()))
            if len(predictions) != len(games):
                raise ExternalModelError(
                    self.name, f"expected {len(games)} predictions, got {len(predictions)}"
                )
        except Exception:
            self.breaker.record_failure()
            raise
        self.breaker.record_success()

        candidates = []
        dropped = 0
        for game, raw in zip(games, predictions):
            try:
                value = float(raw)
            except (TypeError, ValueError):
                dropped += 1
                continue
            if not math.isfinite(value) or value < 0.0 or value > 1.0:
                dropped += 1
                continue
            candidates.append(ScoredCandidate(
                game_id=game.game_id,
                score=value,
                strategy_name=self.name,
                explanation_tags=("model_prediction",),
            ))
        if dropped:
            logger.warning(f"External model returned {dropped} unusable predictions; candidates omitted")
        return sort_candidates(candidates)
