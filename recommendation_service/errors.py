"""
Error taxonomy for the recommendation engine.

Strategy-level failures are recovered locally by the engine (the strategy is
excluded from the request). Request-level validation errors are raised to the
caller before any scoring happens. Feedback errors never leave the ingestor.
"""

from typing import Any, List, Optional


class RecommendationError(Exception):
    """Base class for all engine errors."""


class InvalidRequestError(RecommendationError):
    """Malformed or out-of-range request fields."""

    def __init__(self, message: str, details: Optional[List[Any]] = None):
        super().__init__(message)
        self.details = details or []

    def to_dict(self) -> dict:
        return {"error": "invalid-request", "message": str(self), "details": self.details}


class StrategyFailure(RecommendationError):
    """A single strategy raised or could not produce a result."""

    def __init__(self, strategy_name: str, message: str):
        super().__init__(f"{strategy_name}: {message}")
        self.strategy_name = strategy_name


class StrategyTimeoutError(StrategyFailure):
    """A strategy did not finish before its deadline."""


class StrategyUnavailableError(StrategyFailure):
    """A strategy is temporarily disabled (circuit breaker open)."""


class ExternalModelError(StrategyFailure):
    """The out-of-process predictor failed or returned an unusable response."""


class AllStrategiesFailedError(RecommendationError):
    """No selected strategy produced candidates for the request."""

    def __init__(self, failures: List[str]):
        super().__init__("all strategies failed: " + ", ".join(failures or ["<none selected>"]))
        self.failures = failures


class FeedbackProcessingError(RecommendationError):
    """An interaction event could not be applied."""


class UnknownStrategyError(KeyError, RecommendationError):
    """Registry lookup for a strategy name that is not configured."""

    def __init__(self, name: str):
        super().__init__(name)
        self.name = name

    def __str__(self) -> str:
        return f"unknown strategy '{self.name}'"
