# Game recommendation engine package

from .engine import RecommendationEngine, build_engine, parse_request
from .features import FeatureProvider, InMemoryFeatureProvider
from .registry import StrategyEntry, StrategyRegistry
from .selector import (
    AdaptiveWeightUpdater,
    Experiment,
    StrategySelection,
    StrategySelector,
    Variant,
)
from .combiner import HybridCombiner
from .assembler import BusinessRules, RecommendationAssembler
from .feedback import FeedbackIngestor, ImpressionHistory, RecommendationLog
from .performance import PerformanceTracker
from .bandit_state import BanditStateStore, BetaParams
from .cache import RecommendationCache
from .errors import (
    AllStrategiesFailedError,
    ExternalModelError,
    FeedbackProcessingError,
    InvalidRequestError,
    RecommendationError,
    StrategyFailure,
    StrategyTimeoutError,
    StrategyUnavailableError,
    UnknownStrategyError,
)
from .logging_config import (
    setup_logging,
    stop_logging,
    get_logger,
    ThreadSafeLoggingConfig,
)

__all__ = [
    "RecommendationEngine",
    "build_engine",
    "parse_request",
    "FeatureProvider",
    "InMemoryFeatureProvider",
    "StrategyEntry",
    "StrategyRegistry",
    "AdaptiveWeightUpdater",
    "Experiment",
    "StrategySelection",
    "StrategySelector",
    "Variant",
    "HybridCombiner",
    "BusinessRules",
    "RecommendationAssembler",
    "FeedbackIngestor",
    "ImpressionHistory",
    "RecommendationLog",
    "PerformanceTracker",
    "BanditStateStore",
    "BetaParams",
    "RecommendationCache",
    "AllStrategiesFailedError",
    "ExternalModelError",
    "FeedbackProcessingError",
    "InvalidRequestError",
    "RecommendationError",
    "StrategyFailure",
    "StrategyTimeoutError",
    "StrategyUnavailableError",
    "UnknownStrategyError",
    "setup_logging",
    "stop_logging",
    "get_logger",
    "ThreadSafeLoggingConfig",
]
