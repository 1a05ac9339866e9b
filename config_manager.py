"""
Configuration management for the game recommendation engine.
Handles loading, validating, and providing access to engine settings.
"""

import os
import json
import copy
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Optional
from dataclasses import dataclass, field


@dataclass
class AppConfig:
    """Web application configuration settings."""
    host: str
    port: int
    debug: bool


@dataclass
class RecommendationConfig:
    """Request-path settings for recommendation generation."""
    default_count: int
    max_count: int
    candidate_pool_size: int
    request_timeout_ms: int
    cache_ttl_seconds: float
    max_workers: int
    adaptive_weights: bool
    adaptive_window_hours: float
    adaptive_interval_seconds: float
    adaptive_min_impressions: int
    recommendation_log_ttl_seconds: float
    context_strategies: Dict[str, list] = field(default_factory=dict)


@dataclass
class StrategySettings:
    """Configuration of one scoring strategy."""
    name: str
    kind: str
    enabled: bool
    weight: float
    priority: int
    timeout_ms: int
    params: Dict[str, Any] = field(default_factory=dict)


@dataclass
class BusinessRulesConfig:
    """Assembler rules: diversification, responsible gaming, cooldown."""
    max_per_category: int
    risk_threshold: int
    max_volatility: int
    max_bet_cap: float
    cooldown_minutes: float
    min_score: float


@dataclass
class FeedbackConfig:
    """Feedback ingestion and performance tracking settings."""
    shards: int
    queue_maxsize: int
    grace_period_seconds: float
    dedup_retention_seconds: float
    dedup_max_entries: int
    bucket_seconds: float
    metrics_retention_hours: float


@dataclass
class VariantConfig:
    """One arm of an A/B experiment."""
    name: str
    traffic_units: int
    strategies: Dict[str, float]


@dataclass
class ExperimentConfig:
    """A/B experiment definition."""
    experiment_id: str
    status: str
    contexts: list
    variants: list
    start: Optional[datetime] = None
    end: Optional[datetime] = None


@dataclass
class PathsConfig:
    """Path configuration settings."""
    features_file: str
    bandit_state_file: str


class ConfigManager:
    """Manages engine configuration loading and access."""

    def __init__(self, config_file: str = "reco_config.json"):
        self.config_file = Path(config_file)
        self._config: Optional[Dict[str, Any]] = None
        self._load_config()

    def _load_config(self) -> None:
        """Load configuration from file and environment variables."""
        # Start with default config
        self._config = self._get_default_config()

        # Load base config from file
        if self.config_file.exists():
            try:
                with open(self.config_file, 'r', encoding='utf-8') as f:
                    file_config = json.load(f)
                    # Merge file config with defaults
                    self._merge_config(file_config)
            except (json.JSONDecodeError, FileNotFoundError):
                # Keep default config if file is invalid or not found
                pass

        # Override with environment variables
        self._override_with_env()

    def _get_default_config(self) -> Dict[str, Any]:
        """Get default configuration."""
        return {
            "app": {
                "host": "0.0.0.0",
                "port": 22582,
                "debug": False
            },
            "recommendation": {
                "default_count": 10,
                "max_count": 50,
                "candidate_pool_size": 200,
                "request_timeout_ms": 800,
                "cache_ttl_seconds": 30,
                "max_workers": 8,
                "adaptive_weights": False,
                "adaptive_window_hours": 24,
                "adaptive_interval_seconds": 300,
                "adaptive_min_impressions": 100,
                "recommendation_log_ttl_seconds": 86400,
                "context_strategies": {}
            },
            "strategies": {
                "collaborative_filtering": {
                    "kind": "collaborative_filtering",
                    "enabled": True,
                    "weight": 0.4,
                    "priority": 1,
                    "timeout_ms": 300,
                    "params": {"k": 20, "similarity": "cosine"}
                },
                "content_based": {
                    "kind": "content_based",
                    "enabled": True,
                    "weight": 0.3,
                    "priority": 2,
                    "timeout_ms": 200,
                    "params": {
                        "weights": {"category": 0.5, "provider": 0.3, "rtp": 0.2},
                        "rtp_tolerance": 3.0
                    }
                },
                "popularity_based": {
                    "kind": "popularity_based",
                    "enabled": True,
                    "weight": 0.2,
                    "priority": 3,
                    "timeout_ms": 100,
                    "params": {"revenue_weight": 0.3}
                },
                "bandit": {
                    "kind": "bandit",
                    "enabled": True,
                    "weight": 0.1,
                    "priority": 4,
                    "timeout_ms": 100,
                    "params": {"arm_type": "game", "explore_threshold": 10}
                },
                "external_model": {
                    "kind": "external_model",
                    "enabled": False,
                    "weight": 0.2,
                    "priority": 5,
                    "timeout_ms": 250,
                    "params": {
                        "endpoint": "",
                        "failure_threshold": 3,
                        "cooldown_seconds": 30
                    }
                }
            },
            "business_rules": {
                "max_per_category": 3,
                "risk_threshold": 3,
                "max_volatility": 3,
                "max_bet_cap": 5.0,
                "cooldown_minutes": 30,
                "min_score": 0.0
            },
            "feedback": {
                "shards": 4,
                "queue_maxsize": 10000,
                "grace_period_seconds": 1800,
                "dedup_retention_seconds": 86400,
                "dedup_max_entries": 100000,
                "bucket_seconds": 300,
                "metrics_retention_hours": 168
            },
            "experiments": [],
            "paths": {
                "features_file": "data/features.json",
                "bandit_state_file": "data/bandit_state.json"
            }
        }

    def _merge_config(self, file_config: Dict[str, Any]) -> None:
        """Merge file configuration with current config."""
        for section, values in file_config.items():
            if section in self._config and isinstance(values, dict):
                _deep_update(self._config[section], values)
            else:
                self._config[section] = values

    def _override_with_env(self) -> None:
        """Override configuration with environment variables."""
        # App settings
        if os.getenv("APP_HOST"):
            self._config["app"]["host"] = os.getenv("APP_HOST")

        if os.getenv("APP_PORT"):
            self._config["app"]["port"] = int(os.getenv("APP_PORT"))

        if os.getenv("APP_DEBUG"):
            self._config["app"]["debug"] = os.getenv("APP_DEBUG").lower() == "true"

        # Recommendation settings
        if os.getenv("RECO_MAX_COUNT"):
            self._config["recommendation"]["max_count"] = int(os.getenv("RECO_MAX_COUNT"))

        if os.getenv("RECO_DEFAULT_COUNT"):
            self._config["recommendation"]["default_count"] = int(os.getenv("RECO_DEFAULT_COUNT"))

        if os.getenv("RECO_CACHE_TTL_SECONDS"):
            self._config["recommendation"]["cache_ttl_seconds"] = float(os.getenv("RECO_CACHE_TTL_SECONDS"))

        if os.getenv("RECO_REQUEST_TIMEOUT_MS"):
            self._config["recommendation"]["request_timeout_ms"] = int(os.getenv("RECO_REQUEST_TIMEOUT_MS"))

        if os.getenv("RECO_ADAPTIVE_WEIGHTS"):
            self._config["recommendation"]["adaptive_weights"] = os.getenv("RECO_ADAPTIVE_WEIGHTS").lower() == "true"

        # Business rules
        if os.getenv("RECO_MAX_PER_CATEGORY"):
            self._config["business_rules"]["max_per_category"] = int(os.getenv("RECO_MAX_PER_CATEGORY"))

        if os.getenv("RECO_RISK_THRESHOLD"):
            self._config["business_rules"]["risk_threshold"] = int(os.getenv("RECO_RISK_THRESHOLD"))

        # External model endpoint enables the strategy
        if os.getenv("RECO_EXTERNAL_MODEL_URL"):
            external = self._config["strategies"].setdefault("external_model", {"kind": "external_model"})
            external.setdefault("params", {})["endpoint"] = os.getenv("RECO_EXTERNAL_MODEL_URL")
            external["enabled"] = True

        # Feedback and paths
        if os.getenv("FEEDBACK_SHARDS"):
            self._config["feedback"]["shards"] = int(os.getenv("FEEDBACK_SHARDS"))

        if os.getenv("RECO_FEATURES_FILE"):
            self._config["paths"]["features_file"] = os.getenv("RECO_FEATURES_FILE")

    def get_app_config(self) -> AppConfig:
        """Get application configuration."""
        app_config = self._config["app"]
        return AppConfig(
            host=app_config["host"],
            port=app_config["port"],
            debug=app_config["debug"]
        )

    def get_recommendation_config(self) -> RecommendationConfig:
        """Get recommendation request-path configuration."""
        rc = self._config["recommendation"]
        return RecommendationConfig(
            default_count=int(rc["default_count"]),
            max_count=int(rc["max_count"]),
            candidate_pool_size=int(rc["candidate_pool_size"]),
            request_timeout_ms=int(rc["request_timeout_ms"]),
            cache_ttl_seconds=float(rc["cache_ttl_seconds"]),
            max_workers=int(rc["max_workers"]),
            adaptive_weights=bool(rc["adaptive_weights"]),
            adaptive_window_hours=float(rc["adaptive_window_hours"]),
            adaptive_interval_seconds=float(rc["adaptive_interval_seconds"]),
            adaptive_min_impressions=int(rc["adaptive_min_impressions"]),
            recommendation_log_ttl_seconds=float(rc["recommendation_log_ttl_seconds"]),
            context_strategies=dict(rc.get("context_strategies") or {})
        )

    def get_strategy_settings(self) -> list[StrategySettings]:
        """Get per-strategy configuration, ordered by priority."""
        settings = []
        for name, sc in self._config["strategies"].items():
            settings.append(StrategySettings(
                name=name,
                kind=sc.get("kind", name),
                enabled=bool(sc.get("enabled", True)),
                weight=float(sc.get("weight", 0.0)),
                priority=int(sc.get("priority", 100)),
                timeout_ms=int(sc.get("timeout_ms", 200)),
                params=dict(sc.get("params") or {})
            ))
        return sorted(settings, key=lambda s: (s.priority, s.name))

    def get_business_rules_config(self) -> BusinessRulesConfig:
        """Get assembler business rules configuration."""
        br = self._config["business_rules"]
        return BusinessRulesConfig(
            max_per_category=int(br["max_per_category"]),
            risk_threshold=int(br["risk_threshold"]),
            max_volatility=int(br["max_volatility"]),
            max_bet_cap=float(br["max_bet_cap"]),
            cooldown_minutes=float(br["cooldown_minutes"]),
            min_score=float(br["min_score"])
        )

    def get_feedback_config(self) -> FeedbackConfig:
        """Get feedback ingestion configuration."""
        fc = self._config["feedback"]
        return FeedbackConfig(
            shards=int(fc["shards"]),
            queue_maxsize=int(fc["queue_maxsize"]),
            grace_period_seconds=float(fc["grace_period_seconds"]),
            dedup_retention_seconds=float(fc["dedup_retention_seconds"]),
            dedup_max_entries=int(fc["dedup_max_entries"]),
            bucket_seconds=float(fc["bucket_seconds"]),
            metrics_retention_hours=float(fc["metrics_retention_hours"])
        )

    def get_experiments(self) -> list[ExperimentConfig]:
        """Get A/B experiment definitions."""
        experiments = []
        for ec in self._config.get("experiments") or []:
            experiments.append(ExperimentConfig(
                experiment_id=ec["experiment_id"],
                status=ec.get("status", "running"),
                contexts=[c.lower() for c in ec.get("contexts", [])],
                variants=[
                    VariantConfig(
                        name=v["name"],
                        traffic_units=int(v["traffic_units"]),
                        strategies={k: float(w) for k, w in v.get("strategies", {}).items()}
                    )
                    for v in ec.get("variants", [])
                ],
                start=_parse_datetime(ec.get("start")),
                end=_parse_datetime(ec.get("end"))
            ))
        return experiments

    def get_paths_config(self) -> PathsConfig:
        """Get paths configuration."""
        paths_config = self._config["paths"]
        return PathsConfig(
            features_file=paths_config["features_file"],
            bandit_state_file=paths_config["bandit_state_file"]
        )

    def get_config(self) -> Dict[str, Any]:
        """Get raw configuration dictionary."""
        return copy.deepcopy(self._config)

    def reload(self) -> None:
        """Reload configuration from file."""
        self._load_config()

    def save_config(self) -> None:
        """Save current configuration to file."""
        with open(self.config_file, 'w', encoding='utf-8') as f:
            json.dump(self._config, f, indent=2, ensure_ascii=False)


def _deep_update(target: Dict[str, Any], values: Dict[str, Any]) -> None:
    for key, value in values.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            _deep_update(target[key], value)
        else:
            target[key] = value


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


# Global configuration instance
config_manager = ConfigManager()


def get_app_config() -> AppConfig:
    """Get application configuration."""
    return config_manager.get_app_config()


def get_recommendation_config() -> RecommendationConfig:
    """Get recommendation configuration."""
    return config_manager.get_recommendation_config()


def get_strategy_settings() -> list[StrategySettings]:
    """Get strategy configuration."""
    return config_manager.get_strategy_settings()


def get_business_rules_config() -> BusinessRulesConfig:
    """Get business rules configuration."""
    return config_manager.get_business_rules_config()


def get_feedback_config() -> FeedbackConfig:
    """Get feedback configuration."""
    return config_manager.get_feedback_config()


def get_experiments() -> list[ExperimentConfig]:
    """Get experiment definitions."""
    return config_manager.get_experiments()


def get_paths_config() -> PathsConfig:
    """Get paths configuration."""
    return config_manager.get_paths_config()


def reload_config() -> None:
    """Reload configuration."""
    config_manager.reload()


def save_config() -> None:
    """Save configuration to file."""
    config_manager.save_config()
