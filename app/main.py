import argparse
import atexit
from pathlib import Path
from typing import Optional

# Import configuration management
import sys
sys.path.append(str(Path(__file__).parent.parent))
from config_manager import ConfigManager

from flask import Flask, jsonify
from werkzeug.middleware.proxy_fix import ProxyFix

from recommendation_service import (
    InMemoryFeatureProvider,
    RecommendationEngine,
    build_engine,
    get_logger,
    setup_logging,
)
from app.recommendations.factory import create_recommendations_module
from app.feedback.factory import create_feedback_module

logger = get_logger(__name__)

# -----------------------------------------------------------------------------
# Configuration
# -----------------------------------------------------------------------------

# Load configuration
config_manager = ConfigManager()
paths_config = config_manager.get_paths_config()
app_config = config_manager.get_app_config()
recommendation_config = config_manager.get_recommendation_config()

BASE_DIR = Path(__file__).parent.parent
FEATURES_FILE = BASE_DIR / paths_config.features_file
BANDIT_STATE_FILE = BASE_DIR / paths_config.bandit_state_file


def create_engine() -> RecommendationEngine:
    """Build the engine from the loaded configuration and feature export."""
    features = InMemoryFeatureProvider.from_json_file(FEATURES_FILE)
    engine = build_engine(
        features,
        recommendation_config,
        config_manager.get_strategy_settings(),
        config_manager.get_business_rules_config(),
        config_manager.get_feedback_config(),
        experiments=config_manager.get_experiments(),
    )
    engine.load_bandit_state(BANDIT_STATE_FILE)
    return engine


# -----------------------------------------------------------------------------
# Application factory
# -----------------------------------------------------------------------------

def create_app(engine: Optional[RecommendationEngine] = None) -> Flask:
    """Create the Flask application around ``engine``.

    Without an engine one is built from configuration and started.
    """
    if engine is None:
        engine = create_engine()
        engine.start()

    flask_app = Flask(__name__)
    flask_app.wsgi_app = ProxyFix(
            flask_app.wsgi_app,
            x_proto = 1,     # trust 1 hop for X-Forwarded-Proto
            x_host  = 1,     # trust 1 hop for X-Forwarded-Host
            x_prefix= 1)     # <-- pay attention to X-Forwarded-Prefix
    flask_app.config["RECOMMENDATION_ENGINE"] = engine

    recommendations_module = create_recommendations_module(engine)
    feedback_module = create_feedback_module(engine)
    flask_app.register_blueprint(recommendations_module["blueprint"])
    flask_app.register_blueprint(feedback_module["blueprint"])

    @flask_app.route("/api/health")
    def health():
        snapshot = engine.features.get_snapshot()
        return jsonify({
            "status": "ok",
            "featureVersion": snapshot.version,
            "games": len(snapshot.games),
            "strategies": [entry.name for entry in engine.registry.enabled()],
            "feedbackRunning": engine.ingestor.running,
            "feedbackStats": engine.ingestor.stats_snapshot(),
        })

    return flask_app


app = create_app()
engine: RecommendationEngine = app.config["RECOMMENDATION_ENGINE"]


def _shutdown() -> None:
    engine.close()
    if len(engine.bandit_state):
        engine.save_bandit_state(BANDIT_STATE_FILE)


atexit.register(_shutdown)

# -----------------------------------------------------------------------------
# Entry point
# -----------------------------------------------------------------------------

if __name__ == "__main__":
    # Parse command line arguments
    parser = argparse.ArgumentParser(description="Game recommendation API server")
    parser.add_argument("--port", type=int, help="Port to run the server on")
    parser.add_argument("--host", type=str, help="Host to bind the server to")
    parser.add_argument("--debug", action="store_true", help="Enable debug mode")
    args = parser.parse_args()

    # Override configuration with command line arguments
    if args.port:
        app_config.port = args.port
    if args.host:
        app_config.host = args.host
    if args.debug:
        app_config.debug = args.debug

    setup_logging(app_config.debug)
    snapshot = engine.features.get_snapshot()
    logger.info(f"Serving recommendations for {len(snapshot.games)} games from {FEATURES_FILE}")
    logger.info(f"Strategies: {', '.join(e.name for e in engine.registry.enabled())}")
    logger.info(f"Server: {app_config.host}:{app_config.port}")
    app.run(
        host=app_config.host,
        port=app_config.port,
        debug=app_config.debug
    )
