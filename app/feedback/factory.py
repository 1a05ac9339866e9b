"""
Factory for creating the feedback module.
"""
from recommendation_service import RecommendationEngine
from .routes import create_feedback_routes


def create_feedback_module(engine: RecommendationEngine) -> dict:
    """
    Create the feedback module with all its components.

    Args:
        engine: RecommendationEngine whose ingestor receives the events

    Returns:
        Dictionary containing:
            - service: the engine's FeedbackIngestor
            - blueprint: Flask blueprint for routes
    """
    blueprint = create_feedback_routes(engine)

    return {
        "service": engine.ingestor,
        "blueprint": blueprint
    }
