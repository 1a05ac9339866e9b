"""
Factory for creating the recommendations module.
"""
from recommendation_service import RecommendationEngine
from .routes import create_recommendation_routes


def create_recommendations_module(engine: RecommendationEngine) -> dict:
    """
    Create the recommendations module with all its components.

    Args:
        engine: Configured RecommendationEngine instance

    Returns:
        Dictionary containing:
            - service: the engine
            - blueprint: Flask blueprint for routes
    """
    blueprint = create_recommendation_routes(engine)

    return {
        "service": engine,
        "blueprint": blueprint
    }
