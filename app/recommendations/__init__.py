"""
Recommendations module: HTTP endpoints over the recommendation engine.
"""

from .routes import create_recommendation_routes
from .factory import create_recommendations_module

__all__ = ['create_recommendation_routes', 'create_recommendations_module']
