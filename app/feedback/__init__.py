"""
Feedback module: intake of impression, click, play and dismiss events.
"""

from .routes import create_feedback_routes
from .factory import create_feedback_module

__all__ = ['create_feedback_routes', 'create_feedback_module']
