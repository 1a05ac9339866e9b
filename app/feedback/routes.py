"""
Feedback Routes

Flask routes for handling interaction feedback.
"""

import json
import logging
from flask import Blueprint, request, jsonify

from recommendation_service import RecommendationEngine

logger = logging.getLogger(__name__)


def create_feedback_routes(engine: RecommendationEngine) -> Blueprint:
    """Create a Flask blueprint for feedback routes.

    Args:
        engine: RecommendationEngine that owns the feedback ingestor

    Returns:
        Flask blueprint with feedback routes
    """
    bp = Blueprint('feedback', __name__, url_prefix='/api')

    @bp.route("/feedback", methods=["POST"])
    def ingest_feedback():
        """Accept an interaction event.

        Processing happens asynchronously; the response only says whether
        the event was queued. Processing errors are never surfaced.
        """
        payload_data = request.get_json(silent=True)
        if payload_data is None:
            raw = request.get_data(as_text=True) or "{}"
            try:
                payload_data = json.loads(raw)
            except json.JSONDecodeError:
                payload_data = {}
        if not isinstance(payload_data, dict):
            payload_data = {}

        result = engine.record_feedback(payload_data)
        if result["status"] != "accepted":
            logger.debug(f"Feedback rejected: {result.get('details')}")
        return jsonify(result), 202

    return bp
