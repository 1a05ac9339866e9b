"""
Recommendation routes for API endpoints.
"""
from flask import Blueprint, jsonify, request

from recommendation_service import InvalidRequestError, RecommendationEngine

DIMENSIONS = ("strategy", "category")


def _int_arg(name: str, default: int) -> int:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise InvalidRequestError(f"'{name}' must be an integer", [{"field": name, "message": "not an integer"}])


def _window_hours() -> float:
    raw = request.args.get('window_hours', '24')
    try:
        hours = float(raw)
    except ValueError:
        hours = 0.0
    if hours <= 0:
        raise InvalidRequestError("'window_hours' must be a positive number",
                                  [{"field": "window_hours", "message": "must be > 0"}])
    return hours


def create_recommendation_routes(engine: RecommendationEngine) -> Blueprint:
    """Create recommendation routes blueprint."""
    bp = Blueprint('recommendations', __name__, url_prefix='/api/recommendations')

    @bp.errorhandler(InvalidRequestError)
    def handle_invalid_request(exc: InvalidRequestError):
        return jsonify(exc.to_dict()), 400

    @bp.route('/generate', methods=['POST'])
    def generate():
        """
        Generate recommendations from a JSON body.

        Body (camelCase): playerId, context, count, excludeGameIds,
        contextualFactors, requestId, deadlineMs.
        """
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            raise InvalidRequestError("request body must be a JSON object")

        rec_request = engine.parse(payload)
        response = engine.generate(rec_request)
        return jsonify(response.to_dict())

    @bp.route('/player/<int:player_id>', methods=['GET'])
    def for_player(player_id: int):
        """
        Generate recommendations for a player from query parameters.

        Query parameters:
            - context: Placement tag (default lobby)
            - count: Number of recommendations (default from config)
            - exclude: Comma separated game ids to leave out
            - device: mobile or desktop
        """
        body = {
            "playerId": player_id,
            "context": request.args.get('context', 'lobby'),
            "count": _int_arg('count', engine.default_count),
        }
        exclude = request.args.get('exclude', '')
        if exclude:
            try:
                body["excludeGameIds"] = [int(part) for part in exclude.split(',') if part.strip()]
            except ValueError:
                raise InvalidRequestError("'exclude' must be comma separated game ids",
                                          [{"field": "exclude", "message": "not an integer list"}])
        if request.args.get('device'):
            body["contextualFactors"] = {"device": request.args['device']}

        response = engine.generate(engine.parse(body))
        return jsonify(response.to_dict())

    @bp.route('/similar/<int:game_id>', methods=['GET'])
    def similar(game_id: int):
        """Games similar to the given game."""
        count = _int_arg('count', engine.default_count)
        games = engine.similar_games(game_id, count)
        return jsonify({"gameId": game_id, "games": games, "count": len(games)})

    @bp.route('/trending', methods=['GET'])
    def trending():
        """Most popular games in the current feature window."""
        count = _int_arg('count', engine.default_count)
        games = engine.trending_games(count)
        return jsonify({"games": games, "count": len(games)})

    @bp.route('/performance', methods=['GET'])
    def performance():
        """
        Performance counters.

        Query parameters:
            - dimension: strategy or category (default strategy)
            - key: A single strategy or category (default all)
            - window_hours: Window to aggregate (default 24)
        """
        dimension = request.args.get('dimension', 'strategy')
        if dimension not in DIMENSIONS:
            raise InvalidRequestError(f"'dimension' must be one of {list(DIMENSIONS)}",
                                      [{"field": "dimension", "message": "unsupported dimension"}])
        hours = _window_hours()
        metrics = engine.performance(dimension, request.args.get('key') or None, hours)
        return jsonify({"dimension": dimension, "window_hours": hours, "metrics": metrics})

    @bp.route('/strategies/ranking', methods=['GET'])
    def strategy_ranking():
        """Strategies ranked by blended conversion, CTR, revenue and coverage."""
        hours = _window_hours()
        return jsonify({"window_hours": hours, "ranking": engine.strategy_ranking(hours)})

    return bp
