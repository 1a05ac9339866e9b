"""
Tests for the Flask HTTP layer.
"""

import pytest

from app.main import create_app
from recommendation_service.bandit_state import BanditStateStore
from recommendation_service.engine import RecommendationEngine
from recommendation_service.registry import StrategyEntry, StrategyRegistry
from recommendation_service.strategies import BanditStrategy, ContentBasedStrategy, PopularityBasedStrategy


class TestRecommendationApi:

    @pytest.fixture
    def engine(self, provider):
        state = BanditStateStore()
        registry = StrategyRegistry([
            StrategyEntry("content_based", ContentBasedStrategy().kind, ContentBasedStrategy(), weight=0.5, priority=1),
            StrategyEntry("popularity_based", PopularityBasedStrategy().kind, PopularityBasedStrategy(), weight=0.3, priority=2),
            StrategyEntry("bandit", BanditStrategy(state).kind, BanditStrategy(state), weight=0.2, priority=3),
        ])
        engine = RecommendationEngine(provider, registry, bandit_state=state, default_count=4)
        engine.start()
        yield engine
        engine.close()

    @pytest.fixture
    def client(self, engine):
        flask_app = create_app(engine)
        flask_app.config["TESTING"] = True
        return flask_app.test_client()

    def test_generate(self, client):
        resp = client.post("/api/recommendations/generate", json={
            "playerId": 10,
            "context": "lobby",
            "count": 3,
            "excludeGameIds": [2],
            "requestId": "abc",
        })
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["playerId"] == 10
        assert data["requestId"] == "abc"
        assert len(data["recommendations"]) == 3
        first = data["recommendations"][0]
        assert set(first) == {"recommendationId", "gameId", "score", "algorithm", "rank", "reasons", "category"}
        assert first["recommendationId"] == f"abc:{first['gameId']}"
        assert all(r["gameId"] != 2 for r in data["recommendations"])
        assert set(data["metadata"]) == {
            "processingTimeMs", "algorithmsUsed", "abVariant", "experimentId", "featureVersion", "fallback", "cached",
        }

    def test_generate_invalid_body(self, client):
        resp = client.post("/api/recommendations/generate", json={"playerId": -1, "count": 0})
        assert resp.status_code == 400
        data = resp.get_json()
        assert data["error"] == "invalid-request"
        assert {d["field"] for d in data["details"]} == {"playerId", "count"}

    def test_generate_count_over_maximum(self, client):
        resp = client.post("/api/recommendations/generate", json={"playerId": 10, "count": 500})
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "invalid-request"

    def test_generate_non_json_body(self, client):
        resp = client.post("/api/recommendations/generate", data="nope", content_type="text/plain")
        assert resp.status_code == 400

    def test_player_endpoint(self, client):
        resp = client.get("/api/recommendations/player/10?context=post_game&exclude=1,3&device=mobile")
        assert resp.status_code == 200
        data = resp.get_json()
        ids = {r["gameId"] for r in data["recommendations"]}
        assert len(ids) == 4
        assert not ids & {1, 3, 6}

    def test_player_endpoint_bad_count(self, client):
        assert client.get("/api/recommendations/player/10?count=abc").status_code == 400
        assert client.get("/api/recommendations/player/10?exclude=a,b").status_code == 400

    def test_similar_and_trending(self, client):
        similar = client.get("/api/recommendations/similar/1?count=2").get_json()
        assert similar["count"] == 2
        assert similar["games"][0]["gameId"] == 2

        trending = client.get("/api/recommendations/trending?count=3").get_json()
        assert [g["gameId"] for g in trending["games"]] == [1, 2, 3]

        assert client.get("/api/recommendations/similar/404").status_code == 400

    def test_feedback_and_performance(self, client, engine):
        rec = client.post("/api/recommendations/generate", json={"playerId": 10, "count": 1}).get_json()
        rec_id = rec["recommendations"][0]["recommendationId"]
        game_id = rec["recommendations"][0]["gameId"]

        for event_type in ("impression", "click"):
            resp = client.post("/api/feedback", json={
                "recommendationId": rec_id,
                "playerId": 10,
                "gameId": game_id,
                "eventType": event_type,
            })
            assert resp.status_code == 202
            assert resp.get_json() == {"status": "accepted"}
        engine.ingestor.drain()

        perf = client.get("/api/recommendations/performance?dimension=strategy&window_hours=1").get_json()
        by_key = {m["key"]: m for m in perf["metrics"]}
        used = rec["metadata"]["algorithmsUsed"]
        assert any(by_key.get(name, {}).get("clicks") == 1 for name in used)

        ranking = client.get("/api/recommendations/strategies/ranking?window_hours=1").get_json()
        assert ranking["ranking"]
        assert ranking["ranking"][0]["rank"] == 1

    def test_feedback_rejections_still_return_202(self, client):
        resp = client.post("/api/feedback", json={"recommendationId": "x", "playerId": 10, "gameId": 1, "eventType": "purchase"})
        assert resp.status_code == 202
        assert resp.get_json()["status"] == "rejected"

        resp = client.post("/api/feedback", data="garbage", content_type="text/plain")
        assert resp.status_code == 202
        assert resp.get_json()["status"] == "rejected"

    def test_performance_validation(self, client):
        assert client.get("/api/recommendations/performance?dimension=player").status_code == 400
        assert client.get("/api/recommendations/performance?window_hours=-1").status_code == 400
        assert client.get("/api/recommendations/strategies/ranking?window_hours=x").status_code == 400

    def test_health(self, client):
        data = client.get("/api/health").get_json()
        assert data["status"] == "ok"
        assert data["strategies"] == ["content_based", "popularity_based", "bandit"]
        assert data["feedbackRunning"] is True
        assert set(data["feedbackStats"]) == {"processed", "duplicates", "errors", "rejected"}
