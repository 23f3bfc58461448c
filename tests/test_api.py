"""API tests for the HTTP surface."""
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from minihog.ai.nl_query import NaturalLanguageQueryService
from minihog.api.main import create_app
from minihog.config import Settings


@pytest.fixture
def app(events_engine, metadata_engine):
    settings = Settings(APP_ENV="test", LOG_LEVEL="WARNING")
    return create_app(settings=settings, events_engine=events_engine, metadata_engine=metadata_engine)


@pytest.fixture
def client(app):
    return TestClient(app)


def iso(dt):
    return dt.isoformat().replace("+00:00", "Z")


def test_health_endpoint(client):
    """Test health check endpoint."""
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["data"]["stores"] == {"events": True, "metadata": True}


def test_metrics_endpoint(client):
    client.get("/api/ff", params={"key": "missing", "distinct_id": "u"})
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "flag_evaluations_total" in response.text


class TestIngestEndpoints:
    def test_batch_runs_inline_in_test_env(self, client):
        response = client.post("/api/ingest/batch", json={"events": [
            {"event": "pageview", "distinct_id": "u1"},
            {"event": "", "distinct_id": "u2"},
        ]}, headers={"User-Agent": "pytest"})
        assert response.status_code == 200
        data = response.json()["data"]
        assert (data["received"], data["processed"], data["rejected"]) == (2, 1, 1)
        assert data["task_id"] is None

        events = client.get("/api/insights/events").json()["data"]
        assert events["total"] == 1
        assert events["events"][0]["context"]["user_agent"] == "pytest"
        assert "ip_hash" in events["events"][0]["context"]

    def test_identify_and_stats(self, client):
        response = client.post("/api/ingest/identify", json={"distinct_id": "u9", "traits": {"plan": "pro"}})
        assert response.json() == {"success": True, "data": {"distinct_id": "u9"}}
        stats = client.get("/api/ingest/stats").json()["data"]
        assert stats == {"total_events": 1, "last_24h": 1}

    def test_missing_body_is_bad_request(self, client):
        response = client.post("/api/ingest/batch", json={})
        assert response.status_code == 400
        assert response.json()["success"] is False


class TestInsightsEndpoints:
    @pytest.fixture
    def seeded(self, app):
        t0 = datetime(2025, 1, 10, 9, 0, tzinfo=timezone.utc)
        app.state.events.insert_events([
            {"event": "pageview", "distinct_id": "A", "timestamp": t0},
            {"event": "pageview", "distinct_id": "B", "timestamp": t0},
            {"event": "purchase", "distinct_id": "A", "timestamp": t0 + timedelta(hours=1)},
        ])
        return t0

    def test_funnel(self, client, seeded):
        response = client.post("/api/insights/funnel", json={
            "steps": [{"event": "pageview"}, {"event": "purchase", "name": "Bought"}],
            "step_order": "strict",
            "from": iso(seeded - timedelta(days=1)),
            "to": iso(seeded + timedelta(days=1)),
        })
        assert response.status_code == 200
        data = response.json()["data"]
        assert [s["users_count"] for s in data["steps"]] == [2, 1]
        assert data["steps"][1]["name"] == "Bought"
        assert data["steps"][0]["avg_time_to_next"] == "1h"
        assert data["total_conversion_rate"] == 50.0

    def test_funnel_needs_two_steps(self, client):
        response = client.post("/api/insights/funnel", json={"steps": [{"event": "pageview"}]})
        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "Funnel must have at least 2 steps"}

    def test_invalid_step_order(self, client):
        response = client.post("/api/insights/funnel", json={"steps": [{"event": "a"}, {"event": "b"}], "step_order": "random"})
        assert response.status_code == 400

    def test_invalid_time_window(self, client):
        response = client.post("/api/insights/funnel", json={"steps": [{"event": "a"}, {"event": "b"}], "time_window": "soon"})
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid period format: soon"

    def test_out_of_range_time_window(self, client):
        response = client.post("/api/insights/funnel", json={"steps": [{"event": "a"}, {"event": "b"}], "time_window": "3000y"})
        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "Period 3000y is out of range"}

    def test_retention(self, client, seeded):
        response = client.post("/api/insights/retention", json={
            "cohort_event": "pageview",
            "period_type": "daily",
            "periods": 3,
            "from": iso(seeded - timedelta(days=1)),
            "to": iso(seeded + timedelta(days=5)),
        })
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["summary"]["total_users"] == 2
        assert data["cohorts"][0]["cohort_name"] == "Jan 10, 2025"
        assert data["cohorts"][0]["periods"][0]["percentage"] == 100.0

    def test_retention_periods_out_of_range(self, client):
        response = client.post("/api/insights/retention", json={"periods": 60})
        assert response.status_code == 400

    def test_retention_empty(self, client):
        data = client.post("/api/insights/retention", json={}).json()["data"]
        assert data["cohorts"] == []
        assert data["summary"]["total_cohorts"] == 0
        assert data["summary"]["best_cohort"] is None

    def test_top_events_and_trends(self, client, seeded):
        top = client.get("/api/insights/top-events", params={"limit": 5}).json()["data"]
        assert top["events"][0] == {"event": "pageview", "count": 2, "percentage": 66.67}
        trends = client.get("/api/insights/trends", params={
            "event_name": "pageview", "from": iso(seeded - timedelta(days=1)), "to": iso(seeded + timedelta(days=1)),
        }).json()["data"]
        assert trends["series"] == [{"timestamp": "2025-01-10", "count": 2}]

    def test_active_users_and_overview(self, client):
        assert client.get("/api/insights/active-users").json()["data"]["dau"] == 0
        overview = client.get("/api/insights/overview").json()["data"]
        assert overview["top_events"] == []

    def test_user_timeline(self, client, seeded):
        data = client.get("/api/insights/users/A/timeline").json()["data"]
        assert [e["event"] for e in data["events"]] == ["purchase", "pageview"]


class TestFlagEndpoints:
    def test_crud_and_evaluation(self, client):
        created = client.post("/api/flags", json={"key": "new-ui", "name": "New UI", "rollout_percentage": 100})
        assert created.status_code == 201
        assert created.json()["data"]["rollout_percentage"] == 100

        evaluation = client.get("/api/ff", params={"key": "new-ui", "distinct_id": "u1"}).json()["data"]
        assert evaluation["enabled"] is True
        assert evaluation["variant"] == "treatment"

        client.patch("/api/flags/new-ui", json={"rollout_percentage": 0})
        cleared_description = client.patch("/api/flags/new-ui", json={"description": None}).json()["data"]
        assert cleared_description["description"] is None
        assert cleared_description["rollout_percentage"] == 0
        again = client.get("/api/ff", params={"key": "new-ui", "distinct_id": "u1"}).json()["data"]
        assert again == {"key": "new-ui", "enabled": True, "variant": "treatment", "reason": "Sticky bucketing"}

        decision = client.get("/api/flags/new-ui/decisions/u1").json()["data"]
        assert decision["variant"] == "treatment"
        cleared = client.delete("/api/flags/new-ui/decisions").json()["data"]
        assert cleared == {"key": "new-ui", "cleared": 1}

        assert [f["key"] for f in client.get("/api/flags").json()["data"]] == ["new-ui"]
        assert client.delete("/api/flags/new-ui").status_code == 200
        assert client.get("/api/flags/new-ui").status_code == 404

    def test_duplicate_flag(self, client):
        client.post("/api/flags", json={"key": "dup", "name": "Dup"})
        response = client.post("/api/flags", json={"key": "dup", "name": "Dup"})
        assert response.status_code == 409
        assert response.json()["success"] is False

    def test_invalid_rollout(self, client):
        response = client.post("/api/flags", json={"key": "bad", "name": "Bad", "rollout_percentage": 150})
        assert response.status_code == 400

    def test_unknown_flag_evaluates_to_control(self, client):
        data = client.get("/api/ff", params={"key": "ghost", "distinct_id": "u1"}).json()["data"]
        assert data == {"key": "ghost", "enabled": False, "variant": "control", "reason": "Flag not found"}

    def test_evaluation_requires_params(self, client):
        assert client.get("/api/ff", params={"key": "x"}).status_code == 400


class TestAiEndpoint:
    def test_query(self, app, client):
        app.state.events.insert_event({"event": "pageview", "distinct_id": "u1"})
        app.state.nl_query = NaturalLanguageQueryService(app.state.events, lambda q: "SELECT COUNT(*) AS total FROM events")
        data = client.post("/api/ai/query", json={"question": "How many events?"}).json()["data"]
        assert data["results"] == [{"total": 1}]
        assert data["chart_suggestion"] == "number"
        assert data["insights"] == "Query returned 1 results."

    def test_unsafe_query(self, app, client):
        app.state.nl_query = NaturalLanguageQueryService(app.state.events, lambda q: "DROP TABLE events")
        response = client.post("/api/ai/query", json={"question": "drop it"})
        assert response.status_code == 400
        assert "DROP" in response.json()["error"]

    def test_generation_failure(self, client):
        # default generator has no API key configured
        response = client.post("/api/ai/query", json={"question": "anything"})
        assert response.status_code == 502
