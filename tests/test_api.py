"""Tests for API routes."""
from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from deep_research.api.routes import research as research_routes
from deep_research.models.research import QueryComplexity
from deep_research.services import streaming

RESEARCH_QUERY = "Please do a deep dive into grid-scale battery storage economics"


@pytest.fixture(autouse=True)
def reset_sse_app_status():
    # sse-starlette keeps a module-level exit event bound to the first event loop.
    from sse_starlette.sse import AppStatus

    if hasattr(AppStatus, "should_exit_event"):
        AppStatus.should_exit_event = None
    yield


@pytest.fixture
def app():
    from deep_research.main import app
    return app


@pytest.fixture
def client(app):
    from fastapi.testclient import TestClient
    return TestClient(app)


@pytest.fixture
def configured_keys():
    settings = research_routes.settings
    with (
        patch.object(settings, "openrouter_api_key", "sk-or-test"),
        patch.object(settings, "search_provider", "perplexity"),
        patch.object(settings, "perplexity_api_key", "pplx-test"),
        patch.object(settings, "stream_delay_ms", 0),
    ):
        yield settings


class _FakeOrchestrator:
    instances: list["_FakeOrchestrator"] = []

    def __init__(self, config):
        self.config = config
        self.session_id = "sess-1"
        self.calls: list[tuple] = []
        _FakeOrchestrator.instances.append(self)

    async def research(self, query, force_complexity=None):
        self.calls.append((query, force_complexity))
        yield streaming.research_start(self.session_id, query, 30)
        yield streaming.research_complete({"status": "completed", "sessionId": self.session_id})


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["service"] == "deep-research"


def test_empty_query_is_rejected(client):
    response = client.post("/api/research", json={"query": "   ", "forceDeepResearch": True})
    assert response.status_code == 400


def test_overlong_query_is_rejected(client):
    response = client.post("/api/research", json={"query": "research " * 300, "forceDeepResearch": True})
    assert response.status_code == 400


def test_non_research_query_is_rejected_without_force(client, configured_keys):
    response = client.post("/api/research", json={"query": "Tell me about solar panels please"})
    assert response.status_code == 422


def test_missing_api_keys_return_503(client):
    settings = research_routes.settings
    with (
        patch.object(settings, "openrouter_api_key", ""),
        patch.object(settings, "search_provider", "perplexity"),
        patch.object(settings, "perplexity_api_key", ""),
    ):
        response = client.post("/api/research", json={"query": RESEARCH_QUERY})
    assert response.status_code == 503


def test_invalid_max_cost_is_rejected(client, configured_keys):
    response = client.post(
        "/api/research",
        json={"query": RESEARCH_QUERY, "options": {"maxCost": 0}},
    )
    assert response.status_code == 422


def test_research_streams_events_with_request_options(client, configured_keys):
    with patch.object(research_routes, "ResearchOrchestrator", _FakeOrchestrator):
        response = client.post(
            "/api/research",
            json={
                "query": "Tell me about solar panels please",
                "forceDeepResearch": True,
                "options": {"maxCost": 0.1, "skipRound2": True, "forceComplexity": "complex"},
            },
        )

    assert response.status_code == 200
    assert "event: research_start" in response.text
    assert "event: research_complete" in response.text

    orchestrator = _FakeOrchestrator.instances[-1]
    assert orchestrator.config.max_total_cost == 0.1
    assert orchestrator.config.skip_round2 is True
    assert orchestrator.calls == [("Tell me about solar panels please", QueryComplexity.COMPLEX)]


def test_request_max_cost_is_capped_at_configured_ceiling(client, configured_keys):
    with (
        patch.object(research_routes.settings, "research_max_total_cost", 0.5),
        patch.object(research_routes, "ResearchOrchestrator", _FakeOrchestrator),
    ):
        response = client.post(
            "/api/research",
            json={"query": RESEARCH_QUERY, "options": {"maxCost": 25.0}},
        )

    assert response.status_code == 200
    assert _FakeOrchestrator.instances[-1].config.max_total_cost == 0.5


def test_estimate_makes_no_external_calls(client):
    response = client.post(
        "/api/research/estimate",
        json={"query": "Analyze the impact of remote work on commercial real estate"},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["complexity"] == "complex"
    assert data["matched_keywords"] == ["analyze", "impact of"]
    assert data["estimated_time_s"] == 60
    assert data["suggested_tier"] == "pro"
    assert data["estimated_cost_usd"] == pytest.approx((5 * 0.02 + 0.0345) * 1.5, abs=1e-4)
    assert data["should_trigger_research"] is False


def test_estimate_respects_use_pro_model(client):
    response = client.post(
        "/api/research/estimate",
        json={"query": "Analyze the impact of remote work on commercial real estate", "useProModel": False},
    )
    assert response.json()["estimated_cost_usd"] == pytest.approx((5 * 0.005 + 0.0345) * 1.5, abs=1e-4)


def test_session_lookup_requires_persistence(client):
    with patch("deep_research.api.routes.research.db.is_configured", return_value=False):
        response = client.get("/api/research/sessions/abc")
    assert response.status_code == 503


def test_session_lookup_not_found(client):
    with (
        patch("deep_research.api.routes.research.db.is_configured", return_value=True),
        patch("deep_research.api.routes.research.db.fetch_session", new=AsyncMock(return_value=None)),
    ):
        response = client.get("/api/research/sessions/abc")
    assert response.status_code == 404


def test_session_lookup_returns_record(client):
    record = {
        "session": {"id": "abc", "status": "completed"},
        "plans": [{"round": 1, "sub_questions": []}],
        "notes": [],
        "gaps": [],
        "metrics": {"total_queries": 3},
    }
    with (
        patch("deep_research.api.routes.research.db.is_configured", return_value=True),
        patch("deep_research.api.routes.research.db.fetch_session", new=AsyncMock(return_value=record)),
    ):
        response = client.get("/api/research/sessions/abc")

    assert response.status_code == 200
    assert response.json()["session"]["status"] == "completed"
    assert response.json()["metrics"] == {"total_queries": 3}
