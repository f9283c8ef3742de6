"""Tests for agent control, history and stream endpoints."""

import time

from fastapi.testclient import TestClient

from src.api.dependencies import get_model_cache
from src.api.schemas import MAX_PROMPT_LENGTH
from src.services.model_suggestions import WELL_KNOWN_ALIASES, ModelSuggestionCache
from tests.helpers.fake_runtime import FakeExecChannel


def _wait_idle(client: TestClient, session_id: str, timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if not client.get(f"/api/v1/sessions/{session_id}/agent/running").json()["running"]:
            return
        time.sleep(0.02)
    raise AssertionError("agent still running")


class TestSendPrompt:
    """Tests for POST /sessions/{id}/agent/send."""

    def test_send_runs_agent_and_records_history(self, client: TestClient, created_session):
        session_id = created_session["id"]

        response = client.post(
            f"/api/v1/sessions/{session_id}/agent/send", json={"prompt": "Fix the test"}
        )
        assert response.status_code == 202
        assert response.json() == {"success": True}

        _wait_idle(client, session_id)
        history = client.get(f"/api/v1/sessions/{session_id}/agent/history").json()
        assert [m["type"] for m in history["messages"]] == ["user", "result"]
        assert [m["sequence"] for m in history["messages"]] == [0, 1]
        assert history["messages"][0]["content"]["message"]["content"] == "Fix the test"

    def test_send_to_unknown_session(self, client: TestClient):
        response = client.post("/api/v1/sessions/nope/agent/send", json={"prompt": "hi"})
        assert response.status_code == 404

    def test_send_to_stopped_session(self, client: TestClient, created_session):
        session_id = created_session["id"]
        client.post(f"/api/v1/sessions/{session_id}/stop")

        response = client.post(f"/api/v1/sessions/{session_id}/agent/send", json={"prompt": "hi"})

        assert response.status_code == 412
        assert response.json()["error_code"] == "E-1002"

    def test_empty_prompt(self, client: TestClient, created_session):
        response = client.post(
            f"/api/v1/sessions/{created_session['id']}/agent/send", json={"prompt": ""}
        )
        assert response.status_code == 400
        assert response.json()["error_code"] == "E-2001"

    def test_oversized_prompt(self, client: TestClient, created_session):
        response = client.post(
            f"/api/v1/sessions/{created_session['id']}/agent/send",
            json={"prompt": "x" * (MAX_PROMPT_LENGTH + 1)},
        )
        assert response.status_code == 400

    def test_second_send_while_running_conflicts(
        self, client: TestClient, runtime, created_session
    ):
        session_id = created_session["id"]
        runtime.next_channels.append(FakeExecChannel(hold_open=True))
        url = f"/api/v1/sessions/{session_id}/agent/send"

        assert client.post(url, json={"prompt": "one"}).status_code == 202
        assert client.get(f"/api/v1/sessions/{session_id}/agent/running").json() == {"running": True}

        second = client.post(url, json={"prompt": "two"})
        assert second.status_code == 409
        assert second.json()["error_code"] == "E-1004"

        interrupted = client.post(f"/api/v1/sessions/{session_id}/agent/interrupt")
        assert interrupted.json() == {"success": True}
        assert client.get(f"/api/v1/sessions/{session_id}/agent/running").json() == {"running": False}


class TestInterrupt:
    """Tests for POST /sessions/{id}/agent/interrupt."""

    def test_interrupt_when_idle(self, client: TestClient, created_session):
        response = client.post(f"/api/v1/sessions/{created_session['id']}/agent/interrupt")
        assert response.status_code == 200
        assert response.json() == {"success": False}

    def test_interrupt_unknown_session(self, client: TestClient):
        assert client.post("/api/v1/sessions/nope/agent/interrupt").status_code == 404


class TestHistory:
    """Tests for GET /sessions/{id}/agent/history."""

    def test_pages_walk_backwards(self, client: TestClient, app, created_session):
        session_id = created_session["id"]
        for i in range(5):
            app.state.message_log.append(session_id, "assistant", {"n": i})
        url = f"/api/v1/sessions/{session_id}/agent/history"

        newest = client.get(url, params={"limit": 2}).json()
        assert [m["sequence"] for m in newest["messages"]] == [3, 4]
        assert newest["has_more"] is True

        older = client.get(url, params={"limit": 2, "cursor": newest["next_cursor"]}).json()
        assert [m["sequence"] for m in older["messages"]] == [1, 2]

        oldest = client.get(url, params={"limit": 2, "cursor": older["next_cursor"]}).json()
        assert [m["sequence"] for m in oldest["messages"]] == [0]
        assert oldest["has_more"] is False

    def test_limit_bounds(self, client: TestClient, created_session):
        url = f"/api/v1/sessions/{created_session['id']}/agent/history"
        assert client.get(url, params={"limit": 0}).status_code == 422
        assert client.get(url, params={"limit": 101}).status_code == 422

    def test_unknown_session(self, client: TestClient):
        assert client.get("/api/v1/sessions/nope/agent/history").status_code == 404


class TestStream:
    """Tests for GET /sessions/{id}/agent/stream."""

    def test_unknown_session(self, client: TestClient):
        assert client.get("/api/v1/sessions/nope/agent/stream").status_code == 404


class TestModelSuggestions:
    """Tests for GET /models/suggestions."""

    def test_falls_back_to_aliases(self, client: TestClient, app, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        monkeypatch.delenv("CLAUDE_CODE_OAUTH_TOKEN", raising=False)
        app.dependency_overrides[get_model_cache] = lambda: ModelSuggestionCache()

        response = client.get("/api/v1/models/suggestions")

        assert response.status_code == 200
        assert response.json() == {"models": WELL_KNOWN_ALIASES}
