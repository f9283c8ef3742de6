"""Pytest fixtures for API tests.

Builds the application with ``create_app`` around the in-memory database
and the fake sandbox runtime, and overrides the request-scoped database
dependency to use the same engine.
"""

from collections.abc import Generator

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from src.api.main import create_app
from src.api.middleware.auth import reset_rate_limiter
from src.cli.config import AgentDockConfig, StreamConfig, SupervisorConfig
from src.db.connection import get_db
from tests.helpers.fake_runtime import FakeSandboxRuntime


@pytest.fixture
def api_config() -> AgentDockConfig:
    return AgentDockConfig(
        supervisor=SupervisorConfig(interrupt_grace_seconds=0.2),
        stream=StreamConfig(poll_interval_seconds=0.01, ping_seconds=0.05),
    )


@pytest.fixture
def app(
    session_factory: sessionmaker,
    runtime: FakeSandboxRuntime,
    api_config: AgentDockConfig,
    monkeypatch,
) -> FastAPI:
    """Application wired to the test database and fake runtime."""
    monkeypatch.delenv("AGENTDOCK_API_KEY", raising=False)
    application = create_app(
        config=api_config, runtime=runtime, session_factory=session_factory
    )

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    application.dependency_overrides[get_db] = override_get_db
    return application


@pytest.fixture
def client(app: FastAPI) -> Generator[TestClient, None, None]:
    """TestClient with the lifespan (reconciliation included) running."""
    reset_rate_limiter()
    with TestClient(app) as c:
        yield c
    reset_rate_limiter()


@pytest.fixture
def created_session(client: TestClient) -> dict:
    """A running session created through the API."""
    response = client.post(
        "/api/v1/sessions",
        json={"name": "demo", "repo_url": "https://github.com/example/repo"},
    )
    assert response.status_code == 201
    return response.json()
