"""Root-level pytest fixtures for all tests.

Provides shared fixtures for service-level testing:
- In-memory SQLite session factory
- Message log, process registry and supervisor wired to a fake runtime
- Session row factory
"""

from collections.abc import Callable, Generator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from src.cli.config import SupervisorConfig
from src.db.models import AgentSession, Base, SessionStatus
from src.services.message_log import MessageLog
from src.services.process_registry import ProcessRegistry
from src.services.process_supervisor import ProcessSupervisor
from tests.helpers.fake_runtime import FakeSandboxRuntime


# ============================================================================
# Pytest Markers
# ============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests requiring a Docker daemon"
    )
    config.addinivalue_line(
        "markers", "slow: marks tests that take a long time to run"
    )


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
def session_factory() -> Generator[sessionmaker, None, None]:
    """In-memory SQLite shared across sessions via StaticPool."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(
        autocommit=False, autoflush=False, expire_on_commit=False, bind=engine
    )
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory: sessionmaker) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_session(db: Session) -> Callable[..., AgentSession]:
    """Factory inserting an AgentSession row.

    Defaults to a running session bound to container ``ctr-test``.
    """

    def _make(
        status: SessionStatus = SessionStatus.running,
        container_id: str | None = "ctr-test",
        name: str = "test session",
    ) -> AgentSession:
        session = AgentSession(
            name=name,
            repo_url="https://github.com/example/repo",
            branch="main",
            status=status.value,
            container_id=container_id,
        )
        db.add(session)
        db.commit()
        db.refresh(session)
        return session

    return _make


# ============================================================================
# Service Fixtures
# ============================================================================


@pytest.fixture
def message_log(session_factory: sessionmaker) -> MessageLog:
    return MessageLog(session_factory)


@pytest.fixture
def runtime() -> FakeSandboxRuntime:
    fake = FakeSandboxRuntime()
    fake.add_container("ctr-test")
    return fake


@pytest.fixture
def registry() -> ProcessRegistry:
    return ProcessRegistry()


@pytest.fixture
def supervisor_config() -> SupervisorConfig:
    return SupervisorConfig(
        agent_command=["claude", "-p", "--output-format", "stream-json"],
        interrupt_grace_seconds=0.2,
    )


@pytest.fixture
def supervisor(
    registry: ProcessRegistry,
    runtime: FakeSandboxRuntime,
    message_log: MessageLog,
    supervisor_config: SupervisorConfig,
) -> ProcessSupervisor:
    return ProcessSupervisor(registry, runtime, message_log, supervisor_config)

