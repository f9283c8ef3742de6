"""Tests for SessionService lifecycle transitions."""

import pytest

from src.db.models import SessionStatus
from src.errors import (
    NotFoundError,
    PreconditionFailedError,
    SandboxError,
    SessionArchivedError,
)
from src.services.session_service import SessionService
from tests.helpers.fake_runtime import FakeExecChannel


@pytest.fixture
def service(db, runtime, supervisor) -> SessionService:
    return SessionService(db, runtime, supervisor)


class TestCreate:
    """Tests for session creation."""

    @pytest.mark.asyncio
    async def test_create_provisions_sandbox(self, service, runtime):
        session = await service.create_session("demo", "https://github.com/o/r", "dev")

        assert session.status == SessionStatus.running.value
        assert session.container_id in runtime.containers
        assert session.branch == "dev"

    @pytest.mark.asyncio
    async def test_provisioning_failure_leaves_error_session(self, service, runtime):
        runtime.fail_create = SandboxError("clone failed")

        with pytest.raises(SandboxError) as exc_info:
            await service.create_session("demo", "https://github.com/o/r")

        assert exc_info.value.code == "E-3004"
        [session] = service.list_sessions()
        assert session.status == SessionStatus.error.value
        assert "clone failed" in session.status_message


class TestQueries:
    """Tests for lookups and listing."""

    def test_require_missing_session(self, service):
        with pytest.raises(NotFoundError):
            service.require_session("missing")

    def test_list_hides_archived_by_default(self, service, make_session):
        make_session(name="live")
        make_session(name="old", status=SessionStatus.archived, container_id=None)

        assert [s.name for s in service.list_sessions()] == ["live"]
        assert len(service.list_sessions(include_archived=True)) == 2


class TestStartStop:
    """Tests for start/stop transitions."""

    @pytest.mark.asyncio
    async def test_stop_then_start(self, service, runtime, make_session):
        session = make_session()

        stopped = await service.stop_session(session.id)
        assert stopped.status == SessionStatus.stopped.value
        assert runtime.containers["ctr-test"] is False

        started = await service.start_session(session.id)
        assert started.status == SessionStatus.running.value
        assert runtime.containers["ctr-test"] is True

    @pytest.mark.asyncio
    async def test_start_running_session_is_noop(self, service, make_session):
        session = make_session()
        assert (await service.start_session(session.id)).status == SessionStatus.running.value

    @pytest.mark.asyncio
    async def test_stop_interrupts_running_agent(
        self, service, supervisor, runtime, make_session
    ):
        session = make_session()
        runtime.next_channels.append(FakeExecChannel(hold_open=True))
        await supervisor.start(session, "go")

        await service.stop_session(session.id)

        assert supervisor.is_running(session.id) is False

    @pytest.mark.asyncio
    async def test_start_creating_session_is_invalid(self, service, make_session):
        session = make_session(status=SessionStatus.creating, container_id=None)

        with pytest.raises(PreconditionFailedError) as exc_info:
            await service.start_session(session.id)
        assert exc_info.value.code == "E-1005"

    @pytest.mark.asyncio
    async def test_start_error_session_with_lost_container(self, service, make_session):
        session = make_session(status=SessionStatus.error, container_id="gone")

        with pytest.raises(SandboxError):
            await service.start_session(session.id)
        assert service.require_session(session.id).status == SessionStatus.error.value

    @pytest.mark.asyncio
    async def test_archived_session_cannot_start(self, service, make_session):
        session = make_session(status=SessionStatus.archived, container_id=None)
        with pytest.raises(SessionArchivedError):
            await service.start_session(session.id)


class TestArchive:
    """Tests for archival."""

    @pytest.mark.asyncio
    async def test_archive_removes_sandbox_and_keeps_messages(
        self, service, runtime, message_log, make_session
    ):
        session = make_session()
        message_log.append(session.id, "user", {"text": "hi"})

        archived = await service.archive_session(session.id)

        assert archived.status == SessionStatus.archived.value
        assert archived.container_id is None
        assert runtime.removed == ["ctr-test"]
        assert len(message_log.all_messages(session.id)) == 1
        assert session.id not in message_log._sequence_locks

    @pytest.mark.asyncio
    async def test_archive_is_idempotent(self, service, runtime, make_session):
        session = make_session()
        await service.archive_session(session.id)
        await service.archive_session(session.id)
        assert runtime.removed == ["ctr-test"]
