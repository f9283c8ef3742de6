"""Session lifecycle service.

Creates sessions and their sandboxes, moves them between running and
stopped, and archives them. Thin layer between the sessions routes and the
``sessions`` table; sandbox work is delegated to the ``SandboxRuntime`` and
agent teardown to the ``ProcessSupervisor``.

Status transitions:
    creating -> running | error
    running  -> stopped | archived
    stopped  -> running | archived
    error    -> running | archived
"""

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from src.db.models import AgentSession, SessionStatus, generate_uuid, utc_now_iso
from src.errors import (
    AgentDockError,
    NotFoundError,
    PreconditionFailedError,
    SandboxError,
    SessionArchivedError,
)
from src.services.process_supervisor import ProcessSupervisor
from src.services.sandbox_runtime import SandboxRuntime

logger = logging.getLogger(__name__)


class SessionService:
    """CRUD and lifecycle operations for agent sessions.

    Args:
        db: SQLAlchemy session (sync).
        runtime: Sandbox runtime for container lifecycle.
        supervisor: Process supervisor, used to stop agents before the
            sandbox goes away.
    """

    def __init__(
        self, db: Session, runtime: SandboxRuntime, supervisor: ProcessSupervisor
    ) -> None:
        self._db = db
        self._runtime = runtime
        self._supervisor = supervisor

    def get_session(self, session_id: str) -> AgentSession | None:
        return self._db.get(AgentSession, session_id)

    def require_session(self, session_id: str) -> AgentSession:
        """Get a session or raise NotFoundError."""
        session = self._db.get(AgentSession, session_id)
        if session is None:
            raise NotFoundError("Session", session_id)
        return session

    def list_sessions(self, include_archived: bool = False) -> list[AgentSession]:
        """List sessions, most recently updated first.

        Args:
            include_archived: If False, archived sessions are omitted.
        """
        stmt = select(AgentSession).order_by(AgentSession.updated_at.desc())
        if not include_archived:
            stmt = stmt.where(AgentSession.status != SessionStatus.archived.value)
        return list(self._db.execute(stmt).scalars())

    def _set_status(
        self,
        session: AgentSession,
        status: SessionStatus,
        message: str | None = None,
    ) -> None:
        session.status = status.value
        session.status_message = message
        session.updated_at = utc_now_iso()
        self._db.commit()

    def _invalid_transition(self, session: AgentSession, operation: str) -> None:
        error = AgentDockError.from_code(
            "E-1005", operation=operation, session_id=session.id, status=session.status
        )
        raise PreconditionFailedError(error.message, code=error.code)

    async def create_session(
        self, name: str, repo_url: str, branch: str = "main"
    ) -> AgentSession:
        """Create a session and provision its sandbox.

        The row is committed in ``creating`` first so a restart mid-provision
        leaves a visible trace for reconciliation.

        Raises:
            SandboxError: If the sandbox could not be provisioned. The session
                is left in ``error`` with the failure as its status message.
        """
        session = AgentSession(
            id=generate_uuid(),
            name=name,
            repo_url=repo_url,
            branch=branch,
            status=SessionStatus.creating.value,
        )
        self._db.add(session)
        self._db.commit()
        logger.info("Creating session %s (%s@%s)", session.id, repo_url, branch)

        try:
            container_id = await self._runtime.create(session.id, repo_url, branch)
        except Exception as e:
            error = AgentDockError.from_code(
                "E-3004", session_id=session.id, details=str(e)
            )
            self._set_status(session, SessionStatus.error, error.message)
            logger.error("Sandbox provisioning failed for session %s: %s", session.id, e)
            raise SandboxError(error.message, code=error.code) from e

        session.container_id = container_id
        self._set_status(session, SessionStatus.running)
        return session

    async def start_session(self, session_id: str) -> AgentSession:
        """Start a stopped or failed session's sandbox. No-op if running.

        Raises:
            NotFoundError: Unknown session.
            SessionArchivedError: Session is archived.
            PreconditionFailedError: Session is still creating or has no sandbox.
            SandboxError: The runtime failed to start the sandbox.
        """
        session = self.require_session(session_id)
        if session.is_archived:
            raise SessionArchivedError(session_id)
        if session.status == SessionStatus.running.value:
            return session
        if session.status == SessionStatus.creating.value or not session.container_id:
            self._invalid_transition(session, "start")

        try:
            await self._runtime.start(session.container_id)
        except SandboxError as e:
            self._set_status(session, SessionStatus.error, str(e))
            raise

        self._set_status(session, SessionStatus.running)
        logger.info("Started session %s", session_id)
        return session

    async def stop_session(self, session_id: str) -> AgentSession:
        """Interrupt any agent and stop the sandbox. No-op if stopped.

        Raises:
            NotFoundError: Unknown session.
            SessionArchivedError: Session is archived.
            PreconditionFailedError: Session is still creating.
        """
        session = self.require_session(session_id)
        if session.is_archived:
            raise SessionArchivedError(session_id)
        if session.status == SessionStatus.stopped.value:
            return session
        if session.status == SessionStatus.creating.value:
            self._invalid_transition(session, "stop")

        await self._supervisor.interrupt(session_id)
        if session.container_id:
            try:
                await self._runtime.stop(session.container_id)
            except SandboxError as e:
                logger.warning("Sandbox stop failed for session %s: %s", session_id, e)
                if session.status == SessionStatus.running.value:
                    raise

        self._set_status(session, SessionStatus.stopped)
        logger.info("Stopped session %s", session_id)
        return session

    async def archive_session(self, session_id: str) -> AgentSession:
        """Soft-delete a session: tear down its sandbox, keep its messages.

        Sandbox teardown is best effort; archival always completes.
        """
        session = self.require_session(session_id)
        if session.is_archived:
            return session

        await self._supervisor.interrupt(session_id)
        if session.container_id:
            try:
                await self._runtime.remove(session.container_id)
            except Exception as e:
                logger.warning(
                    "Sandbox removal failed for session %s (non-blocking): %s",
                    session_id,
                    e,
                )

        session.container_id = None
        self._set_status(session, SessionStatus.archived)
        self._supervisor.message_log.release_session(session_id)
        logger.info("Archived session %s", session_id)
        return session
