"""Startup reconciliation of persisted sessions against live sandboxes.

After an unclean restart the ``sessions`` table may claim sessions are
running whose sandboxes died with the host, and the in-memory registry is
empty even though agents may still be working inside surviving sandboxes.
``reconcile_sessions`` repairs both before the API accepts requests.

Policy for agents that survived the restart: mark reachable, resume on next
send. The agent is left to finish; its output stream is not reattached, and
the next prompt replaces it with a fresh supervised run.
"""

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from src.db.models import AgentSession, SessionStatus, utc_now_iso
from src.errors import AgentDockError
from src.services.process_registry import ProcessRegistry
from src.services.sandbox_runtime import SandboxRuntime

logger = logging.getLogger(__name__)

_INTERRUPTED_CREATE_MESSAGE = "Sandbox creation was interrupted by a server restart."


@dataclass
class ReconciliationResult:
    """Counts from one reconciliation pass.

    Attributes:
        total: ``running`` sessions examined; equals
            ``reconnected + cleaned + failed``.
        reconnected: Sessions whose sandbox is alive (agent active or idle).
        cleaned: Sessions moved to ``error`` because their sandbox is gone.
        failed: Sessions that could not be checked (left unchanged).
        abandoned_creates: Sessions stuck in ``creating`` (a create cannot
            survive a restart) that were moved to ``error``. Not part of
            ``total``.
    """

    total: int = 0
    reconnected: int = 0
    cleaned: int = 0
    failed: int = 0
    abandoned_creates: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "reconnected": self.reconnected,
            "cleaned": self.cleaned,
            "failed": self.failed,
            "abandoned_creates": self.abandoned_creates,
        }


def _mark_error(db: Session, session: AgentSession, message: str) -> None:
    session.status = SessionStatus.error.value
    session.status_message = message
    session.updated_at = utc_now_iso()
    db.commit()


async def reconcile_sessions(
    db: Session,
    runtime: SandboxRuntime,
    registry: ProcessRegistry,
    process_pattern: str = "claude",
) -> ReconciliationResult:
    """Repair session state against the sandbox runtime.

    For each ``running`` session: if the sandbox is alive and an agent
    process is active, register a reachable handle; if the sandbox is alive
    and idle, leave it running; otherwise mark the session ``error`` and drop
    any stale handle. Sessions stuck in ``creating`` are marked ``error``.

    Per-session failures are logged and counted; they never abort the pass.
    Running it twice is harmless.

    Args:
        db: Database session.
        runtime: Sandbox runtime to inspect containers with.
        registry: Process registry to populate.
        process_pattern: Pattern identifying the agent process.

    Returns:
        ReconciliationResult with per-outcome counts.
    """
    result = ReconciliationResult()

    stuck = db.execute(
        select(AgentSession).where(AgentSession.status == SessionStatus.creating.value)
    ).scalars().all()
    for session in stuck:
        try:
            _mark_error(db, session, _INTERRUPTED_CREATE_MESSAGE)
            result.abandoned_creates += 1
            logger.info("Session %s was stuck in creating, marked error", session.id)
        except Exception as e:
            db.rollback()
            logger.error("Failed to reconcile creating session %s: %s", session.id, e)

    running = db.execute(
        select(AgentSession).where(AgentSession.status == SessionStatus.running.value)
    ).scalars().all()
    for session in running:
        result.total += 1
        try:
            container_id = session.container_id
            if not container_id:
                _mark_error(db, session, "Session has no sandbox container.")
                await registry.remove(session.id)
                result.cleaned += 1
                continue

            state = await runtime.inspect(container_id)
            if not state.running:
                lost = AgentDockError.from_code("E-3006", container_id=container_id)
                _mark_error(db, session, lost.message)
                await registry.remove(session.id)
                result.cleaned += 1
                logger.info(
                    "Sandbox for session %s is gone (exists=%s), marked error",
                    session.id,
                    state.exists,
                )
                continue

            if await runtime.is_process_running(container_id, process_pattern):
                await registry.mark_reachable(session.id, container_id)
                logger.info("Agent still active in session %s, marked reachable", session.id)
            result.reconnected += 1
        except Exception as e:
            db.rollback()
            result.failed += 1
            logger.error("Failed to reconcile session %s: %s", session.id, e)

    if result.total > 0:
        logger.info(
            "Reconciled %d session(s): %d reconnected, %d cleaned up, %d failed",
            result.total,
            result.reconnected,
            result.cleaned,
            result.failed,
        )
    else:
        logger.info("No running sessions to reconcile")
    if result.abandoned_creates:
        logger.info(
            "Marked %d interrupted session create(s) as error", result.abandoned_creates
        )
    return result
