"""In-memory registry of supervised agent processes.

Tracks at most one ``SupervisorHandle`` per session ID. The registry is the
single source of truth for "is an agent running for session S": it is
created once by the application lifespan and passed to the supervisor and
the reconciliation pass.

Example:
    registry = ProcessRegistry()
    handle = SupervisorHandle(session_id="sess-1", container_id="c1")
    await registry.register(handle)
    registry.is_running("sess-1")  # True
    await registry.remove("sess-1", handle)
"""

import asyncio
import logging
import time
from typing import Any

from src.errors import AgentAlreadyRunningError
from src.services.sandbox_runtime import ExecChannel

logger = logging.getLogger(__name__)


class SupervisorHandle:
    """A single supervised agent run bound to one session.

    A handle is either *live* (owns an exec channel and a reader task) or
    *reachable* (registered by reconciliation for an agent that survived a
    host restart; it owns nothing and is replaced by the next start).

    Attributes:
        session_id: Owning session.
        container_id: Sandbox the process runs in.
        channel: Exec channel to the agent process (None while reachable).
        reader_task: Background output-translation task.
        launched: Set once ``start`` has finished launching (or failed to).
        interrupted: Set once an interrupt was requested.
        reattached: True for handles created by reconciliation.
        saw_result: Whether a terminal result event has been appended.
        last_activity: Monotonic time of the last output line or write.
        started_at: Monotonic time the handle was created.
    """

    def __init__(
        self,
        session_id: str,
        container_id: str,
        channel: ExecChannel | None = None,
        reattached: bool = False,
    ) -> None:
        self.session_id = session_id
        self.container_id = container_id
        self.channel = channel
        self.reader_task: asyncio.Task[Any] | None = None
        self.launched = asyncio.Event()
        self.interrupted = False
        self.reattached = reattached
        self.saw_result = False
        self.started_at = time.monotonic()
        self.last_activity = self.started_at
        if reattached:
            self.launched.set()

    @property
    def is_live(self) -> bool:
        """Whether this handle owns a running agent process."""
        return not self.reattached

    def touch(self) -> None:
        """Record activity on the channel."""
        self.last_activity = time.monotonic()

    def __repr__(self) -> str:
        return (
            f"<SupervisorHandle(session_id={self.session_id!r}, "
            f"reattached={self.reattached}, interrupted={self.interrupted})>"
        )


class ProcessRegistry:
    """Session ID to SupervisorHandle map with serialized writers.

    Reads (``get``, ``is_running``) are plain dict lookups and safe to poll
    frequently. Writes go through an asyncio.Lock so that check-and-insert
    is atomic: only one ``register`` per session can succeed.

    Single-process only (one uvicorn worker).

    Attributes:
        _handles: Dict of session_id -> SupervisorHandle.
        _lock: Serializes registry writers.
    """

    def __init__(self) -> None:
        """Initialize with no handles."""
        self._handles: dict[str, SupervisorHandle] = {}
        self._lock = asyncio.Lock()

    def get(self, session_id: str) -> SupervisorHandle | None:
        """Get a handle without side effects. Returns None if not found."""
        return self._handles.get(session_id)

    def is_running(self, session_id: str) -> bool:
        """Return True if a live agent process is registered for the session."""
        handle = self._handles.get(session_id)
        return handle is not None and handle.is_live

    def is_reachable(self, session_id: str) -> bool:
        """Return True if reconciliation marked the session's agent reachable."""
        handle = self._handles.get(session_id)
        return handle is not None and handle.reattached

    async def register(self, handle: SupervisorHandle) -> SupervisorHandle | None:
        """Atomically register a live handle for its session.

        A reachable (reattached) handle is replaced; a live handle is not.

        Args:
            handle: The new handle.

        Returns:
            The reachable handle that was replaced, or None.

        Raises:
            AgentAlreadyRunningError: If a live handle already exists.
        """
        async with self._lock:
            existing = self._handles.get(handle.session_id)
            if existing is not None and existing.is_live:
                raise AgentAlreadyRunningError(handle.session_id)
            self._handles[handle.session_id] = handle
            logger.info("Registered agent handle for session %s", handle.session_id)
            return existing

    async def mark_reachable(self, session_id: str, container_id: str) -> SupervisorHandle:
        """Register a reachable handle for an agent that survived a restart.

        Idempotent: an existing handle of either kind is kept.

        Args:
            session_id: Session whose agent is still active.
            container_id: Sandbox the agent runs in.

        Returns:
            The handle registered for the session.
        """
        async with self._lock:
            existing = self._handles.get(session_id)
            if existing is not None:
                return existing
            handle = SupervisorHandle(session_id, container_id, reattached=True)
            self._handles[session_id] = handle
            logger.info("Marked agent reachable for session %s", session_id)
            return handle

    async def remove(
        self, session_id: str, handle: SupervisorHandle | None = None
    ) -> bool:
        """Remove a session's handle. Idempotent.

        Args:
            session_id: Session to remove.
            handle: If given, only remove when the registered handle is this
                exact object (a finished run never evicts its successor).

        Returns:
            True if a handle was removed.
        """
        async with self._lock:
            existing = self._handles.get(session_id)
            if existing is None:
                return False
            if handle is not None and existing is not handle:
                return False
            del self._handles[session_id]
            logger.info("Removed agent handle for session %s", session_id)
            return True

    def list_sessions(self) -> list[str]:
        """List session IDs with any registered handle."""
        return list(self._handles.keys())

    def live_handles(self) -> list[SupervisorHandle]:
        """Snapshot of handles that own a running process."""
        return [h for h in self._handles.values() if h.is_live]

    def __len__(self) -> int:
        return len(self._handles)
