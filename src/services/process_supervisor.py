"""Agent process supervisor.

Starts, feeds, interrupts and reaps agent processes running inside session
sandboxes. Each run is tracked by a ``SupervisorHandle`` in the shared
``ProcessRegistry``; its stdout is translated line by line into messages in
the ``MessageLog`` by a background reader task.

Example:
    supervisor = ProcessSupervisor(registry, runtime, message_log, config.supervisor)
    await supervisor.start(session, "Fix the failing test")
    supervisor.is_running(session.id)   # True until the agent exits
    await supervisor.interrupt(session.id)
"""

import asyncio
import json
import logging
import signal
from typing import Any

from src.cli.config import SupervisorConfig
from src.db.models import AgentSession, MessageType, SessionStatus
from src.errors import (
    AgentDockError,
    InterruptTimeoutError,
    PreconditionFailedError,
    SandboxError,
    SessionArchivedError,
)
from src.services.message_log import MessageLog
from src.services.process_registry import ProcessRegistry, SupervisorHandle
from src.services.sandbox_runtime import SandboxRuntime

logger = logging.getLogger(__name__)


class ProcessSupervisor:
    """Owns the lifecycle of agent processes, at most one per session.

    Attributes:
        registry: Shared handle registry.
        runtime: Sandbox runtime used to exec and signal agents.
        message_log: Destination for translated agent output.
        config: Agent command, process pattern and interrupt grace period.
    """

    def __init__(
        self,
        registry: ProcessRegistry,
        runtime: SandboxRuntime,
        message_log: MessageLog,
        config: SupervisorConfig,
    ) -> None:
        self.registry = registry
        self.runtime = runtime
        self.message_log = message_log
        self.config = config

    def is_running(self, session_id: str) -> bool:
        """Whether a live agent process is running for the session."""
        return self.registry.is_running(session_id)

    @staticmethod
    def check_startable(session: AgentSession) -> None:
        """Raise unless an agent can be started for ``session``.

        Raises:
            SessionArchivedError: If the session is archived.
            PreconditionFailedError: If the session is not running or has
                no container.
        """
        if session.status == SessionStatus.archived.value:
            raise SessionArchivedError(session.id)
        if session.status != SessionStatus.running.value or not session.container_id:
            error = AgentDockError.from_code(
                "E-1002", session_id=session.id, status=session.status
            )
            raise PreconditionFailedError(error.message)

    async def start(self, session: AgentSession, prompt: str) -> SupervisorHandle:
        """Launch the agent for ``session`` and feed it ``prompt``.

        Returns as soon as the process is started; output is consumed by a
        background reader task.

        Args:
            session: Session row (status and container are checked).
            prompt: User prompt written to the agent's stdin.

        Returns:
            The registered handle.

        Raises:
            PreconditionFailedError: If the session cannot run an agent.
            AgentAlreadyRunningError: If a live agent is already registered.
            SandboxError: If the agent process could not be launched.
        """
        self.check_startable(session)
        container_id = session.container_id
        assert container_id is not None

        handle = SupervisorHandle(session.id, container_id)
        replaced = await self.registry.register(handle)
        if replaced is not None:
            logger.info(
                "Replacing reachable agent for session %s with a new run", session.id
            )
            await self._signal_quietly(replaced.container_id, signal.SIGINT)

        try:
            self.message_log.append(
                session.id,
                MessageType.user.value,
                {"type": "user", "message": {"role": "user", "content": prompt}},
            )
            channel = await self.runtime.exec(container_id, list(self.config.agent_command))
            handle.channel = channel
            if handle.interrupted:
                # Interrupted while launching; the reader records the end of run.
                channel.kill()
            else:
                await channel.write(prompt.encode("utf-8"))
                await channel.close_input()
        except asyncio.CancelledError:
            await self._abandon_launch(handle)
            raise
        except Exception as e:
            await self._abandon_launch(handle)
            logger.error("Failed to launch agent for session %s: %s", session.id, e)
            if isinstance(e, SandboxError):
                raise
            error = AgentDockError.from_code(
                "E-3005", container_id=container_id, details=str(e)
            )
            raise SandboxError(error.message, code=error.code) from e
        else:
            handle.touch()
            handle.reader_task = asyncio.create_task(
                self._read_output(handle), name=f"agent-reader-{session.id}"
            )
        finally:
            handle.launched.set()

        logger.info(
            "Started agent for session %s in sandbox %s", session.id, container_id[:12]
        )
        return handle

    async def _abandon_launch(self, handle: SupervisorHandle) -> None:
        await self.registry.remove(handle.session_id, handle)
        if handle.channel is not None:
            handle.channel.kill()

    async def _read_output(self, handle: SupervisorHandle) -> None:
        """Translate agent stdout into messages until the process exits.

        Never raises (except cancellation): failures become a terminal error
        message. Always removes the handle on the way out.
        """
        channel = handle.channel
        assert channel is not None
        try:
            while True:
                line = await channel.readline()
                if not line:
                    break
                handle.touch()
                text = line.decode("utf-8", errors="replace").strip()
                if text:
                    self._append_output_line(handle, text)

            exit_code = await channel.wait()
            logger.info(
                "Agent for session %s exited with code %s", handle.session_id, exit_code
            )
            if not handle.saw_result:
                if handle.interrupted:
                    self._append_terminal_error(handle, "interrupted", "E-3003", exit_code)
                else:
                    self._append_terminal_error(handle, "process_exited", "E-3002", exit_code)
        except asyncio.CancelledError:
            channel.kill()
            if not handle.saw_result:
                subtype, code = (
                    ("interrupted", "E-3003") if handle.interrupted else ("reader_failed", "E-4002")
                )
                self._append_terminal_error(
                    handle, subtype, code, channel.returncode, details="output reader cancelled"
                )
            raise
        except Exception as e:
            logger.exception("Output reader failed for session %s", handle.session_id)
            channel.kill()
            if not handle.saw_result:
                self._append_terminal_error(
                    handle, "reader_failed", "E-4002", channel.returncode, details=str(e)
                )
        finally:
            await self.registry.remove(handle.session_id, handle)

    def _append_output_line(self, handle: SupervisorHandle, text: str) -> None:
        try:
            event = json.loads(text)
        except json.JSONDecodeError:
            event = None

        if not isinstance(event, dict):
            self.message_log.append(
                handle.session_id,
                MessageType.system.value,
                {"type": "system", "subtype": "raw_output", "text": text},
            )
            return

        message_type = str(event.get("type") or MessageType.assistant.value)
        self.message_log.append(handle.session_id, message_type, event)
        if message_type == MessageType.result.value:
            handle.saw_result = True

    def _append_terminal_error(
        self,
        handle: SupervisorHandle,
        subtype: str,
        code: str,
        exit_code: int | None,
        **context: Any,
    ) -> None:
        error = AgentDockError.from_code(code, exit_code=exit_code, **context)
        content = {
            "type": "error",
            "subtype": subtype,
            "exit_code": exit_code,
            "message": error.message,
            "error_code": error.code,
        }
        try:
            self.message_log.append(handle.session_id, MessageType.error.value, content)
        except Exception as e:
            logger.error(
                "Could not record terminal error for session %s: %s",
                handle.session_id,
                e,
            )

    async def interrupt(self, session_id: str) -> bool:
        """Stop the agent for ``session_id``.

        Waits for an in-flight launch to settle, sends SIGINT inside the
        sandbox, waits up to the grace period for the reader to finish, then
        force-kills. If even that times out the reader is cancelled, which
        still records the terminal ``interrupted`` message.

        Returns:
            True if a handle was found, False otherwise.
        """
        handle = self.registry.get(session_id)
        if handle is None:
            return False

        handle.interrupted = True
        if not handle.is_live:
            await self._signal_quietly(handle.container_id, signal.SIGINT)
            await self.registry.remove(session_id, handle)
            logger.info("Interrupted reachable agent for session %s", session_id)
            return True

        # Keep the handle registered until start has launched or given up.
        await handle.launched.wait()

        await self._signal_quietly(handle.container_id, signal.SIGINT)
        try:
            await self._wait_for_reader(handle, self.config.interrupt_grace_seconds)
        except InterruptTimeoutError as e:
            logger.warning("%s, killing", e)
            if handle.channel is not None:
                handle.channel.kill()
            await self._signal_quietly(handle.container_id, signal.SIGKILL)
            try:
                await self._wait_for_reader(handle, self.config.interrupt_grace_seconds)
            except InterruptTimeoutError:
                logger.error(
                    "Agent for session %s survived SIGKILL, abandoning its reader",
                    session_id,
                )
                await self._cancel_reader(handle)

        await self.registry.remove(session_id, handle)
        logger.info("Interrupted agent for session %s", session_id)
        return True

    async def _cancel_reader(self, handle: SupervisorHandle) -> None:
        task = handle.reader_task
        if task is None or task.done():
            return
        task.cancel()
        await asyncio.wait({task})

    async def _wait_for_reader(self, handle: SupervisorHandle, timeout: float) -> None:
        task = handle.reader_task
        if task is None or task.done():
            return
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise InterruptTimeoutError(handle.session_id, timeout) from e

    async def _signal_quietly(self, container_id: str, sig: int) -> None:
        try:
            await self.runtime.signal(container_id, self.config.process_pattern, sig)
        except Exception as e:
            logger.warning(
                "Could not deliver %s in sandbox %s: %s",
                signal.Signals(sig).name,
                container_id[:12],
                e,
            )

    async def shutdown(self) -> None:
        """Interrupt every live agent. Called on host shutdown."""
        handles = self.registry.live_handles()
        if not handles:
            return
        logger.info("Stopping %d running agent(s)", len(handles))
        results = await asyncio.gather(
            *(self.interrupt(h.session_id) for h in handles), return_exceptions=True
        )
        for handle, result in zip(handles, results):
            if isinstance(result, Exception):
                logger.warning(
                    "Error stopping agent for session %s: %s", handle.session_id, result
                )
