"""Sandbox runtime contract and Docker CLI implementation.

The supervisor, session service and reconciliation pass only talk to a
``SandboxRuntime``. The shipped implementation drives the ``docker`` CLI
through asyncio subprocesses; agent runs talk newline-delimited bytes over
stdin/stdout pipes.

Example:
    runtime = DockerSandboxRuntime(SandboxConfig())
    container_id = await runtime.create("sess-1", "https://github.com/o/r", "main")
    channel = await runtime.exec(container_id, ["claude", "-p"])
    await channel.write(b"hello\\n")
    await channel.close_input()
    line = await channel.readline()
"""

import asyncio
import logging
import signal as _signal
from abc import ABC, abstractmethod
from dataclasses import dataclass

from src.cli.config import SandboxConfig
from src.errors import SandboxError

logger = logging.getLogger(__name__)

# Agents emit whole tool results (file contents, diffs) as single JSON lines.
STDOUT_LINE_LIMIT = 16 * 1024 * 1024


@dataclass(frozen=True)
class ContainerState:
    """Liveness snapshot of a sandbox container.

    Attributes:
        exists: Whether the runtime knows the container at all.
        running: Whether the container is currently running.
    """

    exists: bool
    running: bool


class ExecChannel(ABC):
    """Bidirectional byte channel to one process running inside a sandbox."""

    @property
    @abstractmethod
    def returncode(self) -> int | None:
        """Exit code once the process has exited, else None."""
        ...

    @abstractmethod
    async def write(self, data: bytes) -> None:
        """Write bytes to the process stdin."""
        ...

    @abstractmethod
    async def close_input(self) -> None:
        """Close the process stdin (signals end of prompt)."""
        ...

    @abstractmethod
    async def readline(self) -> bytes:
        """Read one line of stdout. Returns b"" at EOF."""
        ...

    @abstractmethod
    async def wait(self) -> int:
        """Wait for the process to exit and return its exit code."""
        ...

    @abstractmethod
    def terminate(self) -> None:
        """Ask the process to stop (SIGTERM to the exec client)."""
        ...

    @abstractmethod
    def kill(self) -> None:
        """Force-stop the process (SIGKILL to the exec client)."""
        ...


class SandboxRuntime(ABC):
    """Create/exec/signal/inspect primitives keyed by container ID."""

    @abstractmethod
    async def create(self, name: str, repo_url: str, branch: str) -> str:
        """Provision and start a sandbox. Returns the container ID."""
        ...

    @abstractmethod
    async def start(self, container_id: str) -> None:
        """Start a stopped sandbox."""
        ...

    @abstractmethod
    async def stop(self, container_id: str) -> None:
        """Stop a running sandbox."""
        ...

    @abstractmethod
    async def remove(self, container_id: str) -> None:
        """Remove a sandbox and its filesystem."""
        ...

    @abstractmethod
    async def inspect(self, container_id: str) -> ContainerState:
        """Report whether the sandbox exists and is running."""
        ...

    @abstractmethod
    async def is_process_running(self, container_id: str, pattern: str) -> bool:
        """Report whether a process matching ``pattern`` runs in the sandbox."""
        ...

    @abstractmethod
    async def exec(self, container_id: str, argv: list[str]) -> ExecChannel:
        """Start ``argv`` inside the sandbox with piped stdin/stdout."""
        ...

    @abstractmethod
    async def signal(
        self, container_id: str, pattern: str, sig: int = _signal.SIGINT
    ) -> None:
        """Deliver ``sig`` to processes matching ``pattern`` in the sandbox."""
        ...


class SubprocessExecChannel(ExecChannel):
    """ExecChannel over an asyncio subprocess (``docker exec -i``)."""

    def __init__(self, process: asyncio.subprocess.Process) -> None:
        self._process = process

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        return self._process.returncode

    async def write(self, data: bytes) -> None:
        if self._process.stdin is None:
            raise SandboxError("Exec channel has no stdin", code="E-3005")
        self._process.stdin.write(data)
        await self._process.stdin.drain()

    async def close_input(self) -> None:
        if self._process.stdin is None or self._process.stdin.is_closing():
            return
        self._process.stdin.close()
        try:
            await self._process.stdin.wait_closed()
        except (BrokenPipeError, ConnectionResetError):
            pass

    async def readline(self) -> bytes:
        if self._process.stdout is None:
            return b""
        return await self._process.stdout.readline()

    async def wait(self) -> int:
        return await self._process.wait()

    def terminate(self) -> None:
        if self._process.returncode is None:
            try:
                self._process.terminate()
            except ProcessLookupError:
                pass

    def kill(self) -> None:
        if self._process.returncode is None:
            try:
                self._process.kill()
            except ProcessLookupError:
                pass


class DockerSandboxRuntime(SandboxRuntime):
    """SandboxRuntime backed by the docker CLI.

    Each session gets one long-lived container (``sleep infinity`` as PID 1)
    with the repository cloned into the configured workdir. Agent runs are
    ``docker exec -i`` processes inside it.

    Attributes:
        _config: Sandbox settings (docker binary, image, workdir, timeout).
    """

    CONTAINER_PREFIX = "agentdock-"

    def __init__(self, config: SandboxConfig) -> None:
        self._config = config

    async def _run(self, *args: str, check: bool = True) -> tuple[int, str, str]:
        """Run a docker CLI command to completion.

        Args:
            *args: Arguments after the docker binary.
            check: Raise SandboxError on non-zero exit.

        Returns:
            Tuple of (exit code, stdout, stderr).

        Raises:
            SandboxError: If docker is missing, times out, or (with check)
                exits non-zero.
        """
        try:
            process = await asyncio.create_subprocess_exec(
                self._config.docker_binary,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise SandboxError(
                f"Docker binary '{self._config.docker_binary}' not found: {e}"
            ) from e

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(),
                timeout=self._config.command_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            process.kill()
            await process.wait()
            raise SandboxError(
                f"docker {args[0]} timed out after "
                f"{self._config.command_timeout_seconds:.0f}s"
            ) from e

        out = stdout.decode(errors="replace").strip()
        err = stderr.decode(errors="replace").strip()
        if check and process.returncode != 0:
            raise SandboxError(f"docker {args[0]} failed: {err or out}")
        return process.returncode or 0, out, err

    async def create(self, name: str, repo_url: str, branch: str) -> str:
        container_name = f"{self.CONTAINER_PREFIX}{name}"
        _, container_id, _ = await self._run(
            "run",
            "-d",
            "--name",
            container_name,
            "--label",
            "agentdock.session=" + name,
            "-w",
            self._config.workdir,
            self._config.image,
            "sleep",
            "infinity",
        )
        logger.info("Created sandbox %s (%s)", container_name, container_id[:12])
        try:
            await self._run(
                "exec",
                container_id,
                "git",
                "clone",
                "--branch",
                branch,
                repo_url,
                self._config.workdir,
            )
        except SandboxError:
            await self._run("rm", "-f", container_id, check=False)
            raise
        return container_id

    async def start(self, container_id: str) -> None:
        await self._run("start", container_id)

    async def stop(self, container_id: str) -> None:
        await self._run("stop", container_id)

    async def remove(self, container_id: str) -> None:
        await self._run("rm", "-f", container_id)

    async def inspect(self, container_id: str) -> ContainerState:
        code, out, _ = await self._run(
            "inspect", "-f", "{{.State.Running}}", container_id, check=False
        )
        if code != 0:
            return ContainerState(exists=False, running=False)
        return ContainerState(exists=True, running=out.lower() == "true")

    async def is_process_running(self, container_id: str, pattern: str) -> bool:
        code, _, _ = await self._run(
            "exec", container_id, "pgrep", "-f", pattern, check=False
        )
        return code == 0

    async def exec(self, container_id: str, argv: list[str]) -> ExecChannel:
        try:
            process = await asyncio.create_subprocess_exec(
                self._config.docker_binary,
                "exec",
                "-i",
                "-w",
                self._config.workdir,
                container_id,
                *argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
                limit=STDOUT_LINE_LIMIT,
            )
        except (FileNotFoundError, OSError) as e:
            raise SandboxError(
                f"Failed to exec agent in sandbox '{container_id}': {e}",
                code="E-3005",
            ) from e
        logger.debug("docker exec started (PID: %s) in %s", process.pid, container_id[:12])
        return SubprocessExecChannel(process)

    async def signal(
        self, container_id: str, pattern: str, sig: int = _signal.SIGINT
    ) -> None:
        await self._run(
            "exec",
            container_id,
            "pkill",
            f"-{_signal.Signals(sig).name.removeprefix('SIG')}",
            "-f",
            pattern,
            check=False,
        )
