"""Server process management: start, stop, status.

Runs the API under uvicorn (one worker, since the process registry lives
in memory) with a PID file for start/stop/status.
"""

import logging
import os
import signal
import subprocess
import sys
import time
from pathlib import Path

import httpx

from src.utils.paths import get_default_pid_file

logger = logging.getLogger(__name__)

_PROCESS_MARKERS = ("agentdock", "uvicorn", "src.api.main")


def resolve_pid_file(pid_file: str | None) -> Path:
    """Return the configured PID file path, or the platform default."""
    if pid_file:
        return Path(pid_file).expanduser()
    return get_default_pid_file()


def write_pid_file(pid_file: Path, pid: int) -> None:
    """Write ``pid`` to ``pid_file``, creating parent directories."""
    pid_file.parent.mkdir(parents=True, exist_ok=True)
    pid_file.write_text(str(pid))


def read_pid_file(pid_file: Path) -> int | None:
    """Read a PID. Returns None if the file is missing or malformed."""
    if not pid_file.exists():
        return None
    try:
        return int(pid_file.read_text().strip())
    except (ValueError, OSError):
        return None


def remove_pid_file(pid_file: Path) -> None:
    if pid_file.exists():
        pid_file.unlink()


def is_pid_alive(pid: int) -> bool:
    """Check that ``pid`` exists and looks like an AgentDock server.

    The command-line check avoids signalling a reused PID that now
    belongs to an unrelated process.
    """
    try:
        os.kill(pid, 0)
    except (OSError, ProcessLookupError):
        return False

    try:
        result = subprocess.run(
            ["ps", "-p", str(pid), "-o", "command="],
            capture_output=True,
            text=True,
            timeout=2,
        )
    except (OSError, subprocess.SubprocessError):
        # ps unavailable: existence is all we can check
        return True
    cmdline = result.stdout.strip().lower()
    return any(marker in cmdline for marker in _PROCESS_MARKERS)


def start_daemon(
    host: str = "127.0.0.1",
    port: int = 8000,
    pid_file: str | None = None,
    log_level: str = "info",
) -> None:
    """Run the AgentDock server in the foreground until it exits.

    Exits with status 1 if another server already owns the PID file.
    """
    import uvicorn

    path = resolve_pid_file(pid_file)
    existing_pid = read_pid_file(path)
    if existing_pid is not None:
        if is_pid_alive(existing_pid):
            logger.error(
                "Server already running (PID %d). Use 'agentdock daemon stop' first.",
                existing_pid,
            )
            sys.exit(1)
        logger.warning("Removing stale PID file (PID %d no longer running)", existing_pid)
        remove_pid_file(path)

    write_pid_file(path, os.getpid())
    logger.info("Server starting on %s:%d (PID %d)", host, port, os.getpid())

    try:
        uvicorn.run(
            "src.api.main:app",
            host=host,
            port=port,
            workers=1,
            log_level=log_level,
            lifespan="on",
        )
    finally:
        remove_pid_file(path)


def stop_daemon(pid_file: str | None = None, timeout_seconds: float = 10.0) -> bool:
    """Send SIGTERM to the server and wait for it to exit.

    Returns:
        True if a running server was signalled, False if none was running.
    """
    path = resolve_pid_file(pid_file)
    pid = read_pid_file(path)
    if pid is None:
        logger.info("No PID file found, server may not be running")
        return False

    if not is_pid_alive(pid):
        logger.warning("PID %d not running, cleaning up stale PID file", pid)
        remove_pid_file(path)
        return False

    logger.info("Sending SIGTERM to server (PID %d)", pid)
    os.kill(pid, signal.SIGTERM)

    deadline = time.monotonic() + timeout_seconds
    while time.monotonic() < deadline:
        time.sleep(0.5)
        try:
            os.kill(pid, 0)
        except (OSError, ProcessLookupError):
            break

    remove_pid_file(path)
    return True


def daemon_status(
    pid_file: str | None = None,
    base_url: str = "http://127.0.0.1:8000",
) -> dict:
    """Report server liveness and health.

    Returns:
        Dict with ``pid``, ``alive`` and ``healthy`` keys.
    """
    pid = read_pid_file(resolve_pid_file(pid_file))
    alive = pid is not None and is_pid_alive(pid)
    result = {"pid": pid, "alive": alive, "healthy": False}

    if alive:
        try:
            resp = httpx.get(f"{base_url}/health", timeout=5.0)
            result["healthy"] = resp.status_code == 200
        except httpx.HTTPError:
            result["healthy"] = False
    return result
