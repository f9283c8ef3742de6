"""File path resolution using platformdirs.

Paths resolve to platform-appropriate directories unless overridden:
  macOS: ~/Library/Application Support/agentdock/
  Linux: ~/.local/share/agentdock/

AGENTDOCK_DATA_DIR overrides the data directory (containers, CI).
"""

import os
from pathlib import Path

import platformdirs

APP_NAME = "agentdock"


def get_data_dir() -> Path:
    """Return the directory for persistent data (DB, PID file)."""
    override = os.environ.get("AGENTDOCK_DATA_DIR", "").strip()
    if override:
        return Path(override).expanduser()
    return Path(platformdirs.user_data_dir(APP_NAME, appauthor=False))


def get_log_dir() -> Path:
    """Return the directory for application logs."""
    return Path(platformdirs.user_log_dir(APP_NAME, appauthor=False))


def get_default_db_path() -> Path:
    """Return the default SQLite database file path."""
    return get_data_dir() / "agentdock.db"


def get_default_pid_file() -> Path:
    """Return the default daemon PID file path."""
    return get_data_dir() / "daemon.pid"


def ensure_dirs_exist() -> None:
    """Create all required directories if they don't exist."""
    for d in [get_data_dir(), get_log_dir()]:
        d.mkdir(parents=True, exist_ok=True)
