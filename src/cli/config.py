"""YAML configuration loader with env var resolution and Pydantic validation.

Loads config from (priority order):
1. --config <path> CLI flag / AGENTDOCK_CONFIG_PATH
2. ./agentdock.yaml (working directory)
3. ~/.agentdock/config.yaml (user home)

Environment variables override YAML: AGENTDOCK_<SECTION>_<KEY>.
${VAR} references in YAML values resolve from environment at load time.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

_ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")


def resolve_env_vars(value: str) -> str:
    """Resolve ${VAR} references in a string from environment variables.

    Args:
        value: String potentially containing ${VAR} references.

    Returns:
        String with all ${VAR} references replaced by their env values.
        Missing env vars resolve to empty string.
    """
    def _replace(match: re.Match) -> str:
        return os.environ.get(match.group(1), "")

    return _ENV_VAR_PATTERN.sub(_replace, value)


def _resolve_env_vars_recursive(data: Any) -> Any:
    """Recursively resolve ${VAR} references in a nested data structure.

    Args:
        data: Dict, list, or scalar value to process.

    Returns:
        Same structure with all string values resolved.
    """
    if isinstance(data, str):
        return resolve_env_vars(data)
    elif isinstance(data, dict):
        return {k: _resolve_env_vars_recursive(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_resolve_env_vars_recursive(item) for item in data]
    return data


class DaemonConfig(BaseModel):
    """Configuration for the AgentDock server process."""

    host: str = "127.0.0.1"
    port: int = 8000
    pid_file: str | None = None
    log_level: str = "info"


class SupervisorConfig(BaseModel):
    """How agent processes are launched and stopped inside a sandbox.

    ``agent_command`` is executed in the container for each run; the prompt
    is written to its stdin and it must emit one JSON event per stdout line.
    ``process_pattern`` identifies the agent process for liveness checks
    and signal delivery.
    """

    agent_command: list[str] = [
        "claude",
        "-p",
        "--output-format",
        "stream-json",
        "--verbose",
        "--continue",
    ]
    process_pattern: str = "claude"
    interrupt_grace_seconds: float = Field(default=5.0, gt=0)

    @field_validator("agent_command")
    @classmethod
    def command_not_empty(cls, value: list[str]) -> list[str]:
        """Reject an empty agent command."""
        if not value:
            raise ValueError("agent_command must contain at least one argument")
        return value


class StreamConfig(BaseModel):
    """Live-tail polling parameters for message subscriptions."""

    poll_interval_seconds: float = Field(default=0.1, gt=0)
    batch_size: int = Field(default=100, ge=1)
    queue_size: int = Field(default=256, ge=1)
    ping_seconds: float = Field(default=15.0, gt=0)


class SandboxConfig(BaseModel):
    """Docker sandbox defaults."""

    docker_binary: str = "docker"
    image: str = "agentdock/sandbox:latest"
    workdir: str = "/workspace"
    command_timeout_seconds: float = Field(default=60.0, gt=0)


class AgentDockConfig(BaseModel):
    """Top-level configuration for the AgentDock server."""

    daemon: DaemonConfig = DaemonConfig()
    supervisor: SupervisorConfig = SupervisorConfig()
    stream: StreamConfig = StreamConfig()
    sandbox: SandboxConfig = SandboxConfig()


def _find_config_file() -> Path | None:
    """Search for config file in standard locations.

    Returns:
        Path to config file if found, None otherwise.
    """
    candidates = [
        Path.cwd() / "agentdock.yaml",
        Path.cwd() / "agentdock.yml",
        Path.home() / ".agentdock" / "config.yaml",
        Path.home() / ".agentdock" / "config.yml",
    ]
    for candidate in candidates:
        if candidate.exists():
            return candidate
    return None


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Apply AGENTDOCK_<SECTION>_<KEY> env var overrides to config data.

    Matches section names by longest prefix. For example,
    ``AGENTDOCK_SUPERVISOR_INTERRUPT_GRACE_SECONDS`` maps to section
    ``supervisor``, field ``interrupt_grace_seconds``.

    Args:
        data: Parsed YAML config dict.

    Returns:
        Config dict with env var overrides applied.
    """
    prefix = "AGENTDOCK_"
    known_sections = sorted(
        AgentDockConfig.model_fields.keys(), key=len, reverse=True
    )
    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue
        suffix = key[len(prefix):].lower()
        matched_section = None
        matched_field = None
        for section in known_sections:
            section_prefix = section + "_"
            if suffix.startswith(section_prefix):
                matched_section = section
                matched_field = suffix[len(section_prefix):]
                break
        if matched_section is None or not matched_field:
            continue
        section_model = AgentDockConfig.model_fields[matched_section].annotation
        if matched_field not in getattr(section_model, "model_fields", {}):
            continue
        if matched_section not in data or data[matched_section] is None:
            data[matched_section] = {}
        if isinstance(data[matched_section], dict):
            # Coerce to int, float, bool, or keep as string
            try:
                data[matched_section][matched_field] = int(value)
            except ValueError:
                try:
                    data[matched_section][matched_field] = float(value)
                except ValueError:
                    if value.lower() in ("true", "false"):
                        data[matched_section][matched_field] = value.lower() == "true"
                    else:
                        data[matched_section][matched_field] = value
    return data


def load_config(config_path: str | None = None) -> AgentDockConfig:
    """Load AgentDock configuration from YAML file with env var resolution.

    Unlike a missing explicit path, a missing default config file is not an
    error: defaults plus env overrides are returned.

    Args:
        config_path: Explicit path to config file. If None, checks
            AGENTDOCK_CONFIG_PATH, then standard locations.

    Returns:
        Parsed and validated AgentDockConfig.

    Raises:
        FileNotFoundError: If an explicit config path does not exist.
    """
    config_path = config_path or os.environ.get("AGENTDOCK_CONFIG_PATH") or None
    if config_path:
        path: Path | None = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
    else:
        path = _find_config_file()

    raw_data: dict[str, Any] = {}
    if path is not None:
        logger.info("Loading config from %s", path)
        with open(path) as f:
            raw_data = yaml.safe_load(f) or {}

    data = _resolve_env_vars_recursive(raw_data)
    data = _apply_env_overrides(data)
    return AgentDockConfig(**data)
