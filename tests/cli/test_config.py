"""Tests for CLI configuration loading and validation."""

import os

import pytest
import yaml
from pydantic import ValidationError

from src.cli.config import (
    AgentDockConfig,
    DaemonConfig,
    StreamConfig,
    SupervisorConfig,
    load_config,
    resolve_env_vars,
)


@pytest.fixture(autouse=True)
def _isolate(tmp_path, monkeypatch):
    """Run each test from an empty directory with no AGENTDOCK_* overrides."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    for key in list(os.environ):
        if key.startswith("AGENTDOCK_"):
            monkeypatch.delenv(key)


class TestDefaults:
    """Tests for model defaults."""

    def test_daemon_defaults(self):
        cfg = DaemonConfig()
        assert cfg.host == "127.0.0.1"
        assert cfg.port == 8000
        assert cfg.log_level == "info"

    def test_supervisor_defaults(self):
        cfg = SupervisorConfig()
        assert cfg.agent_command[0] == "claude"
        assert "stream-json" in cfg.agent_command
        assert cfg.process_pattern == "claude"

    def test_empty_agent_command_rejected(self):
        with pytest.raises(ValidationError):
            SupervisorConfig(agent_command=[])

    def test_stream_bounds(self):
        with pytest.raises(ValidationError):
            StreamConfig(poll_interval_seconds=0)


class TestEnvVarResolution:
    """Tests for ${VAR} substitution."""

    def test_resolve(self, monkeypatch):
        monkeypatch.setenv("IMAGE_TAG", "v2")
        assert resolve_env_vars("agentdock/sandbox:${IMAGE_TAG}") == "agentdock/sandbox:v2"

    def test_missing_resolves_empty(self, monkeypatch):
        monkeypatch.delenv("NOPE_NOT_SET", raising=False)
        assert resolve_env_vars("x${NOPE_NOT_SET}y") == "xy"


class TestLoadConfig:
    """Tests for load_config."""

    def test_no_file_returns_defaults(self):
        assert load_config() == AgentDockConfig()

    def test_explicit_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "missing.yaml"))

    def test_yaml_file(self, tmp_path, monkeypatch):
        monkeypatch.setenv("SANDBOX_IMAGE", "custom/image:1")
        path = tmp_path / "agentdock.yaml"
        path.write_text(
            yaml.dump(
                {
                    "daemon": {"port": 9000},
                    "sandbox": {"image": "${SANDBOX_IMAGE}"},
                    "supervisor": {"agent_command": ["my-agent", "--json"]},
                }
            )
        )

        cfg = load_config()

        assert cfg.daemon.port == 9000
        assert cfg.sandbox.image == "custom/image:1"
        assert cfg.supervisor.agent_command == ["my-agent", "--json"]

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("AGENTDOCK_DAEMON_PORT", "9100")
        monkeypatch.setenv("AGENTDOCK_SUPERVISOR_INTERRUPT_GRACE_SECONDS", "2.5")
        monkeypatch.setenv("AGENTDOCK_SANDBOX_IMAGE", "img:latest")

        cfg = load_config()

        assert cfg.daemon.port == 9100
        assert cfg.supervisor.interrupt_grace_seconds == 2.5
        assert cfg.sandbox.image == "img:latest"

    def test_unknown_env_keys_are_ignored(self, monkeypatch):
        monkeypatch.setenv("AGENTDOCK_API_KEY", "x" * 32)
        monkeypatch.setenv("AGENTDOCK_DAEMON_BOGUS", "1")
        assert load_config() == AgentDockConfig()

    def test_config_path_env(self, tmp_path, monkeypatch):
        path = tmp_path / "elsewhere.yaml"
        path.write_text("stream:\n  ping_seconds: 3\n")
        monkeypatch.setenv("AGENTDOCK_CONFIG_PATH", str(path))

        assert load_config().stream.ping_seconds == 3
