"""Unit tests for the error registry, formatter and domain exceptions."""

import pytest

from src.errors import (
    AgentAlreadyRunningError,
    AgentDockError,
    DomainError,
    NotFoundError,
    PreconditionFailedError,
    SandboxError,
    SessionArchivedError,
    ValidationError,
    format_error,
)
from src.errors.registry import ERROR_REGISTRY, ErrorCategory, get_error, get_errors_by_category


@pytest.mark.parametrize(
    "code,category",
    [
        ("E-1001", ErrorCategory.SESSION),
        ("E-1004", ErrorCategory.SESSION),
        ("E-2001", ErrorCategory.VALIDATION),
        ("E-3002", ErrorCategory.SANDBOX),
        ("E-3006", ErrorCategory.SANDBOX),
        ("E-4002", ErrorCategory.SYSTEM),
    ],
)
def test_codes_registered(code, category):
    error = get_error(code)
    assert error is not None, f"{code} not found in registry"
    assert error.category == category
    assert error.code == code


def test_codes_match_their_keys():
    for key, error in ERROR_REGISTRY.items():
        assert key == error.code


def test_category_lookup():
    codes = {e.code for e in get_errors_by_category(ErrorCategory.SANDBOX)}
    assert {"E-3001", "E-3002", "E-3003", "E-3004", "E-3005", "E-3006"} <= codes


class TestAgentDockError:
    """Tests for template rendering and payloads."""

    def test_from_code_substitutes_context(self):
        error = AgentDockError.from_code("E-1002", session_id="s1", status="stopped")
        assert error.message == "Session 's1' is not running (status: stopped)."
        assert error.remediation

    def test_missing_placeholders_keep_template(self):
        error = AgentDockError.from_code("E-1002")
        assert "{session_id}" in error.message

    def test_unknown_code(self):
        error = AgentDockError.from_code("E-9999")
        assert error.message == "Unknown error: E-9999"

    def test_details_are_stored(self):
        error = AgentDockError.from_code("E-3001", details="boom")
        assert error.message == "Sandbox runtime did not respond: boom"
        assert error.to_payload()["details"] == {"details": "boom"}

    def test_format_error(self):
        error = AgentDockError.from_code("E-3003")
        assert format_error(error).startswith("E-3003: Agent run was interrupted.")
        assert "Action:" in format_error(error)
        assert "Action:" not in format_error(error, include_remediation=False)


@pytest.mark.parametrize(
    "exc,status,code",
    [
        (NotFoundError("Session", "s1"), 404, "E-1001"),
        (PreconditionFailedError("not running"), 412, "E-1002"),
        (SessionArchivedError("s1"), 412, "E-1003"),
        (AgentAlreadyRunningError("s1"), 409, "E-1004"),
        (ValidationError("bad prompt"), 400, "E-2001"),
        (SandboxError("docker down"), 500, "E-3001"),
    ],
)
def test_domain_error_mapping(exc, status, code):
    assert isinstance(exc, DomainError)
    assert exc.status_code == status
    payload = exc.to_error().to_payload()
    assert payload["error_code"] == code
    assert payload["message"] == str(exc)
