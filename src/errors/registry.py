"""Error code registry with E-XXXX format codes.

This module defines the error code system for AgentDock, organizing errors
into categories:
- E-1xxx: Session state errors
- E-2xxx: Validation errors
- E-3xxx: Sandbox and agent process errors
- E-4xxx: System/internal errors

Each error includes a code, title, message template, and remediation steps.
"""

from dataclasses import dataclass
from enum import Enum


class ErrorCategory(str, Enum):
    """Categories for error codes."""

    SESSION = "session"  # E-1xxx: Session state errors
    VALIDATION = "validation"  # E-2xxx: Validation errors
    SANDBOX = "sandbox"  # E-3xxx: Sandbox and agent process errors
    SYSTEM = "system"  # E-4xxx: System/internal errors


@dataclass
class ErrorCode:
    """Definition of an error code with metadata.

    Attributes:
        code: Error code in E-XXXX format.
        category: Error category for grouping.
        title: Short title for display.
        message_template: Message with {placeholders} for context.
        remediation: Action user should take to resolve.
        is_retryable: Whether the operation can be retried without user action.
    """

    code: str  # E-XXXX format
    category: ErrorCategory
    title: str
    message_template: str
    remediation: str
    is_retryable: bool = False


# Error registry - all defined error codes
ERROR_REGISTRY: dict[str, ErrorCode] = {
    # Session errors (E-1xxx)
    "E-1001": ErrorCode(
        code="E-1001",
        category=ErrorCategory.SESSION,
        title="Session Not Found",
        message_template="Session '{session_id}' not found.",
        remediation="Check the session ID or create a new session.",
    ),
    "E-1002": ErrorCode(
        code="E-1002",
        category=ErrorCategory.SESSION,
        title="Session Not Running",
        message_template="Session '{session_id}' is not running (status: {status}).",
        remediation="Start the session before sending prompts.",
    ),
    "E-1003": ErrorCode(
        code="E-1003",
        category=ErrorCategory.SESSION,
        title="Session Archived",
        message_template="Session '{session_id}' is archived and read-only.",
        remediation="Archived sessions keep their history but cannot be started. Create a new session.",
    ),
    "E-1004": ErrorCode(
        code="E-1004",
        category=ErrorCategory.SESSION,
        title="Agent Already Running",
        message_template="An agent process is already running for session '{session_id}'.",
        remediation="Wait for the current run to finish or interrupt it.",
        is_retryable=True,
    ),
    "E-1005": ErrorCode(
        code="E-1005",
        category=ErrorCategory.SESSION,
        title="Invalid Status Transition",
        message_template="Cannot {operation} session '{session_id}' in status '{status}'.",
        remediation="Refresh the session and retry the operation from a valid state.",
    ),
    # Validation errors (E-2xxx)
    "E-2001": ErrorCode(
        code="E-2001",
        category=ErrorCategory.VALIDATION,
        title="Invalid Prompt",
        message_template="Prompt must be between 1 and {max_length} characters.",
        remediation="Shorten or fill in the prompt and retry.",
    ),
    # Sandbox errors (E-3xxx)
    "E-3001": ErrorCode(
        code="E-3001",
        category=ErrorCategory.SANDBOX,
        title="Sandbox Unavailable",
        message_template="Sandbox runtime did not respond: {details}",
        remediation="Check that the container runtime is running and reachable, then retry.",
        is_retryable=True,
    ),
    "E-3002": ErrorCode(
        code="E-3002",
        category=ErrorCategory.SANDBOX,
        title="Agent Process Exited",
        message_template="Agent process exited without a result (exit code {exit_code}).",
        remediation="Inspect the last messages for the cause, then send a new prompt.",
    ),
    "E-3003": ErrorCode(
        code="E-3003",
        category=ErrorCategory.SANDBOX,
        title="Agent Interrupted",
        message_template="Agent run was interrupted.",
        remediation="Send a new prompt to continue.",
    ),
    "E-3004": ErrorCode(
        code="E-3004",
        category=ErrorCategory.SANDBOX,
        title="Sandbox Provisioning Failed",
        message_template="Could not provision sandbox for session '{session_id}': {details}",
        remediation="Verify the repository URL, branch and sandbox image, then create the session again.",
    ),
    "E-3005": ErrorCode(
        code="E-3005",
        category=ErrorCategory.SANDBOX,
        title="Agent Launch Failed",
        message_template="Could not start the agent process in sandbox '{container_id}': {details}",
        remediation="Restart the session. If the error persists, recreate it.",
        is_retryable=True,
    ),
    "E-3006": ErrorCode(
        code="E-3006",
        category=ErrorCategory.SANDBOX,
        title="Sandbox Lost",
        message_template="Sandbox '{container_id}' is no longer running.",
        remediation="Start the session again to bring the sandbox back.",
    ),
    # System errors (E-4xxx)
    "E-4001": ErrorCode(
        code="E-4001",
        category=ErrorCategory.SYSTEM,
        title="Database Error",
        message_template="Database operation failed: {details}",
        remediation="This is a system error. Retry the operation. Contact support if issue persists.",
        is_retryable=True,
    ),
    "E-4002": ErrorCode(
        code="E-4002",
        category=ErrorCategory.SYSTEM,
        title="Output Reader Failed",
        message_template="Reading agent output failed: {details}",
        remediation="Send a new prompt. Check server logs if the issue persists.",
    ),
}


def get_error(code: str) -> ErrorCode | None:
    """Get error definition by code.

    Args:
        code: Error code in E-XXXX format.

    Returns:
        ErrorCode if found, None otherwise.
    """
    return ERROR_REGISTRY.get(code)


def get_errors_by_category(category: ErrorCategory) -> list[ErrorCode]:
    """Get all errors in a category.

    Args:
        category: The error category to filter by.

    Returns:
        List of ErrorCode objects in the specified category.
    """
    return [e for e in ERROR_REGISTRY.values() if e.category == category]
