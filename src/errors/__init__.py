"""Error handling framework for AgentDock.

This package provides:
- Error code registry with E-XXXX format codes
- AgentDockError and formatting utilities
- Typed domain exceptions mapped to HTTP statuses

Error categories:
- E-1xxx: Session state errors
- E-2xxx: Validation errors
- E-3xxx: Sandbox and agent process errors
- E-4xxx: System/internal errors
"""

from src.errors.domain import (
    AgentAlreadyRunningError,
    ConflictError,
    DomainError,
    InterruptTimeoutError,
    NotFoundError,
    PreconditionFailedError,
    SandboxError,
    SessionArchivedError,
    ValidationError,
)
from src.errors.formatter import (
    AgentDockError,
    format_error,
)
from src.errors.registry import (
    ERROR_REGISTRY,
    ErrorCategory,
    ErrorCode,
    get_error,
    get_errors_by_category,
)

__all__ = [
    # Registry
    "ErrorCode",
    "ErrorCategory",
    "ERROR_REGISTRY",
    "get_error",
    "get_errors_by_category",
    # Formatter
    "AgentDockError",
    "format_error",
    # Domain exceptions
    "DomainError",
    "NotFoundError",
    "PreconditionFailedError",
    "ConflictError",
    "ValidationError",
    "SandboxError",
    "InterruptTimeoutError",
    "AgentAlreadyRunningError",
    "SessionArchivedError",
]
