"""Typed domain exceptions for API error mapping.

Services raise these; the FastAPI exception handler in ``src.api.main``
maps each type to its HTTP status and renders the registry entry for
``code`` as the response body.

Usage:
    # In service layer
    raise NotFoundError("Session", session_id)

    # In route handler (or the global handler)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
"""

from src.errors.formatter import AgentDockError


class DomainError(Exception):
    """Base exception for all domain errors.

    Attributes:
        code: Registry code (E-XXXX) describing the failure.
        status_code: HTTP status the API layer responds with.
    """

    status_code = 400

    def __init__(self, message: str, code: str = "") -> None:
        super().__init__(message)
        self.code = code

    def to_error(self) -> AgentDockError:
        """Build the coded application error for this exception."""
        error = AgentDockError.from_code(self.code) if self.code else None
        return AgentDockError(
            code=self.code or "E-4000",
            message=str(self),
            remediation=error.remediation if error else "",
            is_retryable=error.is_retryable if error else False,
        )


class NotFoundError(DomainError):
    """Resource was not found. Maps to HTTP 404."""

    status_code = 404

    def __init__(self, resource_type: str, identifier: str) -> None:
        super().__init__(f"{resource_type} '{identifier}' not found", code="E-1001")
        self.resource_type = resource_type
        self.identifier = identifier


class PreconditionFailedError(DomainError):
    """Resource is not in the state the operation requires. Maps to HTTP 412."""

    status_code = 412

    def __init__(self, message: str, code: str = "E-1002") -> None:
        super().__init__(message, code=code)


class ConflictError(DomainError):
    """Resource conflict (e.g., duplicate concurrent start). Maps to HTTP 409."""

    status_code = 409

    def __init__(self, message: str, code: str = "E-1004") -> None:
        super().__init__(message, code=code)


class ValidationError(DomainError):
    """Validation failure. Maps to HTTP 400."""

    status_code = 400

    def __init__(self, message: str, code: str = "E-2001") -> None:
        super().__init__(message, code=code)


class SandboxError(DomainError):
    """Sandbox runtime or agent spawn failure. Maps to HTTP 500."""

    status_code = 500

    def __init__(self, message: str, code: str = "E-3001") -> None:
        super().__init__(message, code=code)


class InterruptTimeoutError(DomainError):
    """Agent did not stop within the grace period.

    Internal only: the supervisor escalates to a forced kill and never
    surfaces this to callers.
    """

    status_code = 500

    def __init__(self, session_id: str, grace_seconds: float) -> None:
        super().__init__(
            f"Agent for session '{session_id}' ignored interrupt for {grace_seconds:.1f}s",
            code="E-3003",
        )
        self.session_id = session_id
        self.grace_seconds = grace_seconds


class AgentAlreadyRunningError(ConflictError):
    """A live agent handle already exists for the session. Maps to HTTP 409."""

    def __init__(self, session_id: str) -> None:
        super().__init__(
            f"Agent is already running for session '{session_id}'", code="E-1004"
        )
        self.session_id = session_id


class SessionArchivedError(PreconditionFailedError):
    """Session is archived and read-only. Maps to HTTP 412."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session '{session_id}' is archived", code="E-1003")
        self.session_id = session_id
