"""FastAPI routes for session lifecycle.

Endpoints:
    POST   /sessions                — Create session and provision its sandbox
    GET    /sessions                — List sessions
    GET    /sessions/{id}           — Get one session
    POST   /sessions/{id}/start     — Start a stopped or failed session
    POST   /sessions/{id}/stop      — Interrupt the agent and stop the sandbox
    DELETE /sessions/{id}           — Archive (messages are kept)
    GET    /sessions/{id}/usage     — Estimated token usage
"""

from fastapi import APIRouter, Depends, Query

from src.api.dependencies import get_message_log, get_session_service
from src.api.schemas import (
    SessionCreate,
    SessionListResponse,
    SessionResponse,
    TokenUsageResponse,
)
from src.db.models import AgentSession
from src.services.message_log import MessageLog
from src.services.session_service import SessionService
from src.services.token_usage import (
    estimate_token_usage,
    format_percentage,
    format_token_count,
)

router = APIRouter(prefix="/sessions", tags=["sessions"])


@router.post("", response_model=SessionResponse, status_code=201)
async def create_session(
    payload: SessionCreate,
    sessions: SessionService = Depends(get_session_service),
) -> AgentSession:
    """Create a session and provision its sandbox.

    Returns 500 with E-3004 if provisioning fails; the session is kept in
    ``error`` so the failure is visible in the list.
    """
    return await sessions.create_session(
        name=payload.name, repo_url=payload.repo_url, branch=payload.branch
    )


@router.get("", response_model=SessionListResponse)
def list_sessions(
    include_archived: bool = Query(False, description="Include archived sessions"),
    sessions: SessionService = Depends(get_session_service),
) -> SessionListResponse:
    """List sessions, most recently updated first."""
    rows = sessions.list_sessions(include_archived=include_archived)
    return SessionListResponse(
        sessions=[SessionResponse.model_validate(r) for r in rows],
        total=len(rows),
    )


@router.get("/{session_id}", response_model=SessionResponse)
def get_session(
    session_id: str,
    sessions: SessionService = Depends(get_session_service),
) -> AgentSession:
    return sessions.require_session(session_id)


@router.post("/{session_id}/start", response_model=SessionResponse)
async def start_session(
    session_id: str,
    sessions: SessionService = Depends(get_session_service),
) -> AgentSession:
    return await sessions.start_session(session_id)


@router.post("/{session_id}/stop", response_model=SessionResponse)
async def stop_session(
    session_id: str,
    sessions: SessionService = Depends(get_session_service),
) -> AgentSession:
    return await sessions.stop_session(session_id)


@router.delete("/{session_id}", response_model=SessionResponse)
async def archive_session(
    session_id: str,
    sessions: SessionService = Depends(get_session_service),
) -> AgentSession:
    """Archive a session. Idempotent."""
    return await sessions.archive_session(session_id)


@router.get("/{session_id}/usage", response_model=TokenUsageResponse)
def get_usage(
    session_id: str,
    sessions: SessionService = Depends(get_session_service),
    message_log: MessageLog = Depends(get_message_log),
) -> TokenUsageResponse:
    """Estimate context-window usage from the session's messages."""
    sessions.require_session(session_id)
    usage = estimate_token_usage(message_log.all_messages(session_id))
    return TokenUsageResponse(
        **usage.to_dict(),
        display_total=format_token_count(usage.total_tokens),
        display_percent=format_percentage(usage.percent_used),
    )
