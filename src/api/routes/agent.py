"""FastAPI routes for driving a session's agent and reading its output.

Clients load history (pull), then open the live stream (push) anchored at
the newest history sequence, and merge the two by message id and sequence.

Endpoints:
    POST /sessions/{id}/agent/send       — Start the agent with a prompt
    POST /sessions/{id}/agent/interrupt  — Stop the running agent
    GET  /sessions/{id}/agent/running    — Whether an agent is running
    GET  /sessions/{id}/agent/history    — Backward-paginated history
    GET  /sessions/{id}/agent/stream     — SSE live tail after a sequence
"""

import asyncio
import json
import logging
from typing import AsyncGenerator

from fastapi import APIRouter, Depends, Query, Request
from sse_starlette.sse import EventSourceResponse

from src.api.dependencies import (
    get_config,
    get_message_log,
    get_session_service,
    get_supervisor,
)
from src.api.schemas import (
    MAX_PROMPT_LENGTH,
    HistoryResponse,
    MessageResponse,
    RunningResponse,
    SendPromptRequest,
    SuccessResponse,
)
from src.cli.config import AgentDockConfig, StreamConfig
from src.errors import AgentDockError, ValidationError
from src.services.message_log import MessageLog, Subscription
from src.services.process_supervisor import ProcessSupervisor
from src.services.session_service import SessionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sessions/{session_id}/agent", tags=["agent"])


def _validate_prompt(prompt: str) -> str:
    if not prompt or len(prompt) > MAX_PROMPT_LENGTH:
        error = AgentDockError.from_code("E-2001", max_length=MAX_PROMPT_LENGTH)
        raise ValidationError(error.message)
    return prompt


@router.post("/send", response_model=SuccessResponse, status_code=202)
async def send_prompt(
    session_id: str,
    payload: SendPromptRequest,
    sessions: SessionService = Depends(get_session_service),
    supervisor: ProcessSupervisor = Depends(get_supervisor),
) -> SuccessResponse:
    """Start the agent with ``prompt``. Returns once the process is launched.

    Raises:
        NotFoundError: 404 if the session does not exist.
        PreconditionFailedError: 412 if the session is not running.
        AgentAlreadyRunningError: 409 if an agent is already running.
    """
    prompt = _validate_prompt(payload.prompt)
    session = sessions.require_session(session_id)
    await supervisor.start(session, prompt)
    return SuccessResponse(success=True)


@router.post("/interrupt", response_model=SuccessResponse)
async def interrupt_agent(
    session_id: str,
    sessions: SessionService = Depends(get_session_service),
    supervisor: ProcessSupervisor = Depends(get_supervisor),
) -> SuccessResponse:
    """Interrupt the running agent. ``success`` is False if none was running."""
    sessions.require_session(session_id)
    interrupted = await supervisor.interrupt(session_id)
    return SuccessResponse(success=interrupted)


@router.get("/running", response_model=RunningResponse)
def is_running(
    session_id: str,
    supervisor: ProcessSupervisor = Depends(get_supervisor),
) -> RunningResponse:
    return RunningResponse(running=supervisor.is_running(session_id))


@router.get("/history", response_model=HistoryResponse)
def get_history(
    session_id: str,
    cursor: int | None = Query(None, description="Return messages older than this sequence"),
    limit: int = Query(50, ge=1, le=100),
    sessions: SessionService = Depends(get_session_service),
    message_log: MessageLog = Depends(get_message_log),
) -> HistoryResponse:
    """Return one page of older messages, oldest first.

    Pass ``next_cursor`` back as ``cursor`` to load the page before it.
    """
    sessions.require_session(session_id)
    page = message_log.get_history(session_id, cursor=cursor, limit=limit)
    return HistoryResponse(
        messages=[MessageResponse(**m.to_dict()) for m in page.messages],
        next_cursor=page.next_cursor,
        has_more=page.has_more,
    )


async def _event_generator(
    request: Request,
    message_log: MessageLog,
    session_id: str,
    after_sequence: int | None,
    stream: StreamConfig,
) -> AsyncGenerator[dict, None]:
    """Generate SSE events from a live tail of the session's messages.

    The subscription is opened on the first iteration, so a response that
    never starts leaves no poller behind. Each message is sent as a
    ``message`` event whose id is its sequence. A ``ping`` is sent after
    ``stream.ping_seconds`` of silence. The subscription is closed when the
    client disconnects or the generator is cancelled.

    Args:
        request: FastAPI request for disconnect detection.
        message_log: Log to tail.
        session_id: Session to tail (already checked to exist).
        after_sequence: Emit only messages after this sequence.
        stream: Polling, batching and keepalive settings.

    Yields:
        SSE event dictionaries.
    """
    subscription: Subscription | None = None
    try:
        subscription = message_log.subscribe(
            session_id,
            after_sequence,
            poll_interval=stream.poll_interval_seconds,
            batch_size=stream.batch_size,
            queue_size=stream.queue_size,
        )
        while True:
            if await request.is_disconnected():
                break

            try:
                message = await asyncio.wait_for(
                    subscription.get(), timeout=stream.ping_seconds
                )
            except asyncio.TimeoutError:
                yield {"event": "ping", "data": json.dumps({"event": "ping"})}
                continue

            if message is None:
                detail = str(subscription.error) if subscription.error else "stream closed"
                yield {"event": "error", "data": json.dumps({"message": detail})}
                break

            yield {
                "event": "message",
                "id": str(message.sequence),
                "data": json.dumps(message.to_dict()),
            }
    finally:
        if subscription is not None:
            await subscription.close()
        logger.debug("Stream closed for session %s", session_id)


@router.get("/stream")
async def stream_messages(
    request: Request,
    session_id: str,
    after_sequence: int | None = Query(
        None, description="Emit only messages with a greater sequence (default: all)"
    ),
    sessions: SessionService = Depends(get_session_service),
    message_log: MessageLog = Depends(get_message_log),
    config: AgentDockConfig = Depends(get_config),
) -> EventSourceResponse:
    """Live tail of the session's messages over Server-Sent Events."""
    sessions.require_session(session_id)
    return EventSourceResponse(
        _event_generator(request, message_log, session_id, after_sequence, config.stream),
        media_type="text/event-stream",
    )
