"""FastAPI dependency providers.

Long-lived components (registry, runtime, message log, supervisor, model
cache, config) are built once by the application lifespan and stored on
``app.state``; these helpers hand them to route handlers.
"""

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from src.cli.config import AgentDockConfig
from src.db.connection import get_db
from src.services.message_log import MessageLog
from src.services.model_suggestions import ModelSuggestionCache
from src.services.process_supervisor import ProcessSupervisor
from src.services.sandbox_runtime import SandboxRuntime
from src.services.session_service import SessionService


def get_config(request: Request) -> AgentDockConfig:
    return request.app.state.config


def get_runtime(request: Request) -> SandboxRuntime:
    return request.app.state.runtime


def get_message_log(request: Request) -> MessageLog:
    return request.app.state.message_log


def get_supervisor(request: Request) -> ProcessSupervisor:
    return request.app.state.supervisor


def get_model_cache(request: Request) -> ModelSuggestionCache:
    return request.app.state.model_cache


def get_session_service(
    db: Session = Depends(get_db),
    runtime: SandboxRuntime = Depends(get_runtime),
    supervisor: ProcessSupervisor = Depends(get_supervisor),
) -> SessionService:
    """Dependency to get a request-scoped SessionService."""
    return SessionService(db, runtime, supervisor)
