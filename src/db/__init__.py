"""Database module for AgentDock session and message persistence."""

from src.db.connection import (
    SessionLocal,
    close_db,
    engine,
    get_db,
    get_db_context,
    init_db,
)
from src.db.models import (
    AgentSession,
    MessageType,
    SessionMessage,
    SessionStatus,
)

__all__ = [
    # Models
    "AgentSession",
    "SessionMessage",
    # Enums
    "SessionStatus",
    "MessageType",
    # Connection
    "engine",
    "SessionLocal",
    "get_db",
    "get_db_context",
    "init_db",
    "close_db",
]
