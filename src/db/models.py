"""SQLAlchemy ORM models for the AgentDock state database.

Defines the persisted half of the system: agent sessions bound to a
sandbox container, and the append-only message log each session owns.
Uses SQLAlchemy 2.0 style with Mapped and mapped_column.
"""

from datetime import UTC, datetime
from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
    relationship,
)


def generate_uuid() -> str:
    """Generate a UUID4 string for primary keys."""
    return str(uuid4())


def utc_now_iso() -> str:
    """Generate current UTC timestamp in ISO8601 format."""
    return datetime.now(UTC).isoformat()


class SessionStatus(str, Enum):
    """Status values for agent sessions.

    Lifecycle: creating -> running <-> stopped
               creating/running -> error (provisioning failure, dead sandbox)
               any -> archived (terminal, read-only)
    """

    creating = "creating"
    running = "running"
    stopped = "stopped"
    error = "error"
    archived = "archived"


class MessageType(str, Enum):
    """Well-known message type tags.

    The set is open: the supervisor stores whatever ``type`` the agent
    emits. These values are the ones the server itself writes or inspects.
    """

    user = "user"
    assistant = "assistant"
    system = "system"
    result = "result"
    error = "error"


# SQLAlchemy Base


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# Models


class AgentSession(Base):
    """A sandboxed agent workspace.

    Binds one container, one repository/branch and one agent conversation.
    Archived rather than deleted so message history survives.

    Attributes:
        id: UUID primary key.
        name: User-provided display name.
        repo_url: Repository the sandbox was provisioned from.
        branch: Branch checked out in the sandbox.
        status: Current status (creating, running, stopped, error, archived).
        container_id: Backing sandbox identifier (required while running).
        status_message: Last error or transition note, if any.
        created_at: ISO8601 creation timestamp.
        updated_at: ISO8601 last-update timestamp.
    """

    __tablename__ = "sessions"
    __table_args__ = (
        Index("ix_sessions_status", "status"),
        Index("ix_sessions_updated", "updated_at"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    repo_url: Mapped[str] = mapped_column(Text, nullable=False)
    branch: Mapped[str] = mapped_column(String(255), nullable=False, default="main")
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=SessionStatus.creating.value
    )
    container_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    status_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )
    updated_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )

    messages: Mapped[list["SessionMessage"]] = relationship(
        "SessionMessage",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="SessionMessage.sequence",
    )

    @property
    def is_archived(self) -> bool:
        return self.status == SessionStatus.archived.value

    def __repr__(self) -> str:
        return f"<AgentSession(id={self.id!r}, status={self.status!r})>"


class SessionMessage(Base):
    """One entry in a session's append-only message log.

    Attributes:
        id: UUID primary key.
        session_id: FK to AgentSession.
        type: Open type tag (user, assistant, tool_use, result, error, ...).
        content: Opaque JSON payload, stored serialized and relayed unchanged.
        sequence: Per-session ordering, strictly increasing from 0.
        created_at: ISO8601 creation timestamp.
    """

    __tablename__ = "messages"
    __table_args__ = (
        UniqueConstraint("session_id", "sequence", name="uq_messages_session_seq"),
        Index("ix_messages_session_seq", "session_id", "sequence"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    session_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("sessions.id", ondelete="CASCADE"),
        nullable=False,
    )
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )

    session: Mapped["AgentSession"] = relationship(
        "AgentSession", back_populates="messages"
    )

    def __repr__(self) -> str:
        return (
            f"<SessionMessage(id={self.id!r}, type={self.type!r}, "
            f"seq={self.sequence})>"
        )
