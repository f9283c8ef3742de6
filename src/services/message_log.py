"""Append-only per-session message log with pull and push access.

All message reads and writes go through ``MessageLog``. It owns three
disciplines over the ``messages`` table:

- Sequence assignment: each append takes ``max(sequence) + 1`` for its
  session (0 for the first message) under a per-session lock, backed by the
  ``(session_id, sequence)`` unique constraint.
- Backward pagination (``get_history``): pages of older messages ending
  before a cursor, returned oldest-first.
- Forward tailing (``subscribe``): a cancellable background poller that
  streams every message after a cursor, in order, exactly once.

Consumers merge the two with ``merge_messages`` after anchoring the
subscription at ``subscription_cursor(history)``.
"""

import asyncio
import json
import logging
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.db.models import AgentSession, SessionMessage, generate_uuid, utc_now_iso

logger = logging.getLogger(__name__)

# Cursor value meaning "before the first message".
BEFORE_BEGINNING = -1

_APPEND_RETRIES = 3


@dataclass(frozen=True)
class LogMessage:
    """A message as read from the log.

    Attributes:
        id: Message UUID.
        session_id: Owning session.
        type: Open type tag.
        content: Decoded payload, exactly as appended.
        sequence: Per-session sequence number.
        created_at: ISO8601 creation timestamp.
    """

    id: str
    session_id: str
    type: str
    content: Any
    sequence: int
    created_at: str

    def to_dict(self) -> dict[str, Any]:
        """Wire shape used by history pages and the live stream."""
        return {
            "id": self.id,
            "type": self.type,
            "content": self.content,
            "sequence": self.sequence,
            "created_at": self.created_at,
        }


@dataclass
class HistoryPage:
    """One page of backward-paginated history.

    Attributes:
        messages: Messages in ascending sequence order.
        next_cursor: Sequence of the oldest message in the page (pass back
            as ``cursor`` to fetch older messages), None if the page is empty.
        has_more: Whether older messages exist before this page.
    """

    messages: list[LogMessage] = field(default_factory=list)
    next_cursor: int | None = None
    has_more: bool = False


def _decode_content(row: SessionMessage) -> Any:
    try:
        return json.loads(row.content)
    except (json.JSONDecodeError, TypeError):
        logger.warning("Corrupted content for message %s", row.id)
        return row.content


def _to_log_message(row: SessionMessage) -> LogMessage:
    return LogMessage(
        id=row.id,
        session_id=row.session_id,
        type=row.type,
        content=_decode_content(row),
        sequence=row.sequence,
        created_at=row.created_at,
    )


class MessageLog:
    """Read/write discipline over the message table.

    Opens a short-lived database session per operation so it can be shared
    by request handlers, supervisor reader loops and subscriptions.

    Args:
        session_factory: Callable returning a new SQLAlchemy Session.
    """

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory
        self._sequence_locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _sequence_lock(self, session_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._sequence_locks.get(session_id)
            if lock is None:
                lock = threading.Lock()
                self._sequence_locks[session_id] = lock
            return lock

    def release_session(self, session_id: str) -> None:
        """Drop the sequence lock kept for ``session_id``.

        Called once a session is archived and no agent writes to it any more.
        A later append simply creates a fresh lock.
        """
        with self._locks_guard:
            self._sequence_locks.pop(session_id, None)

    def append(self, session_id: str, message_type: str, content: Any) -> LogMessage:
        """Append a message with the next sequence number for its session.

        Args:
            session_id: Owning session ID.
            message_type: Type tag (stored as given).
            content: JSON-serializable payload, relayed unchanged to readers.

        Returns:
            The stored message.

        Raises:
            IntegrityError: If another writer kept winning the sequence race.
        """
        payload = json.dumps(content)
        with self._sequence_lock(session_id):
            for attempt in range(1, _APPEND_RETRIES + 1):
                with self._session_factory() as db:
                    max_seq = db.execute(
                        select(func.max(SessionMessage.sequence)).where(
                            SessionMessage.session_id == session_id
                        )
                    ).scalar_one_or_none()
                    next_seq = 0 if max_seq is None else max_seq + 1

                    row = SessionMessage(
                        id=generate_uuid(),
                        session_id=session_id,
                        type=message_type,
                        content=payload,
                        sequence=next_seq,
                        created_at=utc_now_iso(),
                    )
                    db.add(row)

                    session = db.get(AgentSession, session_id)
                    if session is not None:
                        session.updated_at = row.created_at
                    try:
                        db.commit()
                    except IntegrityError:
                        db.rollback()
                        if attempt == _APPEND_RETRIES:
                            raise
                        logger.warning(
                            "Sequence %d for session %s taken by another writer, retrying",
                            next_seq,
                            session_id,
                        )
                        continue
                    return LogMessage(
                        id=row.id,
                        session_id=session_id,
                        type=message_type,
                        content=content,
                        sequence=next_seq,
                        created_at=row.created_at,
                    )
        raise RuntimeError("unreachable")  # pragma: no cover

    def get_history(
        self, session_id: str, cursor: int | None = None, limit: int = 50
    ) -> HistoryPage:
        """Return up to ``limit`` messages older than ``cursor``.

        Rows are fetched newest-first with one extra row to detect
        ``has_more`` without a second query, then reversed to ascending.

        Args:
            session_id: Session to read.
            cursor: Exclusive upper bound on sequence; None means newest.
            limit: Maximum messages to return.

        Returns:
            HistoryPage in ascending sequence order.
        """
        stmt = select(SessionMessage).where(SessionMessage.session_id == session_id)
        if cursor is not None:
            stmt = stmt.where(SessionMessage.sequence < cursor)
        stmt = stmt.order_by(SessionMessage.sequence.desc()).limit(limit + 1)

        with self._session_factory() as db:
            rows = list(db.execute(stmt).scalars())

        has_more = len(rows) > limit
        if has_more:
            rows = rows[:limit]
        messages = [_to_log_message(r) for r in reversed(rows)]
        next_cursor = messages[0].sequence if messages else None
        return HistoryPage(messages=messages, next_cursor=next_cursor, has_more=has_more)

    def read_after(
        self, session_id: str, after_sequence: int, limit: int = 100
    ) -> list[LogMessage]:
        """Return up to ``limit`` messages with sequence > ``after_sequence``, ascending."""
        stmt = (
            select(SessionMessage)
            .where(
                SessionMessage.session_id == session_id,
                SessionMessage.sequence > after_sequence,
            )
            .order_by(SessionMessage.sequence.asc())
            .limit(limit)
        )
        with self._session_factory() as db:
            return [_to_log_message(r) for r in db.execute(stmt).scalars()]

    def latest_sequence(self, session_id: str) -> int | None:
        """Return the highest sequence for a session, None if it has no messages."""
        with self._session_factory() as db:
            return db.execute(
                select(func.max(SessionMessage.sequence)).where(
                    SessionMessage.session_id == session_id
                )
            ).scalar_one_or_none()

    def all_messages(self, session_id: str) -> list[LogMessage]:
        """Return every message for a session in ascending order."""
        stmt = (
            select(SessionMessage)
            .where(SessionMessage.session_id == session_id)
            .order_by(SessionMessage.sequence.asc())
        )
        with self._session_factory() as db:
            return [_to_log_message(r) for r in db.execute(stmt).scalars()]

    def subscribe(
        self,
        session_id: str,
        after_sequence: int | None = None,
        *,
        poll_interval: float = 0.1,
        batch_size: int = 100,
        queue_size: int = 256,
    ) -> "Subscription":
        """Open a live tail of messages after ``after_sequence``.

        The returned subscription is already polling; the caller must
        ``close()`` it (or use ``async with``) when the client goes away.
        Must be called from a running event loop.
        """
        subscription = Subscription(
            self,
            session_id,
            after_sequence,
            poll_interval=poll_interval,
            batch_size=batch_size,
            queue_size=queue_size,
        )
        subscription.start()
        return subscription


_STREAM_END = object()


class Subscription:
    """A cancellable forward tail over one session's messages.

    Owns a background task that polls ``read_after`` from its cursor and
    pushes each message into a bounded queue. When the queue is full the
    poller waits, so a slow consumer applies backpressure instead of growing
    memory. ``close()`` cancels the poller immediately.

    Attributes:
        session_id: Session being tailed.
        cursor: Sequence of the last message delivered to the consumer.
        error: Exception that stopped the poller, if any.
    """

    def __init__(
        self,
        log: MessageLog,
        session_id: str,
        after_sequence: int | None,
        *,
        poll_interval: float,
        batch_size: int,
        queue_size: int,
    ) -> None:
        self._log = log
        self.session_id = session_id
        self.cursor = BEFORE_BEGINNING if after_sequence is None else after_sequence
        self._poll_interval = poll_interval
        self._batch_size = batch_size
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=queue_size)
        self._task: asyncio.Task[None] | None = None
        self._closed = False
        self.error: BaseException | None = None

    def start(self) -> None:
        """Start the poll loop task."""
        if self._task is None:
            self._task = asyncio.create_task(
                self._poll_loop(), name=f"subscription-{self.session_id}"
            )

    @property
    def closed(self) -> bool:
        return self._closed

    async def _poll_loop(self) -> None:
        cursor = self.cursor
        try:
            while True:
                batch = self._log.read_after(self.session_id, cursor, self._batch_size)
                if not batch:
                    await asyncio.sleep(self._poll_interval)
                    continue
                for message in batch:
                    await self._queue.put(message)
                    cursor = message.sequence
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Subscription poller failed for session %s: %s", self.session_id, e)
            self.error = e
            await self._queue.put(_STREAM_END)

    async def get(self) -> LogMessage | None:
        """Wait for the next message. Returns None once the stream has ended."""
        if self._closed:
            return None
        item = await self._queue.get()
        if item is _STREAM_END:
            return None
        self.cursor = item.sequence
        return item

    async def close(self) -> None:
        """Stop polling and release the queue. Idempotent."""
        if self._closed:
            return
        self._closed = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        while not self._queue.empty():
            self._queue.get_nowait()
        logger.debug("Subscription closed for session %s at cursor %d", self.session_id, self.cursor)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> LogMessage:
        message = await self.get()
        if message is None:
            raise StopAsyncIteration
        return message

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()


def subscription_cursor(history: Iterable[Any]) -> int:
    """Cursor a live subscription must start from after loading ``history``.

    Args:
        history: Messages already obtained from history (objects with a
            ``sequence`` attribute or dicts with a ``sequence`` key).

    Returns:
        The maximum sequence seen, or BEFORE_BEGINNING if history is empty.
    """
    sequences = [_field(m, "sequence") for m in history]
    return max(sequences) if sequences else BEFORE_BEGINNING


def merge_messages(history: Iterable[Any], live: Iterable[Any]) -> list[Any]:
    """Merge history and live messages into one ordered, duplicate-free view.

    Deduplicates by message id (first occurrence wins) and sorts ascending
    by sequence. Accepts LogMessage objects or wire dicts.
    """
    seen: set[str] = set()
    merged: list[Any] = []
    for message in [*history, *live]:
        message_id = _field(message, "id")
        if message_id in seen:
            continue
        seen.add(message_id)
        merged.append(message)
    return sorted(merged, key=lambda m: _field(m, "sequence"))


def _field(message: Any, name: str) -> Any:
    if isinstance(message, dict):
        return message[name]
    return getattr(message, name)
