"""Tests for session and message ORM models."""

import pytest
from sqlalchemy.exc import IntegrityError

from src.db.models import AgentSession, SessionMessage, SessionStatus


def test_session_defaults(db):
    session = AgentSession(name="demo", repo_url="https://github.com/o/r")
    db.add(session)
    db.commit()

    assert len(session.id) == 36
    assert session.status == SessionStatus.creating.value
    assert session.branch == "main"
    assert session.created_at
    assert session.is_archived is False


def test_is_archived(db, make_session):
    session = make_session(status=SessionStatus.archived, container_id=None)
    assert session.is_archived is True


def test_duplicate_sequence_is_rejected(db, make_session):
    session = make_session()
    db.add(SessionMessage(session_id=session.id, type="user", content="{}", sequence=0))
    db.commit()

    db.add(SessionMessage(session_id=session.id, type="user", content="{}", sequence=0))
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()


def test_messages_relationship_is_ordered(db, make_session):
    session = make_session()
    for seq in (2, 0, 1):
        db.add(SessionMessage(session_id=session.id, type="user", content="{}", sequence=seq))
    db.commit()
    db.expire(session)

    assert [m.sequence for m in session.messages] == [0, 1, 2]
