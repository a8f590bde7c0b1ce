"""Shared test fixtures for database tests (SQLite in-memory)."""

import datetime
import uuid
from collections.abc import Callable, Generator
from unittest.mock import MagicMock

import pytest
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from notifyq.db.base import Base
from notifyq.db.models import QueuedNotification
from notifyq.enums import Channel, NotificationStatus, Priority
from notifyq.events import KafkaStatusPublisher

NOW = datetime.datetime(2026, 3, 1, 12, 0, tzinfo=datetime.UTC)


@pytest.fixture(scope="session")
def db_engine() -> Engine:
    """Create a single in-memory SQLite engine for the test session."""
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture()
def db_session(db_engine: Engine) -> Generator[Session, None, None]:
    """Transactional session that rolls back after each test."""
    connection = db_engine.connect()
    transaction = connection.begin()
    session = Session(bind=connection)

    yield session

    session.close()
    if transaction.is_active:
        transaction.rollback()
    connection.close()


@pytest.fixture()
def session_factory(db_session: Session) -> MagicMock:
    """Session factory that always returns the test session.

    Wraps db_session so that ``with session_factory() as session:``
    returns our transactional test session.
    """
    factory = MagicMock(spec=sessionmaker)
    ctx = MagicMock()
    ctx.__enter__ = MagicMock(return_value=db_session)
    ctx.__exit__ = MagicMock(return_value=False)
    factory.return_value = ctx
    return factory


@pytest.fixture()
def mock_publisher() -> MagicMock:
    return MagicMock(spec=KafkaStatusPublisher)


@pytest.fixture()
def clock() -> Callable[[], datetime.datetime]:
    return lambda: NOW


@pytest.fixture()
def make_notification(
    db_session: Session,
) -> Callable[..., QueuedNotification]:
    """Insert a queue record with sensible defaults."""

    def _make(**overrides: object) -> QueuedNotification:
        fields: dict = {
            "id": uuid.uuid4(),
            "user_id": "user-1",
            "channel": Channel.EMAIL,
            "title": "Welcome",
            "message": "Hello!",
            "priority": Priority.NORMAL,
            "status": NotificationStatus.PENDING,
            "recipient_info": {"channel": "email", "email": "user@example.com"},
            "meta": {},
            "attempt_count": 0,
            "created_at": NOW - datetime.timedelta(minutes=5),
            "updated_at": NOW - datetime.timedelta(minutes=5),
        }
        fields.update(overrides)
        notification = QueuedNotification(**fields)
        db_session.add(notification)
        db_session.flush()
        return notification

    return _make
