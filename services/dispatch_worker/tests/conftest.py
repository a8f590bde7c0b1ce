"""Test fixtures for dispatch_worker tests."""

import datetime
import uuid
from collections.abc import Callable, Generator
from typing import Any
from unittest.mock import MagicMock

import pytest
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from notifyq.db.base import Base
from notifyq.db.models import QueuedNotification
from notifyq.enums import Channel, NotificationStatus, Priority
from notifyq.events import KafkaStatusPublisher
from notifyq.schemas import Recipient
from notifyq.tracking import StatusTracker

from dispatch_worker.channels import ChannelAdapter, ChannelRegistry
from dispatch_worker.rate_limiter import RateLimiter

NOW = datetime.datetime(2026, 3, 1, 12, 0, tzinfo=datetime.UTC)

RECIPIENTS: dict[str, dict[str, Any]] = {
    Channel.EMAIL: {"channel": "email", "email": "user@example.com"},
    Channel.PUSH: {"channel": "push", "device_tokens": ["tok-1", "tok-2"]},
    Channel.SMS: {"channel": "sms", "phone": "+15551234567"},
    Channel.IN_APP: {"channel": "in_app"},
    Channel.WEBHOOK: {
        "channel": "webhook",
        "url": "https://hooks.example.com/notify",
        "secret": "s3cret",
    },
}


class FakeAdapter(ChannelAdapter):
    """Records every send; raises *error* instead of delivering if given."""

    def __init__(
        self,
        channel: Channel,
        *,
        at_most_once: bool = True,
        error: Exception | None = None,
    ) -> None:
        self.channel = channel
        self.at_most_once = at_most_once
        self.error = error
        self.sent: list[uuid.UUID] = []

    def _deliver(self, record: QueuedNotification, recipient: Recipient) -> dict[str, Any]:
        self.sent.append(record.id)
        if self.error is not None:
            raise self.error
        return {"provider": "fake"}


def build_notification(**overrides: object) -> QueuedNotification:
    """An unsaved queue record with sensible defaults."""
    channel = overrides.get("channel", Channel.EMAIL)
    fields: dict = {
        "id": uuid.uuid4(),
        "user_id": "user-1",
        "channel": channel,
        "title": "Welcome",
        "message": "Hello!",
        "priority": Priority.NORMAL,
        "status": NotificationStatus.PENDING,
        "recipient_info": RECIPIENTS[channel],
        "meta": {},
        "attempt_count": 0,
        "cancel_requested": False,
        "created_at": NOW - datetime.timedelta(minutes=5),
        "updated_at": NOW - datetime.timedelta(minutes=5),
    }
    fields.update(overrides)
    return QueuedNotification(**fields)


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
    """Session factory that always returns the test session."""
    factory = MagicMock(spec=sessionmaker)
    ctx = MagicMock()
    ctx.__enter__ = MagicMock(return_value=db_session)
    ctx.__exit__ = MagicMock(return_value=False)
    factory.return_value = ctx
    return factory


@pytest.fixture()
def make_notification(db_session: Session) -> Callable[..., QueuedNotification]:
    """Insert a queue record into the test DB."""

    def _make(**overrides: object) -> QueuedNotification:
        notification = build_notification(**overrides)
        db_session.add(notification)
        db_session.flush()
        return notification

    return _make


@pytest.fixture()
def clock() -> Callable[[], datetime.datetime]:
    return lambda: NOW


@pytest.fixture()
def mock_status_publisher() -> MagicMock:
    return MagicMock(spec=KafkaStatusPublisher)


@pytest.fixture()
def mock_rate_limiter() -> MagicMock:
    """Rate limiter that always allows."""
    limiter = MagicMock(spec=RateLimiter)
    limiter.acquire.return_value = True
    return limiter


@pytest.fixture()
def tracker(
    session_factory: MagicMock, mock_status_publisher: MagicMock, clock
) -> StatusTracker:
    return StatusTracker(
        session_factory, mock_status_publisher, clock=clock, log_retry_delay=0
    )


@pytest.fixture()
def registry() -> ChannelRegistry:
    """Registry of fake adapters; tests reach them via ``registry.get``."""
    registry = ChannelRegistry()
    registry.register(FakeAdapter(Channel.EMAIL))
    registry.register(FakeAdapter(Channel.PUSH))
    registry.register(FakeAdapter(Channel.SMS, at_most_once=False))
    registry.register(FakeAdapter(Channel.IN_APP))
    return registry


@pytest.fixture()
def fake_adapter() -> type[FakeAdapter]:
    return FakeAdapter


@pytest.fixture()
def unsaved_notification() -> Callable[..., QueuedNotification]:
    return build_notification
