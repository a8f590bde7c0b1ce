"""Database layer: models, repositories, engine/session utilities."""

from notifyq.db.base import Base, create_db_engine, create_session_factory
from notifyq.db.models import DeliveryLog, NotificationTemplate, QueuedNotification
from notifyq.db.repositories import (
    DeliveryLogRepository,
    NotificationRepository,
    TemplateRepository,
    persistence_errors,
)

__all__ = [
    "Base",
    "create_db_engine",
    "create_session_factory",
    "DeliveryLog",
    "NotificationTemplate",
    "QueuedNotification",
    "DeliveryLogRepository",
    "NotificationRepository",
    "TemplateRepository",
    "persistence_errors",
]
