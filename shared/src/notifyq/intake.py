"""Producer-facing API: enqueue notifications and query their progress."""

import datetime
import logging
from collections.abc import Callable, Mapping
from typing import Any
from uuid import UUID

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from notifyq.db.models import DeliveryLog, QueuedNotification, utcnow
from notifyq.db.repositories import (
    DeliveryLogRepository,
    NotificationRepository,
    TemplateRepository,
    persistence_errors,
)
from notifyq.enums import NotificationStatus
from notifyq.errors import NotificationNotFoundError, ValidationError
from notifyq.events import StatusPublisher
from notifyq.renderer import render_notification
from notifyq.schemas import EnqueueRequest

logger = logging.getLogger(__name__)


class NotificationService:
    """Validates and stores new notifications; reads status and logs."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        publisher: StatusPublisher | None = None,
        *,
        clock: Callable[[], datetime.datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._publisher = publisher
        self._clock = clock

    def enqueue(
        self,
        user_id: str,
        channel: str,
        title: str | None,
        message: str | None,
        priority: str,
        recipient_info: Mapping[str, Any] | None,
        scheduled_for: datetime.datetime | None = None,
        metadata: Mapping[str, Any] | None = None,
        *,
        template_id: UUID | str | None = None,
    ) -> UUID:
        """Queue a notification and return its tracking id.

        Raises ValidationError if the request is malformed; nothing is
        written in that case.
        """
        raw: dict[str, Any] = {
            "user_id": user_id,
            "channel": channel,
            "title": title,
            "message": message,
            "priority": priority,
            "recipient_info": dict(recipient_info) if recipient_info is not None else None,
            "scheduled_for": scheduled_for,
            "metadata": dict(metadata or {}),
            "template_id": template_id,
        }
        return self.enqueue_request(self.parse_request(raw))

    @staticmethod
    def parse_request(raw: Mapping[str, Any]) -> EnqueueRequest:
        try:
            return EnqueueRequest.model_validate(raw)
        except PydanticValidationError as exc:
            raise ValidationError(
                "Invalid enqueue request",
                details=exc.errors(include_url=False, include_context=False),
            ) from exc

    def enqueue_request(self, request: EnqueueRequest) -> UUID:
        data = request.model_dump(mode="json")
        now = self._clock()

        with persistence_errors(), self._session_factory() as session:
            title, message = request.title, request.message
            if request.template_id is not None:
                title, message = self._render(session, request.template_id, request)

            notification = QueuedNotification(
                user_id=request.user_id,
                template_id=request.template_id,
                channel=request.channel,
                title=title,
                message=message,
                priority=request.priority,
                status=NotificationStatus.PENDING,
                recipient_info=data["recipient_info"],
                meta=data["metadata"],
                scheduled_for=request.scheduled_for,
                attempt_count=0,
                created_at=now,
                updated_at=now,
            )
            NotificationRepository(session).create(notification)
            session.commit()
            notification_id = notification.id

        logger.info(
            "Notification enqueued",
            extra={
                "notification_id": str(notification_id),
                "user_id": request.user_id,
                "channel": request.channel,
                "priority": request.priority,
                "scheduled_for": str(request.scheduled_for) if request.scheduled_for else None,
            },
        )
        if self._publisher is not None:
            self._publisher.publish_status(
                notification_id=notification_id,
                status=NotificationStatus.PENDING,
                channel=request.channel,
                user_id=request.user_id,
                attempt_count=0,
            )
        return notification_id

    def get(self, notification_id: UUID) -> QueuedNotification:
        with persistence_errors(), self._session_factory() as session:
            notification = NotificationRepository(session).get_by_id(notification_id)
            if notification is None:
                raise NotificationNotFoundError(notification_id)
            return notification

    def list_logs(self, notification_id: UUID) -> list[DeliveryLog]:
        """Delivery log of one notification, oldest entry first."""
        with persistence_errors(), self._session_factory() as session:
            if NotificationRepository(session).get_by_id(notification_id) is None:
                raise NotificationNotFoundError(notification_id)
            return DeliveryLogRepository(session).list_for_notification(notification_id)

    def list_user_logs(self, user_id: str, limit: int = 100) -> list[DeliveryLog]:
        """Most recent delivery log entries for a user, newest first."""
        with persistence_errors(), self._session_factory() as session:
            return DeliveryLogRepository(session).list_for_user(user_id, limit)

    @staticmethod
    def _render(
        session: Session, template_id: UUID, request: EnqueueRequest
    ) -> tuple[str, str]:
        template = TemplateRepository(session).get_active(template_id)
        if template is None:
            raise ValidationError(f"Unknown or inactive template: {template_id}")
        if template.channel != request.channel:
            raise ValidationError(
                f"Template {template.name!r} is for channel {template.channel!r}, "
                f"not {request.channel!r}"
            )
        context = {**request.metadata, "user_id": request.user_id}
        return render_notification(template, context)

    def health_check(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self._session_factory() as session:
                session.execute(text("SELECT 1"))
        except SQLAlchemyError:
            logger.warning("Database health check failed", exc_info=True)
            return False
        return True
