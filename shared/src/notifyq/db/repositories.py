"""Persistence gateway: repositories with constructor-injected sessions.

Repositories flush but never commit; the caller owns the transaction.
"""

import datetime
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any
from uuid import UUID

from sqlalchemy import case, delete, exists, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from notifyq.db.models import DeliveryLog, NotificationTemplate, QueuedNotification
from notifyq.enums import PRIORITY_RANK, NotificationStatus
from notifyq.errors import PersistenceError
from notifyq.state import check_transition


@contextmanager
def persistence_errors() -> Iterator[None]:
    """Re-raise database driver failures as PersistenceError."""
    try:
        yield
    except SQLAlchemyError as exc:
        raise PersistenceError(str(exc)) from exc


class NotificationRepository:
    """Data access for the notification_queue table."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def create(self, notification: QueuedNotification) -> QueuedNotification:
        """Add a new notification and flush to populate defaults."""
        self._session.add(notification)
        self._session.flush()
        return notification

    def get_by_id(
        self, notification_id: UUID, *, refresh: bool = False
    ) -> QueuedNotification | None:
        """Fetch by primary key.

        ``refresh=True`` bypasses the identity map, which is needed after
        a conditional update issued by :meth:`transition`.
        """
        return self._session.get(
            QueuedNotification, notification_id, populate_existing=refresh
        )

    def transition(
        self,
        notification_id: UUID,
        current: str,
        target: str,
        *,
        now: datetime.datetime,
        **fields: Any,
    ) -> bool:
        """Move a record from *current* to *target* status.

        The update only matches while the stored status still equals
        *current*, so two writers racing on one record cannot both win.
        Returns True when this call performed the transition.
        """
        check_transition(current, target)
        stmt = (
            update(QueuedNotification)
            .where(
                QueuedNotification.id == notification_id,
                QueuedNotification.status == current,
            )
            .values(status=target, updated_at=now, **fields)
            .execution_options(synchronize_session=False)
        )
        return self._session.execute(stmt).rowcount == 1

    def try_claim(self, notification_id: UUID, now: datetime.datetime) -> bool:
        """Claim one pending record: pending -> processing, attempt_count + 1."""
        return self.transition(
            notification_id,
            NotificationStatus.PENDING,
            NotificationStatus.PROCESSING,
            now=now,
            attempt_count=QueuedNotification.attempt_count + 1,
            last_attempt_at=now,
        )

    def claim_batch(
        self, now: datetime.datetime, limit: int
    ) -> list[QueuedNotification]:
        """Claim up to *limit* due records, urgent-first then oldest-first.

        A record is due when it is pending and neither ``scheduled_for``
        nor ``next_attempt_at`` lies in the future. Candidates another
        transaction has locked are skipped (PostgreSQL); candidates that
        another worker claimed between the select and the update are
        dropped by the conditional update.
        """
        rank = case(PRIORITY_RANK, value=QueuedNotification.priority, else_=0)
        stmt = (
            select(QueuedNotification.id)
            .where(
                QueuedNotification.status == NotificationStatus.PENDING,
                or_(
                    QueuedNotification.scheduled_for.is_(None),
                    QueuedNotification.scheduled_for <= now,
                ),
                or_(
                    QueuedNotification.next_attempt_at.is_(None),
                    QueuedNotification.next_attempt_at <= now,
                ),
            )
            .order_by(rank.desc(), QueuedNotification.created_at.asc())
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        candidates = list(self._session.scalars(stmt).all())
        claimed = [nid for nid in candidates if self.try_claim(nid, now)]
        if not claimed:
            return []

        rows = self._session.scalars(
            select(QueuedNotification)
            .where(QueuedNotification.id.in_(claimed))
            .execution_options(populate_existing=True)
        ).all()
        by_id = {row.id: row for row in rows}
        return [by_id[nid] for nid in claimed]

    def find_stale_claims(
        self, cutoff: datetime.datetime, limit: int
    ) -> list[QueuedNotification]:
        """Processing records whose claim is older than *cutoff*.

        These were claimed by a worker that died or could not record the
        outcome. Rows another transaction holds are skipped (PostgreSQL).
        """
        stmt = (
            select(QueuedNotification)
            .where(
                QueuedNotification.status == NotificationStatus.PROCESSING,
                QueuedNotification.last_attempt_at <= cutoff,
            )
            .order_by(QueuedNotification.last_attempt_at.asc())
            .limit(limit)
            .with_for_update(skip_locked=True)
            .execution_options(populate_existing=True)
        )
        return list(self._session.scalars(stmt).all())

    def request_cancel(self, notification_id: UUID, now: datetime.datetime) -> bool:
        """Flag an in-flight record for cancellation.

        Only matches while the record is processing; the status tracker
        honours the flag on its next write.
        """
        stmt = (
            update(QueuedNotification)
            .where(
                QueuedNotification.id == notification_id,
                QueuedNotification.status == NotificationStatus.PROCESSING,
            )
            .values(cancel_requested=True, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return self._session.execute(stmt).rowcount == 1

    def count_by_status(self) -> dict[str, int]:
        stmt = select(QueuedNotification.status, func.count()).group_by(
            QueuedNotification.status
        )
        return {status: count for status, count in self._session.execute(stmt)}


class DeliveryLogRepository:
    """Append-only access to the notification_logs table."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def append(self, entry: DeliveryLog) -> DeliveryLog:
        self._session.add(entry)
        self._session.flush()
        return entry

    def list_for_notification(self, notification_id: UUID) -> list[DeliveryLog]:
        """All entries of one notification, oldest first."""
        stmt = (
            select(DeliveryLog)
            .where(DeliveryLog.notification_id == notification_id)
            .order_by(DeliveryLog.timestamp.asc(), DeliveryLog.id.asc())
        )
        return list(self._session.scalars(stmt).all())

    def list_for_user(self, user_id: str, limit: int = 100) -> list[DeliveryLog]:
        """Most recent entries for a user, newest first."""
        stmt = (
            select(DeliveryLog)
            .where(DeliveryLog.user_id == user_id)
            .order_by(DeliveryLog.timestamp.desc(), DeliveryLog.id.desc())
            .limit(limit)
        )
        return list(self._session.scalars(stmt).all())

    def has_status(self, notification_id: UUID, status: str) -> bool:
        stmt = select(
            exists().where(
                DeliveryLog.notification_id == notification_id,
                DeliveryLog.status == status,
            )
        )
        return bool(self._session.scalar(stmt))

    def latest_timestamp(self, notification_id: UUID) -> datetime.datetime | None:
        stmt = select(func.max(DeliveryLog.timestamp)).where(
            DeliveryLog.notification_id == notification_id
        )
        return self._session.scalar(stmt)

    def purge_older_than(self, cutoff: datetime.datetime) -> int:
        """Delete entries with a timestamp before *cutoff*. Returns the count."""
        stmt = (
            delete(DeliveryLog)
            .where(DeliveryLog.timestamp < cutoff)
            .execution_options(synchronize_session=False)
        )
        return self._session.execute(stmt).rowcount


class TemplateRepository:
    """Data access for notification templates."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def get_active(self, template_id: UUID) -> NotificationTemplate | None:
        stmt = select(NotificationTemplate).where(
            NotificationTemplate.id == template_id,
            NotificationTemplate.is_active.is_(True),
        )
        return self._session.scalars(stmt).first()

    def create(self, template: NotificationTemplate) -> NotificationTemplate:
        self._session.add(template)
        self._session.flush()
        return template
