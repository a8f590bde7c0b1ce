"""Status tracker: owns every status write after a record is claimed.

Each outcome is applied in two steps. The status change is committed
first; the delivery log entry is then appended in its own transaction,
retried on failure. A provider that already accepted a message is never
asked to send it again because the log could not be written.
"""

import datetime
import logging
import time
from collections.abc import Callable
from typing import Any
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from notifyq.db.models import DeliveryLog, QueuedNotification, utcnow
from notifyq.db.repositories import (
    DeliveryLogRepository,
    NotificationRepository,
    persistence_errors,
)
from notifyq.enums import (
    Channel,
    ErrorKind,
    LogStatus,
    NotificationStatus,
    ProviderEventKind,
)
from notifyq.errors import (
    NotificationNotFoundError,
    PersistenceError,
    RecordInFlightError,
    ValidationError,
)
from notifyq.events import StatusPublisher
from notifyq.outcomes import DeliveryOutcome, RetryAt, RetryDecision
from notifyq.state import PROVIDER_EVENTS, can_transition

logger = logging.getLogger(__name__)


def _default_confirms_delivery(channel: str) -> bool:
    return Channel(channel).confirms_delivery


class StatusTracker:
    def __init__(
        self,
        session_factory: sessionmaker[Session],
        publisher: StatusPublisher | None = None,
        *,
        confirms_delivery: Callable[[str], bool] = _default_confirms_delivery,
        clock: Callable[[], datetime.datetime] = utcnow,
        log_write_attempts: int = 3,
        log_retry_delay: float = 0.2,
    ) -> None:
        self._session_factory = session_factory
        self._publisher = publisher
        self._confirms_delivery = confirms_delivery
        self._clock = clock
        self._log_write_attempts = log_write_attempts
        self._log_retry_delay = log_retry_delay

    # ------------------------------------------------------------------
    # Dispatch outcomes
    # ------------------------------------------------------------------

    def record_success(
        self, record: QueuedNotification, outcome: DeliveryOutcome
    ) -> NotificationStatus:
        """processing -> sent (or cancelled, when cancellation was requested)."""
        now = self._clock()
        log_ctx = {"notification_id": str(record.id), "channel": record.channel}

        with persistence_errors(), self._session_factory() as session:
            repo = NotificationRepository(session)
            current = self._load(repo, record.id)
            if current.cancel_requested:
                target = NotificationStatus.CANCELLED
                fields: dict[str, Any] = {"sent_at": now}
            else:
                target = NotificationStatus.SENT
                fields = {"sent_at": now, "error_message": None}
            changed = repo.transition(
                record.id, NotificationStatus.PROCESSING, target, now=now, **fields
            )
            session.commit()
            attempt = current.attempt_count

        if not changed:
            logger.warning(
                "Record left processing before the send completed",
                extra={**log_ctx, "status": current.status},
            )
        elif target == NotificationStatus.CANCELLED:
            logger.info("Send completed after cancellation request", extra=log_ctx)

        self._append_log(
            record,
            LogStatus.SENT,
            timestamp=now,
            attempt_number=attempt,
            provider_response=outcome.provider_response,
            delivery_time_ms=outcome.duration_ms,
        )
        if changed:
            self._publish(record, target, attempt)
        return target if changed else NotificationStatus(current.status)

    def record_failure(
        self,
        record: QueuedNotification,
        outcome: DeliveryOutcome,
        decision: RetryDecision,
    ) -> NotificationStatus:
        """processing -> pending (retry), failed (give up) or cancelled."""
        now = self._clock()
        log_ctx = {
            "notification_id": str(record.id),
            "channel": record.channel,
            "error_kind": outcome.error_kind,
        }

        with persistence_errors(), self._session_factory() as session:
            repo = NotificationRepository(session)
            current = self._load(repo, record.id)
            fields: dict[str, Any] = {"error_message": outcome.error_message}
            retry_at: datetime.datetime | None = None
            if current.cancel_requested:
                target = NotificationStatus.CANCELLED
            elif isinstance(decision, RetryAt):
                target = NotificationStatus.PENDING
                retry_at = fields["next_attempt_at"] = decision.wait_until
            else:
                target = NotificationStatus.FAILED
                fields["needs_manual_review"] = decision.manual_review
            changed = repo.transition(
                record.id, NotificationStatus.PROCESSING, target, now=now, **fields
            )
            session.commit()
            attempt = current.attempt_count

        if not changed:
            logger.warning(
                "Record left processing before the failure was recorded",
                extra={**log_ctx, "status": current.status},
            )
            return NotificationStatus(current.status)

        if retry_at is not None:
            logger.warning(
                "Delivery failed, retry scheduled",
                extra={**log_ctx, "attempt": attempt, "retry_at": retry_at.isoformat()},
            )
        else:
            logger.error(
                "Delivery failed permanently",
                extra={**log_ctx, "attempt": attempt, "status": target},
            )

        log_status = (
            LogStatus.UNSUBSCRIBED
            if outcome.error_kind == ErrorKind.UNSUBSCRIBED
            else LogStatus.FAILED
        )
        self._append_log(
            record,
            log_status,
            timestamp=now,
            attempt_number=attempt,
            provider_response=outcome.provider_response,
            delivery_time_ms=outcome.duration_ms,
            error_code=outcome.error_code or outcome.error_kind,
            error_message=outcome.error_message,
            retrying=target == NotificationStatus.PENDING,
        )
        self._publish(record, target, attempt)
        return target

    def defer(
        self, record: QueuedNotification, until: datetime.datetime
    ) -> NotificationStatus:
        """processing -> pending without spending the attempt.

        Used when the record was claimed but never handed to an adapter,
        so the claim's attempt increment is taken back and nothing is
        logged. A pending cancellation request wins.
        """
        now = self._clock()
        log_ctx = {"notification_id": str(record.id), "channel": record.channel}

        with persistence_errors(), self._session_factory() as session:
            repo = NotificationRepository(session)
            current = self._load(repo, record.id)
            if current.cancel_requested:
                target = NotificationStatus.CANCELLED
                fields: dict[str, Any] = {}
            else:
                target = NotificationStatus.PENDING
                fields = {"next_attempt_at": until}
            changed = repo.transition(
                record.id,
                NotificationStatus.PROCESSING,
                target,
                now=now,
                attempt_count=QueuedNotification.attempt_count - 1,
                **fields,
            )
            session.commit()
            attempt = current.attempt_count - 1

        if not changed:
            logger.warning(
                "Record left processing before it could be deferred",
                extra={**log_ctx, "status": current.status},
            )
            return NotificationStatus(current.status)

        logger.info(
            "Dispatch deferred",
            extra={**log_ctx, "status": target, "retry_at": until.isoformat()},
        )
        self._publish(record, target, attempt)
        return target

    # ------------------------------------------------------------------
    # Provider callbacks and cancellation
    # ------------------------------------------------------------------

    def on_provider_event(
        self,
        notification_id: UUID,
        event_kind: str,
        timestamp: datetime.datetime,
        payload: dict[str, Any] | None = None,
    ) -> bool:
        """Apply an asynchronous delivery confirmation from a provider.

        Returns True when the event was recorded, False when it was a
        duplicate or does not apply to the record's current status.
        Raises RecordInFlightError while the send is still being recorded;
        the provider should deliver the event again later.
        """
        try:
            kind = ProviderEventKind(event_kind)
        except ValueError as exc:
            raise ValidationError(f"Unknown provider event kind: {event_kind!r}") from exc
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=datetime.UTC)

        target, log_status = PROVIDER_EVENTS[kind]
        log_ctx = {"notification_id": str(notification_id), "event_kind": kind}

        with persistence_errors(), self._session_factory() as session:
            repo = NotificationRepository(session)
            logs = DeliveryLogRepository(session)
            record = self._load(repo, notification_id)

            if logs.has_status(notification_id, log_status):
                logger.info("Duplicate provider event ignored", extra=log_ctx)
                return False

            if record.status == NotificationStatus.PROCESSING:
                # The provider answered before record_success committed.
                logger.info("Provider event for in-flight record", extra=log_ctx)
                raise RecordInFlightError(notification_id)

            changed = False
            if record.status != NotificationStatus.CANCELLED:
                if not self._event_applies(record, kind, target):
                    logger.warning(
                        "Provider event does not apply, ignored",
                        extra={**log_ctx, "status": record.status},
                    )
                    return False
                changed = repo.transition(
                    notification_id,
                    record.status,
                    target,
                    now=self._clock(),
                    **self._event_fields(record, kind, timestamp),
                )
                if not changed:
                    logger.info("Concurrent provider event won, ignored", extra=log_ctx)
                    return False
            session.commit()
            attempt = record.attempt_count

        self._append_log(
            record,
            log_status,
            timestamp=timestamp,
            attempt_number=attempt,
            provider_response=payload or {},
        )
        if changed:
            self._publish(record, target, attempt)
        return True

    def cancel(self, notification_id: UUID) -> QueuedNotification:
        """Cancel a record that has not finished dispatching.

        Pending records are cancelled at once; processing records are
        flagged and cancelled by the next outcome write. Cancelling a
        terminal record is a no-op.
        """
        now = self._clock()
        with persistence_errors(), self._session_factory() as session:
            repo = NotificationRepository(session)
            record = self._load(repo, notification_id)

            if record.status == NotificationStatus.PENDING and repo.transition(
                notification_id,
                NotificationStatus.PENDING,
                NotificationStatus.CANCELLED,
                now=now,
            ):
                session.commit()
                record = self._load(repo, notification_id)
                logger.info("Notification cancelled", extra={"notification_id": str(notification_id)})
                self._publish(record, NotificationStatus.CANCELLED, record.attempt_count)
                return record

            # Pending may have been claimed in the meantime.
            record = self._load(repo, notification_id)
            if record.status == NotificationStatus.PROCESSING and repo.request_cancel(
                notification_id, now
            ):
                session.commit()
                logger.info(
                    "Cancellation requested for in-flight notification",
                    extra={"notification_id": str(notification_id)},
                )
                return self._load(repo, notification_id)

            return record

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _load(repo: NotificationRepository, notification_id: UUID) -> QueuedNotification:
        record = repo.get_by_id(notification_id, refresh=True)
        if record is None:
            raise NotificationNotFoundError(notification_id)
        return record

    def _event_applies(
        self,
        record: QueuedNotification,
        kind: ProviderEventKind,
        target: NotificationStatus,
    ) -> bool:
        if kind in (ProviderEventKind.DELIVERED, ProviderEventKind.READ) and not (
            self._confirms_delivery(record.channel)
        ):
            return False
        if target == NotificationStatus.FAILED:
            # Bounces only make sense for a message the provider accepted.
            return record.status == NotificationStatus.SENT
        return can_transition(record.status, target)

    @staticmethod
    def _event_fields(
        record: QueuedNotification,
        kind: ProviderEventKind,
        timestamp: datetime.datetime,
    ) -> dict[str, Any]:
        if kind == ProviderEventKind.DELIVERED:
            return {"delivered_at": timestamp}
        if kind == ProviderEventKind.READ:
            fields: dict[str, Any] = {"read_at": timestamp}
            if record.delivered_at is None:
                fields["delivered_at"] = timestamp
            return fields
        return {"error_message": f"Provider reported {kind}"}

    def _append_log(
        self,
        record: QueuedNotification,
        status: LogStatus,
        *,
        timestamp: datetime.datetime,
        **fields: Any,
    ) -> None:
        """Append one log entry, retrying only the write itself."""
        for attempt in range(1, self._log_write_attempts + 1):
            try:
                with self._session_factory() as session:
                    logs = DeliveryLogRepository(session)
                    latest = logs.latest_timestamp(record.id)
                    logs.append(
                        DeliveryLog(
                            notification_id=record.id,
                            user_id=record.user_id,
                            channel=record.channel,
                            status=status,
                            # Keep entries of one record in timestamp order
                            # even when a provider clock lags behind ours.
                            timestamp=max(timestamp, latest) if latest else timestamp,
                            **fields,
                        )
                    )
                    session.commit()
                return
            except SQLAlchemyError as exc:
                log_ctx = {
                    "notification_id": str(record.id),
                    "log_status": status,
                    "attempt": attempt,
                }
                if attempt == self._log_write_attempts:
                    logger.error("Delivery log write failed", extra=log_ctx)
                    raise PersistenceError(
                        f"Could not write {status} log for {record.id}"
                    ) from exc
                logger.warning("Delivery log write failed, retrying", extra=log_ctx)
                time.sleep(self._log_retry_delay * attempt)

    def _publish(
        self, record: QueuedNotification, status: NotificationStatus, attempt: int
    ) -> None:
        if self._publisher is None:
            return
        self._publisher.publish_status(
            notification_id=record.id,
            status=status,
            channel=record.channel,
            user_id=record.user_id,
            attempt_count=attempt,
        )
