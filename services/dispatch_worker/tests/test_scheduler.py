"""Tests for the dispatch scheduler (claim, deliver, record outcome)."""

import datetime
import threading
import uuid
from unittest.mock import MagicMock, call

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.orm import Session

from notifyq.db.repositories import DeliveryLogRepository, NotificationRepository
from notifyq.enums import Channel, LogStatus, NotificationStatus, Priority
from notifyq.errors import PermanentChannelError, PersistenceError, TransientChannelError
from notifyq.tracking import StatusTracker

from dispatch_worker.channels import ChannelRegistry
from dispatch_worker.retry import RetryPolicy
from dispatch_worker.scheduler import DispatchScheduler

NOW = datetime.datetime(2026, 3, 1, 12, 0, tzinfo=datetime.UTC)


@pytest.fixture()
def scheduler(session_factory, registry, tracker, clock) -> DispatchScheduler:
    return DispatchScheduler(
        session_factory,
        registry,
        tracker,
        RetryPolicy(),
        batch_size=10,
        max_workers=1,
        clock=clock,
    )


def _fetch(db_session: Session, notification_id: uuid.UUID):
    return NotificationRepository(db_session).get_by_id(notification_id, refresh=True)


def _log_statuses(db_session: Session, notification_id: uuid.UUID) -> list[str]:
    entries = DeliveryLogRepository(db_session).list_for_notification(notification_id)
    return [e.status for e in entries]


class TestRunOnce:
    def test_nothing_due(self, scheduler):
        assert scheduler.run_once(NOW) == 0

    def test_successful_email(self, scheduler, make_notification, db_session, registry):
        n = make_notification()

        assert scheduler.run_once(NOW) == 1

        record = _fetch(db_session, n.id)
        assert record.status == NotificationStatus.SENT
        assert record.attempt_count == 1
        assert _log_statuses(db_session, n.id) == [LogStatus.SENT]
        assert registry.get(Channel.EMAIL).sent == [n.id]

    def test_future_schedule_not_dispatched(self, scheduler, make_notification, registry):
        make_notification(scheduled_for=NOW + datetime.timedelta(minutes=1))
        assert scheduler.run_once(NOW) == 0
        assert registry.get(Channel.EMAIL).sent == []

    def test_priority_order_within_batch(self, scheduler, make_notification, registry):
        low = make_notification(priority=Priority.LOW, created_at=NOW - datetime.timedelta(hours=1))
        urgent = make_notification(priority=Priority.URGENT)

        scheduler.run_once(NOW)

        assert registry.get(Channel.EMAIL).sent == [urgent.id, low.id]

    def test_each_record_dispatched_once(self, scheduler, make_notification, registry):
        ids = {make_notification().id for _ in range(3)}

        scheduler.run_once(NOW)
        scheduler.run_once(NOW)

        sent = registry.get(Channel.EMAIL).sent
        assert sorted(sent) == sorted(ids)

    def test_publishes_status(self, scheduler, make_notification, mock_status_publisher):
        n = make_notification()
        scheduler.run_once(NOW)
        mock_status_publisher.publish_status.assert_called_once_with(
            notification_id=n.id,
            status=NotificationStatus.SENT,
            channel=Channel.EMAIL,
            user_id="user-1",
            attempt_count=1,
        )


class TestFailures:
    def test_transient_failure_scheduled_for_retry(
        self, scheduler, make_notification, db_session, registry
    ):
        registry.get(Channel.EMAIL).error = TransientChannelError("SMTP 421")
        n = make_notification()

        scheduler.run_once(NOW)

        record = _fetch(db_session, n.id)
        assert record.status == NotificationStatus.PENDING
        assert record.next_attempt_at == NOW + datetime.timedelta(seconds=30)
        assert record.error_message == "SMTP 421"
        assert _log_statuses(db_session, n.id) == [LogStatus.FAILED]

    def test_retry_waits_for_backoff(self, scheduler, make_notification, registry):
        adapter = registry.get(Channel.EMAIL)
        adapter.error = TransientChannelError("SMTP 421")
        make_notification()

        scheduler.run_once(NOW)
        assert scheduler.run_once(NOW + datetime.timedelta(seconds=29)) == 0
        assert scheduler.run_once(NOW + datetime.timedelta(seconds=30)) == 1
        assert len(adapter.sent) == 2

    def test_three_transient_failures_stay_retryable(
        self, scheduler, make_notification, db_session, registry
    ):
        registry.get(Channel.EMAIL).error = TransientChannelError("SMTP 421")
        n = make_notification()

        later = NOW
        for _ in range(3):
            later += datetime.timedelta(hours=2)
            assert scheduler.run_once(later) == 1
            assert _fetch(db_session, n.id).status == NotificationStatus.PENDING

        record = _fetch(db_session, n.id)
        assert record.attempt_count == 3
        assert _log_statuses(db_session, n.id) == [LogStatus.FAILED] * 3

    def test_gives_up_after_max_attempts(
        self, scheduler, make_notification, db_session, registry
    ):
        registry.get(Channel.EMAIL).error = TransientChannelError("SMTP 421")
        n = make_notification(attempt_count=4)

        scheduler.run_once(NOW)

        record = _fetch(db_session, n.id)
        assert record.status == NotificationStatus.FAILED
        assert record.attempt_count == 5
        assert record.needs_manual_review is False

    def test_permanent_failure(self, scheduler, make_notification, db_session, registry):
        registry.get(Channel.EMAIL).error = PermanentChannelError("no such mailbox")
        n = make_notification()

        scheduler.run_once(NOW)

        record = _fetch(db_session, n.id)
        assert record.status == NotificationStatus.FAILED
        assert record.attempt_count == 1

    def test_sms_ambiguous_failure_not_retried(
        self, scheduler, make_notification, db_session, registry
    ):
        registry.get(Channel.SMS).error = TransientChannelError("gateway timeout")
        n = make_notification(channel=Channel.SMS)

        scheduler.run_once(NOW)

        record = _fetch(db_session, n.id)
        assert record.status == NotificationStatus.FAILED
        assert record.needs_manual_review is True

    def test_missing_adapter(self, scheduler, make_notification, db_session):
        n = make_notification(channel=Channel.WEBHOOK)

        scheduler.run_once(NOW)

        record = _fetch(db_session, n.id)
        assert record.status == NotificationStatus.FAILED
        [entry] = DeliveryLogRepository(db_session).list_for_notification(n.id)
        assert entry.error_code == "no_adapter"

    def test_outcome_write_failure_recovered_after_lease(
        self, session_factory, registry, tracker, make_notification, db_session, clock
    ):
        failing = MagicMock(spec=StatusTracker)
        failing.record_success.side_effect = PersistenceError("db down")
        crashed = DispatchScheduler(
            session_factory, registry, failing, RetryPolicy(), max_workers=1, clock=clock
        )
        n = make_notification()

        [record] = crashed.claim_batch(10, NOW)
        assert crashed.dispatch(record) is None
        assert _fetch(db_session, n.id).status == NotificationStatus.PROCESSING

        scheduler = DispatchScheduler(
            session_factory,
            registry,
            tracker,
            RetryPolicy(),
            max_workers=1,
            claim_lease=600,
            clock=clock,
        )
        later = NOW + datetime.timedelta(minutes=11)
        assert scheduler.recover_stale(later) == 1

        record = _fetch(db_session, n.id)
        assert record.status == NotificationStatus.PENDING
        assert record.attempt_count == 1
        [entry] = DeliveryLogRepository(db_session).list_for_notification(n.id)
        assert entry.error_code == "lease_expired"
        assert entry.retrying is True


class TestRateLimiting:
    def test_throttled_attempt_deferred(
        self,
        session_factory,
        registry,
        tracker,
        clock,
        make_notification,
        db_session,
        mock_rate_limiter,
    ):
        mock_rate_limiter.acquire.return_value = False
        scheduler = DispatchScheduler(
            session_factory,
            registry,
            tracker,
            RetryPolicy(),
            rate_limiter=mock_rate_limiter,
            max_workers=1,
            clock=clock,
        )
        n = make_notification()

        scheduler.run_once(NOW)

        record = _fetch(db_session, n.id)
        assert record.status == NotificationStatus.PENDING
        assert record.attempt_count == 0
        assert record.next_attempt_at == NOW + datetime.timedelta(seconds=10)
        assert registry.get(Channel.EMAIL).sent == []
        assert _log_statuses(db_session, n.id) == []
        mock_rate_limiter.acquire.assert_called_once_with(Channel.EMAIL)

    def test_repeated_throttling_never_fails_record(
        self,
        session_factory,
        registry,
        tracker,
        clock,
        make_notification,
        db_session,
        mock_rate_limiter,
    ):
        mock_rate_limiter.acquire.return_value = False
        scheduler = DispatchScheduler(
            session_factory,
            registry,
            tracker,
            RetryPolicy(max_attempts=3),
            rate_limiter=mock_rate_limiter,
            max_workers=1,
            clock=clock,
        )
        n = make_notification()

        later = NOW
        for _ in range(10):
            later += datetime.timedelta(minutes=1)
            assert scheduler.run_once(later) == 1

        record = _fetch(db_session, n.id)
        assert record.status == NotificationStatus.PENDING
        assert record.attempt_count == 0
        assert _log_statuses(db_session, n.id) == []

        mock_rate_limiter.acquire.return_value = True
        later += datetime.timedelta(minutes=1)
        scheduler.run_once(later)

        record = _fetch(db_session, n.id)
        assert record.status == NotificationStatus.SENT
        assert record.attempt_count == 1
        assert registry.get(Channel.EMAIL).sent == [n.id]

    def test_limiter_outage_fails_open(
        self,
        session_factory,
        registry,
        tracker,
        clock,
        make_notification,
        db_session,
        mock_rate_limiter,
    ):
        mock_rate_limiter.acquire.side_effect = RedisConnectionError("refused")
        scheduler = DispatchScheduler(
            session_factory,
            registry,
            tracker,
            RetryPolicy(),
            rate_limiter=mock_rate_limiter,
            max_workers=1,
            clock=clock,
        )
        n = make_notification()

        scheduler.run_once(NOW)

        assert _fetch(db_session, n.id).status == NotificationStatus.SENT


class TestStaleClaims:
    def test_crashed_claim_redelivered_after_lease(
        self, scheduler, make_notification, db_session, registry
    ):
        n = make_notification()
        # A worker claims and dies before dispatching.
        scheduler.claim_batch(10, NOW)

        assert scheduler.run_once(NOW + datetime.timedelta(minutes=5)) == 0
        assert _fetch(db_session, n.id).status == NotificationStatus.PROCESSING

        later = NOW + datetime.timedelta(minutes=11)
        scheduler.run_once(later)
        assert _fetch(db_session, n.id).status == NotificationStatus.PENDING

        scheduler.run_once(later + datetime.timedelta(minutes=1))
        record = _fetch(db_session, n.id)
        assert record.status == NotificationStatus.SENT
        assert record.attempt_count == 2
        assert registry.get(Channel.EMAIL).sent == [n.id]
        assert _log_statuses(db_session, n.id) == [LogStatus.FAILED, LogStatus.SENT]

    def test_unsafe_channel_flagged_for_review(
        self, scheduler, make_notification, db_session, registry
    ):
        n = make_notification(
            channel=Channel.SMS,
            status=NotificationStatus.PROCESSING,
            attempt_count=1,
            last_attempt_at=NOW - datetime.timedelta(hours=1),
        )

        assert scheduler.recover_stale(NOW) == 1

        record = _fetch(db_session, n.id)
        assert record.status == NotificationStatus.FAILED
        assert record.needs_manual_review is True
        assert registry.get(Channel.SMS).sent == []

    def test_last_attempt_gives_up(self, scheduler, make_notification, db_session):
        n = make_notification(
            status=NotificationStatus.PROCESSING,
            attempt_count=5,
            last_attempt_at=NOW - datetime.timedelta(hours=1),
        )

        scheduler.recover_stale(NOW)

        record = _fetch(db_session, n.id)
        assert record.status == NotificationStatus.FAILED
        assert record.attempt_count == 5

    def test_cancel_requested_honoured(self, scheduler, make_notification, db_session):
        n = make_notification(
            status=NotificationStatus.PROCESSING,
            attempt_count=1,
            cancel_requested=True,
            last_attempt_at=NOW - datetime.timedelta(hours=1),
        )

        scheduler.recover_stale(NOW)

        assert _fetch(db_session, n.id).status == NotificationStatus.CANCELLED


class TestWorkerPool:
    def test_batch_fanned_out_once_per_record(self, registry, unsaved_notification):
        tracker = MagicMock(spec=StatusTracker)
        tracker.record_success.return_value = NotificationStatus.SENT
        scheduler = DispatchScheduler(
            MagicMock(), registry, tracker, RetryPolicy(), max_workers=4
        )
        records = [
            unsaved_notification(status=NotificationStatus.PROCESSING, attempt_count=1)
            for _ in range(8)
        ]
        scheduler.claim_batch = MagicMock(return_value=records)
        try:
            assert scheduler.run_once(NOW) == 8
        finally:
            scheduler.close()

        sent = registry.get(Channel.EMAIL).sent
        assert sorted(sent) == sorted(r.id for r in records)
        assert tracker.record_success.call_count == 8


class TestRunForever:
    def test_backs_off_after_persistence_error(self, scheduler):
        stop = MagicMock(spec=threading.Event)
        stop.is_set.side_effect = [False, False, False, True]
        scheduler.run_once = MagicMock(side_effect=[PersistenceError("down"), 0, 3])

        scheduler.run_forever(stop)

        assert stop.wait.call_args_list == [call(5.0), call(2.0)]

    def test_stops_when_event_set(self, scheduler):
        stop = threading.Event()
        stop.set()
        scheduler.run_once = MagicMock()
        scheduler.run_forever(stop)
        scheduler.run_once.assert_not_called()


class TestClose:
    def test_closes_registry(self, session_factory, tracker):
        registry = MagicMock(spec=ChannelRegistry)
        DispatchScheduler(session_factory, registry, tracker, RetryPolicy()).close()
        registry.close.assert_called_once()


def test_unexpected_adapter_error_retried(scheduler, make_notification, registry, db_session):
    registry.get(Channel.EMAIL).error = RuntimeError("driver bug")
    n = make_notification()

    scheduler.run_once(NOW)

    [entry] = DeliveryLogRepository(db_session).list_for_notification(n.id)
    assert entry.error_code == "adapter_error"
    assert _fetch(db_session, n.id).status == NotificationStatus.PENDING
