"""Dispatch scheduler: claims due notifications and drives their delivery."""

import datetime
import logging
import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor

from redis.exceptions import RedisError
from sqlalchemy.orm import Session, sessionmaker

from notifyq.db.models import QueuedNotification, utcnow
from notifyq.db.repositories import NotificationRepository, persistence_errors
from notifyq.enums import ErrorKind, NotificationStatus
from notifyq.errors import PersistenceError
from notifyq.outcomes import DeliveryOutcome
from notifyq.tracking import StatusTracker

from dispatch_worker.channels import ChannelRegistry
from dispatch_worker.rate_limiter import RateLimiter
from dispatch_worker.retry import RetryPolicy

logger = logging.getLogger(__name__)


class DispatchScheduler:
    """Claims batches of due notifications and hands them to adapters.

    Any number of schedulers may run against one database. A record is
    only ever dispatched by the scheduler whose claim moved it from
    pending to processing, and within a batch each record is handed to
    exactly one pool thread.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        registry: ChannelRegistry,
        tracker: StatusTracker,
        policy: RetryPolicy,
        *,
        rate_limiter: RateLimiter | None = None,
        batch_size: int = 50,
        max_workers: int = 8,
        poll_interval: float = 2.0,
        persistence_backoff: float = 5.0,
        throttle_delay: float = 10.0,
        claim_lease: float = 600.0,
        clock: Callable[[], datetime.datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._registry = registry
        self._tracker = tracker
        self._policy = policy
        self._rate_limiter = rate_limiter
        self._batch_size = batch_size
        self._poll_interval = poll_interval
        self._persistence_backoff = persistence_backoff
        self._throttle_delay = datetime.timedelta(seconds=throttle_delay)
        self._claim_lease = datetime.timedelta(seconds=claim_lease)
        self._clock = clock
        self._executor: ThreadPoolExecutor | None = None
        if max_workers > 1:
            self._executor = ThreadPoolExecutor(
                max_workers=max_workers, thread_name_prefix="dispatch"
            )

    def claim_batch(
        self, limit: int, now: datetime.datetime
    ) -> list[QueuedNotification]:
        """Atomically claim up to *limit* due records (pending -> processing)."""
        with persistence_errors(), self._session_factory() as session:
            records = NotificationRepository(session).claim_batch(now, limit)
            session.commit()
        if records:
            logger.info(
                "Claimed batch",
                extra={"count": len(records), "limit": limit},
            )
        return records

    def recover_stale(self, now: datetime.datetime) -> int:
        """Settle claims older than the lease.

        A record stays processing when its worker died or could not
        record the outcome. Such a record is treated as a timed-out
        attempt: it is retried, or failed (with manual review on channels
        that cannot safely resend) once the retry policy gives up.
        Returns the number of records settled.
        """
        cutoff = now - self._claim_lease
        with persistence_errors(), self._session_factory() as session:
            records = NotificationRepository(session).find_stale_claims(
                cutoff, self._batch_size
            )
            session.commit()

        for record in records:
            logger.warning(
                "Claim lease expired",
                extra={
                    "notification_id": str(record.id),
                    "channel": record.channel,
                    "attempt": record.attempt_count,
                    "claimed_at": record.last_attempt_at.isoformat(),
                },
            )
            try:
                retry_safe = self._registry.get(record.channel).at_most_once
            except KeyError:
                retry_safe = True
            outcome = DeliveryOutcome.failed(
                ErrorKind.TIMEOUT,
                "Claim lease expired before the outcome was recorded",
                code="lease_expired",
            )
            decision = self._policy.decide(
                record.attempt_count,
                record.priority,
                ErrorKind.TIMEOUT,
                now,
                retry_safe=retry_safe,
            )
            self._tracker.record_failure(record, outcome, decision)
        return len(records)

    def run_once(self, now: datetime.datetime | None = None) -> int:
        """Settle expired claims, then claim one batch and dispatch it.

        Returns the number of records claimed.
        """
        now = now or self._clock()
        self.recover_stale(now)
        records = self.claim_batch(self._batch_size, now)
        if not records:
            return 0

        if self._executor is None or len(records) == 1:
            for record in records:
                self.dispatch(record)
        else:
            # Draining the iterator waits for the whole batch.
            list(self._executor.map(self.dispatch, records))
        return len(records)

    def run_forever(self, stop: threading.Event) -> None:
        """Poll until *stop* is set.

        Sleeps ``poll_interval`` after an empty batch and
        ``persistence_backoff`` after the database failed a claim cycle.
        Records claimed before a failure stay claimed; nothing is lost.
        """
        logger.info("Dispatch loop started")
        while not stop.is_set():
            try:
                claimed = self.run_once()
            except PersistenceError:
                logger.exception(
                    "Claim cycle failed, backing off",
                    extra={"backoff_seconds": self._persistence_backoff},
                )
                stop.wait(self._persistence_backoff)
                continue
            if claimed == 0:
                stop.wait(self._poll_interval)
        logger.info("Dispatch loop stopped")

    def dispatch(self, record: QueuedNotification) -> NotificationStatus | None:
        """Deliver one claimed record and record the outcome.

        Returns the record's new status, or None if the outcome could not
        be fully written. The record then either stays processing, to be
        settled by :meth:`recover_stale` once its lease expires, or has
        its new status committed with the delivery log entry missing.
        """
        log_ctx = {
            "notification_id": str(record.id),
            "channel": record.channel,
            "attempt": record.attempt_count,
        }
        retry_safe = True

        try:
            adapter = self._registry.get(record.channel)
        except KeyError:
            outcome = DeliveryOutcome.failed(
                ErrorKind.PERMANENT,
                f"No adapter registered for channel {record.channel!r}",
                code="no_adapter",
            )
        else:
            if self._throttled(record.channel):
                logger.info("Rate limited, deferring", extra=log_ctx)
                return self._defer(record, log_ctx)
            outcome = adapter.send(record)
            retry_safe = adapter.at_most_once

        try:
            if outcome.succeeded:
                logger.info(
                    "Delivery succeeded",
                    extra={**log_ctx, "duration_ms": outcome.duration_ms},
                )
                return self._tracker.record_success(record, outcome)

            decision = self._policy.decide(
                record.attempt_count,
                record.priority,
                outcome.error_kind or ErrorKind.TRANSIENT,
                self._clock(),
                retry_safe=retry_safe,
            )
            return self._tracker.record_failure(record, outcome, decision)
        except PersistenceError:
            logger.exception("Could not record delivery outcome", extra=log_ctx)
            return None

    def _defer(
        self, record: QueuedNotification, log_ctx: dict[str, object]
    ) -> NotificationStatus | None:
        try:
            return self._tracker.defer(record, self._clock() + self._throttle_delay)
        except PersistenceError:
            logger.exception("Could not defer throttled record", extra=log_ctx)
            return None

    def _throttled(self, channel: str) -> bool:
        if self._rate_limiter is None:
            return False
        try:
            return not self._rate_limiter.acquire(channel)
        except RedisError:
            # Limiter outage: deliver rather than stall the queue.
            logger.warning(
                "Rate limiter unavailable, sending unthrottled",
                extra={"channel": channel},
                exc_info=True,
            )
            return False

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
        self._registry.close()
