"""Celery tasks driven by beat: dispatch cycles and log retention."""

import logging
from datetime import datetime, timedelta, timezone

from notifyq.config import RetentionConfig
from notifyq.db.repositories import DeliveryLogRepository, persistence_errors
from notifyq.errors import PersistenceError

from dispatch_worker.celery import app
from dispatch_worker.scheduler import DispatchScheduler

logger = logging.getLogger(__name__)


@app.task(name="dispatch_worker.tasks.dispatch_due")
def dispatch_due() -> int:
    """Run one claim-and-dispatch cycle.

    Beat fires this every poll interval. Overlapping runs in different
    worker processes are safe: each record is claimed by one of them.
    """
    scheduler: DispatchScheduler = app.conf._scheduler
    try:
        return scheduler.run_once()
    except PersistenceError:
        logger.exception("Dispatch cycle failed; the next beat tick retries")
        return 0


@app.task(name="dispatch_worker.tasks.purge_delivery_logs")
def purge_delivery_logs() -> int:
    """Delete delivery log entries older than the retention horizon."""
    session_factory = app.conf._session_factory
    retention: RetentionConfig = app.conf._retention_config
    cutoff = datetime.now(timezone.utc) - timedelta(days=retention.log_retention_days)

    with persistence_errors(), session_factory() as session:
        deleted = DeliveryLogRepository(session).purge_older_than(cutoff)
        session.commit()

    logger.info(
        "Purged expired delivery logs",
        extra={"deleted": deleted, "cutoff": cutoff.isoformat()},
    )
    return deleted
