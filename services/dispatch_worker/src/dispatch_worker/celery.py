"""Celery application: periodic dispatch and log retention tasks."""

import logging

from celery import Celery, signals
from celery.schedules import crontab

from notifyq.config import PostgresConfig, RetentionConfig
from notifyq.db.base import create_db_engine, create_session_factory
from notifyq.events import KafkaStatusPublisher

from dispatch_worker.bootstrap import build_scheduler
from dispatch_worker.config import CeleryConfig, DispatchConfig
from dispatch_worker.log import setup_logging
from dispatch_worker.scheduler import DispatchScheduler

logger = logging.getLogger(__name__)

celery_config = CeleryConfig()
_dispatch_config = DispatchConfig()

app = Celery("dispatch_worker", broker=celery_config.broker_url)

app.conf.update(
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_default_queue="dispatch",
    beat_schedule={
        "dispatch-due-notifications": {
            "task": "dispatch_worker.tasks.dispatch_due",
            "schedule": _dispatch_config.poll_interval_seconds,
        },
        "purge-expired-delivery-logs": {
            "task": "dispatch_worker.tasks.purge_delivery_logs",
            "schedule": crontab(hour=3, minute=0),
        },
    },
)

app.autodiscover_tasks(["dispatch_worker"])


@signals.worker_init.connect
def _init_worker(**_kwargs: object) -> None:
    """Initialize shared resources once per worker process."""
    dispatch_config = DispatchConfig()
    setup_logging(dispatch_config.log_level)

    engine = create_db_engine(PostgresConfig().dsn, pool_pre_ping=True)
    session_factory = create_session_factory(engine)
    scheduler, publisher = build_scheduler(session_factory, dispatch_config)

    app.conf.update(
        _session_factory=session_factory,
        _scheduler=scheduler,
        _status_publisher=publisher,
        _retention_config=RetentionConfig(),
    )
    logger.info("Worker initialized")


@signals.worker_shutdown.connect
def _shutdown_worker(**_kwargs: object) -> None:
    """Clean up resources on worker shutdown."""
    scheduler: DispatchScheduler | None = getattr(app.conf, "_scheduler", None)
    if scheduler is not None:
        scheduler.close()
    publisher: KafkaStatusPublisher | None = getattr(
        app.conf, "_status_publisher", None
    )
    if publisher is not None:
        publisher.close()
    logger.info("Worker shut down")
