"""Builds the dispatch object graph from environment configuration."""

import logging

from redis import Redis
from sqlalchemy.orm import Session, sessionmaker

from notifyq.config import KafkaConfig, RedisConfig
from notifyq.events import KafkaStatusPublisher
from notifyq.tracking import StatusTracker

from dispatch_worker.channels import create_default_registry
from dispatch_worker.config import (
    DispatchConfig,
    RateLimitConfig,
    RetryConfig,
    WebhookConfig,
)
from dispatch_worker.rate_limiter import RateLimiter
from dispatch_worker.retry import RetryPolicy
from dispatch_worker.scheduler import DispatchScheduler

logger = logging.getLogger(__name__)


def build_scheduler(
    session_factory: sessionmaker[Session],
    dispatch_config: DispatchConfig,
) -> tuple[DispatchScheduler, KafkaStatusPublisher | None]:
    """Wire a scheduler with its registry, tracker, policy and rate limiter.

    Returns the scheduler and the status publisher (None when Kafka is
    disabled), which the caller must close on shutdown.
    """
    registry = create_default_registry(WebhookConfig())

    kafka_config = KafkaConfig()
    publisher = KafkaStatusPublisher(kafka_config) if kafka_config.enabled else None

    tracker = StatusTracker(
        session_factory,
        publisher,
        confirms_delivery=registry.confirms_delivery,
        log_write_attempts=dispatch_config.log_write_attempts,
    )

    rate_limiter = None
    rate_limit_config = RateLimitConfig()
    if rate_limit_config.enabled:
        redis_config = RedisConfig()
        redis_client = Redis(
            host=redis_config.host,
            port=redis_config.port,
            db=redis_config.db,
        )
        rate_limiter = RateLimiter(redis_client, rate_limit_config)

    scheduler = DispatchScheduler(
        session_factory,
        registry,
        tracker,
        RetryPolicy.from_config(RetryConfig()),
        rate_limiter=rate_limiter,
        batch_size=dispatch_config.batch_size,
        max_workers=dispatch_config.max_workers,
        poll_interval=dispatch_config.poll_interval_seconds,
        persistence_backoff=dispatch_config.persistence_backoff_seconds,
        throttle_delay=dispatch_config.throttle_delay_seconds,
        claim_lease=dispatch_config.claim_lease_seconds,
    )
    logger.info(
        "Scheduler built",
        extra={
            "batch_size": dispatch_config.batch_size,
            "max_workers": dispatch_config.max_workers,
            "rate_limited": rate_limiter is not None,
            "status_events": publisher is not None,
        },
    )
    return scheduler, publisher
