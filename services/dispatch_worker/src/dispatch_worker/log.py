"""Logging setup for dispatch_worker (delegates to notifyq)."""

from notifyq.log import JsonFormatter, setup_logging as _setup

__all__ = ["JsonFormatter", "setup_logging"]


def setup_logging(level: str = "INFO") -> None:
    _setup(
        level,
        service="dispatch_worker",
        suppress=["celery", "kombu", "confluent_kafka", "httpx", "httpcore"],
    )
