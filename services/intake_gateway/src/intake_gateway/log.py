"""Logging setup for intake_gateway (delegates to notifyq)."""

from notifyq.log import JsonFormatter, setup_logging as _setup

__all__ = ["JsonFormatter", "setup_logging"]


def setup_logging(level: str = "INFO") -> None:
    _setup(level, service="intake_gateway", suppress=["werkzeug", "confluent_kafka"])
