"""Structured JSON logging setup shared by every process."""

import json
import logging
import sys
from collections.abc import Sequence
from datetime import datetime, timezone

# Attributes every LogRecord carries; anything else came from `extra={...}`.
_STANDARD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
    | {"message", "asctime", "taskName"}
)


class JsonFormatter(logging.Formatter):
    """Single-line JSON formatter.

    The timestamp is taken from the record itself so that lines emitted
    by worker threads keep the time the event happened, not the time the
    handler got around to formatting it.
    """

    def __init__(self, service: str | None = None) -> None:
        super().__init__()
        self._service = service

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, object] = {
            "timestamp": datetime.fromtimestamp(
                record.created, timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if self._service is not None:
            log_entry["service"] = self._service
        if record.threadName and record.threadName != "MainThread":
            log_entry["thread"] = record.threadName

        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS and key not in log_entry:
                log_entry[key] = value

        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def setup_logging(
    level: str = "INFO",
    *,
    service: str | None = None,
    suppress: Sequence[str] = (),
) -> None:
    """Configure the root logger to write JSON lines to stdout.

    Args:
        level: Root log level (e.g. "INFO", "DEBUG").
        service: Name stamped on every line (e.g. "dispatch_worker").
        suppress: Third-party logger names lowered to WARNING.
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter(service))

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()
    root.addHandler(handler)

    for name in suppress:
        logging.getLogger(name).setLevel(logging.WARNING)
