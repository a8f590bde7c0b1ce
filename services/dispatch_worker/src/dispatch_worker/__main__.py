"""Standalone dispatch loop: python -m dispatch_worker.

Runs the scheduler in the foreground without Celery. Start as many
processes as needed; claims keep them from dispatching the same record.
"""

import logging
import signal
import threading

from notifyq.config import PostgresConfig
from notifyq.db.base import create_db_engine, create_session_factory

from dispatch_worker.bootstrap import build_scheduler
from dispatch_worker.config import DispatchConfig
from dispatch_worker.log import setup_logging

logger = logging.getLogger(__name__)


def main() -> None:
    dispatch_config = DispatchConfig()
    setup_logging(dispatch_config.log_level)

    engine = create_db_engine(PostgresConfig().dsn, pool_pre_ping=True)
    session_factory = create_session_factory(engine)
    scheduler, publisher = build_scheduler(session_factory, dispatch_config)

    stop = threading.Event()

    def _shutdown(signum: int, _frame: object) -> None:
        logger.info("Received %s, shutting down...", signal.Signals(signum).name)
        stop.set()

    signal.signal(signal.SIGTERM, _shutdown)
    signal.signal(signal.SIGINT, _shutdown)

    try:
        scheduler.run_forever(stop)
    finally:
        scheduler.close()
        if publisher is not None:
            publisher.close()
        engine.dispose()
        logger.info("Dispatch worker stopped")


if __name__ == "__main__":
    main()
