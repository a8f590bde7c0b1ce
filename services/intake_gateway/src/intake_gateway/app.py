import atexit
import logging

from flask import Flask

from notifyq.events import StatusPublisher
from notifyq.intake import NotificationService
from notifyq.tracking import StatusTracker

from intake_gateway.log import setup_logging
from intake_gateway.routes import bp

logger = logging.getLogger(__name__)


def create_app(
    service: NotificationService,
    tracker: StatusTracker,
    publisher: StatusPublisher | None = None,
    *,
    log_level: str = "INFO",
    max_user_log_limit: int = 500,
) -> Flask:
    """Flask application factory.

    Args:
        service: Enqueue/query service (real or mock for tests).
        tracker: Status tracker used for cancellation and provider events.
        publisher: Status publisher to flush at interpreter exit, if any.
    """
    setup_logging(log_level)

    app = Flask(__name__)
    app.extensions["notification_service"] = service
    app.extensions["status_tracker"] = tracker
    app.config["MAX_USER_LOG_LIMIT"] = max_user_log_limit

    app.register_blueprint(bp)

    if publisher is not None:
        atexit.register(publisher.close)

    logger.info("Intake Gateway initialized")
    return app
