import datetime
import logging
from typing import Any
from uuid import UUID

from flask import Blueprint, Response, current_app, jsonify, request
from pydantic import ValidationError as PydanticValidationError

from notifyq.db.models import DeliveryLog, QueuedNotification
from notifyq.errors import (
    NotificationNotFoundError,
    PersistenceError,
    RecordInFlightError,
    ValidationError,
)
from notifyq.intake import NotificationService
from notifyq.schemas import ProviderEvent
from notifyq.tracking import StatusTracker

logger = logging.getLogger(__name__)

bp = Blueprint("intake", __name__)

DEFAULT_USER_LOG_LIMIT = 100
IN_FLIGHT_RETRY_AFTER_SECONDS = 5


def _error(message: str, status: int, **extra: Any) -> tuple[Response, int]:
    body: dict[str, Any] = {"error": message}
    body.update(extra)
    return jsonify(body), status


def _service() -> NotificationService:
    return current_app.extensions["notification_service"]


def _tracker() -> StatusTracker:
    return current_app.extensions["status_tracker"]


def _iso(value: datetime.datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _notification_json(record: QueuedNotification) -> dict[str, Any]:
    # recipient_info is left out: webhook recipients carry a signing secret.
    return {
        "notification_id": str(record.id),
        "user_id": record.user_id,
        "channel": record.channel,
        "priority": record.priority,
        "status": record.status,
        "title": record.title,
        "attempt_count": record.attempt_count,
        "cancel_requested": record.cancel_requested,
        "needs_manual_review": record.needs_manual_review,
        "error_message": record.error_message,
        "metadata": record.meta,
        "scheduled_for": _iso(record.scheduled_for),
        "next_attempt_at": _iso(record.next_attempt_at),
        "sent_at": _iso(record.sent_at),
        "delivered_at": _iso(record.delivered_at),
        "read_at": _iso(record.read_at),
        "created_at": _iso(record.created_at),
        "updated_at": _iso(record.updated_at),
    }


def _log_json(entry: DeliveryLog) -> dict[str, Any]:
    return {
        "id": entry.id,
        "notification_id": str(entry.notification_id),
        "user_id": entry.user_id,
        "channel": entry.channel,
        "status": entry.status,
        "attempt_number": entry.attempt_number,
        "retrying": entry.retrying,
        "error_code": entry.error_code,
        "error_message": entry.error_message,
        "delivery_time_ms": entry.delivery_time_ms,
        "provider_response": entry.provider_response,
        "timestamp": _iso(entry.timestamp),
    }


@bp.errorhandler(NotificationNotFoundError)
def _not_found(exc: NotificationNotFoundError) -> tuple[Response, int]:
    return _error("Notification not found", 404, notification_id=str(exc.notification_id))


@bp.errorhandler(ValidationError)
def _invalid(exc: ValidationError) -> tuple[Response, int]:
    return _error(str(exc), 400, details=exc.details)


@bp.errorhandler(RecordInFlightError)
def _in_flight(exc: RecordInFlightError) -> tuple[Response, int]:
    response, status = _error(
        "Notification send not yet recorded, retry later",
        409,
        notification_id=str(exc.notification_id),
    )
    response.headers["Retry-After"] = str(IN_FLIGHT_RETRY_AFTER_SECONDS)
    return response, status


@bp.errorhandler(PersistenceError)
def _unavailable(exc: PersistenceError) -> tuple[Response, int]:
    logger.error("Persistence failure", extra={"path": request.path}, exc_info=exc)
    return _error("Storage unavailable", 503)


@bp.post("/notifications")
def enqueue() -> tuple[Response, int]:
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        return _error("Request body must be a JSON object", 400)

    enqueue_request = NotificationService.parse_request(body)
    notification_id = _service().enqueue_request(enqueue_request)
    return jsonify({"status": "accepted", "notification_id": str(notification_id)}), 202


@bp.get("/notifications/<uuid:notification_id>")
def get_notification(notification_id: UUID) -> tuple[Response, int]:
    record = _service().get(notification_id)
    return jsonify(_notification_json(record)), 200


@bp.post("/notifications/<uuid:notification_id>/cancel")
def cancel_notification(notification_id: UUID) -> tuple[Response, int]:
    record = _tracker().cancel(notification_id)
    return jsonify(_notification_json(record)), 200


@bp.get("/notifications/<uuid:notification_id>/logs")
def notification_logs(notification_id: UUID) -> tuple[Response, int]:
    entries = _service().list_logs(notification_id)
    return jsonify({"logs": [_log_json(e) for e in entries]}), 200


@bp.get("/users/<user_id>/logs")
def user_logs(user_id: str) -> tuple[Response, int]:
    max_limit = current_app.config["MAX_USER_LOG_LIMIT"]
    raw_limit = request.args.get("limit")
    try:
        limit = (
            int(raw_limit)
            if raw_limit is not None
            else min(DEFAULT_USER_LOG_LIMIT, max_limit)
        )
    except ValueError:
        return _error("'limit' must be an integer", 400)
    if not 1 <= limit <= max_limit:
        return _error(f"'limit' must be between 1 and {max_limit}", 400)

    entries = _service().list_user_logs(user_id, limit)
    return jsonify({"logs": [_log_json(e) for e in entries]}), 200


@bp.post("/provider-events")
def provider_event() -> tuple[Response, int]:
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        return _error("Request body must be a JSON object", 400)

    try:
        event = ProviderEvent.model_validate(body)
    except PydanticValidationError as exc:
        return _error(
            "Provider event validation failed",
            400,
            details=exc.errors(include_url=False, include_context=False),
        )

    applied = _tracker().on_provider_event(
        event.notification_id, event.event_kind, event.timestamp, event.payload
    )
    logger.info(
        "Provider event received",
        extra={
            "notification_id": str(event.notification_id),
            "event_kind": event.event_kind,
            "applied": applied,
        },
    )
    return jsonify({"status": "applied" if applied else "ignored"}), 200


@bp.get("/health")
def health() -> tuple[Response, int]:
    db_ok = _service().health_check()

    status = "healthy" if db_ok else "unhealthy"
    code = 200 if db_ok else 503

    return jsonify({
        "status": status,
        "checks": {"database": "ok" if db_ok else "unreachable"},
    }), code
