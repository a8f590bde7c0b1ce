"""Exception hierarchy for the notification engine."""

from typing import Any

from notifyq.enums import ErrorKind


class NotifyQError(Exception):
    """Base class for all engine errors."""


class ValidationError(NotifyQError):
    """An enqueue request was malformed and never entered the queue."""

    def __init__(self, message: str, details: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message)
        self.details = details or []


class NotificationNotFoundError(NotifyQError):
    def __init__(self, notification_id: object) -> None:
        super().__init__(f"Notification not found: {notification_id}")
        self.notification_id = notification_id


class IllegalTransitionError(NotifyQError):
    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"Illegal status transition: {current} -> {target}")
        self.current = current
        self.target = target


class PersistenceError(NotifyQError):
    """The persistence gateway could not complete an operation."""


class ChannelError(NotifyQError):
    """Raised inside channel adapters; never escapes the adapter boundary."""

    kind: ErrorKind = ErrorKind.TRANSIENT

    def __init__(
        self,
        message: str,
        *,
        kind: ErrorKind | None = None,
        code: str | None = None,
        provider_response: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        if kind is not None:
            self.kind = kind
        self.code = code
        self.provider_response = provider_response or {}


class TransientChannelError(ChannelError):
    kind = ErrorKind.TRANSIENT


class PermanentChannelError(ChannelError):
    kind = ErrorKind.PERMANENT


class RecordInFlightError(NotifyQError):
    """A provider event arrived while its send was still being recorded."""

    def __init__(self, notification_id: object) -> None:
        super().__init__(f"Notification still in flight: {notification_id}")
        self.notification_id = notification_id
