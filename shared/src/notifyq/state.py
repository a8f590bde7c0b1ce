"""Notification status state machine.

Every status write goes through :func:`check_transition`, so an illegal
transition fails before anything reaches the database.
"""

from notifyq.enums import LogStatus, NotificationStatus, ProviderEventKind
from notifyq.errors import IllegalTransitionError

S = NotificationStatus

TRANSITIONS: dict[NotificationStatus, frozenset[NotificationStatus]] = {
    S.PENDING: frozenset({S.PROCESSING, S.CANCELLED}),
    S.PROCESSING: frozenset({S.SENT, S.PENDING, S.FAILED, S.CANCELLED}),
    # sent -> failed only happens on a provider bounce/unsubscribe event.
    S.SENT: frozenset({S.DELIVERED, S.READ, S.FAILED}),
    S.DELIVERED: frozenset({S.READ}),
    S.READ: frozenset(),
    S.FAILED: frozenset(),
    S.CANCELLED: frozenset(),
}

CANCELLABLE = frozenset({S.PENDING, S.PROCESSING})

# Provider callback kind -> (target record status, log entry status)
PROVIDER_EVENTS: dict[ProviderEventKind, tuple[NotificationStatus, LogStatus]] = {
    ProviderEventKind.DELIVERED: (S.DELIVERED, LogStatus.DELIVERED),
    ProviderEventKind.READ: (S.READ, LogStatus.READ),
    ProviderEventKind.BOUNCED: (S.FAILED, LogStatus.BOUNCED),
    ProviderEventKind.UNSUBSCRIBED: (S.FAILED, LogStatus.UNSUBSCRIBED),
}


def can_transition(current: str, target: str) -> bool:
    return NotificationStatus(target) in TRANSITIONS[NotificationStatus(current)]


def check_transition(current: str, target: str) -> None:
    """Raise IllegalTransitionError unless current -> target is allowed."""
    if not can_transition(current, target):
        raise IllegalTransitionError(current, target)


def is_terminal(status: str, confirms_delivery: bool) -> bool:
    """Whether no further transition can happen for a record.

    ``sent`` is terminal only on channels without delivery confirmation.
    """
    status = NotificationStatus(status)
    if status == S.SENT:
        return not confirms_delivery
    return not TRANSITIONS[status]
