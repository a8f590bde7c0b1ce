"""Value objects passed between adapters, the retry policy and the tracker."""

import datetime
from dataclasses import dataclass, field
from typing import Any

from notifyq.enums import ErrorKind, LogStatus


@dataclass(frozen=True, slots=True)
class DeliveryOutcome:
    """Normalized result of one adapter send attempt."""

    status: LogStatus
    provider_response: dict[str, Any] = field(default_factory=dict)
    error_kind: ErrorKind | None = None
    error_code: str | None = None
    error_message: str | None = None
    duration_ms: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status == LogStatus.SENT

    @classmethod
    def sent(
        cls, provider_response: dict[str, Any] | None = None, duration_ms: int = 0
    ) -> "DeliveryOutcome":
        return cls(
            status=LogStatus.SENT,
            provider_response=provider_response or {},
            duration_ms=duration_ms,
        )

    @classmethod
    def failed(
        cls,
        kind: ErrorKind,
        message: str,
        *,
        code: str | None = None,
        provider_response: dict[str, Any] | None = None,
        duration_ms: int = 0,
    ) -> "DeliveryOutcome":
        return cls(
            status=LogStatus.FAILED,
            provider_response=provider_response or {},
            error_kind=kind,
            error_code=code,
            error_message=message,
            duration_ms=duration_ms,
        )


@dataclass(frozen=True, slots=True)
class RetryAt:
    """Put the record back to pending; not eligible before *wait_until*."""

    wait_until: datetime.datetime


@dataclass(frozen=True, slots=True)
class GiveUp:
    """Fail the record for good."""

    reason: str
    manual_review: bool = False


RetryDecision = RetryAt | GiveUp
