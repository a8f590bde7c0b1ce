"""Abstract channel adapter interface."""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Any, ClassVar, TypeVar

from pydantic import ValidationError as PydanticValidationError

from notifyq.db.models import QueuedNotification
from notifyq.enums import Channel, ErrorKind
from notifyq.errors import ChannelError
from notifyq.outcomes import DeliveryOutcome
from notifyq.schemas import Recipient, parse_recipient

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=Recipient)


class ChannelAdapter(ABC):
    """Base class for all channel adapters.

    Subclasses implement :meth:`_deliver` and signal failure by raising
    :class:`~notifyq.errors.ChannelError`. :meth:`send` never raises: every
    error, expected or not, comes back as a failed DeliveryOutcome.

    Capability flags:

    ``confirms_delivery``
        The provider reports delivered/read events for this channel.
    ``at_most_once``
        Calling ``send`` again for the same record cannot produce a
        second message. When False, failed attempts are not retried
        automatically.
    """

    channel: ClassVar[Channel]
    confirms_delivery: ClassVar[bool] = True
    at_most_once: ClassVar[bool] = True

    def send(self, record: QueuedNotification) -> DeliveryOutcome:
        started = time.monotonic()
        try:
            recipient = parse_recipient(record.recipient_info)
            if recipient.channel != self.channel:
                raise ChannelError(
                    f"Recipient is for {recipient.channel}, not {self.channel}",
                    kind=ErrorKind.INVALID_RECIPIENT,
                    code="recipient_channel_mismatch",
                )
            response = self._deliver(record, recipient)
        except PydanticValidationError as exc:
            outcome = DeliveryOutcome.failed(
                ErrorKind.INVALID_RECIPIENT,
                f"Invalid recipient info: {exc.error_count()} error(s)",
                code="invalid_recipient",
            )
        except ChannelError as exc:
            outcome = DeliveryOutcome.failed(
                exc.kind,
                str(exc),
                code=exc.code,
                provider_response=exc.provider_response,
            )
        except Exception as exc:
            logger.exception(
                "Unexpected adapter error",
                extra={"notification_id": str(record.id), "channel": self.channel},
            )
            outcome = DeliveryOutcome.failed(
                ErrorKind.TRANSIENT,
                f"{type(exc).__name__}: {exc}",
                code="adapter_error",
            )
        else:
            outcome = DeliveryOutcome.sent(response)

        duration_ms = int((time.monotonic() - started) * 1000)
        return replace(outcome, duration_ms=duration_ms)

    @abstractmethod
    def _deliver(
        self, record: QueuedNotification, recipient: Recipient
    ) -> dict[str, Any]:
        """Hand the notification to the provider.

        Returns the provider's response as a plain dict.
        """

    def _expect(self, recipient: Recipient, kind: type[R]) -> R:
        if not isinstance(recipient, kind):
            raise ChannelError(
                f"{self.channel} adapter cannot deliver to {type(recipient).__name__}",
                kind=ErrorKind.INVALID_RECIPIENT,
                code="recipient_channel_mismatch",
            )
        return recipient

    def close(self) -> None:
        """Release transport resources. Default: nothing to release."""
