"""Request models for the producer-facing enqueue API.

Recipient information is a tagged union keyed by channel, so a push
notification that only carries an email address fails validation.
"""

import datetime
from typing import Annotated, Any, Literal, Self
from uuid import UUID

from pydantic import (
    AnyHttpUrl,
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    TypeAdapter,
    model_validator,
)

from notifyq.enums import Channel, Priority, ProviderEventKind

TITLE_MAX_LENGTH = 255


class _Recipient(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class EmailRecipient(_Recipient):
    channel: Literal["email"] = "email"
    email: EmailStr


class PushRecipient(_Recipient):
    channel: Literal["push"] = "push"
    device_tokens: list[str] = Field(min_length=1)


class SmsRecipient(_Recipient):
    channel: Literal["sms"] = "sms"
    phone: str = Field(pattern=r"^\+?[0-9]{6,15}$")


class InAppRecipient(_Recipient):
    channel: Literal["in_app"] = "in_app"


class WebhookRecipient(_Recipient):
    channel: Literal["webhook"] = "webhook"
    url: AnyHttpUrl
    secret: str | None = None


Recipient = (
    EmailRecipient | PushRecipient | SmsRecipient | InAppRecipient | WebhookRecipient
)
RecipientInfo = Annotated[Recipient, Field(discriminator="channel")]


class EnqueueRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    user_id: str = Field(min_length=1, max_length=64)
    channel: Channel
    title: str | None = Field(default=None, max_length=TITLE_MAX_LENGTH)
    message: str | None = None
    priority: Priority = Priority.NORMAL
    recipient_info: RecipientInfo
    scheduled_for: datetime.datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    template_id: UUID | None = None

    @model_validator(mode="before")
    @classmethod
    def _tag_recipient(cls, data: Any) -> Any:
        """Key the recipient union by the request's channel."""
        if isinstance(data, dict):
            recipient = data.get("recipient_info")
            channel = data.get("channel")
            if isinstance(recipient, dict) and channel is not None:
                data = {
                    **data,
                    "recipient_info": {**recipient, "channel": str(channel)},
                }
        return data

    @model_validator(mode="after")
    def _check_content(self) -> Self:
        if self.template_id is None:
            if not self.title:
                raise ValueError("title is required when no template_id is given")
            if not self.message:
                raise ValueError("message is required when no template_id is given")
        if self.scheduled_for is not None and self.scheduled_for.tzinfo is None:
            raise ValueError("scheduled_for must be timezone-aware")
        return self


_recipient_adapter: TypeAdapter[Recipient] = TypeAdapter(RecipientInfo)


def parse_recipient(data: dict[str, Any]) -> Recipient:
    """Rebuild the typed recipient from its stored (tagged) form."""
    return _recipient_adapter.validate_python(data)


class ProviderEvent(BaseModel):
    """Delivery confirmation reported by a channel provider's webhook."""

    notification_id: UUID
    event_kind: ProviderEventKind
    timestamp: datetime.datetime = Field(
        default_factory=lambda: datetime.datetime.now(datetime.UTC)
    )
    payload: dict[str, Any] = Field(default_factory=dict)
