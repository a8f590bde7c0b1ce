"""Webhook adapter: POSTs the notification as JSON to the recipient URL."""

import hashlib
import hmac
import json
import logging
from typing import Any

import httpx

from notifyq.db.models import QueuedNotification
from notifyq.enums import Channel, ErrorKind
from notifyq.errors import PermanentChannelError, TransientChannelError
from notifyq.schemas import Recipient, WebhookRecipient

from dispatch_worker.channels.base import ChannelAdapter
from dispatch_worker.config import WebhookConfig

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Notifyq-Signature"
IDEMPOTENCY_HEADER = "Idempotency-Key"


def sign_body(secret: str, body: bytes) -> str:
    """HMAC-SHA256 signature the receiver can verify."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


class WebhookAdapter(ChannelAdapter):
    """Delivers over HTTP.

    Every request carries the notification id as an Idempotency-Key, so
    receivers can drop repeats and retries stay safe. A 2xx response is
    the final word; there are no delivery receipts.
    """

    channel = Channel.WEBHOOK
    confirms_delivery = False

    def __init__(
        self,
        config: WebhookConfig | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        config = config or WebhookConfig()
        self._client = client or httpx.Client(
            timeout=config.timeout_seconds,
            headers={"User-Agent": config.user_agent},
        )

    def _deliver(
        self, record: QueuedNotification, recipient: Recipient
    ) -> dict[str, Any]:
        recipient = self._expect(recipient, WebhookRecipient)
        body = json.dumps({
            "notification_id": str(record.id),
            "user_id": record.user_id,
            "title": record.title,
            "message": record.message,
            "priority": record.priority,
            "metadata": record.meta,
        }).encode("utf-8")
        headers = {
            "Content-Type": "application/json",
            IDEMPOTENCY_HEADER: str(record.id),
        }
        if recipient.secret:
            headers[SIGNATURE_HEADER] = sign_body(recipient.secret, body)

        try:
            response = self._client.post(str(recipient.url), content=body, headers=headers)
        except httpx.TimeoutException as exc:
            raise TransientChannelError(
                f"Webhook timed out: {exc}", kind=ErrorKind.TIMEOUT, code="timeout"
            ) from exc
        except httpx.TransportError as exc:
            raise TransientChannelError(
                f"Webhook transport error: {exc}", code="transport_error"
            ) from exc

        provider_response = {
            "status_code": response.status_code,
            "body": response.text[:512],
        }
        code = f"http_{response.status_code}"
        if response.status_code == 429 or response.is_server_error:
            raise TransientChannelError(
                f"Webhook returned {response.status_code}",
                code=code,
                provider_response=provider_response,
            )
        if response.status_code == 410:
            raise PermanentChannelError(
                "Webhook endpoint is gone",
                kind=ErrorKind.UNSUBSCRIBED,
                code=code,
                provider_response=provider_response,
            )
        if response.is_client_error:
            raise PermanentChannelError(
                f"Webhook rejected the request with {response.status_code}",
                code=code,
                provider_response=provider_response,
            )

        logger.info(
            "Webhook delivered",
            extra={
                "notification_id": str(record.id),
                "status_code": response.status_code,
            },
        )
        return provider_response

    def close(self) -> None:
        self._client.close()
