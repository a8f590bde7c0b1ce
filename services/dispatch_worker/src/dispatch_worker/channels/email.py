"""Email channel adapter (dev stub)."""

import logging
import uuid
from typing import Any

from notifyq.db.models import QueuedNotification
from notifyq.enums import Channel
from notifyq.schemas import Recipient

from dispatch_worker.channels.base import ChannelAdapter

logger = logging.getLogger(__name__)


class EmailAdapter(ChannelAdapter):
    """Stub email adapter that logs instead of sending.

    Swap the body of _deliver() for an SMTP/SES/SendGrid call; the
    provider's bounce webhooks feed back through the provider-events API.
    """

    channel = Channel.EMAIL

    def _deliver(
        self, record: QueuedNotification, recipient: Recipient
    ) -> dict[str, Any]:
        message_id = f"<{uuid.uuid4()}@notifyq.local>"
        logger.info(
            "Email sent (stub)",
            extra={
                "notification_id": str(record.id),
                "user_id": record.user_id,
                "subject": record.title,
                "message_id": message_id,
            },
        )
        return {"provider": "stub", "message_id": message_id}
