"""Push notification adapter (dev stub)."""

import logging
from typing import Any

from notifyq.db.models import QueuedNotification
from notifyq.enums import Channel
from notifyq.schemas import PushRecipient, Recipient

from dispatch_worker.channels.base import ChannelAdapter

logger = logging.getLogger(__name__)


class PushAdapter(ChannelAdapter):
    """Stub push adapter that logs one send per device token.

    Ready for FCM/APNs: replace the body of _deliver() with the SDK call.
    """

    channel = Channel.PUSH

    def _deliver(
        self, record: QueuedNotification, recipient: Recipient
    ) -> dict[str, Any]:
        recipient = self._expect(recipient, PushRecipient)
        logger.info(
            "Push sent (stub)",
            extra={
                "notification_id": str(record.id),
                "user_id": record.user_id,
                "device_count": len(recipient.device_tokens),
                "title": record.title,
            },
        )
        return {"provider": "stub", "accepted_tokens": len(recipient.device_tokens)}
