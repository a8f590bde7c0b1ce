"""SMS adapter (dev stub)."""

import logging
from typing import Any

from notifyq.db.models import QueuedNotification
from notifyq.enums import Channel
from notifyq.schemas import Recipient, SmsRecipient

from dispatch_worker.channels.base import ChannelAdapter

logger = logging.getLogger(__name__)

SMS_SEGMENT_LENGTH = 160


class SMSAdapter(ChannelAdapter):
    """Stub SMS adapter that logs instead of sending.

    SMS gateways offer no idempotency key, so a repeated send after an
    ambiguous failure may reach the phone twice.
    """

    channel = Channel.SMS
    at_most_once = False

    def _deliver(
        self, record: QueuedNotification, recipient: Recipient
    ) -> dict[str, Any]:
        recipient = self._expect(recipient, SmsRecipient)
        segments = max(1, -(-len(record.message) // SMS_SEGMENT_LENGTH))
        logger.info(
            "SMS sent (stub)",
            extra={
                "notification_id": str(record.id),
                "user_id": record.user_id,
                "phone_suffix": recipient.phone[-4:],
                "segments": segments,
            },
        )
        return {"provider": "stub", "segments": segments}
