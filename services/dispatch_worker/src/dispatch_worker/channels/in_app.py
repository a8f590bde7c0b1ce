"""In-app inbox adapter.

The queue record itself is the inbox entry, so "sending" only marks it
visible to the user's client. There is no delivery receipt.
"""

import logging
from typing import Any

from notifyq.db.models import QueuedNotification
from notifyq.enums import Channel
from notifyq.schemas import Recipient

from dispatch_worker.channels.base import ChannelAdapter

logger = logging.getLogger(__name__)


class InAppAdapter(ChannelAdapter):
    channel = Channel.IN_APP
    confirms_delivery = False

    def _deliver(
        self, record: QueuedNotification, recipient: Recipient
    ) -> dict[str, Any]:
        logger.info(
            "In-app notification published",
            extra={"notification_id": str(record.id), "user_id": record.user_id},
        )
        return {"inbox": record.user_id}
