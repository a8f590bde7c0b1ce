"""Kafka publisher for notification status-change events."""

import json
import logging
from typing import Protocol
from uuid import UUID

from confluent_kafka import Producer

from notifyq.config import KafkaConfig

logger = logging.getLogger(__name__)


class StatusPublisher(Protocol):
    def publish_status(
        self,
        notification_id: UUID,
        status: str,
        channel: str,
        user_id: str,
        attempt_count: int,
    ) -> None: ...

    def close(self) -> None: ...


class KafkaStatusPublisher:
    """Publishes status changes to the status events topic.

    Messages are keyed by notification id so that all changes of one
    notification land on the same partition, in order.
    """

    def __init__(self, config: KafkaConfig) -> None:
        self._topic = config.status_events_topic
        self._producer = Producer({
            "bootstrap.servers": config.bootstrap_servers,
            "acks": "all",
            "enable.idempotence": True,
            "linger.ms": 5,
            "compression.type": "lz4",
        })

    def publish_status(
        self,
        notification_id: UUID,
        status: str,
        channel: str,
        user_id: str,
        attempt_count: int,
    ) -> None:
        value = json.dumps({
            "notification_id": str(notification_id),
            "status": str(status),
            "channel": str(channel),
            "user_id": user_id,
            "attempt_count": attempt_count,
        }).encode("utf-8")

        self._producer.produce(
            topic=self._topic,
            key=str(notification_id).encode("utf-8"),
            value=value,
            on_delivery=self._on_delivery,
        )
        self._producer.poll(0)

    def close(self, timeout: float = 10.0) -> None:
        """Flush buffered messages before shutdown."""
        remaining = self._producer.flush(timeout=timeout)
        if remaining > 0:
            logger.warning(
                "Status publisher closed with unflushed messages",
                extra={"remaining": remaining},
            )

    @staticmethod
    def _on_delivery(err: object, msg: object) -> None:
        if err is not None:
            logger.error("Status event delivery failed: %s", err)
