"""Channel adapter registry for per-channel delivery dispatch."""

from notifyq.enums import Channel

from dispatch_worker.channels.base import ChannelAdapter
from dispatch_worker.channels.email import EmailAdapter
from dispatch_worker.channels.in_app import InAppAdapter
from dispatch_worker.channels.push import PushAdapter
from dispatch_worker.channels.sms import SMSAdapter
from dispatch_worker.channels.webhook import WebhookAdapter
from dispatch_worker.config import WebhookConfig


class ChannelRegistry:
    """Maps channel names to adapter instances."""

    def __init__(self) -> None:
        self._adapters: dict[str, ChannelAdapter] = {}

    def register(self, adapter: ChannelAdapter) -> None:
        self._adapters[adapter.channel] = adapter

    def get(self, channel: str) -> ChannelAdapter:
        """Return the adapter for a channel.

        Raises KeyError if no adapter is registered for the channel.
        """
        return self._adapters[channel]

    def confirms_delivery(self, channel: str) -> bool:
        adapter = self._adapters.get(channel)
        if adapter is None:
            return Channel(channel).confirms_delivery
        return adapter.confirms_delivery

    def close(self) -> None:
        for adapter in self._adapters.values():
            adapter.close()


def create_default_registry(webhook_config: WebhookConfig | None = None) -> ChannelRegistry:
    """Create a registry with all built-in adapters."""
    registry = ChannelRegistry()
    registry.register(EmailAdapter())
    registry.register(PushAdapter())
    registry.register(SMSAdapter())
    registry.register(InAppAdapter())
    registry.register(WebhookAdapter(webhook_config))
    return registry


__all__ = [
    "ChannelAdapter",
    "ChannelRegistry",
    "create_default_registry",
]
