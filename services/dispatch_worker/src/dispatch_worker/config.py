from pydantic_settings import BaseSettings, SettingsConfigDict

from notifyq.enums import Channel, Priority


class CeleryConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="CELERY_")

    broker_url: str = "redis://localhost:6379/0"


class DispatchConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="DISPATCH_")

    log_level: str = "INFO"
    batch_size: int = 50
    max_workers: int = 8
    poll_interval_seconds: float = 2.0
    persistence_backoff_seconds: float = 5.0
    log_write_attempts: int = 3
    throttle_delay_seconds: float = 10.0
    # Must exceed the slowest adapter call (see WEBHOOK_TIMEOUT_SECONDS).
    claim_lease_seconds: float = 600.0


class RetryConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="RETRY_")

    max_attempts: int = 5
    base_delay_seconds: float = 30.0
    max_delay_seconds: float = 3600.0
    multiplier: float = 2.0
    urgent_factor: float = 0.25
    high_factor: float = 0.5
    normal_factor: float = 1.0
    low_factor: float = 2.0

    def priority_factors(self) -> dict[str, float]:
        return {
            Priority.URGENT: self.urgent_factor,
            Priority.HIGH: self.high_factor,
            Priority.NORMAL: self.normal_factor,
            Priority.LOW: self.low_factor,
        }


class RateLimitConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="RATE_LIMIT_")

    enabled: bool = True
    email_per_window: int = 100
    push_per_window: int = 200
    sms_per_window: int = 50
    in_app_per_window: int = 1000
    webhook_per_window: int = 100
    window_seconds: int = 60

    def limit_for_channel(self, channel: str) -> int:
        """Return the per-window limit for a channel."""
        limits = {
            Channel.EMAIL: self.email_per_window,
            Channel.PUSH: self.push_per_window,
            Channel.SMS: self.sms_per_window,
            Channel.IN_APP: self.in_app_per_window,
            Channel.WEBHOOK: self.webhook_per_window,
        }
        limit = limits.get(channel)
        if limit is None:
            raise ValueError(f"Unknown channel: {channel!r}")
        return limit


class WebhookConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="WEBHOOK_")

    timeout_seconds: float = 10.0
    user_agent: str = "notifyq-webhook/1.0"
