"""Per-channel fixed-window rate limiter backed by Redis."""

import time
from collections.abc import Callable

from redis import Redis

from dispatch_worker.config import RateLimitConfig


class RateLimiter:
    """Counts delivery attempts per channel in fixed time windows.

    Each window has its own counter key, incremented with INCR inside a
    MULTI/EXEC pipeline, so concurrent workers on any host share one
    budget. Keys expire shortly after their window closes.
    """

    KEY_PREFIX = "ratelimit"

    def __init__(
        self,
        redis_client: Redis,
        config: RateLimitConfig,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._redis = redis_client
        self._config = config
        self._clock = clock

    def key_for(self, channel: str) -> str:
        window = int(self._clock() // self._config.window_seconds)
        return f"{self.KEY_PREFIX}:{channel}:{window}"

    def acquire(self, channel: str) -> bool:
        """Take one slot for *channel*; False once the window is full."""
        limit = self._config.limit_for_channel(channel)
        key = self.key_for(channel)

        pipe = self._redis.pipeline()
        pipe.incr(key)
        pipe.expire(key, self._config.window_seconds + 1)
        count, _ = pipe.execute()
        return int(count) <= limit
