"""
Sliding-window rate limiting for webhook deliveries.

Global (not per IP): bounds how many deliveries per window the pipeline
accepts, protecting the database and handlers. A rejected delivery is still
acknowledged with 200 by the endpoint so Stripe does not pile up retries.
"""
import time
import uuid
from collections import deque
from typing import Awaitable, Callable

import redis.asyncio as aioredis

from app.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_WINDOW_SECONDS = 60
DEFAULT_MAX_REQUESTS = 100


class SlidingWindowRateLimiter:
    """Process-local sliding window of accepted-delivery timestamps"""

    def __init__(
        self,
        max_requests: int = DEFAULT_MAX_REQUESTS,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_requests = max_requests
        self._window_seconds = window_seconds
        self._clock = clock
        self._timestamps: deque[float] = deque()

    @property
    def max_requests(self) -> int:
        return self._max_requests

    def _cleanup_window(self, now: float) -> None:
        """Drop timestamps that fell out of the window"""
        cutoff = now - self._window_seconds
        while self._timestamps and self._timestamps[0] <= cutoff:
            self._timestamps.popleft()

    async def check(self) -> bool:
        """Record and accept a delivery if the window has room, else reject"""
        now = self._clock()
        self._cleanup_window(now)

        if len(self._timestamps) >= self._max_requests:
            logger.warning(
                "Webhook rate limit exceeded",
                extra_data={
                    "limit": self._max_requests,
                    "window_seconds": self._window_seconds,
                },
            )
            return False

        self._timestamps.append(now)
        return True

    async def current_usage(self) -> int:
        self._cleanup_window(self._clock())
        return len(self._timestamps)

    async def reset(self) -> None:
        self._timestamps.clear()


class RedisSlidingWindowRateLimiter:
    """
    Sliding window shared by every replica, kept in a Redis sorted set
    (member = unique id, score = timestamp).

    The trim/count/add sequence is not atomic, so concurrent replicas can
    overshoot the ceiling slightly. Redis errors fail open: availability of
    payment webhooks beats strict throttling.
    """

    def __init__(
        self,
        redis_factory: Callable[[], Awaitable[aioredis.Redis]],
        max_requests: int = DEFAULT_MAX_REQUESTS,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        key: str = "webhook:rate:stripe",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._redis_factory = redis_factory
        self._max_requests = max_requests
        self._window_seconds = window_seconds
        self._key = key
        self._clock = clock

    @property
    def max_requests(self) -> int:
        return self._max_requests

    async def check(self) -> bool:
        now = self._clock()
        try:
            client = await self._redis_factory()
            await client.zremrangebyscore(self._key, 0, now - self._window_seconds)
            count = await client.zcard(self._key)
            if count >= self._max_requests:
                logger.warning(
                    "Webhook rate limit exceeded",
                    extra_data={
                        "limit": self._max_requests,
                        "window_seconds": self._window_seconds,
                        "backend": "redis",
                    },
                )
                return False
            await client.zadd(self._key, {f"{now}:{uuid.uuid4().hex[:8]}": now})
            await client.expire(self._key, int(self._window_seconds) + 1)
            return True
        except Exception:
            logger.warning(
                "Redis unavailable for webhook rate limiting, allowing delivery",
                exc_info=True,
            )
            return True

    async def current_usage(self) -> int:
        try:
            client = await self._redis_factory()
            await client.zremrangebyscore(self._key, 0, self._clock() - self._window_seconds)
            return await client.zcard(self._key)
        except Exception:
            logger.warning("Redis unavailable for rate window inspection", exc_info=True)
            return 0

    async def reset(self) -> None:
        client = await self._redis_factory()
        await client.delete(self._key)
