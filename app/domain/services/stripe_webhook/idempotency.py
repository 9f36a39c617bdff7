"""
Idempotency Manager - duplicate detection and per-event concurrency coordination.

Two layers:
- durable check: processed-id cache (TTL, best-effort) or a ``payment_logs``
  row for the event id (source of truth across restarts and replicas)
- in-flight map: concurrent deliveries of one event id inside this process
  share a single ``asyncio.Task`` instead of running the handler twice
"""
from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, Protocol

import redis.asyncio as aioredis

from app.core.logging import get_logger
from app.domain.services.stripe_webhook.events import ProcessingResult
from app.domain.services.stripe_webhook.store import PaymentLogStore

logger = get_logger(__name__)

DEFAULT_CACHE_TTL_SECONDS = 3600


class ProcessedCache(Protocol):
    async def contains(self, event_id: str) -> bool: ...

    async def add(self, event_id: str) -> None: ...


class ProcessedEventCache:
    """Process-local event id cache with per-entry expiry"""

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._expires_at: dict[str, float] = {}

    def _prune(self, now: float) -> None:
        expired = [key for key, deadline in self._expires_at.items() if deadline <= now]
        for key in expired:
            del self._expires_at[key]

    async def contains(self, event_id: str) -> bool:
        deadline = self._expires_at.get(event_id)
        if deadline is None:
            return False
        if deadline <= self._clock():
            del self._expires_at[event_id]
            return False
        return True

    async def add(self, event_id: str) -> None:
        now = self._clock()
        self._prune(now)
        self._expires_at[event_id] = now + self._ttl

    def __len__(self) -> int:
        return len(self._expires_at)


class RedisProcessedEventCache:
    """Event id cache shared by replicas; Redis errors degrade to a cache miss"""

    KEY_PREFIX = "webhook:processed:stripe:"

    def __init__(
        self,
        redis_factory: Callable[[], Awaitable[aioredis.Redis]],
        ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS,
    ) -> None:
        self._redis_factory = redis_factory
        self._ttl = ttl_seconds

    async def contains(self, event_id: str) -> bool:
        try:
            client = await self._redis_factory()
            return bool(await client.exists(f"{self.KEY_PREFIX}{event_id}"))
        except Exception:
            logger.warning(
                "Redis unavailable for processed-event lookup, falling back to database",
                extra_data={"event_id": event_id},
                exc_info=True,
            )
            return False

    async def add(self, event_id: str) -> None:
        try:
            client = await self._redis_factory()
            await client.set(f"{self.KEY_PREFIX}{event_id}", "1", ex=self._ttl)
        except Exception:
            logger.warning(
                "Redis unavailable, processed event not cached",
                extra_data={"event_id": event_id},
                exc_info=True,
            )


class IdempotencyManager:
    def __init__(self, store: PaymentLogStore, cache: ProcessedCache) -> None:
        self._store = store
        self._cache = cache
        self._in_flight: dict[str, asyncio.Task[ProcessingResult]] = {}

    async def is_processed(self, event_id: str) -> bool:
        """Cache first, then the durable log"""
        if await self._cache.contains(event_id):
            return True
        return await self._store.has_event(event_id)

    def is_in_flight(self, event_id: str) -> bool:
        return event_id in self._in_flight

    async def process(
        self,
        event_id: str,
        processor: Callable[[], Awaitable[ProcessingResult]],
    ) -> ProcessingResult:
        """
        Run ``processor`` once per event id at a time.

        A concurrent caller for the same id awaits the running task and gets
        the same result (or exception). The map entry is dropped when the
        task settles, whatever the outcome.
        """
        task = self._in_flight.get(event_id)
        if task is not None:
            logger.info(
                "Joining in-flight processing of webhook event",
                extra_data={"event_id": event_id},
            )
            return await asyncio.shield(task)

        task = asyncio.create_task(processor())
        self._in_flight[event_id] = task
        task.add_done_callback(lambda _: self._release(event_id, task))
        return await asyncio.shield(task)

    def _release(self, event_id: str, task: asyncio.Task[ProcessingResult]) -> None:
        if self._in_flight.get(event_id) is task:
            del self._in_flight[event_id]

    async def mark_processed(self, event_id: str) -> None:
        """Best-effort cache entry; durability comes from the processor's own write"""
        await self._cache.add(event_id)
