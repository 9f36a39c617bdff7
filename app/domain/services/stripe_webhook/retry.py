"""
Retry Manager - backoff loop for retryable processing failures.

Attempt 0 is the first processing run. Before retry N the loop sleeps
``delays[N-1]`` (the last delay once the schedule runs out). When the
attempt count reaches ``max_retries`` the event is dead-lettered once and
a final non-retryable failure is returned.

The sleep is awaited inside the request task, so it is cancelled together
with the request (shutdown, client timeout).
"""
from __future__ import annotations

import asyncio
import dataclasses
import time
from typing import Awaitable, Callable

from app.core.logging import get_logger
from app.domain.services.stripe_webhook.dead_letter import DeadLetterSink
from app.domain.services.stripe_webhook.events import (
    InboundEvent,
    ProcessingContext,
    ProcessingResult,
)
from app.domain.services.stripe_webhook.processor import EventProcessor

logger = get_logger(__name__)

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAYS_MS = (1000, 5000, 10000)
DEFAULT_STATE_TTL_SECONDS = 3600

Sleep = Callable[[float], Awaitable[None]]


class RetryCounter:
    """event id -> attempts so far; idle entries expire after ``ttl_seconds``"""

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_STATE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[int, float]] = {}

    def _prune(self, now: float) -> None:
        expired = [key for key, (_, touched) in self._entries.items() if now - touched >= self._ttl]
        for key in expired:
            del self._entries[key]

    def get(self, event_id: str) -> int:
        self._prune(self._clock())
        entry = self._entries.get(event_id)
        return entry[0] if entry else 0

    def increment(self, event_id: str) -> int:
        now = self._clock()
        self._prune(now)
        attempts = self._entries.get(event_id, (0, now))[0] + 1
        self._entries[event_id] = (attempts, now)
        return attempts

    def reset(self, event_id: str) -> None:
        self._entries.pop(event_id, None)

    def __len__(self) -> int:
        return len(self._entries)


def backoff_delay_ms(attempts: int, delays_ms: list[int] | tuple[int, ...]) -> int:
    """Delay before the retry that follows ``attempts`` completed retries"""
    if attempts < len(delays_ms):
        return delays_ms[attempts]
    return delays_ms[-1]


class RetryManager:
    def __init__(
        self,
        processor: EventProcessor,
        dead_letter: DeadLetterSink,
        max_retries: int = DEFAULT_MAX_RETRIES,
        delays_ms: list[int] | tuple[int, ...] = DEFAULT_RETRY_DELAYS_MS,
        counter: RetryCounter | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if not delays_ms:
            raise ValueError("delays_ms must not be empty")
        self._processor = processor
        self._dead_letter = dead_letter
        self._max_retries = max_retries
        self._delays_ms = tuple(delays_ms)
        self._counter = counter or RetryCounter()
        self._sleep = sleep

    @property
    def counter(self) -> RetryCounter:
        return self._counter

    async def retry(
        self,
        event: InboundEvent,
        context: ProcessingContext,
        result: ProcessingResult,
    ) -> ProcessingResult:
        """
        Drive retries after ``result``, the retryable failure of the first attempt.

        Returns the first success, the first fatal failure, or the final
        dead-lettered failure.
        """
        while not result.success and result.retryable:
            attempts = self._counter.get(event.id)

            if attempts >= self._max_retries:
                logger.error(
                    "Webhook retries exhausted",
                    extra_data={
                        "event_id": event.id,
                        "event_type": event.type,
                        "attempts": attempts,
                        "last_error": result.error,
                    },
                )
                await self._dead_letter.send(
                    event, f"Max retries exceeded: {result.error}", attempts
                )
                self._counter.reset(event.id)
                return ProcessingResult(
                    success=False,
                    duration_ms=result.duration_ms,
                    error="Max retries exceeded",
                    retryable=False,
                    metadata={"attempts": attempts, "dead_lettered": True},
                )

            delay_ms = backoff_delay_ms(attempts, self._delays_ms)
            logger.warning(
                "Retrying webhook event",
                extra_data={
                    "event_id": event.id,
                    "event_type": event.type,
                    "attempt": attempts + 1,
                    "delay_ms": delay_ms,
                    "last_error": result.error,
                },
            )
            await self._sleep(delay_ms / 1000)
            attempt = self._counter.increment(event.id)
            result = await self._processor.process(
                event, dataclasses.replace(context, attempt=attempt)
            )

        self._counter.reset(event.id)
        return result

    def reset(self, event_id: str) -> None:
        self._counter.reset(event_id)
