"""
Webhook pipeline - the components of Stripe webhook ingestion wired together.

Built once at startup by ``build_webhook_pipeline`` and kept on
``app.state``; the HTTP route only orchestrates the request-level steps.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable

import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import Settings
from app.core.exceptions import IpNotAllowedError, PayloadTooLargeError
from app.core.logging import get_logger
from app.core.redis_client import get_redis
from app.domain.services.stripe_webhook.dead_letter import DeadLetterSink
from app.domain.services.stripe_webhook.events import (
    InboundEvent,
    ProcessingContext,
    ProcessingResult,
)
from app.domain.services.stripe_webhook.idempotency import (
    IdempotencyManager,
    ProcessedEventCache,
    RedisProcessedEventCache,
)
from app.domain.services.stripe_webhook.metrics import MetricsCollector
from app.domain.services.stripe_webhook.processor import EventProcessor
from app.domain.services.stripe_webhook.rate_limiter import (
    RedisSlidingWindowRateLimiter,
    SlidingWindowRateLimiter,
)
from app.domain.services.stripe_webhook.registry import HandlerRegistry
from app.domain.services.stripe_webhook.retry import RetryCounter, RetryManager, Sleep
from app.domain.services.stripe_webhook.store import PaymentLogStore
from app.domain.services.stripe_webhook.verification import SignatureVerifier

logger = get_logger(__name__)


@dataclass
class WebhookPipeline:
    verifier: SignatureVerifier
    rate_limiter: SlidingWindowRateLimiter | RedisSlidingWindowRateLimiter
    idempotency: IdempotencyManager
    processor: EventProcessor
    retry: RetryManager
    dead_letter: DeadLetterSink
    metrics: MetricsCollector
    allowed_ips: list[str]
    max_payload_bytes: int

    def ensure_ip_allowed(self, client_ip: str) -> None:
        """Empty allowlist allows every address"""
        if self.allowed_ips and client_ip not in self.allowed_ips:
            raise IpNotAllowedError(client_ip)

    def ensure_payload_size(self, size: int | None) -> None:
        if size is not None and size > self.max_payload_bytes:
            raise PayloadTooLargeError(size, self.max_payload_bytes)

    async def handle(self, event: InboundEvent, context: ProcessingContext) -> ProcessingResult:
        """
        Process a verified, not-yet-processed event.

        Concurrent deliveries of the same event share one run. Retryable
        failures go through the retry loop; fatal failures are dead-lettered
        here. Success is cached so quick redeliveries skip the database.
        """
        async def run() -> ProcessingResult:
            result = await self.processor.process(event, context)
            if not result.success and result.retryable:
                result = await self.retry.retry(event, context, result)
            if not result.success and not result.metadata.get("dead_lettered"):
                await self.dead_letter.send(
                    event,
                    result.error or "unknown error",
                    result.metadata.get("attempt", context.attempt),
                )
                result.metadata["dead_lettered"] = True
            return result

        result = await self.idempotency.process(event.id, run)
        if result.success:
            await self.idempotency.mark_processed(event.id)
        return result


def build_webhook_pipeline(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    registry: HandlerRegistry | None = None,
    sleep: Sleep = asyncio.sleep,
    redis_factory: Callable[[], Awaitable[aioredis.Redis]] = get_redis,
) -> WebhookPipeline:
    """Construct every pipeline component from settings"""
    if registry is None:
        from app.domain.services.order_payment_service import build_stripe_handler_registry

        registry = build_stripe_handler_registry()

    metrics = MetricsCollector()
    store = PaymentLogStore(session_factory)

    if settings.WEBHOOK_COORDINATION_BACKEND == "redis":
        rate_limiter = RedisSlidingWindowRateLimiter(
            redis_factory, max_requests=settings.WEBHOOK_MAX_EVENTS_PER_MINUTE
        )
        cache = RedisProcessedEventCache(
            redis_factory, ttl_seconds=settings.WEBHOOK_PROCESSED_CACHE_TTL_SECONDS
        )
    else:
        rate_limiter = SlidingWindowRateLimiter(
            max_requests=settings.WEBHOOK_MAX_EVENTS_PER_MINUTE
        )
        cache = ProcessedEventCache(ttl_seconds=settings.WEBHOOK_PROCESSED_CACHE_TTL_SECONDS)

    processor = EventProcessor(
        registry,
        session_factory,
        metrics,
        timeout_ms=settings.WEBHOOK_PROCESSING_TIMEOUT_MS,
    )
    dead_letter = DeadLetterSink(store, metrics)
    retry = RetryManager(
        processor,
        dead_letter,
        max_retries=settings.WEBHOOK_MAX_RETRIES,
        delays_ms=settings.retry_delays_ms,
        counter=RetryCounter(ttl_seconds=settings.WEBHOOK_RETRY_STATE_TTL_SECONDS),
        sleep=sleep,
    )

    logger.info(
        "Stripe webhook pipeline ready",
        extra_data={
            "backend": settings.WEBHOOK_COORDINATION_BACKEND,
            "event_types": registry.event_types,
            "max_retries": settings.WEBHOOK_MAX_RETRIES,
            "retry_delays_ms": settings.retry_delays_ms,
            "ip_allowlist": len(settings.allowed_webhook_ips),
        },
    )

    return WebhookPipeline(
        verifier=SignatureVerifier(
            settings.STRIPE_WEBHOOK_SECRET,
            tolerance_seconds=settings.WEBHOOK_SIGNATURE_TOLERANCE_SECONDS,
        ),
        rate_limiter=rate_limiter,
        idempotency=IdempotencyManager(store, cache),
        processor=processor,
        retry=retry,
        dead_letter=dead_letter,
        metrics=metrics,
        allowed_ips=settings.allowed_webhook_ips,
        max_payload_bytes=settings.WEBHOOK_MAX_PAYLOAD_BYTES,
    )
