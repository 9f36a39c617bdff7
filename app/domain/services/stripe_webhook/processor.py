"""
Event Processor - dispatches one verified event to its type handler.

Each attempt runs the handler in a fresh session and transaction, bounded by
a timeout, and converts every handler failure into a ProcessingResult:

- no handler for the type     -> EventNotSupportedError (fatal)
- timeout                     -> ProcessingTimeoutError (retryable)
- WebhookError                -> its own ``retryable`` flag
- anything else               -> retryable
"""
from __future__ import annotations

import asyncio
import time

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.exceptions import EventNotSupportedError, ProcessingTimeoutError, WebhookError
from app.core.logging import get_logger
from app.domain.services.stripe_webhook.events import (
    InboundEvent,
    ProcessingContext,
    ProcessingResult,
)
from app.domain.services.stripe_webhook.metrics import MetricsCollector
from app.domain.services.stripe_webhook.registry import EventHandler, HandlerRegistry
from app.domain.services.stripe_webhook.store import add_processed_marker, event_logged

logger = get_logger(__name__)

DEFAULT_TIMEOUT_MS = 30000


class EventProcessor:
    def __init__(
        self,
        registry: HandlerRegistry,
        session_factory: async_sessionmaker[AsyncSession],
        metrics: MetricsCollector,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
    ) -> None:
        self._registry = registry
        self._session_factory = session_factory
        self._metrics = metrics
        self._timeout_ms = timeout_ms

    async def process(self, event: InboundEvent, context: ProcessingContext) -> ProcessingResult:
        started = time.monotonic()
        handler = self._registry.get(event.type)

        try:
            if handler is None:
                raise EventNotSupportedError(event.type)
            try:
                duplicate = await asyncio.wait_for(
                    self._execute_handler(handler, event),
                    timeout=self._timeout_ms / 1000,
                )
            except asyncio.TimeoutError:
                raise ProcessingTimeoutError(event.id, self._timeout_ms)
        except WebhookError as exc:
            return self._failure(event, context, started, exc, exc.retryable)
        except Exception as exc:
            logger.error(
                "Webhook handler raised",
                extra_data={
                    "event_id": event.id,
                    "event_type": event.type,
                    "attempt": context.attempt,
                    "error": str(exc),
                },
                exc_info=True,
            )
            return self._failure(event, context, started, exc, True)

        duration_ms = _elapsed_ms(started)
        self._metrics.record_success(event.type, duration_ms)
        logger.info(
            "Webhook event processed",
            extra_data={
                "event_id": event.id,
                "event_type": event.type,
                "attempt": context.attempt,
                "duration_ms": duration_ms,
                "duplicate": duplicate,
            },
        )
        result = ProcessingResult.ok(duration_ms, attempt=context.attempt)
        if duplicate:
            result.metadata["duplicate"] = True
        return result

    async def _execute_handler(self, handler: EventHandler, event: InboundEvent) -> bool:
        """
        Run the handler and the processed marker in one transaction.

        Returns True, without running the handler, when the event was
        recorded after the caller's duplicate check, and True when the commit
        lost a race to another worker (our side effects are rolled back).
        """
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    if await event_logged(session, event.id):
                        return True
                    await handler(event, session)
                    await add_processed_marker(session, event)
        except IntegrityError:
            if await self._already_recorded(event.id):
                logger.info(
                    "Webhook event committed concurrently elsewhere",
                    extra_data={"event_id": event.id, "event_type": event.type},
                )
                return True
            raise
        return False

    async def _already_recorded(self, event_id: str) -> bool:
        async with self._session_factory() as session:
            return await event_logged(session, event_id)

    def _failure(
        self,
        event: InboundEvent,
        context: ProcessingContext,
        started: float,
        exc: Exception,
        retryable: bool,
    ) -> ProcessingResult:
        self._metrics.record_failure(event.type, retryable)
        if isinstance(exc, WebhookError):
            logger.warning(
                "Webhook event failed",
                extra_data={
                    "event_id": event.id,
                    "event_type": event.type,
                    "attempt": context.attempt,
                    "error_code": exc.error_code.value,
                    "retryable": retryable,
                },
            )
            return ProcessingResult(
                success=False,
                duration_ms=_elapsed_ms(started),
                error=exc.message,
                retryable=retryable,
                error_code=exc.error_code.value,
                status_code=exc.status_code,
                metadata={"attempt": context.attempt},
            )
        return ProcessingResult(
            success=False,
            duration_ms=_elapsed_ms(started),
            error=str(exc) or type(exc).__name__,
            retryable=retryable,
            metadata={"attempt": context.attempt},
        )


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
