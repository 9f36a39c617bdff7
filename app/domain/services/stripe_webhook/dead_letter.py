"""
Dead Letter Sink - durable record of events that will not be retried.

Entries are ``payment_logs`` rows tagged ``dlq:<type>``. A failed write is
logged and dropped: losing a dead letter must not fail the webhook request.
"""
from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

from app.core.logging import get_logger
from app.domain.services.stripe_webhook.events import InboundEvent
from app.domain.services.stripe_webhook.metrics import MetricsCollector
from app.domain.services.stripe_webhook.store import PaymentLogStore

logger = get_logger(__name__)


class DeadLetterSink:
    def __init__(self, store: PaymentLogStore, metrics: MetricsCollector) -> None:
        self._store = store
        self._metrics = metrics

    async def send(self, event: InboundEvent, error: str, attempts: int) -> None:
        summary = {
            "error": error,
            "attempts": attempts,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "metadata": {
                "eventType": event.type,
                "created": event.created,
            },
        }
        order_id = event.metadata.get("orderId")

        try:
            entry_id = await self._store.append_dead_letter(
                event,
                error_message=json.dumps(summary),
                order_id=str(order_id) if order_id else None,
            )
        except Exception:
            logger.error(
                "Failed to write dead letter entry",
                extra_data={
                    "event_id": event.id,
                    "event_type": event.type,
                    "attempts": attempts,
                    "error": error,
                },
                exc_info=True,
            )
            return

        self._metrics.record_dlq()
        logger.error(
            "Webhook event sent to dead letter queue",
            extra_data={
                "event_id": event.id,
                "event_type": event.type,
                "attempts": attempts,
                "error": error,
                "entry_id": entry_id,
            },
        )

    async def list_entries(
        self,
        limit: int = 50,
        event_type: str | None = None,
    ) -> list[dict[str, Any]]:
        entries = await self._store.list_dead_letters(limit=limit, event_type=event_type)
        for entry in entries:
            raw = entry.pop("error_message") or "{}"
            try:
                entry["summary"] = json.loads(raw)
            except ValueError:
                entry["summary"] = {"error": raw}
        return entries
