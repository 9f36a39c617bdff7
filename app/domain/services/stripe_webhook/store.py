"""
Durable event log access for the webhook pipeline.

``payment_logs`` doubles as the idempotency record: a row carrying a
``stripe_event_id`` means the event reached a terminal outcome (handled,
marked processed, or dead-lettered).
"""
from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.db.models.order import Order
from app.db.models.payment_log import (
    DEAD_LETTER_PREFIX,
    PROCESSED_MARKER_PREFIX,
    PaymentLog,
    PaymentLogStatus,
)
from app.domain.services.stripe_webhook.events import InboundEvent


async def event_logged(session: AsyncSession, event_id: str) -> bool:
    """Check for a row with this event id visible to ``session`` (pending rows included)"""
    result = await session.execute(
        select(PaymentLog.id).where(PaymentLog.stripe_event_id == event_id).limit(1)
    )
    return result.scalar_one_or_none() is not None


async def add_processed_marker(session: AsyncSession, event: InboundEvent) -> bool:
    """
    Add a "processed" row for the event unless the handler already logged one.

    Runs inside the handler's transaction so the marker commits atomically
    with the handler's side effects. Returns True if a marker was added.
    """
    if await event_logged(session, event.id):
        return False

    session.add(PaymentLog(
        order_id=None,
        event=f"{PROCESSED_MARKER_PREFIX}{event.type}",
        status=PaymentLogStatus.PROCESSED,
        stripe_event_id=event.id,
        raw_data=event.raw,
    ))
    return True


class PaymentLogStore:
    """Query-by-id and append access to ``payment_logs`` with its own sessions"""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def has_event(self, event_id: str) -> bool:
        async with self._session_factory() as session:
            return await event_logged(session, event_id)

    async def append_dead_letter(
        self,
        event: InboundEvent,
        error_message: str,
        order_id: str | None = None,
    ) -> int:
        """Append a dead-letter row and return its id"""
        async with self._session_factory() as session:
            async with session.begin():
                if order_id is not None and await session.get(Order, order_id) is None:
                    # Unknown order: keep the entry, drop the dangling reference
                    order_id = None
                entry = PaymentLog(
                    order_id=order_id,
                    event=f"{DEAD_LETTER_PREFIX}{event.type}",
                    status=PaymentLogStatus.FAILED,
                    stripe_event_id=event.id,
                    raw_data=event.raw,
                    error_message=error_message,
                )
                session.add(entry)
                await session.flush()
                return entry.id

    async def list_dead_letters(
        self,
        limit: int = 50,
        event_type: str | None = None,
    ) -> list[dict[str, Any]]:
        """Newest dead letters first, optionally for one event type"""
        pattern = f"{DEAD_LETTER_PREFIX}{event_type}" if event_type else None
        query = select(PaymentLog).order_by(PaymentLog.created_at.desc(), PaymentLog.id.desc())
        if pattern:
            query = query.where(PaymentLog.event == pattern)
        else:
            query = query.where(PaymentLog.event.startswith(DEAD_LETTER_PREFIX))
        query = query.limit(limit)

        async with self._session_factory() as session:
            rows = (await session.execute(query)).scalars().all()

        return [
            {
                "id": row.id,
                "event_id": row.stripe_event_id,
                "event_type": row.event[len(DEAD_LETTER_PREFIX):],
                "order_id": row.order_id,
                "error_message": row.error_message,
                "created_at": row.created_at.isoformat() if row.created_at else None,
            }
            for row in rows
        ]
