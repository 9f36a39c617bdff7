"""
Registry mapping Stripe event types to async handler functions.

Handlers receive the verified event and an open SQLAlchemy session inside a
transaction. They must not commit; the processor commits on return and rolls
back on any exception.
"""
from __future__ import annotations

from typing import Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.services.stripe_webhook.events import InboundEvent

EventHandler = Callable[[InboundEvent, AsyncSession], Awaitable[None]]


class HandlerRegistry:
    """Open set of event type -> handler, populated at startup"""

    def __init__(self) -> None:
        self._handlers: dict[str, EventHandler] = {}

    def register(self, event_type: str) -> Callable[[EventHandler], EventHandler]:
        """Decorator form: ``@registry.register("checkout.session.completed")``"""
        def decorator(func: EventHandler) -> EventHandler:
            self.add(event_type, func)
            return func
        return decorator

    def add(self, event_type: str, handler: EventHandler) -> None:
        if event_type in self._handlers:
            raise ValueError(f"Handler already registered for {event_type}")
        self._handlers[event_type] = handler

    def get(self, event_type: str) -> EventHandler | None:
        return self._handlers.get(event_type)

    @property
    def event_types(self) -> list[str]:
        return sorted(self._handlers)

    def __contains__(self, event_type: object) -> bool:
        return event_type in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)
