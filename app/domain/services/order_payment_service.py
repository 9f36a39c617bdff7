"""
Order Payment Service - applies Stripe payment events to store orders.

Each method runs inside the webhook processor's transaction: it mutates
orders, stock and carts and appends a ``payment_logs`` row carrying the
Stripe event id, which is also the event's durable idempotency record.
Nothing here commits.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import OrderNotFoundError
from app.core.logging import get_logger
from app.db.models.order import Order, OrderStatus, PaymentMethod, PaymentStatus
from app.db.models.payment_log import PaymentLog, PaymentLogStatus
from app.db.models.product import CartItem, Product
from app.domain.services.stripe_webhook.events import InboundEvent
from app.domain.services.stripe_webhook.registry import HandlerRegistry

logger = get_logger(__name__)


def _to_amount(minor_units: Any) -> Optional[Decimal]:
    """Stripe amounts are integer minor units (cents)"""
    if minor_units is None:
        return None
    return Decimal(int(minor_units)) / 100


class OrderPaymentService:
    """Order state transitions driven by Stripe checkout and payment intent events"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _get_order_by_session(self, session_id: str) -> Order:
        result = await self.db.execute(
            select(Order).where(Order.stripe_session_id == session_id)
        )
        order = result.scalar_one_or_none()
        if order is None:
            raise OrderNotFoundError("stripe_session_id", session_id)
        return order

    async def _get_order(self, order_id: str) -> Order:
        order = await self.db.get(Order, order_id)
        if order is None:
            raise OrderNotFoundError("id", order_id)
        return order

    def _log(
        self,
        event: InboundEvent,
        order_id: str,
        status: str,
        amount: Optional[Decimal] = None,
        currency: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> None:
        self.db.add(PaymentLog(
            order_id=order_id,
            event=event.type,
            status=status,
            amount=amount,
            currency=currency,
            stripe_event_id=event.id,
            raw_data=event.raw,
            error_message=error_message,
        ))

    async def complete_checkout(self, event: InboundEvent) -> None:
        """
        Checkout paid:
        1. Order -> PROCESSING, payment SUCCEEDED, shipping details copied
        2. Decrement stock for every order item
        3. Empty the buyer's cart
        4. Log the payment
        """
        session = event.payload
        order = await self._get_order_by_session(session.get("id", ""))

        method_types = session.get("payment_method_types") or []
        order.status = OrderStatus.PROCESSING
        order.payment_status = PaymentStatus.SUCCEEDED
        order.payment_method = PaymentMethod.PIX if "pix" in method_types else PaymentMethod.CARD
        order.stripe_payment_intent_id = session.get("payment_intent")
        order.paid_at = datetime.now(timezone.utc)

        shipping = session.get("shipping") or session.get("shipping_details") or {}
        address = shipping.get("address") or {}
        # Only overwrite what Stripe actually collected
        for column, value in (
            ("shipping_name", shipping.get("name")),
            ("shipping_address", address.get("line1")),
            ("shipping_city", address.get("city")),
            ("shipping_state", address.get("state")),
            ("shipping_zip_code", address.get("postal_code")),
        ):
            if value:
                setattr(order, column, value)

        for item in order.items:
            await self.db.execute(
                update(Product)
                .where(Product.id == item.product_id)
                .values(stock_quantity=Product.stock_quantity - item.quantity)
            )

        await self.db.execute(delete(CartItem).where(CartItem.user_id == order.user_id))

        currency = session.get("currency")
        self._log(
            event,
            order.id,
            PaymentLogStatus.SUCCEEDED,
            amount=_to_amount(session.get("amount_total")),
            currency=currency.upper() if currency else None,
        )

        logger.info(
            "Order paid via checkout",
            extra_data={
                "order_id": order.id,
                "order_number": order.order_number,
                "payment_method": order.payment_method.value,
                "items": len(order.items),
            },
        )

    async def expire_checkout(self, event: InboundEvent) -> None:
        order = await self._get_order_by_session(event.payload.get("id", ""))
        order.status = OrderStatus.CANCELED
        order.payment_status = PaymentStatus.CANCELED
        order.canceled_at = datetime.now(timezone.utc)

        logger.info("Checkout session expired", extra_data={"order_id": order.id})

    async def record_intent_succeeded(self, event: InboundEvent) -> None:
        # Checkout-created intents carry no orderId; complete_checkout covers them
        order_id = event.metadata.get("orderId")
        if not order_id:
            return

        order = await self._get_order(order_id)
        intent = event.payload
        currency = intent.get("currency")
        self._log(
            event,
            order.id,
            PaymentLogStatus.SUCCEEDED,
            amount=_to_amount(intent.get("amount")),
            currency=currency.upper() if currency else None,
        )

    async def record_intent_failed(self, event: InboundEvent) -> None:
        order_id = event.metadata.get("orderId")
        if not order_id:
            return

        order = await self._get_order(order_id)
        order.payment_status = PaymentStatus.FAILED

        intent = event.payload
        last_error = intent.get("last_payment_error") or {}
        currency = intent.get("currency")
        self._log(
            event,
            order.id,
            PaymentLogStatus.FAILED,
            amount=_to_amount(intent.get("amount")),
            currency=currency.upper() if currency else None,
            error_message=last_error.get("message"),
        )

        logger.warning(
            "Payment failed for order",
            extra_data={"order_id": order.id, "reason": last_error.get("code")},
        )

    async def record_intent_canceled(self, event: InboundEvent) -> None:
        order_id = event.metadata.get("orderId")
        if not order_id:
            return

        order = await self._get_order(order_id)
        order.status = OrderStatus.CANCELED
        order.payment_status = PaymentStatus.CANCELED
        order.canceled_at = datetime.now(timezone.utc)
        self._log(event, order.id, PaymentLogStatus.CANCELED)


def build_stripe_handler_registry() -> HandlerRegistry:
    """Registry of every Stripe event type the store reacts to"""
    registry = HandlerRegistry()

    @registry.register("checkout.session.completed")
    async def on_checkout_completed(event: InboundEvent, db: AsyncSession) -> None:
        await OrderPaymentService(db).complete_checkout(event)

    @registry.register("checkout.session.expired")
    async def on_checkout_expired(event: InboundEvent, db: AsyncSession) -> None:
        await OrderPaymentService(db).expire_checkout(event)

    @registry.register("payment_intent.succeeded")
    async def on_intent_succeeded(event: InboundEvent, db: AsyncSession) -> None:
        await OrderPaymentService(db).record_intent_succeeded(event)

    @registry.register("payment_intent.payment_failed")
    async def on_intent_failed(event: InboundEvent, db: AsyncSession) -> None:
        await OrderPaymentService(db).record_intent_failed(event)

    @registry.register("payment_intent.canceled")
    async def on_intent_canceled(event: InboundEvent, db: AsyncSession) -> None:
        await OrderPaymentService(db).record_intent_canceled(event)

    return registry
