"""
Payment Log Model - durable log of Stripe events.

One row per Stripe event ID (unique). The row is one of:
- the log written by the event-type handler (event = "<type>")
- a processed marker written after a successful handler that logged nothing
  (event = "processed:<type>")
- a dead-letter entry for a permanently failed event (event = "dlq:<type>")

Its presence is the durable idempotency record across restarts and replicas.
"""
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, DateTime, Numeric, JSON, Text, ForeignKey, Index

from app.db.database import Base

DEAD_LETTER_PREFIX = "dlq:"
PROCESSED_MARKER_PREFIX = "processed:"


class PaymentLogStatus:
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"
    PROCESSED = "processed"


class PaymentLog(Base):
    """Durable record of a Stripe event outcome"""

    __tablename__ = "payment_logs"

    id = Column(Integer, primary_key=True, index=True)
    # Nullable: dead letters and markers may reference no known order
    order_id = Column(String(64), ForeignKey("orders.id", ondelete="CASCADE"), nullable=True, index=True)

    event = Column(String(120), nullable=False)
    status = Column(String(20), nullable=False)
    amount = Column(Numeric(12, 2), nullable=True)
    currency = Column(String(3), nullable=True)

    stripe_event_id = Column(String(255), nullable=True, unique=True)
    raw_data = Column(JSON, nullable=False)
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), index=True)

    __table_args__ = (
        Index("ix_payment_logs_event_created", "event", "created_at"),
    )
