"""
Stripe webhook ingestion pipeline
"""
from app.domain.services.stripe_webhook.events import (
    InboundEvent,
    ProcessingContext,
    ProcessingResult,
)
from app.domain.services.stripe_webhook.registry import HandlerRegistry
from app.domain.services.stripe_webhook.pipeline import WebhookPipeline, build_webhook_pipeline

__all__ = [
    "InboundEvent",
    "ProcessingContext",
    "ProcessingResult",
    "HandlerRegistry",
    "WebhookPipeline",
    "build_webhook_pipeline",
]
