"""
Webhook Admin Endpoints - operator views of the Stripe webhook pipeline.

1. Processing metrics for this process
2. Dead-letter entries for manual review
3. Replay (not implemented; dead letters are replayed by hand for now)
"""
from typing import Any

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from app.api.dependencies.admin_auth import require_admin_api_key
from app.api.webhooks.stripe import get_webhook_pipeline
from app.core.logging import get_logger
from app.domain.services.stripe_webhook.pipeline import WebhookPipeline

logger = get_logger(__name__)

router = APIRouter()

_AUTH_RESPONSES = {
    401: {"description": "Missing API key"},
    403: {"description": "Invalid API key"},
}


# ─── Pydantic models ────────────────────────────────────────────────────────

class EventTypeMetrics(BaseModel):
    processed: int
    failed: int
    avg_duration_ms: float


class WebhookMetricsResponse(BaseModel):
    """Counters since process start"""
    processed: int
    failed: int
    retried: int
    dead_lettered: int
    avg_duration_ms: float
    success_rate: float = Field(description="processed / (processed + failed) attempts")
    by_type: dict[str, EventTypeMetrics]
    rate_window_usage: int = Field(description="Deliveries accepted in the current 60s window")
    rate_window_limit: int


class DeadLetterResponse(BaseModel):
    id: int
    event_id: str | None
    event_type: str
    order_id: str | None
    summary: dict[str, Any] = Field(description="error, attempts, timestamp, metadata")
    created_at: str | None


# ─── Endpoints ──────────────────────────────────────────────────────────────

@router.get(
    "/stripe/metrics",
    response_model=WebhookMetricsResponse,
    summary="Stripe webhook processing metrics",
    responses={200: {"description": "Metrics snapshot"}, **_AUTH_RESPONSES},
)
async def get_webhook_metrics(
    _: None = Depends(require_admin_api_key),
    pipeline: WebhookPipeline = Depends(get_webhook_pipeline),
) -> WebhookMetricsResponse:
    snapshot = pipeline.metrics.snapshot()
    return WebhookMetricsResponse(
        **snapshot,
        rate_window_usage=await pipeline.rate_limiter.current_usage(),
        rate_window_limit=pipeline.rate_limiter.max_requests,
    )


@router.get(
    "/stripe/dead-letters",
    response_model=list[DeadLetterResponse],
    summary="Dead-lettered Stripe events",
    description="Newest first. Filter by event type, e.g. checkout.session.completed.",
    responses={200: {"description": "Dead-letter entries"}, **_AUTH_RESPONSES},
)
async def list_dead_letters(
    limit: int = Query(50, ge=1, le=500),
    event_type: str | None = Query(None, max_length=120),
    _: None = Depends(require_admin_api_key),
    pipeline: WebhookPipeline = Depends(get_webhook_pipeline),
) -> list[DeadLetterResponse]:
    entries = await pipeline.dead_letter.list_entries(limit=limit, event_type=event_type)
    return [DeadLetterResponse(**entry) for entry in entries]


@router.put(
    "/stripe/replay",
    summary="Replay dead-lettered events (not implemented)",
    responses={501: {"description": "Not implemented"}, **_AUTH_RESPONSES},
)
async def replay_dead_letters(
    _: None = Depends(require_admin_api_key),
) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_501_NOT_IMPLEMENTED,
        content={"error": "Not implemented"},
    )
