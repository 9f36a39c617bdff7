"""
Stripe Webhook Handler - HTTP entry point of the payment event pipeline

Every path ends in a response. Retryable-looking failures are acknowledged
with 200 so Stripe does not start a redelivery storm; only clearly fatal
errors (forbidden IP, oversized payload, bad signature, unsupported event)
are surfaced with their own status code.
"""
import time

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from app.core.exceptions import WebhookError
from app.core.logging import (
    bind_event_context,
    generate_trace_id,
    get_logger,
    set_correlation_id,
)
from app.domain.services.stripe_webhook.events import ProcessingContext
from app.domain.services.stripe_webhook.pipeline import WebhookPipeline

logger = get_logger(__name__)

router = APIRouter()

SIGNATURE_HEADER = "stripe-signature"


def get_webhook_pipeline(request: Request) -> WebhookPipeline:
    """Pipeline built at startup; overridden in tests"""
    return request.app.state.webhook_pipeline


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.headers.get("x-real-ip") or "unknown"


def _declared_length(request: Request) -> int | None:
    raw = request.headers.get("content-length")
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def _rejection(exc: WebhookError, trace_id: str) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"received": False, "error": exc.error_code.value, "traceId": trace_id},
        headers={"X-Trace-Id": trace_id},
    )


@router.post(
    "/stripe",
    summary="Webhook - Stripe (payment events)",
    description=(
        "Receives Stripe events, verifies the signature, deduplicates by event id "
        "and applies the event to orders with retry and dead-letter handling."
    ),
)
async def stripe_webhook(
    request: Request,
    pipeline: WebhookPipeline = Depends(get_webhook_pipeline),
):
    started = time.monotonic()
    trace_id = generate_trace_id()
    set_correlation_id(trace_id)
    client_ip = _client_ip(request)

    def timing_headers() -> dict[str, str]:
        elapsed_ms = int((time.monotonic() - started) * 1000)
        return {"X-Trace-Id": trace_id, "X-Processing-Time": f"{elapsed_ms}ms"}

    # 1. Rate limit: acknowledge without processing
    if not await pipeline.rate_limiter.check():
        return JSONResponse(
            content={"received": True, "warning": "rate_limit"},
            headers={"X-Trace-Id": trace_id},
        )

    try:
        # 2-4. Allowlist, declared size, then body and signature
        pipeline.ensure_ip_allowed(client_ip)
        pipeline.ensure_payload_size(_declared_length(request))

        body = await request.body()
        pipeline.ensure_payload_size(len(body))
        signature = request.headers.get(SIGNATURE_HEADER)
        event = pipeline.verifier.verify(body, signature)
    except WebhookError as exc:
        logger.warning(
            "Stripe webhook rejected",
            extra_data={
                "client_ip": client_ip,
                "error_code": exc.error_code.value,
                "status_code": exc.status_code,
            },
        )
        return _rejection(exc, trace_id)

    bind_event_context(event.id, event.type)
    logger.info(
        "Stripe webhook received",
        extra_data={"event_id": event.id, "event_type": event.type, "client_ip": client_ip},
    )

    try:
        # 5. Durable or cached duplicate
        if await pipeline.idempotency.is_processed(event.id):
            logger.info(
                "Duplicate Stripe event skipped",
                extra_data={"event_id": event.id, "event_type": event.type},
            )
            return JSONResponse(
                content={"received": True, "duplicate": True, "eventId": event.id},
                headers=timing_headers(),
            )

        # 6-7. Coordinated processing with retries; success is cached
        context = ProcessingContext(
            event_id=event.id,
            event_type=event.type,
            trace_id=trace_id,
            metadata={
                "client_ip": client_ip,
                "signature": (signature or "")[:20],
            },
        )
        result = await pipeline.handle(event, context)
    except Exception:
        logger.error(
            "Unexpected error while processing Stripe webhook",
            extra_data={"event_id": event.id, "event_type": event.type},
            exc_info=True,
        )
        return JSONResponse(
            content={"received": True, "error": "internal_error", "traceId": trace_id},
            headers=timing_headers(),
        )

    # 8. Fatal processing errors keep their status, everything else is 200
    if not result.success and result.status_code and not result.retryable and result.error_code:
        return JSONResponse(
            status_code=result.status_code,
            content={
                "received": False,
                "error": result.error_code,
                "eventId": event.id,
                "traceId": trace_id,
            },
            headers=timing_headers(),
        )

    content = {
        "received": True,
        "eventId": event.id,
        "success": result.success,
        "traceId": trace_id,
    }
    if result.metadata.get("duplicate"):
        content["duplicate"] = True
    if not result.success:
        content["error"] = result.error
    return JSONResponse(content=content, headers=timing_headers())
