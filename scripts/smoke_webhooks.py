"""
Smoke tests for a deployed instance.

Runs lightweight HTTP checks against a running app:
- GET /health
- POST /api/webhooks/stripe with a correctly signed event
- POST /api/webhooks/stripe with a forged signature (must be rejected)

The signed event is a ``payment_intent.succeeded`` without ``metadata.orderId``,
which the store acknowledges without touching any order.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import os
import sys
import time
import uuid
from pathlib import Path

import httpx

# Allow running from any directory (e.g. `python scripts/smoke_webhooks.py` in a deploy shell)
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from app.core.logging import get_logger, setup_logging  # noqa: E402


logger = get_logger(__name__)


def _base_url() -> str:
    port = os.environ.get("PORT", "8000")
    return os.environ.get("BASE_URL", f"http://127.0.0.1:{port}").rstrip("/")


def _timeout_seconds() -> float:
    return float(os.environ.get("SMOKE_TIMEOUT_SECONDS", "10"))


def _smoke_event() -> dict:
    return {
        "id": f"evt_smoke_{uuid.uuid4().hex[:16]}",
        "object": "event",
        "type": "payment_intent.succeeded",
        "created": int(time.time()),
        "livemode": False,
        "data": {"object": {"id": "pi_smoke", "amount": 0, "currency": "brl", "metadata": {}}},
    }


def _signature_header(body: str, secret: str) -> str:
    timestamp = int(time.time())
    digest = hmac.new(
        secret.encode("utf-8"), f"{timestamp}.{body}".encode("utf-8"), hashlib.sha256
    ).hexdigest()
    return f"t={timestamp},v1={digest}"


def _check_status(resp: httpx.Response, expected: int) -> None:
    if resp.status_code != expected:
        raise RuntimeError(
            f"Unexpected status {resp.status_code} for {resp.request.method} {resp.request.url}. "
            f"Body: {(resp.text or '')[:500]}"
        )


def main() -> None:
    setup_logging(level="INFO", json_format=False, app_name="laos-store-webhooks-smoke")

    secret = os.environ.get("STRIPE_WEBHOOK_SECRET", "")
    if not secret:
        raise SystemExit("STRIPE_WEBHOOK_SECRET must be set to sign the smoke event")

    base_url = _base_url()
    timeout = _timeout_seconds()
    webhook_url = f"{base_url}/api/webhooks/stripe"

    logger.info("Starting smoke tests", extra_data={"base_url": base_url, "timeout_seconds": timeout})

    with httpx.Client(timeout=timeout) as client:
        logger.info("Checking health endpoint", extra_data={"url": f"{base_url}/health"})
        _check_status(client.get(f"{base_url}/health"), expected=200)

        event = _smoke_event()
        body = json.dumps(event)

        logger.info("Posting signed Stripe event", extra_data={"event_id": event["id"]})
        resp = client.post(
            webhook_url,
            content=body,
            headers={"content-type": "application/json", "stripe-signature": _signature_header(body, secret)},
        )
        _check_status(resp, expected=200)
        if resp.json().get("success") is not True:
            raise RuntimeError(f"Signed event was not processed: {resp.text[:500]}")

        logger.info("Posting forged Stripe event")
        resp = client.post(
            webhook_url,
            content=body,
            headers={"content-type": "application/json", "stripe-signature": _signature_header(body, "whsec_forged")},
        )
        _check_status(resp, expected=401)

    logger.info("Smoke tests completed successfully")


if __name__ == "__main__":
    main()
