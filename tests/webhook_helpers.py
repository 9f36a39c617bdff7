"""
Helpers for building signed Stripe webhook requests in tests.
"""
import hashlib
import hmac
import json
import time
from typing import Any

TEST_WEBHOOK_SECRET = "whsec_test_secret"


def sign_payload(payload: str, secret: str = TEST_WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Stripe-Signature header value: t=<ts>,v1=HMAC_SHA256(secret, "<ts>.<payload>")"""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{payload}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def build_event(
    event_id: str,
    event_type: str,
    obj: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Minimal Stripe event envelope"""
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "created": 1700000000,
        "livemode": False,
        "data": {"object": obj or {}},
    }


def signed_request(
    event: dict[str, Any],
    secret: str = TEST_WEBHOOK_SECRET,
    headers: dict[str, str] | None = None,
) -> tuple[str, dict[str, str]]:
    """Serialised event body plus signed headers, ready for POST"""
    body = json.dumps(event)
    all_headers = {
        "content-type": "application/json",
        "stripe-signature": sign_payload(body, secret),
    }
    all_headers.update(headers or {})
    return body, all_headers


def checkout_completed(
    event_id: str,
    session_id: str = "cs_test_1",
    amount_total: int = 17980,
    payment_method_types: list[str] | None = None,
    **extra: Any,
) -> dict[str, Any]:
    obj = {
        "id": session_id,
        "object": "checkout.session",
        "amount_total": amount_total,
        "currency": "brl",
        "payment_intent": f"pi_{session_id}",
        "payment_method_types": payment_method_types or ["card"],
        "metadata": {},
    }
    obj.update(extra)
    return build_event(event_id, "checkout.session.completed", obj)
