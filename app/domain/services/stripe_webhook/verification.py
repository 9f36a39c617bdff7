"""
Stripe signature verification.

Delegates the HMAC-SHA256 check of the ``Stripe-Signature`` header
(``t=<ts>,v1=<sig>[,v1=...]``) to the stripe library, including the
timestamp tolerance that protects against replay of stale payloads.
Every failure is fatal: a bad signature means a wrong secret or a forged
request, never something a retry would fix.
"""
import json

import stripe

from app.core.exceptions import InvalidSignatureError
from app.core.logging import get_logger
from app.domain.services.stripe_webhook.events import InboundEvent

logger = get_logger(__name__)

DEFAULT_TOLERANCE_SECONDS = 300


class SignatureVerifier:
    """Turns a raw body + signature header into an InboundEvent or raises InvalidSignatureError"""

    def __init__(self, secret: str, tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS) -> None:
        self._secret = secret
        self._tolerance = tolerance_seconds

    def verify(self, body: bytes | str, signature_header: str | None) -> InboundEvent:
        if not signature_header:
            raise InvalidSignatureError("missing signature header")

        if not self._secret:
            # Fail closed: without a secret nothing can be trusted
            logger.error("STRIPE_WEBHOOK_SECRET is not configured, rejecting webhook")
            raise InvalidSignatureError("webhook secret not configured")

        try:
            payload = body.decode("utf-8") if isinstance(body, bytes) else body
        except UnicodeDecodeError:
            raise InvalidSignatureError("payload is not valid UTF-8")

        try:
            stripe.WebhookSignature.verify_header(
                payload, signature_header, self._secret, self._tolerance
            )
        except stripe.SignatureVerificationError as exc:
            logger.warning(
                "Stripe signature verification failed",
                extra_data={"error": str(exc)},
            )
            raise InvalidSignatureError("signature mismatch")

        try:
            envelope = json.loads(payload)
            if not isinstance(envelope, dict):
                raise ValueError("event envelope is not an object")
            return InboundEvent.from_envelope(envelope)
        except ValueError as exc:
            logger.warning(
                "Signed Stripe payload is not a valid event",
                extra_data={"error": str(exc)},
            )
            raise InvalidSignatureError("malformed event payload")
