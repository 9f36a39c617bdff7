"""
Value types that flow through the Stripe webhook pipeline.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class InboundEvent:
    """Verified Stripe event envelope.

    Built only by the signature verifier; every later stage reads it.
    """

    id: str
    type: str
    created: int
    payload: dict[str, Any]  # data.object
    raw: dict[str, Any]  # full envelope as delivered

    @classmethod
    def from_envelope(cls, envelope: dict[str, Any]) -> "InboundEvent":
        """Build from a parsed Stripe event; raises ValueError if id/type are missing."""
        event_id = envelope.get("id")
        event_type = envelope.get("type")
        if not isinstance(event_id, str) or not event_id:
            raise ValueError("event envelope has no id")
        if not isinstance(event_type, str) or not event_type:
            raise ValueError("event envelope has no type")

        data = envelope.get("data") or {}
        obj = data.get("object") if isinstance(data, dict) else None
        created = envelope.get("created")
        return cls(
            id=event_id,
            type=event_type,
            created=int(created) if isinstance(created, (int, float)) else 0,
            payload=obj if isinstance(obj, dict) else {},
            raw=envelope,
        )

    @property
    def metadata(self) -> dict[str, Any]:
        """``data.object.metadata`` or an empty dict"""
        metadata = self.payload.get("metadata")
        return metadata if isinstance(metadata, dict) else {}


@dataclass(frozen=True)
class ProcessingContext:
    """Per-attempt metadata; one trace_id per HTTP request, never persisted."""

    event_id: str
    event_type: str
    trace_id: str
    attempt: int = 0
    start_time: float = field(default_factory=time.time)
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class ProcessingResult:
    """Outcome of one processing attempt.

    ``retryable`` only matters when ``success`` is False. ``status_code`` and
    ``error_code`` are set when the failure came from a fatal webhook error
    whose status should be surfaced to the provider.
    """

    success: bool
    duration_ms: int
    error: str | None = None
    retryable: bool = False
    error_code: str | None = None
    status_code: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, duration_ms: int, **metadata: Any) -> "ProcessingResult":
        return cls(success=True, duration_ms=duration_ms, metadata=metadata)
