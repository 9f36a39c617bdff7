"""
Custom Exception Hierarchy

Provides structured exceptions for consistent error handling across the application.

Webhook errors additionally carry a ``retryable`` flag. Retryable errors are
absorbed by the retry loop and never reach the provider as a non-200 status;
non-retryable ones are surfaced with their specific status code.
"""
from typing import Any
from enum import Enum


class ErrorCode(str, Enum):
    """Standard error codes for API responses"""

    # General errors (1xxx)
    INTERNAL_ERROR = "ERR_1000"

    # Webhook ingestion errors (7xxx)
    INVALID_SIGNATURE = "ERR_7001"
    PAYLOAD_TOO_LARGE = "ERR_7002"
    IP_NOT_ALLOWED = "ERR_7003"
    EVENT_NOT_SUPPORTED = "ERR_7004"
    PROCESSING_TIMEOUT = "ERR_7005"

    # Order/payment errors (8xxx)
    ORDER_NOT_FOUND = "ERR_8001"


class AppException(Exception):
    """Base exception for all application errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        details: dict[str, Any] | None = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API response"""
        return {
            "error": {
                "code": self.error_code.value,
                "message": self.message,
                "details": self.details
            }
        }


class WebhookError(AppException):
    """Base exception for webhook ingestion and processing errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        status_code: int = 500,
        retryable: bool = False,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status_code,
            details=details
        )
        self.retryable = retryable


class InvalidSignatureError(WebhookError):
    """Raised when the signature header is missing or does not match the payload"""

    def __init__(self, reason: str | None = None):
        super().__init__(
            message="Invalid webhook signature",
            error_code=ErrorCode.INVALID_SIGNATURE,
            status_code=401,
            retryable=False,
            details={"reason": reason} if reason else None
        )


class PayloadTooLargeError(WebhookError):
    """Raised when the declared content length exceeds the configured ceiling"""

    def __init__(self, size: int, max_size: int):
        super().__init__(
            message="Payload too large",
            error_code=ErrorCode.PAYLOAD_TOO_LARGE,
            status_code=413,
            retryable=False,
            details={"size": size, "max_size": max_size}
        )


class IpNotAllowedError(WebhookError):
    """Raised when the client IP is not in the configured allowlist"""

    def __init__(self, client_ip: str):
        super().__init__(
            message=f"IP not in webhook allowlist: {client_ip}",
            error_code=ErrorCode.IP_NOT_ALLOWED,
            status_code=403,
            retryable=False,
            details={"client_ip": client_ip}
        )


class EventNotSupportedError(WebhookError):
    """Raised when no handler is registered for the event type"""

    def __init__(self, event_type: str):
        super().__init__(
            message=f"Event type not supported: {event_type}",
            error_code=ErrorCode.EVENT_NOT_SUPPORTED,
            status_code=422,
            retryable=False,
            details={"event_type": event_type}
        )


class ProcessingTimeoutError(WebhookError):
    """Raised when a handler does not finish within the processing timeout"""

    def __init__(self, event_id: str, timeout_ms: int):
        super().__init__(
            message="Event processing timeout",
            error_code=ErrorCode.PROCESSING_TIMEOUT,
            status_code=504,
            retryable=True,
            details={"event_id": event_id, "timeout_ms": timeout_ms}
        )


class OrderNotFoundError(WebhookError):
    """Raised by a payment handler when the order referenced by an event is missing.

    Retryable: the checkout row may still be committing when Stripe delivers.
    """

    def __init__(self, lookup_field: str, value: str):
        super().__init__(
            message=f"Order not found by {lookup_field}: {value}",
            error_code=ErrorCode.ORDER_NOT_FOUND,
            status_code=404,
            retryable=True,
            details={"lookup_field": lookup_field, "value": value}
        )
