"""
Domain Services
"""
from app.domain.services.order_payment_service import OrderPaymentService

__all__ = [
    "OrderPaymentService",
]
