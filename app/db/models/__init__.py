"""
Database Models
"""
from app.db.models.order import Order, OrderItem, OrderStatus, PaymentStatus, PaymentMethod
from app.db.models.product import Product, CartItem
from app.db.models.payment_log import PaymentLog

__all__ = [
    "Order",
    "OrderItem",
    "OrderStatus",
    "PaymentStatus",
    "PaymentMethod",
    "Product",
    "CartItem",
    "PaymentLog",
]
