"""SQLAlchemy models for the Showpls trust layer."""

from .idempotency import IdempotentRequest
from .order import Order, OrderStatus
from .user import User

__all__ = [
    "IdempotentRequest",
    "Order", "OrderStatus",
    "User",
]
