"""Version 1 API endpoints."""

from .endpoints import auth_router, escrow_router, fees_router

__all__ = [
    "auth_router",
    "escrow_router",
    "fees_router",
]
