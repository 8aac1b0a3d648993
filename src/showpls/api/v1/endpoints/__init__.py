"""API endpoint modules for version 1."""

from .auth import router as auth_router
from .escrow import router as escrow_router
from .fees import router as fees_router

__all__ = [
    "auth_router",
    "escrow_router",
    "fees_router",
]
