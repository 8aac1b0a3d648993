# src/showpls/schemas/__init__.py
"""
Pydantic schemas for API request/response models.
"""

from .auth import TelegramAuthRequest, TelegramAuthResponse, UserResponse, WsTokenResponse
from .escrow import EscrowOrderRequest

__all__ = [
    "EscrowOrderRequest",
    "TelegramAuthRequest", "TelegramAuthResponse",
    "UserResponse",
    "WsTokenResponse",
]
