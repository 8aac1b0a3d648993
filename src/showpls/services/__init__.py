# src/showpls/services/__init__.py
"""Trust-layer services: initData verification, fees, idempotency and relay."""

from .connections import ConnectionRelay, RelayDispatcher
from .idempotency import IdempotencyService
from .telegram_auth import InitDataVerifier

__all__ = [
    "ConnectionRelay",
    "IdempotencyService",
    "InitDataVerifier",
    "RelayDispatcher",
]
