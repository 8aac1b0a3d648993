"""Idempotency-Key enforcement in front of state-changing routes.

Read-only methods pass through. Mutating methods must carry a UUID
``Idempotency-Key``; the route then runs its work through
:meth:`IdempotentCall.run`, which captures the returned value, stores it on
success and replays it for duplicates. Raised errors are never stored.
"""

import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Final, TypeVar

from fastapi import Header, Request

from showpls.core.errors import InvalidKeyFormat, MissingIdempotencyKey
from showpls.services.idempotency import IdempotencyService, get_idempotency_service

from .dependencies import SessionDep

T = TypeVar("T")

MUTATING_METHODS: Final[frozenset[str]] = frozenset({"POST", "PUT", "PATCH", "DELETE"})
_UUID_RE: Final[re.Pattern[str]] = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


def validate_idempotency_key(key: str | None) -> str:
    """Return the normalised key or raise a 400-class error."""
    if key is None or not key.strip():
        raise MissingIdempotencyKey()
    key = key.strip()
    if not _UUID_RE.match(key):
        raise InvalidKeyFormat()
    return key.lower()


@dataclass(frozen=True)
class IdempotentCall:
    """Bound execute-or-replay step for one request."""

    operation: str
    key: str | None = None
    service: IdempotencyService | None = None

    async def run(self, handler: Callable[[], Awaitable[T]]) -> T:
        if self.service is None:
            return await handler()
        return await self.service.execute(self.key, self.operation, handler)


class IdempotencyGate:
    """FastAPI dependency requiring an Idempotency-Key on mutating requests."""

    def __init__(self, operation: str) -> None:
        self.operation = operation

    def __call__(
        self,
        request: Request,
        db: SessionDep,
        idempotency_key: str | None = Header(default=None),
    ) -> IdempotentCall:
        if request.method.upper() not in MUTATING_METHODS:
            return IdempotentCall(self.operation)
        key = validate_idempotency_key(idempotency_key)
        return IdempotentCall(
            self.operation,
            key=key,
            service=get_idempotency_service(db, strict=True),
        )

    def __repr__(self) -> str:
        return f"IdempotencyGate({self.operation!r})"
