"""Exactly-once execution of state-changing operations.

A client-supplied key scopes an operation. The first successful result is
stored under that key and replayed for every later request carrying it.

Two layers keep concurrent duplicates from executing twice:

* within one process, callers with the same key are serialised by a per-key
  ``asyncio.Lock`` so the second caller finds the first caller's record;
* across processes, the primary key on ``idempotent_requests`` lets exactly
  one insert win. The loser reads back and returns the winner's response.

Rows are only ever inserted, never updated.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Final, TypeVar

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from showpls.core.errors import KeyReused, MissingIdempotencyKey, StoreUnavailable
from showpls.core.settings import settings
from showpls.db.time import utcnow
from showpls.models import IdempotentRequest

logger = logging.getLogger(__name__)

T = TypeVar("T")
Handler = Callable[[], Awaitable[T]]

DEFAULT_RETENTION: Final[timedelta] = timedelta(hours=24)


class IdempotencyRepository:
    """Row access for ``idempotent_requests``."""

    def __init__(self, db: Session) -> None:
        self._db = db

    def get(self, key: str) -> IdempotentRequest | None:
        return self._db.get(IdempotentRequest, key, populate_existing=True)

    def insert(self, key: str, operation: str, response: Any) -> bool:
        """Insert a record; return False if another writer already holds the key."""
        record = IdempotentRequest(id=key, operation=operation, response=response)
        try:
            with self._db.begin_nested():
                self._db.add(record)
        except IntegrityError:
            return False
        self._db.commit()
        return True

    def purge_older_than(self, cutoff: datetime) -> int:
        result = self._db.execute(
            delete(IdempotentRequest)
            .where(IdempotentRequest.created_at < cutoff)
        )
        self._db.commit()
        return int(result.rowcount or 0)

    def count(self) -> int:
        return len(self._db.scalars(select(IdempotentRequest.id)).all())


class KeyLockRegistry:
    """Reference-counted ``asyncio.Lock`` per idempotency key."""

    def __init__(self) -> None:
        self._locks: dict[str, tuple[asyncio.Lock, int]] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock, waiters = self._locks.get(key, (asyncio.Lock(), 0))
        self._locks[key] = (lock, waiters + 1)
        try:
            async with lock:
                yield
        finally:
            lock, waiters = self._locks[key]
            if waiters <= 1:
                del self._locks[key]
            else:
                self._locks[key] = (lock, waiters - 1)

    def __len__(self) -> int:
        return len(self._locks)


_KEY_LOCKS = KeyLockRegistry()


@dataclass
class IdempotencyService:
    """Execute-or-replay decision for a single request.

    Args:
        repository: Row access bound to the request's session.
        locks: Process-wide per-key lock registry.
        strict: When True a missing key is an error instead of a direct run.
    """

    repository: IdempotencyRepository
    locks: KeyLockRegistry
    strict: bool = False

    async def execute(self, key: str | None, operation: str, handler: Handler[T]) -> T:
        if not key:
            if self.strict:
                raise MissingIdempotencyKey()
            logger.warning("No idempotency key provided for operation %s", operation)
            return await handler()

        async with self.locks.hold(key):
            existing = self._lookup(key)
            if existing is not None:
                if existing.operation != operation:
                    logger.warning(
                        "Key %s was stored for %s, refusing replay for %s",
                        key,
                        existing.operation,
                        operation,
                    )
                    raise KeyReused()
                logger.info("Returning cached response for key %s (%s)", key, operation)
                return existing.response  # type: ignore[no-any-return]

            result = await handler()
            return self._store(key, operation, result)

    def _lookup(self, key: str) -> IdempotentRequest | None:
        try:
            return self.repository.get(key)
        except SQLAlchemyError as err:
            logger.error("Idempotency lookup failed for key %s: %s", key, err)
            raise StoreUnavailable() from err

    def _store(self, key: str, operation: str, result: T) -> T:
        try:
            inserted = self.repository.insert(key, operation, result)
        except SQLAlchemyError as err:
            # The handler already ran; its result still goes back to the caller.
            logger.warning(
                "Idempotency caching degraded for key %s (%s): %s; a retry may re-execute",
                key,
                operation,
                err,
            )
            return result

        if inserted:
            logger.info("Stored new response for key %s (%s)", key, operation)
            return result

        winner = self._lookup(key)
        if winner is None:
            logger.warning("Idempotency conflict for key %s but no stored record found", key)
            return result
        if winner.operation != operation:
            logger.warning(
                "Key %s was stored concurrently for %s; keeping the %s result",
                key,
                winner.operation,
                operation,
            )
            return result
        logger.info("Key %s was stored concurrently; returning the stored response", key)
        return winner.response  # type: ignore[no-any-return]

    def purge_expired(self, retention: timedelta = DEFAULT_RETENTION) -> int:
        """Delete records older than ``retention``; returns the number removed."""
        cutoff = utcnow() - retention
        removed = self.repository.purge_older_than(cutoff)
        logger.info("Removed %d idempotent requests older than %s", removed, cutoff.isoformat())
        return removed


def get_retention() -> timedelta:
    """Return the configured retention window."""
    return timedelta(hours=settings.idempotency_retention_hours)


def get_idempotency_service(db: Session, *, strict: bool = False) -> IdempotencyService:
    """Return an idempotency service bound to ``db`` and the shared lock registry."""
    return IdempotencyService(IdempotencyRepository(db), _KEY_LOCKS, strict=strict)
