"""Background removal of expired idempotency records."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from datetime import timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from showpls.core.settings import settings
from showpls.db.session import SessionLocal
from showpls.services.idempotency import get_idempotency_service, get_retention

logger = logging.getLogger(__name__)


class IdempotencySweeper:
    """Periodically purges idempotent requests older than the retention window.

    Expiry is a storage concern only: a replay after expiry re-executes the
    operation, so keys should stay unique for longer than the window.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        *,
        interval_seconds: float | None = None,
        retention: timedelta | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.interval_seconds = max(
            0.1,
            float(interval_seconds or settings.idempotency_sweep_interval_seconds),
        )
        self.retention = retention or get_retention()
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

    def sweep_once(self) -> int:
        """Run a single purge in the calling thread."""
        db = self._session_factory()
        try:
            return get_idempotency_service(db).purge_expired(self.retention)
        finally:
            db.close()

    async def start(self) -> None:
        """Start the background loop."""
        if self._task is None or self._task.done():
            self._stopping.clear()
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop the background loop."""
        if self._task is None:
            return
        self._stopping.set()
        await self._task
        self._task = None

    async def _run(self) -> None:
        while not self._stopping.is_set():
            try:
                await asyncio.to_thread(self.sweep_once)
            except SQLAlchemyError as e:
                logger.warning("Idempotency sweep failed: %s", e)

            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval_seconds)
