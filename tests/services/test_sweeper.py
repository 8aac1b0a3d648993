# tests/services/test_sweeper.py
"""Tests for the background idempotency sweeper."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from showpls.db.time import utcnow
from showpls.models import IdempotentRequest
from showpls.services.sweeper import IdempotencySweeper


class _SessionHandle:
    """Hands out the test session and ignores close()."""

    def __init__(self, session) -> None:
        self._session = session

    def __getattr__(self, name):
        return getattr(self._session, name)

    def close(self) -> None:
        pass


def test_sweep_once_purges_expired_records(db_session) -> None:
    db_session.add(
        IdempotentRequest(
            id="00000000-0000-4000-8000-000000000001",
            operation="escrow.release",
            response={"success": True},
            created_at=utcnow() - timedelta(days=2),
        )
    )
    db_session.commit()

    sweeper = IdempotencySweeper(
        lambda: _SessionHandle(db_session),
        retention=timedelta(hours=24),
    )

    assert sweeper.sweep_once() == 1
    assert sweeper.sweep_once() == 0


@pytest.mark.asyncio
async def test_start_and_stop(mocker) -> None:
    sweeper = IdempotencySweeper(interval_seconds=0.1)
    sweep = mocker.patch.object(sweeper, "sweep_once", return_value=0)

    await sweeper.start()
    await asyncio.sleep(0.05)
    await sweeper.stop()

    assert sweep.call_count >= 1
    assert sweeper._task is None


@pytest.mark.asyncio
async def test_database_errors_do_not_stop_the_loop(mocker) -> None:
    sweeper = IdempotencySweeper(interval_seconds=0.1)
    sweep = mocker.patch.object(
        sweeper,
        "sweep_once",
        side_effect=[OperationalError("DELETE", {}, Exception("locked")), 3, 0, 0, 0],
    )

    await sweeper.start()
    await asyncio.sleep(0.25)
    await sweeper.stop()

    assert sweep.call_count >= 2
