"""Persistence for idempotent request replays."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from showpls.db.session import Base
from showpls.db.time import utcnow


class IdempotentRequest(Base):
    """First successful result of an operation, keyed by the client's key.

    Rows are insert-only; the primary key is the arbiter between concurrent
    writers carrying the same key.
    """

    __tablename__ = "idempotent_requests"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    operation: Mapped[str] = mapped_column(String(50), nullable=False)
    response: Mapped[Any] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    __table_args__ = (
        Index("idempotent_operation_idx", "operation"),
        Index("idempotent_created_at_idx", "created_at"),
    )
