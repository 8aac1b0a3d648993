"""Order rows as seen by the trust layer.

The trust layer reads orders to authorise relay connections and to size
escrow transactions; order lifecycle management lives elsewhere.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Enum, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from showpls.db.session import Base
from showpls.db.time import utcnow


class OrderStatus(str, enum.Enum):
    """Order state machine values."""

    CREATED = "CREATED"
    FUNDED = "FUNDED"
    IN_PROGRESS = "IN_PROGRESS"
    AT_LOCATION = "AT_LOCATION"
    DRAFT_CONTENT = "DRAFT_CONTENT"
    DELIVERED = "DELIVERED"
    APPROVED = "APPROVED"
    DISPUTED = "DISPUTED"
    REFUNDED = "REFUNDED"


class Order(Base):
    """A paid capture request between a requester and a provider."""

    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
    requester_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id"),
        nullable=False,
        index=True,
    )
    provider_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("users.id"),
        nullable=True,
        index=True,
    )
    title: Mapped[str] = mapped_column(Text, nullable=False, default="")
    budget_nano_ton: Mapped[int] = mapped_column(BigInteger, nullable=False)
    platform_fee_bps: Mapped[int] = mapped_column(Integer, nullable=False, default=250)
    status: Mapped[OrderStatus] = mapped_column(
        Enum(OrderStatus, name="order_status"),
        nullable=False,
        default=OrderStatus.CREATED,
    )
    escrow_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    def is_party(self, user_id: str) -> bool:
        """Return True if ``user_id`` is the requester or assigned provider."""
        return user_id == self.requester_id or (
            self.provider_id is not None and user_id == self.provider_id
        )
