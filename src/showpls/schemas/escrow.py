"""Escrow request schemas."""

from pydantic import BaseModel, Field


class EscrowOrderRequest(BaseModel):
    """Body shared by every escrow action: the order it applies to."""

    order_id: str = Field(..., alias="orderId", min_length=1)

    model_config = {"populate_by_name": True}
