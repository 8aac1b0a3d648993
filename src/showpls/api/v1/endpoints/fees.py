"""Fee quote endpoint."""

from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Query

from showpls.core.settings import settings
from showpls.services.fees import MINIMUM_ORDER_NANO, compute_fees, format_ton

router = APIRouter(prefix="/fees", tags=["fees"])


@router.get("/quote")
async def quote_fees(
    budget: Annotated[str, Query(min_length=1, description="Budget in TON, e.g. 2.5")],
    fee_bps: Annotated[int | None, Query(ge=0, le=10_000)] = None,
) -> dict[str, Any]:
    """Split a TON budget into platform fee and provider payout."""
    calculation = compute_fees(
        budget,
        settings.platform_fee_bps if fee_bps is None else fee_bps,
    )
    quote = calculation.as_dict()
    quote["meets_minimum"] = calculation.budget_nano >= MINIMUM_ORDER_NANO
    quote["minimum"] = format_ton(MINIMUM_ORDER_NANO)
    return quote
