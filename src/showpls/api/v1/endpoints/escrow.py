"""Escrow endpoints for funding, verifying, releasing and refunding orders.

Every route here moves or confirms money and therefore runs behind
:class:`IdempotencyGate`: a retried request with the same key gets the
stored response instead of repeating the side effect.
"""

from __future__ import annotations

import logging
from typing import Annotated, Any, Final

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from showpls.core.errors import ChainUnavailable, Forbidden, NotFound, OrderStateConflict
from showpls.core.tokens import SessionClaims
from showpls.models import Order, OrderStatus
from showpls.schemas.escrow import EscrowOrderRequest
from showpls.services.fees import escrow_amounts, format_ton
from showpls.services.ton import EscrowGatewayError

from ..dependencies import CurrentUserDep, EscrowGatewayDep, SessionDep, enforce_rate_limit
from ..idempotency import IdempotencyGate, IdempotentCall

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/escrow",
    tags=["escrow"],
    dependencies=[Depends(enforce_rate_limit)],
)

MONEY_MOVING_ROUTES: Final[tuple[tuple[str, str], ...]] = (
    ("POST", "/api/v1/escrow/prepare-fund"),
    ("POST", "/api/v1/escrow/verify-funding"),
    ("POST", "/api/v1/escrow/release"),
    ("POST", "/api/v1/escrow/refund"),
)

_FUNDABLE: Final[frozenset[OrderStatus]] = frozenset(
    {OrderStatus.CREATED, OrderStatus.FUNDED, OrderStatus.IN_PROGRESS}
)
_RELEASABLE: Final[frozenset[OrderStatus]] = frozenset(
    {OrderStatus.IN_PROGRESS, OrderStatus.DELIVERED}
)
_REFUNDABLE: Final[frozenset[OrderStatus]] = frozenset(
    {OrderStatus.CREATED, OrderStatus.FUNDED, OrderStatus.IN_PROGRESS, OrderStatus.DISPUTED}
)

PrepareFundCall = Annotated[IdempotentCall, Depends(IdempotencyGate("escrow.prepare_fund"))]
VerifyFundingCall = Annotated[IdempotentCall, Depends(IdempotencyGate("escrow.verify_funding"))]
ReleaseCall = Annotated[IdempotentCall, Depends(IdempotencyGate("escrow.release"))]
RefundCall = Annotated[IdempotentCall, Depends(IdempotencyGate("escrow.refund"))]


def _get_requester_order(db: Session, order_id: str, user: SessionClaims, action: str) -> Order:
    order = db.get(Order, order_id, populate_existing=True)
    if order is None:
        raise NotFound("Order not found")
    if order.requester_id != user.user_id:
        raise Forbidden(f"Only requester can {action}")
    return order


def _require_escrow(order: Order) -> str:
    if not order.escrow_address:
        raise OrderStateConflict("Escrow not created", hint="Create the escrow contract first")
    return order.escrow_address


def _amounts_payload(order: Order) -> dict[str, str]:
    amounts = escrow_amounts(order.budget_nano_ton, order.platform_fee_bps)
    return {
        "totalNano": str(amounts.total_escrow_nano),
        "platformFeeNano": str(amounts.platform_fee_nano),
        "providerAmountNano": str(amounts.provider_amount_nano),
        "total": format_ton(amounts.total_escrow_nano),
        "platformFee": format_ton(amounts.platform_fee_nano),
        "providerAmount": format_ton(amounts.provider_amount_nano),
    }


def _set_status(db: Session, order: Order, new_status: OrderStatus) -> None:
    previous = order.status
    order.status = new_status
    db.commit()
    db.refresh(order)
    logger.info("Order %s moved %s -> %s", order.id, previous.value, new_status.value)


@router.post("/prepare-fund")
async def prepare_fund(
    payload: EscrowOrderRequest,
    current_user: CurrentUserDep,
    db: SessionDep,
    call: PrepareFundCall,
) -> dict[str, Any]:
    """Return the amounts the requester's wallet must send to the escrow."""

    async def _prepare() -> dict[str, Any]:
        order = _get_requester_order(db, payload.order_id, current_user, "fund escrow")
        address = _require_escrow(order)
        if order.status not in _FUNDABLE:
            raise OrderStateConflict(f"Order cannot be funded in status {order.status.value}")
        return {
            "orderId": order.id,
            "address": address,
            "amountNano": str(order.budget_nano_ton),
            "feeBps": order.platform_fee_bps,
            "amounts": _amounts_payload(order),
        }

    return await call.run(_prepare)


@router.post("/verify-funding")
async def verify_funding(
    payload: EscrowOrderRequest,
    current_user: CurrentUserDep,
    db: SessionDep,
    gateway: EscrowGatewayDep,
    call: VerifyFundingCall,
) -> dict[str, Any]:
    """Confirm the escrow balance on chain and start the order."""

    async def _verify() -> dict[str, Any]:
        order = _get_requester_order(db, payload.order_id, current_user, "verify funding")
        address = _require_escrow(order)
        if order.status not in _FUNDABLE:
            raise OrderStateConflict(f"Order cannot be funded in status {order.status.value}")

        try:
            funded = await gateway.is_funded(address, order.budget_nano_ton)
        except EscrowGatewayError as err:
            raise ChainUnavailable() from err
        if not funded:
            raise OrderStateConflict(
                "Escrow not funded yet",
                hint="Send the full amount to the escrow address and retry",
            )

        if order.status is not OrderStatus.IN_PROGRESS:
            _set_status(db, order, OrderStatus.IN_PROGRESS)
        return {"success": True, "orderId": order.id, "status": order.status.value}

    return await call.run(_verify)


@router.post("/release")
async def release_escrow(
    payload: EscrowOrderRequest,
    current_user: CurrentUserDep,
    db: SessionDep,
    call: ReleaseCall,
) -> dict[str, Any]:
    """Approve delivery and release the provider's share."""

    async def _release() -> dict[str, Any]:
        order = _get_requester_order(db, payload.order_id, current_user, "release escrow")
        if order.status not in _RELEASABLE:
            raise OrderStateConflict("Order not ready for approval")
        _require_escrow(order)
        if order.provider_id is None:
            raise OrderStateConflict("Order has no provider")

        amounts = _amounts_payload(order)
        _set_status(db, order, OrderStatus.APPROVED)
        return {
            "success": True,
            "orderId": order.id,
            "status": order.status.value,
            "amounts": amounts,
        }

    return await call.run(_release)


@router.post("/refund")
async def refund_escrow(
    payload: EscrowOrderRequest,
    current_user: CurrentUserDep,
    db: SessionDep,
    call: RefundCall,
) -> dict[str, Any]:
    """Return the escrowed budget to the requester."""

    async def _refund() -> dict[str, Any]:
        order = _get_requester_order(db, payload.order_id, current_user, "refund escrow")
        if order.status not in _REFUNDABLE:
            raise OrderStateConflict(f"Order cannot be refunded in status {order.status.value}")
        _set_status(db, order, OrderStatus.REFUNDED)
        return {
            "success": True,
            "orderId": order.id,
            "status": order.status.value,
            "refundNano": str(order.budget_nano_ton),
        }

    return await call.run(_refund)
