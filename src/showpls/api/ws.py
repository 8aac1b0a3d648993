"""Order chat relay socket.

Clients connect to ``/ws?token=<session token>&orderId=<order id>``. The
token and order membership are checked before the connection joins the
order's room; a refused connection is closed with code 1008.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect

from showpls.core.errors import ShowplsError
from showpls.models import Order
from showpls.services.connections import (
    CLOSE_POLICY_VIOLATION,
    ConnectionRelay,
    ConnectionState,
    RelayConnection,
    RelayDispatcher,
    authorize_connection,
    get_relay,
)
from showpls.services.rate_limit import RateLimiter, get_rate_limiter

from .v1.dependencies import SessionDep

logger = logging.getLogger(__name__)

router = APIRouter(tags=["relay"])

RelayDep = Annotated[ConnectionRelay, Depends(get_relay)]
RateLimiterDep = Annotated[RateLimiter, Depends(get_rate_limiter)]


@router.websocket("/ws")
async def order_relay(
    websocket: WebSocket,
    db: SessionDep,
    relay: RelayDep,
    rate_limiter: RateLimiterDep,
    token: Annotated[str | None, Query()] = None,
    order_id: Annotated[str | None, Query(alias="orderId")] = None,
) -> None:
    """Authorise the socket, join the order room and relay messages."""

    def load_order(requested_id: str) -> Order | None:
        return db.get(Order, requested_id, populate_existing=True)

    connection = RelayConnection(websocket)
    await websocket.accept()

    try:
        binding = authorize_connection(token, order_id, load_order)
    except ShowplsError as err:
        logger.warning("Relay connection refused for order %s: %s", order_id, err.error)
        await connection.close(CLOSE_POLICY_VIOLATION, err.error)
        return

    connection.bind(binding)
    relay.register(connection)
    dispatcher = RelayDispatcher(relay, rate_limiter, load_order)

    try:
        await connection.send_json(
            {
                "type": "connected",
                "message": "WebSocket connected successfully",
                "orderId": binding.order_id,
                "userId": binding.user_id,
            }
        )
        connection.transition(ConnectionState.IDLE)

        while connection.is_open:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            raw = message.get("text")
            if raw is None:
                raw = (message.get("bytes") or b"").decode("utf-8", errors="replace")
            await dispatcher.handle(connection, raw)
    except WebSocketDisconnect:
        logger.info("User %s disconnected from order %s", binding.user_id, binding.order_id)
    finally:
        relay.unregister(connection)
        connection.mark_closed()
