"""Authorisation and relay membership for order chat sockets.

A connection moves through ``CONNECTING -> AUTHENTICATED -> (ACTIVE <-> IDLE)
-> CLOSED``; authorisation failures go straight from ``CONNECTING`` to
``CLOSED``. Once authenticated, a connection is bound to one user and one
order for the rest of its life.
"""

from __future__ import annotations

import enum
import json
import logging
import uuid
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Final, Protocol

from fastapi import WebSocketDisconnect, status

from showpls.core.errors import Forbidden, InvalidToken
from showpls.core.tokens import decode_session_token
from showpls.db.time import utcnow
from showpls.models import Order
from showpls.services.rate_limit import RateLimiter

logger = logging.getLogger(__name__)

CLOSE_NORMAL: Final[int] = status.WS_1000_NORMAL_CLOSURE
CLOSE_POLICY_VIOLATION: Final[int] = status.WS_1008_POLICY_VIOLATION

OrderLoader = Callable[[str], Order | None]


class ConnectionState(str, enum.Enum):
    CONNECTING = "connecting"
    AUTHENTICATED = "authenticated"
    ACTIVE = "active"
    IDLE = "idle"
    CLOSED = "closed"


_TRANSITIONS: Final[dict[ConnectionState, frozenset[ConnectionState]]] = {
    ConnectionState.CONNECTING: frozenset({ConnectionState.AUTHENTICATED, ConnectionState.CLOSED}),
    ConnectionState.AUTHENTICATED: frozenset(
        {ConnectionState.ACTIVE, ConnectionState.IDLE, ConnectionState.CLOSED}
    ),
    ConnectionState.ACTIVE: frozenset({ConnectionState.IDLE, ConnectionState.CLOSED}),
    ConnectionState.IDLE: frozenset({ConnectionState.ACTIVE, ConnectionState.CLOSED}),
    ConnectionState.CLOSED: frozenset(),
}

_OPEN_STATES: Final[frozenset[ConnectionState]] = frozenset(
    {ConnectionState.AUTHENTICATED, ConnectionState.ACTIVE, ConnectionState.IDLE}
)


class SocketLike(Protocol):
    async def send_json(self, data: Any) -> None: ...

    async def close(self, code: int = 1000, reason: str | None = None) -> None: ...


@dataclass(frozen=True)
class ConnectionBinding:
    """Verified identity and the order it may talk about."""

    user_id: str
    username: str
    order_id: str


def authorize_connection(
    token: str | None,
    order_id: str | None,
    load_order: OrderLoader,
) -> ConnectionBinding:
    """Verify the session token and check the bearer is a party to the order.

    Raises:
        InvalidToken / TokenExpired: Bad or stale token.
        Forbidden: Unknown order, or the user is neither requester nor provider.
    """
    if not token:
        raise InvalidToken("Missing token")
    if not order_id:
        raise Forbidden("Missing orderId")

    claims = decode_session_token(token)
    order = load_order(order_id)
    if order is None or not order.is_party(claims.user_id):
        logger.warning(
            "User %s does not have access to order %s", claims.user_id, order_id
        )
        raise Forbidden("No access to this order")

    return ConnectionBinding(
        user_id=claims.user_id,
        username=claims.username,
        order_id=order_id,
    )


class RelayConnection:
    """One socket plus its lifecycle state and (once set) immutable binding."""

    def __init__(self, socket: SocketLike) -> None:
        self.socket = socket
        self.state = ConnectionState.CONNECTING
        self._binding: ConnectionBinding | None = None

    @property
    def binding(self) -> ConnectionBinding | None:
        return self._binding

    @property
    def is_open(self) -> bool:
        return self.state in _OPEN_STATES and self._binding is not None

    def transition(self, new_state: ConnectionState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Invalid connection transition {self.state.value} -> {new_state.value}")
        self.state = new_state

    def bind(self, binding: ConnectionBinding) -> None:
        if self._binding is not None:
            raise RuntimeError("Connection is already bound to an order")
        self.transition(ConnectionState.AUTHENTICATED)
        self._binding = binding

    async def send_json(self, message: dict[str, Any]) -> None:
        await self.socket.send_json(message)

    async def send_error(self, message: str) -> None:
        await self.socket.send_json({"type": "error", "message": message})

    async def close(self, code: int = CLOSE_NORMAL, reason: str | None = None) -> None:
        if self.state is ConnectionState.CLOSED:
            return
        self.state = ConnectionState.CLOSED
        await self.socket.close(code=code, reason=reason)

    def mark_closed(self) -> None:
        self.state = ConnectionState.CLOSED


class ConnectionRelay:
    """Order rooms of authenticated connections."""

    def __init__(self) -> None:
        self._rooms: dict[str, set[RelayConnection]] = defaultdict(set)

    def register(self, connection: RelayConnection) -> None:
        binding = connection.binding
        if binding is None or not connection.is_open:
            raise RuntimeError("Only authenticated connections can join a relay room")
        self._rooms[binding.order_id].add(connection)
        logger.info("User %s joined order room %s", binding.username or binding.user_id, binding.order_id)

    def unregister(self, connection: RelayConnection) -> None:
        binding = connection.binding
        if binding is None:
            return
        room = self._rooms.get(binding.order_id)
        if room is None:
            return
        room.discard(connection)
        if not room:
            del self._rooms[binding.order_id]
        logger.info("User %s left order room %s", binding.username or binding.user_id, binding.order_id)

    def connections(self, order_id: str) -> list[RelayConnection]:
        return list(self._rooms.get(order_id, ()))

    async def broadcast(
        self,
        order_id: str,
        message: dict[str, Any],
        exclude_user_id: str | None = None,
    ) -> int:
        """Send ``message`` once to each open connection bound to ``order_id``.

        Returns the number of connections the message was handed to. Failed
        sends drop the connection; nothing is retried or buffered.
        """
        delivered = 0
        for connection in self.connections(order_id):
            binding = connection.binding
            if binding is None or not connection.is_open:
                continue
            if exclude_user_id is not None and binding.user_id == exclude_user_id:
                continue
            try:
                await connection.send_json(message)
            except (WebSocketDisconnect, RuntimeError, OSError) as err:
                logger.warning(
                    "Dropping connection of user %s on order %s: %s",
                    binding.user_id,
                    order_id,
                    err,
                )
                connection.mark_closed()
                self.unregister(connection)
                continue
            delivered += 1
        return delivered


class RelayDispatcher:
    """Per-message handling for authenticated relay connections."""

    def __init__(
        self,
        relay: ConnectionRelay,
        rate_limiter: RateLimiter,
        load_order: OrderLoader,
    ) -> None:
        self.relay = relay
        self.rate_limiter = rate_limiter
        self.load_order = load_order

    async def handle(self, connection: RelayConnection, raw: str) -> None:
        binding = connection.binding
        if binding is None or not connection.is_open:
            await connection.close(CLOSE_POLICY_VIOLATION, "Not authenticated")
            return

        if not self.rate_limiter.allow(binding.user_id):
            await connection.send_error("Rate limit exceeded. Please slow down.")
            return

        try:
            data = json.loads(raw)
        except ValueError:
            await connection.send_error("Invalid message format")
            return
        if not isinstance(data, dict) or not isinstance(data.get("type"), str) or not data["type"]:
            await connection.send_error("Invalid message format")
            return

        connection.transition(ConnectionState.ACTIVE)
        try:
            await self._dispatch(connection, binding, data)
        finally:
            if connection.state is ConnectionState.ACTIVE:
                connection.transition(ConnectionState.IDLE)

    async def _dispatch(
        self,
        connection: RelayConnection,
        binding: ConnectionBinding,
        data: dict[str, Any],
    ) -> None:
        message_type = data["type"]
        if message_type in {"chat_message", "message"}:
            await self._chat_message(connection, binding, data)
        elif message_type == "typing":
            await self.relay.broadcast(
                binding.order_id,
                {"type": "typing", "userId": binding.user_id, "isTyping": bool(data.get("isTyping"))},
                exclude_user_id=binding.user_id,
            )
        elif message_type == "order_update":
            await self._order_update(connection, binding)
        else:
            await connection.send_error("Unknown message type")

    async def _chat_message(
        self,
        connection: RelayConnection,
        binding: ConnectionBinding,
        data: dict[str, Any],
    ) -> None:
        content = data.get("content") or data.get("text")
        if not isinstance(content, str) or not content.strip():
            await connection.send_error("Message content is required")
            return
        message = {
            "id": str(uuid.uuid4()),
            "orderId": binding.order_id,
            "senderId": binding.user_id,
            "message": content,
            "messageType": data.get("messageType") or "text",
            "metadata": data.get("metadata"),
            "createdAt": utcnow().isoformat(),
        }
        await self.relay.broadcast(binding.order_id, {"type": "chat_message", "message": message})

    async def _order_update(self, connection: RelayConnection, binding: ConnectionBinding) -> None:
        order = self.load_order(binding.order_id)
        if order is None:
            await connection.send_error("Order not found")
            return
        await self.relay.broadcast(
            binding.order_id,
            {
                "type": "order_update",
                "order": {"id": order.id, "status": order.status.value},
                "updatedBy": binding.user_id,
            },
        )


_relay = ConnectionRelay()


def get_relay() -> ConnectionRelay:
    """Return the process-wide relay."""
    return _relay
