"""Read-only access to escrow contract balances on TON.

Escrow deployment and transfers happen client side through the user's wallet;
the server only needs to confirm that an escrow address holds the expected
amount before an order moves on.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

import httpx

from showpls.core.settings import settings

logger = logging.getLogger(__name__)


class EscrowGatewayError(RuntimeError):
    """The chain API could not answer."""


class EscrowGateway(Protocol):
    async def get_balance(self, address: str) -> int: ...

    async def is_funded(self, address: str, expected_nano: int) -> bool: ...


class TonCenterGateway:
    """Escrow balance checks through the toncenter v2 HTTP API."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or settings.toncenter_base_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.toncenter_api_key
        self.timeout_seconds = timeout_seconds or settings.toncenter_timeout_seconds
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()

    async def _ensure_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                headers = {"X-API-Key": self.api_key} if self.api_key else None
                self._client = httpx.AsyncClient(
                    base_url=self.base_url,
                    timeout=httpx.Timeout(self.timeout_seconds),
                    headers=headers,
                    transport=self._transport,
                )
        return self._client

    async def _get(self, method: str, params: dict[str, Any]) -> Any:
        client = await self._ensure_client()
        try:
            response = await client.get(f"/{method}", params=params)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as err:
            logger.warning("toncenter %s failed: %s", method, err)
            raise EscrowGatewayError(f"toncenter {method} failed") from err

        if not isinstance(payload, dict) or not payload.get("ok"):
            error = payload.get("error") if isinstance(payload, dict) else payload
            raise EscrowGatewayError(f"toncenter {method} returned an error: {error}")
        return payload.get("result")

    async def get_balance(self, address: str) -> int:
        result = await self._get("getAddressBalance", {"address": address})
        try:
            return int(result)
        except (TypeError, ValueError) as err:
            raise EscrowGatewayError(f"Unexpected balance value: {result!r}") from err

    async def is_funded(self, address: str, expected_nano: int) -> bool:
        balance = await self.get_balance(address)
        logger.info("Escrow %s balance %d, expected %d", address, balance, expected_nano)
        return balance >= expected_nano

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


_gateway: TonCenterGateway | None = None


def get_escrow_gateway() -> TonCenterGateway:
    """Return the shared toncenter gateway."""
    global _gateway
    if _gateway is None:
        _gateway = TonCenterGateway()
    return _gateway


async def close_escrow_gateway() -> None:
    global _gateway
    if _gateway is not None:
        await _gateway.close()
        _gateway = None
