"""Shared API dependencies for authentication and common functionality."""

from __future__ import annotations

import logging
from typing import Annotated, Any

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from showpls.core.errors import MissingCredential, RateLimited
from showpls.core.tokens import SessionClaims, decode_session_token
from showpls.db.session import get_db
from showpls.services.rate_limit import RateLimiter, get_http_rate_limiter, retry_after_seconds
from showpls.services.telegram_auth import InitDataVerifierProtocol, get_init_data_verifier
from showpls.services.ton import EscrowGateway, get_escrow_gateway
from showpls.services.users import upsert_telegram_user

logger = logging.getLogger(__name__)

INIT_DATA_HEADER = "X-Telegram-Init-Data"
INIT_DATA_FIELD = "__twaInitData"

# Type alias for database session dependency
SessionDep = Annotated[Session, Depends(get_db)]


def get_init_data_verifier_dep() -> InitDataVerifierProtocol:
    """Return the initData verifier for the running configuration."""
    return get_init_data_verifier()


def get_escrow_gateway_dep() -> EscrowGateway:
    """Return the chain gateway used to confirm escrow balances."""
    return get_escrow_gateway()


def get_http_rate_limiter_dep() -> RateLimiter:
    """Return the per-user limiter for money-moving routes."""
    return get_http_rate_limiter()


InitDataVerifierDep = Annotated[InitDataVerifierProtocol, Depends(get_init_data_verifier_dep)]
EscrowGatewayDep = Annotated[EscrowGateway, Depends(get_escrow_gateway_dep)]
HttpRateLimiterDep = Annotated[RateLimiter, Depends(get_http_rate_limiter_dep)]


async def extract_init_data(request: Request) -> str | None:
    """Find raw initData in the header, query string or JSON body."""
    raw = request.headers.get(INIT_DATA_HEADER)
    if raw:
        return raw

    authorization = request.headers.get("Authorization", "")
    if authorization.startswith("Telegram "):
        return authorization[len("Telegram "):]

    raw = request.query_params.get(INIT_DATA_FIELD)
    if raw:
        return raw

    if request.headers.get("content-type", "").startswith("application/json"):
        try:
            body: Any = await request.json()
        except ValueError:
            return None
        if isinstance(body, dict) and isinstance(body.get(INIT_DATA_FIELD), str):
            return body[INIT_DATA_FIELD]
    return None


async def get_current_user(
    request: Request,
    db: SessionDep,
    verifier: InitDataVerifierDep,
) -> SessionClaims:
    """Authenticate with a Bearer session token or with Telegram initData.

    Raises:
        InvalidToken / TokenExpired: Bad Bearer token.
        CredentialError subclasses: initData rejected.
        MissingCredential: Neither credential present.
    """
    authorization = request.headers.get("Authorization", "")
    if authorization.startswith("Bearer "):
        return decode_session_token(authorization[len("Bearer "):].strip())

    raw = await extract_init_data(request)
    if raw is None:
        raise MissingCredential("No authorization token provided")

    verified = verifier.verify(raw)
    if verified.user is None:
        raise MissingCredential("Missing user data")

    user = upsert_telegram_user(db, verified.user)
    return SessionClaims(user_id=user.id, telegram_id=user.telegram_id, username=user.username)


# Type alias for current user dependency
CurrentUserDep = Annotated[SessionClaims, Depends(get_current_user)]


async def enforce_rate_limit(
    request: Request,
    current_user: CurrentUserDep,
    limiter: HttpRateLimiterDep,
) -> None:
    """Refuse a caller who has exceeded the per-route request budget."""
    identity = f"user:{current_user.telegram_id}:{request.url.path}"
    if not limiter.allow(identity):
        logger.warning("Rate limit exceeded for %s", identity)
        raise RateLimited(
            "Too many critical operations",
            retry_after=retry_after_seconds(limiter, identity),
        )
