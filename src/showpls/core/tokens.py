"""Session token issuance and verification.

Session tokens are HS256 JWTs carrying the user's stable identifier and
username. They are issued after initData verification, held by the client and
never stored server side.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from jose import JWTError, jwt
from jose.exceptions import ExpiredSignatureError

from showpls.core.errors import InvalidToken, TokenExpired
from showpls.core.settings import settings


@dataclass(frozen=True)
class SessionClaims:
    """Verified identity extracted from a session token."""

    user_id: str
    telegram_id: str
    username: str


def create_session_token(
    user_id: str,
    telegram_id: str,
    username: str,
    *,
    expires_minutes: int | None = None,
) -> str:
    """Create a signed session token for the given user."""
    now = datetime.now(UTC)
    minutes = settings.session_token_expire_minutes if expires_minutes is None else expires_minutes
    to_encode: dict[str, Any] = {
        "sub": user_id,
        "telegram_id": telegram_id,
        "username": username,
        "iat": now,
        "exp": now + timedelta(minutes=minutes),
    }
    encoded_jwt: str = jwt.encode(
        to_encode,
        settings.secret_key,
        algorithm=settings.jwt_algorithm,
    )
    return encoded_jwt


def create_ws_token(user_id: str, telegram_id: str, username: str) -> str:
    """Create a short-lived token for opening a relay connection."""
    return create_session_token(
        user_id,
        telegram_id,
        username,
        expires_minutes=settings.ws_token_expire_minutes,
    )


def decode_session_token(token: str) -> SessionClaims:
    """Verify signature and expiry of a session token.

    Raises:
        TokenExpired: If the token's ``exp`` is in the past.
        InvalidToken: For any other signature, format or claim problem.
    """
    if not token:
        raise InvalidToken("No authorization token provided")
    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except ExpiredSignatureError as err:
        raise TokenExpired() from err
    except JWTError as err:
        raise InvalidToken() from err

    subject = payload.get("sub")
    if not subject:
        raise InvalidToken("Could not validate credentials")
    return SessionClaims(
        user_id=str(subject),
        telegram_id=str(payload.get("telegram_id") or ""),
        username=str(payload.get("username") or ""),
    )
