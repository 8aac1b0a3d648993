"""Telegram WebApp initData verification.

initData is a URL-encoded bundle signed by Telegram with a key derived from
the bot token. Verification is pure computation: parse, check freshness,
rebuild the data-check string and compare HMACs in constant time.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Final, Protocol
from urllib.parse import parse_qsl

from showpls.core.errors import (
    CredentialError,
    Expired,
    InvalidCredentialFormat,
    MissingCredential,
    MissingSignature,
    SignatureMismatch,
)
from showpls.core.settings import Settings, settings

logger = logging.getLogger(__name__)

WEBAPP_DATA_LABEL: Final[bytes] = b"WebAppData"
HASH_FIELD: Final[str] = "hash"
AUTH_DATE_FIELD: Final[str] = "auth_date"
USER_FIELD: Final[str] = "user"


@dataclass(frozen=True)
class TelegramUser:
    """Identity claims embedded in the initData ``user`` field."""

    id: int
    username: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    language_code: str | None = None
    is_premium: bool = False
    photo_url: str | None = None

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> TelegramUser:
        raw_id = data.get("id")
        if isinstance(raw_id, bool) or not isinstance(raw_id, int | str):
            raise InvalidCredentialFormat("initData user has no id")
        try:
            user_id = int(raw_id)
        except ValueError as err:
            raise InvalidCredentialFormat("initData user id is not numeric") from err
        return cls(
            id=user_id,
            username=data.get("username") or None,
            first_name=data.get("first_name") or None,
            last_name=data.get("last_name") or None,
            language_code=data.get("language_code") or None,
            is_premium=bool(data.get("is_premium", False)),
            photo_url=data.get("photo_url") or None,
        )


@dataclass(frozen=True)
class VerifiedInitData:
    """Result of a successful verification."""

    auth_date: int
    user: TelegramUser | None
    fields: dict[str, str] = field(default_factory=dict)


def derive_secret_key(bot_token: str) -> bytes:
    """Return ``HMAC_SHA256(key="WebAppData", msg=bot_token)``."""
    return hmac.new(WEBAPP_DATA_LABEL, bot_token.encode("utf-8"), hashlib.sha256).digest()


def build_data_check_string(fields: dict[str, str]) -> str:
    """Join every field except ``hash`` as sorted ``key=value`` lines."""
    return "\n".join(
        f"{key}={value}" for key, value in sorted(fields.items()) if key != HASH_FIELD
    )


def sign_init_data(fields: dict[str, str], bot_token: str) -> str:
    """Compute the hex signature Telegram would attach to ``fields``."""
    data_check_string = build_data_check_string(fields)
    return hmac.new(
        derive_secret_key(bot_token),
        data_check_string.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


def parse_init_data(raw: str) -> dict[str, str]:
    """Parse a URL-encoded initData string into a flat mapping."""
    if not raw or raw.isspace():
        raise MissingCredential()
    try:
        pairs = parse_qsl(raw, keep_blank_values=True, strict_parsing=True)
    except ValueError as err:
        raise InvalidCredentialFormat() from err

    fields: dict[str, str] = {}
    for key, value in pairs:
        if key in fields:
            raise InvalidCredentialFormat(f"Duplicate initData field: {key}")
        fields[key] = value
    return fields


def _parse_auth_date(value: str | None) -> int:
    try:
        return int(value or "0")
    except ValueError:
        return 0


def verify_init_data(
    raw: str,
    bot_token: str,
    max_age_seconds: int,
    *,
    now: float | None = None,
) -> VerifiedInitData:
    """Verify a Telegram initData string.

    Raises:
        MissingSignature: No ``hash`` field.
        Expired: ``auth_date`` absent, zero or older than ``max_age_seconds``.
        SignatureMismatch: The HMAC does not match.
        InvalidCredentialFormat: Unparsable string or malformed ``user`` JSON.
    """
    fields = parse_init_data(raw)

    provided_hash = fields.get(HASH_FIELD)
    if not provided_hash:
        raise MissingSignature()

    auth_date = _parse_auth_date(fields.get(AUTH_DATE_FIELD))
    current = int(time.time() if now is None else now)
    if not auth_date or current - auth_date > max_age_seconds:
        raise Expired()

    expected_hash = sign_init_data(fields, bot_token)
    if not hmac.compare_digest(expected_hash.encode("ascii"), provided_hash.encode("utf-8")):
        raise SignatureMismatch()

    user: TelegramUser | None = None
    user_json = fields.get(USER_FIELD)
    if user_json:
        try:
            user_data = json.loads(user_json)
        except json.JSONDecodeError as err:
            raise InvalidCredentialFormat("initData user is not valid JSON") from err
        if not isinstance(user_data, dict):
            raise InvalidCredentialFormat("initData user must be an object")
        user = TelegramUser.from_mapping(user_data)

    return VerifiedInitData(auth_date=auth_date, user=user, fields=fields)


def is_valid_init_data(
    raw: str,
    bot_token: str,
    max_age_seconds: int,
    *,
    now: float | None = None,
) -> bool:
    """Boolean form of :func:`verify_init_data`."""
    try:
        verify_init_data(raw, bot_token, max_age_seconds, now=now)
    except CredentialError:
        return False
    return True


class InitDataVerifierProtocol(Protocol):
    def verify(self, raw: str) -> VerifiedInitData: ...


class InitDataVerifier:
    """Verifier bound to a bot token and freshness window."""

    def __init__(
        self,
        bot_token: str,
        *,
        max_age_seconds: int = 3600,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not bot_token:
            raise ValueError("bot_token must not be empty")
        self._bot_token = bot_token
        self.max_age_seconds = max_age_seconds
        self._clock = clock

    def verify(self, raw: str) -> VerifiedInitData:
        try:
            verified = verify_init_data(
                raw,
                self._bot_token,
                self.max_age_seconds,
                now=self._clock(),
            )
        except CredentialError as err:
            logger.warning("Rejected Telegram initData: %s", err.error)
            raise

        if verified.user is not None:
            logger.info(
                "Telegram user authenticated id=%s username=%s auth_date=%s",
                verified.user.id,
                verified.user.username,
                verified.auth_date,
            )
        return verified


DEV_PLACEHOLDER_USER: Final[TelegramUser] = TelegramUser(
    id=12345,
    username="dev_user",
    first_name="Dev",
    last_name="User",
    language_code="en",
)


class DevInitDataVerifier:
    """Non-production stand-in that accepts any initData as a fixed identity."""

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock

    def verify(self, raw: str) -> VerifiedInitData:
        logger.warning("Telegram initData verification bypassed (development mode)")
        return VerifiedInitData(auth_date=int(self._clock()), user=DEV_PLACEHOLDER_USER)


def build_init_data_verifier(config: Settings | None = None) -> InitDataVerifierProtocol:
    """Build the verifier selected by configuration.

    The development bypass is its own flag and is refused in production. A
    missing bot token without the flag is a configuration error.
    """
    config = config or settings
    if config.telegram_auth_dev_bypass:
        if config.is_production:
            raise RuntimeError("TELEGRAM_AUTH_DEV_BYPASS cannot be enabled in production")
        return DevInitDataVerifier()
    if not config.telegram_bot_token:
        raise RuntimeError(
            "TELEGRAM_BOT_TOKEN is not configured; set it or enable "
            "TELEGRAM_AUTH_DEV_BYPASS outside production"
        )
    return InitDataVerifier(
        config.telegram_bot_token,
        max_age_seconds=config.telegram_init_data_max_age_seconds,
    )


def get_init_data_verifier() -> InitDataVerifierProtocol:
    """Return the verifier for the running configuration."""
    return build_init_data_verifier(settings)
