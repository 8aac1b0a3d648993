"""Error taxonomy for the trust layer.

Every error carries a stable ``error`` string and an optional ``hint`` so the
HTTP layer can render ``{"error": ..., "hint": ...}`` bodies and the socket
layer can render ``{"type": "error", "message": ...}`` frames.
"""

from __future__ import annotations

from typing import Any, ClassVar


class ShowplsError(Exception):
    """Base class for caller-visible failures."""

    status_code: ClassVar[int] = 400
    default_error: ClassVar[str] = "Request failed"
    default_hint: ClassVar[str | None] = None

    def __init__(self, error: str | None = None, *, hint: str | None = None) -> None:
        self.error = error or self.default_error
        self.hint = hint if hint is not None else self.default_hint
        self.headers: dict[str, str] | None = None
        super().__init__(self.error)

    def to_payload(self) -> dict[str, Any]:
        """Return the structured JSON body for this error."""
        payload: dict[str, Any] = {"error": self.error}
        if self.hint:
            payload["hint"] = self.hint
        return payload


# --- initData verification ------------------------------------------------------


class CredentialError(ShowplsError):
    """Telegram initData could not be accepted."""

    status_code = 401
    default_error = "Invalid Telegram initData"


class MissingCredential(CredentialError):
    default_error = "Missing Telegram initData"
    default_hint = "Send initData in the X-Telegram-Init-Data header"


class MissingSignature(CredentialError):
    default_error = "Missing hash"


class Expired(CredentialError):
    default_error = "Expired initData"
    default_hint = "Reopen the Mini App to obtain fresh initData"


class SignatureMismatch(CredentialError):
    default_error = "Invalid initData signature"


class InvalidCredentialFormat(CredentialError):
    default_error = "Invalid initData format"


# --- idempotency gate -----------------------------------------------------------


class MissingIdempotencyKey(ShowplsError):
    status_code = 400
    default_error = "Idempotency-Key header is required for this operation"
    default_hint = "Include a unique UUID in the Idempotency-Key header"


class InvalidKeyFormat(ShowplsError):
    status_code = 400
    default_error = "Invalid Idempotency-Key format. Must be a valid UUID."
    default_hint = "Generate the key with a UUID v4 generator"


class StoreUnavailable(ShowplsError):
    status_code = 503
    default_error = "Idempotency store unavailable"
    default_hint = "Retry the request with the same Idempotency-Key"


class KeyReused(ShowplsError):
    status_code = 422
    default_error = "Idempotency-Key was already used for a different operation"
    default_hint = "Generate a new key for each distinct operation"


# --- fees -----------------------------------------------------------------------


class InvalidAmount(ShowplsError):
    status_code = 400
    default_error = "Invalid amount"
    default_hint = "Amounts must be finite, non-negative TON values"


# --- session tokens and connections ---------------------------------------------


class InvalidToken(ShowplsError):
    status_code = 401
    default_error = "Invalid authorization token"


class TokenExpired(InvalidToken):
    default_error = "Authorization token expired"
    default_hint = "Request a new token"


class Forbidden(ShowplsError):
    status_code = 403
    default_error = "Forbidden"


class RateLimited(ShowplsError):
    """Too many requests from one identity; carries ``Retry-After``."""

    status_code = 429
    default_error = "Too many requests"
    default_hint = "Wait before retrying"

    def __init__(
        self,
        error: str | None = None,
        *,
        retry_after: int,
        hint: str | None = None,
    ) -> None:
        super().__init__(error, hint=hint)
        self.retry_after = max(1, retry_after)
        self.headers = {"Retry-After": str(self.retry_after)}

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["retryAfter"] = self.retry_after
        return payload


# --- orders and escrow ----------------------------------------------------------


class NotFound(ShowplsError):
    status_code = 404
    default_error = "Not found"


class OrderStateConflict(ShowplsError):
    status_code = 400
    default_error = "Order is not in a valid state for this operation"


class ChainUnavailable(ShowplsError):
    status_code = 502
    default_error = "Failed to verify funding"
    default_hint = "Retry the request with the same Idempotency-Key"


__all__ = [
    "ChainUnavailable",
    "CredentialError",
    "Expired",
    "Forbidden",
    "InvalidAmount",
    "InvalidCredentialFormat",
    "InvalidKeyFormat",
    "InvalidToken",
    "KeyReused",
    "MissingCredential",
    "MissingIdempotencyKey",
    "MissingSignature",
    "NotFound",
    "OrderStateConflict",
    "RateLimited",
    "ShowplsError",
    "SignatureMismatch",
    "StoreUnavailable",
    "TokenExpired",
]
