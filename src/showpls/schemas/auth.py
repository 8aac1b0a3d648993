"""Authentication-related Pydantic schemas."""

from pydantic import BaseModel, ConfigDict, Field


class TelegramAuthRequest(BaseModel):
    """Session exchange request carrying raw Telegram initData."""

    init_data: str = Field(..., alias="initData", min_length=1, description="URL-encoded initData")

    model_config = ConfigDict(populate_by_name=True)


class UserResponse(BaseModel):
    """Public view of a marketplace account."""

    id: str
    telegram_id: str
    username: str
    first_name: str | None = None
    last_name: str | None = None
    language_code: str | None = None

    model_config = ConfigDict(from_attributes=True)


class TelegramAuthResponse(BaseModel):
    """Session token issued after initData verification."""

    success: bool = True
    token: str = Field(..., description="Signed session token (Bearer)")
    user: UserResponse


class WsTokenResponse(BaseModel):
    """Short-lived token for opening an order relay socket."""

    token: str
    expires_in: int = Field(..., description="Lifetime in seconds")
