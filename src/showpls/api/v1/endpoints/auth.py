"""Authentication endpoints: exchange Telegram initData for session tokens."""

from __future__ import annotations

from fastapi import APIRouter

from showpls.core.errors import MissingCredential, NotFound
from showpls.core.settings import settings
from showpls.core.tokens import create_session_token, create_ws_token
from showpls.models import User
from showpls.schemas.auth import (
    TelegramAuthRequest,
    TelegramAuthResponse,
    UserResponse,
    WsTokenResponse,
)
from showpls.services.users import upsert_telegram_user

from ..dependencies import CurrentUserDep, InitDataVerifierDep, SessionDep

router = APIRouter(prefix="/auth", tags=["authentication"])


@router.post("/telegram", response_model=TelegramAuthResponse)
async def telegram_login(
    request: TelegramAuthRequest,
    db: SessionDep,
    verifier: InitDataVerifierDep,
) -> TelegramAuthResponse:
    """Verify initData and issue a session token for the Telegram user."""
    verified = verifier.verify(request.init_data)
    if verified.user is None:
        raise MissingCredential("Missing user data")

    user = upsert_telegram_user(db, verified.user)
    token = create_session_token(user.id, user.telegram_id, user.username)
    return TelegramAuthResponse(
        success=True,
        token=token,
        user=UserResponse.model_validate(user),
    )


@router.get("/ws-token", response_model=WsTokenResponse)
async def issue_ws_token(current_user: CurrentUserDep) -> WsTokenResponse:
    """Issue a short-lived token for opening an order relay socket."""
    token = create_ws_token(
        current_user.user_id,
        current_user.telegram_id,
        current_user.username,
    )
    return WsTokenResponse(token=token, expires_in=settings.ws_token_expire_minutes * 60)


@router.get("/me", response_model=UserResponse)
async def read_current_user(current_user: CurrentUserDep, db: SessionDep) -> UserResponse:
    """Return the authenticated account."""
    user = db.get(User, current_user.user_id)
    if user is None:
        raise NotFound("User not found")
    return UserResponse.model_validate(user)
