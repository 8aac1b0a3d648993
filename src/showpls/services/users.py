"""Account lookup and creation for verified Telegram identities."""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from showpls.models import User
from showpls.services.telegram_auth import TelegramUser

logger = logging.getLogger(__name__)


def get_user_by_telegram_id(db: Session, telegram_id: int | str) -> User | None:
    return db.scalars(select(User).where(User.telegram_id == str(telegram_id))).first()


def upsert_telegram_user(db: Session, telegram_user: TelegramUser) -> User:
    """Return the account for ``telegram_user``, creating it on first sight."""
    user = get_user_by_telegram_id(db, telegram_user.id)
    if user is not None:
        return user

    user = User(
        telegram_id=str(telegram_user.id),
        username=telegram_user.username or f"user_{telegram_user.id}",
        first_name=telegram_user.first_name,
        last_name=telegram_user.last_name,
        language_code=telegram_user.language_code or "en",
        is_premium=telegram_user.is_premium,
        photo_url=telegram_user.photo_url,
    )
    try:
        with db.begin_nested():
            db.add(user)
    except IntegrityError:
        # Another request created the same account first.
        existing = get_user_by_telegram_id(db, telegram_user.id)
        if existing is None:
            raise
        return existing
    db.commit()
    logger.info("Created user %s for Telegram id %s", user.id, telegram_user.id)
    return user
