"""Engine and session factory for the trust-layer database."""

from __future__ import annotations

from collections.abc import Generator
from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from showpls.core.settings import settings


class Base(DeclarativeBase):
    """Declarative base for users, orders and idempotency records."""


# Model modules register their tables on Base.metadata.
import showpls.models  # noqa: E402,F401


def is_sqlite(url: str) -> bool:
    return make_url(url).get_backend_name() == "sqlite"


def engine_options(url: str) -> dict[str, Any]:
    """Keyword arguments for ``create_engine`` on ``url``.

    FastAPI runs sync dependencies in a worker thread, so SQLite connections
    must be usable outside the thread that opened them.
    """
    options: dict[str, Any] = {"pool_pre_ping": True, "echo": settings.sql_debug}
    if is_sqlite(url):
        options["connect_args"] = {"check_same_thread": False}
    return options


def enable_sqlite_foreign_keys(target: Engine) -> None:
    """Turn on ``PRAGMA foreign_keys`` for every new SQLite connection."""

    @event.listens_for(target, "connect")
    def _set_pragma(dbapi_connection: Any, connection_record: Any) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def build_engine(url: str) -> Engine:
    built = create_engine(url, **engine_options(url))
    if is_sqlite(url):
        enable_sqlite_foreign_keys(built)
    return built


engine = build_engine(settings.effective_database_url)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """Yield a request-scoped session and close it afterwards."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
