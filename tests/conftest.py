# tests/conftest.py
from __future__ import annotations

import json
import os
import time
from collections.abc import Generator, Iterator
from typing import Any
from urllib.parse import urlencode

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

TEST_BOT_TOKEN = "123456:TEST-bot-token-for-showpls"

os.environ.setdefault("SECRET_KEY", "test-secret-key-for-showpls-sessions")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ["TELEGRAM_BOT_TOKEN"] = TEST_BOT_TOKEN
os.environ["TELEGRAM_AUTH_DEV_BYPASS"] = "false"
os.environ["IDEMPOTENCY_SWEEP_ENABLED"] = "false"
os.environ["HTTP_RATE_LIMIT_REQUESTS"] = "1000"
os.environ.pop("REDIS_URL", None)

from showpls.api.v1.dependencies import get_escrow_gateway_dep  # noqa: E402
from showpls.core.tokens import create_session_token  # noqa: E402
from showpls.db.session import Base, enable_sqlite_foreign_keys, engine_options  # noqa: E402
from showpls.db.session import get_db as app_get_session  # noqa: E402
from showpls.main import app as fastapi_app  # noqa: E402
from showpls.models import Order, OrderStatus, User  # noqa: E402
from showpls.services.fees import to_nano  # noqa: E402
from showpls.services.rate_limit import reset_rate_limiters  # noqa: E402
from showpls.services.telegram_auth import sign_init_data  # noqa: E402

TEST_DB_URL = "sqlite://"


def build_init_data(
    user: dict[str, Any] | None = None,
    *,
    auth_date: int | None = None,
    bot_token: str = TEST_BOT_TOKEN,
    extra: dict[str, str] | None = None,
) -> str:
    """Return a correctly signed, URL-encoded initData string."""
    fields: dict[str, str] = {
        "auth_date": str(int(time.time()) if auth_date is None else auth_date),
        "query_id": "AAHdF6IQAAAAAN0XohDhrOrc",
    }
    if user is not None:
        fields["user"] = json.dumps(user, separators=(",", ":"))
    if extra:
        fields.update(extra)
    fields["hash"] = sign_init_data(fields, bot_token)
    return urlencode(fields)


class FakeEscrowGateway:
    """In-memory escrow balances that record every chain lookup."""

    def __init__(self, balances: dict[str, int] | None = None) -> None:
        self.balances = dict(balances or {})
        self.calls: list[tuple[str, int]] = []

    async def get_balance(self, address: str) -> int:
        return self.balances.get(address, 0)

    async def is_funded(self, address: str, expected_nano: int) -> bool:
        self.calls.append((address, expected_nano))
        return await self.get_balance(address) >= expected_nano


@pytest.fixture(scope="session")
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(TEST_DB_URL, poolclass=StaticPool, **engine_options(TEST_DB_URL))
    enable_sqlite_foreign_keys(engine)
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def db_session(engine: Engine) -> Iterator[Session]:
    connection = engine.connect()
    transaction = connection.begin()
    session = Session(
        bind=connection,
        autoflush=False,
        expire_on_commit=False,
        join_transaction_mode="create_savepoint",
    )

    try:
        yield session
    finally:
        session.close()

        if transaction.is_active:
            transaction.rollback()
        connection.close()

        # Ensure each test sees a clean database even if commits occurred.
        with engine.begin() as cleanup_conn:
            for table in reversed(Base.metadata.sorted_tables):
                cleanup_conn.execute(table.delete())


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture(autouse=True)
def override_session_dependency(app: FastAPI, db_session: Session) -> Iterator[None]:
    def _get_session_override() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[app_get_session] = _get_session_override
    try:
        yield
    finally:
        app.dependency_overrides.pop(app_get_session, None)


@pytest.fixture(autouse=True)
def fresh_rate_limiters() -> Iterator[None]:
    reset_rate_limiters()
    yield
    reset_rate_limiters()


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client


@pytest.fixture()
def escrow_gateway(app: FastAPI) -> Iterator[FakeEscrowGateway]:
    """Replace the toncenter gateway with an in-memory fake."""
    gateway = FakeEscrowGateway()
    app.dependency_overrides[get_escrow_gateway_dep] = lambda: gateway
    try:
        yield gateway
    finally:
        app.dependency_overrides.pop(get_escrow_gateway_dep, None)


@pytest.fixture()
def telegram_user_data() -> dict[str, Any]:
    """Return the Telegram profile of the primary test user."""
    return {
        "id": 279058397,
        "first_name": "Vladislav",
        "last_name": "Kibenko",
        "username": "vdkfrost",
        "language_code": "ru",
        "is_premium": True,
    }


@pytest.fixture()
def requester(db_session: Session) -> Iterator[User]:
    """Create and return a persisted requester."""
    user = User(telegram_id="1001", username="requester", first_name="Rita")
    db_session.add(user)
    db_session.flush()
    db_session.refresh(user)
    yield user


@pytest.fixture()
def provider(db_session: Session) -> Iterator[User]:
    """Create and return a persisted provider."""
    user = User(
        telegram_id="1002",
        username="provider",
        first_name="Pavel",
        wallet_address="EQprovider-wallet",
    )
    db_session.add(user)
    db_session.flush()
    db_session.refresh(user)
    yield user


@pytest.fixture()
def outsider(db_session: Session) -> Iterator[User]:
    """Create a user who is party to no order."""
    user = User(telegram_id="1003", username="outsider")
    db_session.add(user)
    db_session.flush()
    db_session.refresh(user)
    yield user


@pytest.fixture()
def order(db_session: Session, requester: User, provider: User) -> Iterator[Order]:
    """Create a 2.5 TON order with an escrow address and an assigned provider."""
    order = Order(
        requester_id=requester.id,
        provider_id=provider.id,
        title="Show me the queue at the museum",
        budget_nano_ton=to_nano("2.5"),
        platform_fee_bps=250,
        status=OrderStatus.CREATED,
        escrow_address="EQescrow-address-1",
    )
    db_session.add(order)
    db_session.flush()
    db_session.refresh(order)
    yield order


def _auth_headers(user: User) -> dict[str, str]:
    token = create_session_token(user.id, user.telegram_id, user.username)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def requester_auth(requester: User) -> dict[str, str]:
    """Return authorization headers for the requester."""
    return _auth_headers(requester)


@pytest.fixture()
def provider_auth(provider: User) -> dict[str, str]:
    """Return authorization headers for the provider."""
    return _auth_headers(provider)


@pytest.fixture()
def outsider_auth(outsider: User) -> dict[str, str]:
    """Return authorization headers for the outsider."""
    return _auth_headers(outsider)
