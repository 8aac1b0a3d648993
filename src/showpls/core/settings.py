"""Application settings and configuration.

This module defines all configuration options for the Showpls service.
Settings are loaded from environment variables with sensible defaults.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Secrets (bot token, signing key) are always supplied externally; the
    service never generates or stores them.
    """

    # Application metadata
    app_name: str = Field(default="Showpls", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Database configuration
    database_url: str = Field(default="sqlite:///./showpls.db", alias="DATABASE_URL")
    test_database_url: str | None = Field(default=None, alias="TEST_DATABASE_URL")
    use_testing_database: bool = Field(default=False, alias="USE_TEST_DATABASE")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # Session token (JWT) settings
    secret_key: str = Field(alias="SECRET_KEY")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    session_token_expire_minutes: int = Field(
        default=60 * 24,
        alias="SESSION_TOKEN_EXPIRE_MINUTES",
    )
    ws_token_expire_minutes: int = Field(default=60, alias="WS_TOKEN_EXPIRE_MINUTES")

    # Telegram WebApp initData verification
    telegram_bot_token: str | None = Field(default=None, alias="TELEGRAM_BOT_TOKEN")
    telegram_init_data_max_age_seconds: int = Field(
        default=3600,
        alias="TELEGRAM_INITDATA_TTL_SEC",
    )
    # Separate switch from the bot token so a missing secret never turns
    # verification off on its own.
    telegram_auth_dev_bypass: bool = Field(default=False, alias="TELEGRAM_AUTH_DEV_BYPASS")

    # Idempotency store
    idempotency_retention_hours: int = Field(default=24, alias="IDEMPOTENCY_RETENTION_HOURS")
    idempotency_sweep_interval_seconds: float = Field(
        default=3600.0,
        alias="IDEMPOTENCY_SWEEP_INTERVAL_SECONDS",
    )
    idempotency_sweep_enabled: bool = Field(default=True, alias="IDEMPOTENCY_SWEEP_ENABLED")

    # Fees
    platform_fee_bps: int = Field(default=250, alias="PLATFORM_FEE_BPS")

    # WebSocket relay rate limiting
    ws_rate_limit_messages: int = Field(default=5, alias="WS_RATE_LIMIT_MESSAGES")
    ws_rate_limit_window_seconds: float = Field(
        default=1.0,
        alias="WS_RATE_LIMIT_WINDOW_SECONDS",
    )
    redis_url: str | None = Field(default=None, alias="REDIS_URL")

    # Per-user limit on money-moving HTTP routes
    http_rate_limit_requests: int = Field(default=5, alias="HTTP_RATE_LIMIT_REQUESTS")
    http_rate_limit_window_seconds: float = Field(
        default=300.0,
        alias="HTTP_RATE_LIMIT_WINDOW_SECONDS",
    )

    # TON HTTP API used to confirm escrow funding
    toncenter_base_url: str = Field(
        default="https://testnet.toncenter.com/api/v2",
        alias="TONCENTER_BASE_URL",
    )
    toncenter_api_key: str | None = Field(default=None, alias="TONCENTER_API_KEY")
    toncenter_timeout_seconds: float = Field(default=10.0, alias="TONCENTER_TIMEOUT_SECONDS")

    # CORS configuration for the Mini App frontend
    cors_origins: list[str] = Field(
        default=["*"],
        alias="CORS_ORIGINS",
    )
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")
    cors_allow_methods: list[str] = Field(
        default=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        alias="CORS_ALLOW_METHODS",
    )
    cors_allow_headers: list[str] = Field(
        default=["*"],
        alias="CORS_ALLOW_HEADERS",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )

    @property
    def is_production(self) -> bool:
        """Return True when running with production configuration."""
        return self.environment.strip().lower() in {"production", "prod"}

    @property
    def database_url_sync(self) -> str:
        """Return a sync-compatible database URL for tooling.

        Converts asyncpg URLs to psycopg for synchronous database operations
        like Alembic migrations.
        """
        url = self.effective_database_url
        if url.startswith("postgresql+asyncpg"):
            return url.replace("postgresql+asyncpg", "postgresql+psycopg", 1)
        return url

    @property
    def effective_database_url(self) -> str:
        """Return the database URL respecting testing overrides."""
        if self.use_testing_database and self.test_database_url:
            return self.test_database_url
        return self.database_url


settings = Settings()  # type: ignore[call-arg]
