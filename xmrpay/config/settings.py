"""
Application settings.

Loads configuration from environment variables using pydantic-settings.
"""

from functools import lru_cache

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from xmrpay.config.constants import (
    DAEMON_POLL_INTERVAL,
    INVOICE_LOCK_BLOCKING_TIMEOUT,
    INVOICE_LOCK_TIMEOUT,
    NOTIFICATION_CHANNEL,
    WALLET_RPC_TIMEOUT,
)


class MoneroLikeConfigurationItem(BaseModel):
    """Connection settings for one Monero-like currency."""

    daemon_rpc_uri: str
    internal_wallet_rpc_uri: str
    wallet_directory: str | None = None
    username: str | None = None
    password: str | None = None


class MoneroLikeConfiguration(BaseModel):
    """Per-currency connection settings keyed by upper-case crypto code."""

    items: dict[str, MoneroLikeConfigurationItem] = Field(default_factory=dict)

    @property
    def crypto_codes(self) -> list[str]:
        """Configured crypto codes."""
        return list(self.items)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database
    database_url: str = "sqlite+aiosqlite:///./xmrpay.db"
    database_echo: bool = False
    # create_all on start instead of `alembic upgrade head`
    database_auto_create: bool = False

    # Redis (locks, notifications, dramatiq)
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: str | None = None
    redis_db: int = 0

    # Monero daemon / wallet RPC
    crypto_code: str = "XMR"
    xmr_daemon_uri: str | None = None
    xmr_wallet_daemon_uri: str | None = None
    xmr_wallet_daemon_walletdir: str | None = None
    xmr_daemon_username: str | None = None
    xmr_daemon_password: str | None = None
    rpc_timeout: float = Field(
        default=WALLET_RPC_TIMEOUT, gt=0, description="Per JSON-RPC call timeout in seconds"
    )
    daemon_poll_interval: int = Field(
        default=DAEMON_POLL_INTERVAL, ge=1, description="Daemon availability poll interval in seconds"
    )

    # Daemon callback HTTP server
    callback_host: str = "0.0.0.0"
    callback_port: int = Field(default=8080, ge=1, le=65535)
    callback_prefix: str = "/monerolikedaemoncallback"

    # Locking
    use_redis_locks: bool = False
    invoice_lock_timeout: int = Field(default=INVOICE_LOCK_TIMEOUT, ge=1)
    invoice_lock_blocking_timeout: float = Field(default=INVOICE_LOCK_BLOCKING_TIMEOUT, gt=0)

    # Notifications
    notification_channel: str = NOTIFICATION_CHANNEL
    publish_to_redis: bool = False

    # Logging
    log_level: str = "INFO"
    log_file: str | None = "logs/listener.log"

    @field_validator("crypto_code")
    @classmethod
    def normalize_crypto_code(cls, v: str) -> str:
        """Crypto codes are always upper-case."""
        return v.strip().upper()

    @field_validator("xmr_daemon_uri", "xmr_wallet_daemon_uri")
    @classmethod
    def strip_trailing_slash(cls, v: str | None) -> str | None:
        """Normalise URIs so that paths can be appended."""
        if v is None:
            return None
        v = v.strip()
        return v.rstrip("/") or None

    @field_validator("callback_prefix")
    @classmethod
    def normalize_prefix(cls, v: str) -> str:
        """Route prefix starts with a slash and has none at the end."""
        v = "/" + v.strip().strip("/")
        return "" if v == "/" else v

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        """Log level names are upper-case in loguru."""
        return v.upper()

    def get_monero_like_configuration(self) -> MoneroLikeConfiguration:
        """
        Build per-currency connection settings.

        A currency is only configured when both the daemon and the wallet
        RPC URIs are set.

        Returns:
            MoneroLikeConfiguration with zero or one item
        """
        configuration = MoneroLikeConfiguration()
        if self.xmr_daemon_uri and self.xmr_wallet_daemon_uri:
            configuration.items[self.crypto_code] = MoneroLikeConfigurationItem(
                daemon_rpc_uri=self.xmr_daemon_uri,
                internal_wallet_rpc_uri=self.xmr_wallet_daemon_uri,
                wallet_directory=self.xmr_wallet_daemon_walletdir,
                username=self.xmr_daemon_username,
                password=self.xmr_daemon_password,
            )
        return configuration


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return Settings()
