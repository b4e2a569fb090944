"""
Application settings.

Loads configuration from environment variables using pydantic-settings.
"""

from loguru import logger
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from nftsync.config.constants import (
    BLOCKCHAIN_TIMEOUT,
    COLLECTION_SIZE,
    DEFAULT_BATCH_SIZE,
    DEFAULT_CONFIRMATIONS,
    DEFAULT_ENRICH_BATCH_SIZE,
    DEFAULT_LEASE_TTL_SECONDS,
    DEFAULT_MAX_BLOCKS_PER_SECOND,
    DEFAULT_MAX_LOG_BLOCK_RANGE,
    DEFAULT_MAX_REQUESTS_PER_SECOND,
    DEFAULT_MAX_RETRIES,
    DEFAULT_POLL_INTERVAL_SECONDS,
    DEFAULT_RETRY_DELAY_MS,
    DEFAULT_VERIFICATION_SAMPLE_SIZE,
    KCC_CHAIN_ID,
    KUSWAP_LISTING_WALLET,
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Blockchain RPC
    rpc_url: str
    ws_url: str | None = None  # Optional push-based head tracking
    rpc_timeout_seconds: float = Field(
        default=BLOCKCHAIN_TIMEOUT, gt=0, description="Per-call RPC timeout"
    )
    expected_chain_id: int | None = Field(
        default=KCC_CHAIN_ID,
        description="Chain ID the node must report (None disables the check)",
    )

    # Collection
    contract_address: str
    collection_size: int = Field(default=COLLECTION_SIZE, gt=0)
    listing_wallet_address: str = KUSWAP_LISTING_WALLET

    # Database
    database_url: str
    database_echo: bool = False

    # Sync
    sync_type: str = Field(default="full", pattern="^(full|incremental)$")
    sync_from_block: int = Field(
        default=0, ge=0, description="First block to scan (0 = auto-discover)"
    )
    confirmations: int = Field(default=DEFAULT_CONFIRMATIONS, ge=0)
    sync_batch_size: int = Field(default=DEFAULT_BATCH_SIZE, ge=1)
    max_log_block_range: int = Field(
        default=DEFAULT_MAX_LOG_BLOCK_RANGE,
        ge=1,
        description="Largest block span the RPC node accepts for eth_getLogs",
    )
    max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=0)
    retry_delay_ms: int = Field(default=DEFAULT_RETRY_DELAY_MS, ge=0)
    poll_interval_seconds: float = Field(
        default=DEFAULT_POLL_INTERVAL_SECONDS, gt=0
    )
    enrich_batch_size: int = Field(default=DEFAULT_ENRICH_BATCH_SIZE, ge=0)
    lease_ttl_seconds: int = Field(default=DEFAULT_LEASE_TTL_SECONDS, gt=0)
    verification_sample_size: int = Field(
        default=DEFAULT_VERIFICATION_SAMPLE_SIZE, ge=1
    )

    # RPC rate limiting
    max_blocks_per_second: int = Field(
        default=DEFAULT_MAX_BLOCKS_PER_SECOND, ge=1
    )
    max_requests_per_second: int = Field(
        default=DEFAULT_MAX_REQUESTS_PER_SECOND, ge=1
    )

    # Redis (for Dramatiq)
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: str | None = None
    redis_db: int = 0

    # Application
    environment: str = "production"
    debug: bool = False
    log_level: str = "INFO"
    health_check_port: int = Field(
        default=8081, ge=1, le=65535, description="Health check HTTP server port"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @model_validator(mode="after")
    def validate_production(self) -> "Settings":
        """Validate production-specific requirements."""
        if self.environment == "production":
            if self.debug:
                raise ValueError(
                    "DEBUG must be False in production environment. "
                    "Set DEBUG=false in your .env file."
                )
            if self.rpc_url.startswith("http://") and "localhost" not in self.rpc_url:
                logger.warning(
                    "RPC_URL uses plain HTTP in production; "
                    "prefer an HTTPS endpoint."
                )
        return self

    @field_validator("contract_address", "listing_wallet_address")
    @classmethod
    def validate_eth_address(cls, v: str) -> str:
        """Validate Ethereum address format."""
        if not v.startswith("0x") or len(v) != 42:
            raise ValueError(
                f"Invalid Ethereum address: {v}. "
                "Must start with 0x and be 42 characters long."
            )
        try:
            int(v[2:], 16)
        except ValueError as exc:
            raise ValueError(f"Invalid Ethereum address format: {v}") from exc
        return v.lower()

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """Validate database URL."""
        if not v.startswith(("postgresql://", "postgresql+asyncpg://")):
            raise ValueError(
                "DATABASE_URL must start with postgresql:// or postgresql+asyncpg://"
            )
        return v

    @property
    def async_database_url(self) -> str:
        """Database URL with the asyncpg driver selected."""
        if self.database_url.startswith("postgresql://"):
            return self.database_url.replace(
                "postgresql://", "postgresql+asyncpg://", 1
            )
        return self.database_url


def get_settings() -> Settings:
    """
    Load settings from the environment.

    Returns:
        Fresh Settings instance
    """
    return Settings()
