"""
StampMint Configuration Management Module

This module provides configuration management for the StampMint service using
Pydantic Settings. It loads and validates the environment variables required for:
- Application settings (name, environment, debug mode, logging)
- MongoDB connection and pooling
- Pinning providers (NFT.Storage-compatible primary, Pinata-compatible secondary)
- Media validation limits for pinned assets
- Serial allocation and mint commit retry policies
- StampCoin supply parameters

All settings support environment variable overrides and .env file loading.
"""

from decimal import Decimal
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_IMAGE_MIME_TYPES = ["image/png", "image/jpeg", "image/gif", "image/webp"]


class Settings(BaseSettings):
    """
    Configuration settings for the StampMint service.

    Configuration Categories:
    - Application: Core app settings like name, environment, debug mode
    - MongoDB: Database connection URI and connection pool settings
    - Pinning: Provider credentials, endpoints, timeouts and retry policy
    - Media: Size limit and MIME allow-list for pinned images
    - Minting: Serial scope defaults and transaction retry policy
    - Currency: StampCoin supply cap and USD conversion price

    Example usage:
        ```python
        from stampmint.config import get_settings

        settings = get_settings()
        print(f"Secondary pinning enabled: {settings.is_secondary_pinning_configured}")
        ```
    """

    # =========================================================================
    # Application Settings
    # =========================================================================

    app_name: str = Field(
        default="StampMint",
        description="Application name displayed in API documentation and logs",
    )

    app_env: str = Field(
        default="development",
        description="Application environment (development, staging, production, testing)",
    )

    debug: bool = Field(default=False, description="Enable debug mode with hot-reload")

    log_level: str = Field(
        default="info", description="Logging level (debug, info, warning, error, critical)"
    )

    json_logs: bool = Field(
        default=True, description="Emit structured JSON logs instead of plain text"
    )

    secret_key: str = Field(
        default="development-secret-key-change-in-production-32chars",
        description="Secret key used to verify principal bearer tokens",
        min_length=32,
    )

    jwt_algorithm: str = Field(default="HS256", description="JWT signing algorithm")

    jwt_expiration_hours: int = Field(
        default=24, description="Lifetime of locally issued bearer tokens in hours", ge=1
    )

    host: str = Field(default="0.0.0.0", description="Host address for the API server to bind to")

    port: int = Field(default=8000, description="Port number for the API server", ge=1, le=65535)

    cors_origins: list[str] = Field(
        default=["http://localhost:3000"],
        description="List of allowed CORS origins for frontend access",
    )

    # =========================================================================
    # MongoDB Configuration
    # =========================================================================

    mongodb_uri: str = Field(
        default="mongodb://localhost:27017/?replicaSet=rs0",
        description="MongoDB connection URI; transactions require a replica set",
    )

    mongodb_db_name: str = Field(default="stampmint", description="MongoDB database name")

    mongodb_min_pool_size: int = Field(
        default=10, description="Minimum number of connections in MongoDB connection pool", ge=1
    )

    mongodb_max_pool_size: int = Field(
        default=100, description="Maximum number of connections in MongoDB connection pool", ge=10
    )

    # =========================================================================
    # Pinning Providers
    # =========================================================================

    nft_storage_api_key: str | None = Field(
        default=None, description="API key for the primary (NFT.Storage-compatible) provider"
    )

    nft_storage_base_url: str = Field(
        default="https://api.nft.storage", description="Base URL of the primary provider"
    )

    nft_storage_gateway_url: str = Field(
        default="https://nftstorage.link/ipfs", description="Gateway prefix for primary CIDs"
    )

    pinata_jwt: str | None = Field(
        default=None, description="JWT for the secondary (Pinata-compatible) provider"
    )

    pinata_api_key: str | None = Field(default=None, description="Secondary provider API key")

    pinata_secret_api_key: str | None = Field(
        default=None, description="Secondary provider secret API key"
    )

    pinata_base_url: str = Field(
        default="https://api.pinata.cloud", description="Base URL of the secondary provider"
    )

    pinata_gateway_url: str = Field(
        default="https://gateway.pinata.cloud/ipfs", description="Gateway prefix for secondary CIDs"
    )

    pin_provider_timeout_seconds: float = Field(
        default=15.0,
        description="Ceiling for one provider's complete pin call, retries included",
        gt=0,
        le=120,
    )

    pin_provider_max_attempts: int = Field(
        default=3, description="Attempts per provider request before giving up", ge=1, le=10
    )

    # =========================================================================
    # Media Validation
    # =========================================================================

    max_pin_bytes: int = Field(
        default=5 * 1024 * 1024,
        description="Maximum decoded size of a pinned asset in bytes (5 MiB)",
        ge=1,
    )

    allowed_image_mime_types: list[str] = Field(
        default=list(DEFAULT_IMAGE_MIME_TYPES),
        description="MIME types accepted for pinning (image formats only)",
    )

    # =========================================================================
    # Minting
    # =========================================================================

    serial_default_scope: str = Field(
        default="INTL", description="Serial scope used when a catalog item has no country"
    )

    serial_max_attempts: int = Field(
        default=5, description="Attempts for one serial increment before Contention", ge=1
    )

    mint_commit_max_attempts: int = Field(
        default=5, description="Attempts for the mint transaction before Contention", ge=1
    )

    retry_base_delay_seconds: float = Field(
        default=0.05, description="Base delay for exponential backoff between retries", ge=0
    )

    nft_contract_address: str | None = Field(
        default=None, description="Token contract address recorded on each mint"
    )

    blockchain_network: str = Field(
        default="polygon", description="Network the token contract is deployed on"
    )

    # =========================================================================
    # StampCoin
    # =========================================================================

    currency_name: str = Field(default="StampCoin", description="Platform currency name")

    currency_symbol: str = Field(default="STMP", description="Platform currency symbol")

    currency_max_supply: Decimal = Field(
        default=Decimal("1000000"), description="Hard cap on circulating supply", gt=0
    )

    currency_price_usd: Decimal = Field(
        default=Decimal("0.10"), description="USD price of one StampCoin", gt=0
    )

    ledger_admin_subjects: list[str] = Field(
        default_factory=list,
        description="Token subjects allowed to grant adjustments and burn StampCoin",
    )

    # =========================================================================
    # Model Configuration
    # =========================================================================

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate that log_level is a valid logging level."""
        valid_levels = {"debug", "info", "warning", "error", "critical"}
        normalized = v.lower()
        if normalized not in valid_levels:
            raise ValueError(f"Invalid log_level '{v}'. Must be one of: {', '.join(valid_levels)}")
        return normalized

    @field_validator("app_env")
    @classmethod
    def validate_app_env(cls, v: str) -> str:
        """Validate that app_env is a valid environment name."""
        valid_envs = {"development", "staging", "production", "testing"}
        normalized = v.lower()
        if normalized not in valid_envs:
            raise ValueError(f"Invalid app_env '{v}'. Must be one of: {', '.join(valid_envs)}")
        return normalized

    @field_validator("cors_origins", "ledger_admin_subjects", mode="before")
    @classmethod
    def parse_comma_separated(cls, v: str | list[str]) -> list[str]:
        """Parse CORS origins and admin subjects from a comma-separated string."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    @field_validator("allowed_image_mime_types", mode="before")
    @classmethod
    def validate_mime_types(cls, v: str | list[str]) -> list[str]:
        """Parse and normalise the MIME allow-list; only image types are accepted."""
        if isinstance(v, str):
            v = v.split(",")
        normalized = [item.strip().lower() for item in v if item and item.strip()]
        for mime_type in normalized:
            if not mime_type.startswith("image/"):
                raise ValueError(f"Only image MIME types may be pinned, got '{mime_type}'")
        return normalized

    @field_validator("serial_default_scope")
    @classmethod
    def validate_default_scope(cls, v: str) -> str:
        """Default serial scope must be non-empty."""
        if not v.strip():
            raise ValueError("serial_default_scope cannot be empty")
        return v.strip().upper()

    @field_validator("blockchain_network")
    @classmethod
    def validate_blockchain_network(cls, v: str) -> str:
        """Validate that blockchain_network is a supported network."""
        valid_networks = {"ethereum", "polygon", "solana", "arbitrum"}
        normalized = v.strip().lower()
        if normalized not in valid_networks:
            raise ValueError(
                f"Invalid blockchain_network '{v}'. Must be one of: {', '.join(sorted(valid_networks))}"
            )
        return normalized

    @field_validator("nft_contract_address")
    @classmethod
    def validate_contract_address(cls, v: str | None) -> str | None:
        """Treat a blank contract address as unset."""
        if v is None or not v.strip():
            return None
        return v.strip()

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def is_primary_pinning_configured(self) -> bool:
        """Check if the mandatory primary pinning provider has credentials."""
        return bool(self.nft_storage_api_key)

    @property
    def is_secondary_pinning_configured(self) -> bool:
        """
        Check if the optional secondary pinning provider has credentials.

        Either a JWT or the API key + secret pair enables the provider.
        """
        return bool(self.pinata_jwt) or bool(self.pinata_api_key and self.pinata_secret_api_key)

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env == "production"


@lru_cache
def get_settings() -> Settings:
    """
    Get the global Settings instance.

    Configuration is loaded once from environment variables and .env files
    and reused for the rest of the process lifetime.
    """
    return Settings()
