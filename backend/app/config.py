"""Configuration settings for the settlement backend."""

from decimal import Decimal
from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # Supabase (payment ledger + resource lookup)
    supabase_url: str
    supabase_secret_key: str | None = None  # Backend/admin access
    # Legacy key (deprecated, will be removed)
    supabase_service_role_key: str | None = None

    # Internal verification endpoint
    admin_api_token: str | None = None

    # Settlement cache - optional, verification works without it
    redis_url: str | None = None
    payment_cache_ttl_seconds: int = 3600

    # Payment policy
    platform_fee_bps: int = 1000  # 10%
    payment_validity_seconds: int = 300  # memo / reference freshness window
    payment_memo_prefix: str = "clawstack"
    spam_fee_usdc: Decimal = Decimal("0.10")

    # Solana (account-chain)
    solana_network: str = "mainnet-beta"
    solana_rpc_url: str | None = None
    solana_rpc_fallback_url: str | None = None
    solana_treasury_pubkey: str | None = None
    usdc_mint_solana: str | None = None  # defaults per network

    # Base (contract-chain)
    base_network: str = "base"
    base_rpc_url: str | None = None
    base_rpc_fallback_url: str | None = None
    base_treasury_address: str | None = None
    usdc_contract_base: str | None = None  # defaults per network
    base_required_confirmations: int = 12

    # Per-call JSON-RPC timeout
    rpc_timeout_seconds: float = 10.0

    # App
    debug: bool = False
    log_level: str = "INFO"
    cors_origins: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]
    # Only these sources may set X-Forwarded-For
    trusted_proxy_cidrs: list[str] = [
        "10.0.0.0/8",
        "172.16.0.0/12",
        "192.168.0.0/16",
        "127.0.0.0/8",
        "::1/128",
    ]

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignore extra env vars not in model

    @field_validator("platform_fee_bps")
    @classmethod
    def _fee_bps_in_range(cls, value: int) -> int:
        if not 0 <= value <= 10_000:
            raise ValueError("platform_fee_bps must be between 0 and 10000")
        return value

    @field_validator("payment_validity_seconds", "payment_cache_ttl_seconds")
    @classmethod
    def _positive_seconds(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be a positive number of seconds")
        return value

    @field_validator("spam_fee_usdc")
    @classmethod
    def _non_negative_fee(cls, value: Decimal) -> Decimal:
        if value < 0:
            raise ValueError("spam_fee_usdc must be non-negative")
        return value


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
