"""Application settings using Pydantic for environment-based configuration."""
from decimal import Decimal
from functools import lru_cache
from typing import Dict, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration
    database_url: str = Field(..., description="Async SQLAlchemy connection URL")
    database_pool_size: int = Field(default=20, description="Database connection pool size")
    database_max_overflow: int = Field(default=50, description="Max database connection overflow")
    database_echo: bool = Field(default=False, description="Echo SQL queries (debug)")

    # Redis Configuration
    redis_url: Optional[str] = Field(
        default=None, description="Redis URL for the shared OAuth token cache"
    )

    # Application Configuration
    app_name: str = Field(default="pix-orchestrator", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/production)")
    log_level: str = Field(default="INFO", description="Logging level")
    debug: bool = Field(default=False, description="Debug mode")

    # API Configuration
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")
    api_workers: int = Field(default=4, description="Number of API workers")
    allowed_origins: str = Field(
        default="http://localhost:3000,http://localhost:8000",
        description="CORS allowed origins (comma-separated)",
    )
    public_base_url: str = Field(
        default="http://localhost:8000",
        description="Externally reachable base URL, used to build acquirer postback URLs",
    )
    admin_api_key: Optional[str] = Field(
        default=None,
        description="Key required in X-Admin-Key for /admin routes; unset disables them",
    )

    # Charge Creation
    min_charge_amount: Decimal = Field(default=Decimal("0.50"), description="Minimum charge amount")
    max_charge_amount: Decimal = Field(
        default=Decimal("50000.00"), description="Maximum charge amount"
    )
    charge_description: str = Field(default="Pagamento PIX", description="Default charge description")
    charge_expiry_minutes: int = Field(
        default=30, description="Expiry reported to API clients for new charges"
    )
    txid_length: int = Field(default=26, description="Length of generated txids")
    reserved_txid_prefixes: str = Field(
        default="VLR,SPD",
        description="Prefixes owned by other flows (comma-separated); generated txids never start with them",
    )

    # Acquirer I/O
    acquirer_timeout_seconds: float = Field(default=15.0, description="Per-call acquirer timeout")
    acquirer_status_retry_attempts: int = Field(
        default=3, description="Attempts for transient status-check failures"
    )
    acquirer_status_retry_max_wait: float = Field(
        default=10.0, description="Max backoff between status-check retries (seconds)"
    )
    circuit_failure_threshold: int = Field(
        default=5, description="Consecutive failures before an acquirer circuit opens"
    )
    circuit_reset_seconds: int = Field(
        default=60, description="Seconds before an open circuit is probed again"
    )
    acquirer_credentials: Dict[str, Dict[str, str]] = Field(
        default_factory=dict,
        description="Static credential defaults, e.g. {\"ativus\": {\"api_key\": \"...\"}}",
    )

    # Outbound Webhooks
    webhook_timeout_seconds: float = Field(default=10.0, description="Outbound webhook timeout")
    webhook_response_body_limit: int = Field(
        default=1000, description="Stored response body size for deliveries"
    )
    webhook_signature_header: str = Field(
        default="X-Pix-Signature", description="Header carrying the HMAC signature"
    )
    webhook_event_header: str = Field(default="X-Pix-Event", description="Header carrying the event")
    webhook_user_agent: str = Field(default="PixOrchestrator-Webhook/1.0", description="User agent")

    # Attribution Forwarding
    attribution_forward_url: Optional[str] = Field(
        default=None, description="Analytics endpoint that receives settled transactions"
    )
    attribution_forward_token: Optional[str] = Field(
        default=None, description="Token sent to the analytics endpoint"
    )

    # Reconciliation
    reconciliation_interval_seconds: int = Field(
        default=60, description="Seconds between batch reconciliation runs"
    )
    reconciliation_batch_size: int = Field(default=50, description="Transactions checked per run")
    reconciliation_lookback_hours: int = Field(
        default=24, description="Only generated transactions newer than this are polled"
    )
    transaction_ttl_hours: int = Field(
        default=24, description="Generated transactions older than this are marked expired"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()

    @field_validator("txid_length")
    @classmethod
    def validate_txid_length(cls, v: int) -> int:
        """BACEN txids are 26 to 35 alphanumeric characters."""
        if not 26 <= v <= 35:
            raise ValueError("txid_length must be between 26 and 35")
        return v

    def get_allowed_origins_list(self) -> List[str]:
        """Parse allowed origins from comma-separated string."""
        return [origin.strip() for origin in self.allowed_origins.split(",")]

    def get_reserved_txid_prefixes(self) -> List[str]:
        """Parse reserved txid prefixes from comma-separated string."""
        return [p.strip() for p in self.reserved_txid_prefixes.split(",") if p.strip()]

    def webhook_callback_url(self, acquirer: str) -> str:
        """Postback URL handed to an acquirer at charge creation."""
        return f"{self.public_base_url.rstrip('/')}/webhooks/{acquirer}"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env.lower() == "production"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()
