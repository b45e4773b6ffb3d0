"""Application configuration using pydantic-settings.

Covers the ledger database, the HTTP API, the initial bridge policy and the
relayer (reconciliation loop) settings.
"""

from decimal import Decimal
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from tonbridge.policy import BridgePolicy


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ======================
    # Database
    # ======================
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/tonbridge.db",
        description="Database connection URL",
    )

    # ======================
    # API
    # ======================
    api_host: str = Field(default="0.0.0.0", description="API server host")
    api_port: int = Field(default=8000, description="API server port")

    # ======================
    # Environment
    # ======================
    environment: str = Field(default="development", description="Runtime environment")
    debug: bool = Field(default=True, description="Enable debug mode")

    # ======================
    # Admin / bootstrap
    # ======================
    admin_token: str = Field(default="", description="Admin API token for protected endpoints")
    bridge_admin: str = Field(
        default="", description="Identity granted the admin role at initialization"
    )
    fee_collector: str = Field(default="", description="Default fee collector identity")
    bootstrap_relayers: str = Field(
        default="", description="Comma-separated relayer identities granted at initialization"
    )
    api_keys: str = Field(
        default="",
        description="Comma-separated key:identity pairs used to authenticate API callers",
    )

    # ======================
    # Initial bridge policy
    # ======================
    min_bridge_amount: Decimal = Field(default=Decimal("0.1"), description="Minimum amount")
    max_bridge_amount: Decimal = Field(default=Decimal("1000"), description="Maximum amount")
    fee_basis_points: int = Field(default=30, description="Fee in basis points (0.3%)")
    relayer_threshold: int = Field(default=1, description="Attestations needed to complete")
    bridge_enabled: bool = Field(default=True, description="Accept new transfer requests")
    max_fee_basis_points: int = Field(
        default=1000, description="Ceiling enforced on fee_basis_points updates"
    )

    # ======================
    # Relayer
    # ======================
    relayer_enabled: bool = Field(
        default=False, description="Run the reconciliation loop inside the main process"
    )
    relayer_identity: str = Field(default="", description="Identity used to attest transfers")
    relayer_api_key: str = Field(default="", description="API key sent by the standalone relayer")
    bridge_api_url: str = Field(
        default="http://127.0.0.1:8000", description="Ledger API used by the standalone relayer"
    )
    relayer_database_url: Optional[str] = Field(
        default=None, description="Relayer state database (defaults to database_url)"
    )
    poll_interval: float = Field(default=10.0, description="Seconds between relayer cycles")
    start_position: Optional[int] = Field(
        default=None, description="First event position to scan on first run (default: latest)"
    )
    max_range: int = Field(default=1000, description="Maximum event positions per cycle")
    payment_max_attempts: int = Field(default=3, description="Destination payment attempts")
    payment_base_delay: float = Field(default=2.0, description="First backoff delay (seconds)")
    payment_max_delay: float = Field(default=30.0, description="Backoff delay ceiling (seconds)")

    # ======================
    # Destination chain (TON)
    # ======================
    dry_run: bool = Field(default=True, description="Simulate destination payments")
    payment_executor: str = Field(
        default="simulated", description="Destination payment executor (simulated, remote)"
    )
    payment_signer_url: str = Field(
        default="", description="Remote TON signer service used by the remote executor"
    )
    payment_signer_token: str = Field(default="", description="Bearer token for the signer")

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    @property
    def relayer_ids(self) -> list[str]:
        """Parse bootstrap relayer identities into a list."""
        if not self.bootstrap_relayers:
            return []
        return [r.strip() for r in self.bootstrap_relayers.split(",") if r.strip()]

    @property
    def api_key_map(self) -> dict[str, str]:
        """Parse API keys into a key -> identity mapping."""
        keys = {}
        for pair in self.api_keys.split(","):
            if ":" not in pair:
                continue
            key, identity = pair.split(":", 1)
            if key.strip() and identity.strip():
                keys[key.strip()] = identity.strip()
        return keys

    def initial_policy(self) -> BridgePolicy:
        """Build the bridge policy used when the ledger is first initialized."""
        return BridgePolicy(
            min_amount=self.min_bridge_amount,
            max_amount=self.max_bridge_amount,
            fee_basis_points=self.fee_basis_points,
            relayer_threshold=self.relayer_threshold,
            enabled=self.bridge_enabled,
        )

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "dry_run": self.dry_run,
            "api_host": self.api_host,
            "api_port": self.api_port,
            "database_url": self._redact_url(self.database_url),
            "admin_token": "***" if self.admin_token else "(not set)",
            "api_keys": len(self.api_key_map),
            "policy": {
                "min_amount": str(self.min_bridge_amount),
                "max_amount": str(self.max_bridge_amount),
                "fee_basis_points": self.fee_basis_points,
                "relayer_threshold": self.relayer_threshold,
                "enabled": self.bridge_enabled,
            },
            "relayer": {
                "enabled": self.relayer_enabled,
                "identity": self.relayer_identity or "(not set)",
                "poll_interval": self.poll_interval,
                "payment_executor": self.payment_executor,
                "payment_max_attempts": self.payment_max_attempts,
            },
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact sensitive parts of database URL."""
        if "://" in url and "@" in url:
            proto, rest = url.split("://", 1)
            if "@" in rest:
                creds, host = rest.rsplit("@", 1)
                if ":" in creds:
                    user, _ = creds.split(":", 1)
                    return f"{proto}://{user}:***@{host}"
        return url


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
