"""Settings for the tether integration layer.

Every knob the resilience primitives expose (timeouts, retry ceilings, cache
TTLs, batch pacing, refresh buffers) and every per-integration endpoint lives
on one ``TetherSettings`` object, read from ``TETHER_*`` environment variables
and an optional ``.env`` file.

Manifesto:
    Configuration should be explicit, validated, and environment-driven.
    The TTLs and pacing delays are tuned defaults, not provider contracts,
    so each one is overridable without a code change.

    - **Pydantic validation:** Type-checked at startup, not at first call
    - **Environment-driven:** ``TETHER_RETRY_MAX_ATTEMPTS=5`` and friends
    - **Secrets as SecretStr:** keys and broker tokens never print
    - **Extra ignore:** Unknown env vars don't cause startup failures

Examples:
    >>> from tether.core.settings import TetherSettings
    >>> settings = TetherSettings(retry_max_attempts=2)
    >>> settings.cache_positive_ttl
    86400.0

Tags:
    settings, configuration, pydantic, environment, tether
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class TetherSettings(BaseSettings):
    """Runtime configuration for tether.

    Order of precedence (highest → lowest):
        1. Constructor keyword arguments
        2. Environment variables (``TETHER_TRANSPORT_TIMEOUT``, etc.)
        3. ``.env`` file
        4. Defaults below
    """

    model_config = SettingsConfigDict(
        env_prefix="TETHER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    log_json: bool | None = None

    # ── Transport ────────────────────────────────────────────────
    transport_timeout: float = Field(default=30.0, gt=0, description="Default request deadline (s)")

    # ── Retry ────────────────────────────────────────────────────
    retry_max_attempts: int = Field(default=3, ge=1)
    retry_base_delay: float = Field(default=1.0, ge=0, description="Backoff base (s)")
    retry_max_delay: float = Field(default=30.0, ge=0, description="Backoff cap (s)")

    # ── Cache ────────────────────────────────────────────────────
    cache_positive_ttl: float = Field(default=86_400.0, ge=0)
    cache_negative_ttl: float = Field(default=3_600.0, ge=0)
    cache_sweep_interval: float = Field(default=60.0, gt=0)
    cache_max_size: int = Field(default=10_000, gt=0)

    # ── Batch ────────────────────────────────────────────────────
    batch_concurrency: int = Field(default=5, ge=1)
    batch_pacing_delay: float = Field(default=0.5, ge=0)

    # ── Credentials ──────────────────────────────────────────────
    refresh_buffer_minutes: float = Field(default=5.0, ge=0)
    single_flight_refresh: bool = False

    # ── Broker (server-side functions holding client secrets) ───
    broker_url: str | None = None
    broker_token: SecretStr | None = None

    # ── Registry authority ───────────────────────────────────────
    registry_accelerator_url: str = "https://api.infosimples.com/api/v2"
    registry_accelerator_token: SecretStr | None = None
    registry_public_url: str = "https://consultas.anvisa.gov.br/api"

    # ── Fiscal authority ─────────────────────────────────────────
    fiscal_gateway_url: str | None = None
    fiscal_uf: str | None = None
    fiscal_cancellation_window_hours: float = Field(default=24.0, gt=0)
    contingency_db_path: Path | None = None

    # ── Open banking ─────────────────────────────────────────────
    banking_api_url: str = "https://api.pluggy.ai"
    banking_sandbox: bool = False
    banking_webhook_secret: SecretStr | None = None

    # ── Groupware ────────────────────────────────────────────────
    groupware_graph_url: str = "https://graph.microsoft.com/v1.0"
    groupware_authority: str = "https://login.microsoftonline.com"
    groupware_client_id: str | None = None
    groupware_tenant_id: str | None = None
    groupware_redirect_uri: str | None = None
    groupware_scopes: list[str] = Field(
        default_factory=lambda: [
            "User.Read",
            "profile",
            "email",
            "openid",
            "Mail.Send",
            "Mail.Read",
            "Mail.ReadWrite",
        ]
    )
    groupware_upload_folder: str = "Tether"

    @property
    def banking_base_url(self) -> str:
        base = self.banking_api_url.rstrip("/")
        return f"{base}/sandbox" if self.banking_sandbox else base


@lru_cache(maxsize=1)
def get_settings() -> TetherSettings:
    """Process-wide settings, read once."""
    return TetherSettings()


__all__ = ["TetherSettings", "get_settings"]
