"""Application settings loaded from environment variables."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_MASKED_FIELDS = [
    "email",
    "phone",
    "cpf",
    "cnpj",
    "document_id",
    "requester_contact",
    "subject",
]


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Values are flat so they map one-to-one onto the deployment's
    ``COMPLIANCE_*`` variables. Use
    :func:`atende_compliance.compliance.config.build_compliance_config`
    to turn them into the immutable structure handed to components.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    ENVIRONMENT: Literal["development", "test", "staging", "production"] = "development"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./compliance.db"
    DATABASE_ECHO: bool = False

    # Redis / locking
    LOCK_BACKEND: Literal["memory", "redis"] = "memory"
    REDIS_URL: str | None = None
    REDIS_MAX_CONNECTIONS: int = 10

    # Retention windows per plan tier (days)
    compliance_free_retention_days: int = 30
    compliance_pro_retention_days: int = 90
    compliance_business_retention_days: int = 365

    # Data subject requests
    compliance_dsr_max_pending: int = 10
    compliance_dsr_auto_approval: bool = False
    compliance_dsr_auto_approval_kinds: list[str] = Field(default_factory=lambda: ["access"])
    compliance_dsr_max_processing_days: int = 30

    # Consent
    compliance_consent_validity_days: int = 365

    # Audit
    compliance_capture_pii: bool = False
    compliance_masked_fields: list[str] = Field(
        default_factory=lambda: list(DEFAULT_MASKED_FIELDS)
    )
    compliance_mask_token: str = "***"

    # Cleanup
    compliance_cleanup_auto_enabled: bool = True
    compliance_cleanup_schedule: str = "0 2 * * *"
    compliance_cleanup_interval_seconds: int = 3600
    compliance_cleanup_notify_on_failure: bool = True
    compliance_cleanup_max_retries: int = 3
    compliance_cleanup_max_concurrent_tenants: int = 4
    compliance_lock_ttl_seconds: int = 900


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
