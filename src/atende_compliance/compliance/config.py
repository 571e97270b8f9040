"""Immutable compliance configuration handed to each component.

Built once at startup from :class:`~atende_compliance.config.settings.Settings`
and passed explicitly to constructors. Invalid values raise
:class:`ConfigurationError`; nothing falls back to a default.
"""

import re

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from atende_compliance.compliance.retention import validate_retention_days
from atende_compliance.compliance.types import DsrKind, PlanTier
from atende_compliance.config.settings import DEFAULT_MASKED_FIELDS, Settings, get_settings
from atende_compliance.utils.exceptions import ConfigurationError

_CRON_FIELD = re.compile(r"^(\*|\d+|\d+-\d+)(/\d+)?(,(\*|\d+|\d+-\d+)(/\d+)?)*$")


def is_valid_cron(expression: str) -> bool:
    """Check a five-field cron expression (minute hour day month weekday)."""
    fields = expression.split()
    return len(fields) == 5 and all(_CRON_FIELD.match(f) for f in fields)


class _FrozenConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class RetentionConfig(_FrozenConfig):
    """Retention window in days per plan tier."""

    free_days: int = 30
    pro_days: int = 90
    business_days: int = 365

    @field_validator("free_days", "pro_days", "business_days", mode="before")
    @classmethod
    def _check_days(cls, value: object, info) -> int:
        try:
            return validate_retention_days(info.field_name.removesuffix("_days"), value)
        except ConfigurationError as e:
            raise ValueError(str(e)) from e

    def days_by_tier(self) -> dict[PlanTier, int]:
        return {
            PlanTier.FREE: self.free_days,
            PlanTier.PRO: self.pro_days,
            PlanTier.BUSINESS: self.business_days,
        }


class DsrConfig(_FrozenConfig):
    """Data subject request thresholds."""

    max_pending_requests: int = Field(default=10, ge=1)
    auto_approval_enabled: bool = False
    auto_approval_kinds: frozenset[DsrKind] = frozenset({DsrKind.ACCESS})
    max_processing_days: int = Field(default=30, ge=1)


class ConsentConfig(_FrozenConfig):
    """Consent ledger settings."""

    validity_days: int = Field(default=365, ge=1)


class AuditConfig(_FrozenConfig):
    """Audit payload masking."""

    capture_pii: bool = False
    masked_fields: frozenset[str] = frozenset(DEFAULT_MASKED_FIELDS)
    mask_token: str = Field(default="***", min_length=1)

    @field_validator("masked_fields", mode="after")
    @classmethod
    def _normalize_fields(cls, value: frozenset[str]) -> frozenset[str]:
        return frozenset(f.strip().lower() for f in value if f.strip())


class CleanupConfig(_FrozenConfig):
    """Retention purge scheduler settings."""

    auto_enabled: bool = True
    schedule: str = "0 2 * * *"
    interval_seconds: int = Field(default=3600, ge=1)
    notify_on_failure: bool = True
    max_retries: int = Field(default=3, ge=1)
    max_concurrent_tenants: int = Field(default=4, ge=1)
    lock_ttl_seconds: int = Field(default=900, ge=1)

    @field_validator("schedule")
    @classmethod
    def _check_schedule(cls, value: str) -> str:
        if not is_valid_cron(value):
            raise ValueError(f"Invalid cron schedule: {value!r}")
        return value


class ComplianceConfig(_FrozenConfig):
    """Complete configuration for the compliance engine."""

    retention: RetentionConfig = RetentionConfig()
    dsr: DsrConfig = DsrConfig()
    consent: ConsentConfig = ConsentConfig()
    audit: AuditConfig = AuditConfig()
    cleanup: CleanupConfig = CleanupConfig()


def build_compliance_config(settings: Settings | None = None) -> ComplianceConfig:
    """Build the immutable configuration from flat settings.

    Args:
        settings: Settings to convert (default: global settings)

    Returns:
        Validated ComplianceConfig

    Raises:
        ConfigurationError: If any value is invalid
    """
    if settings is None:
        settings = get_settings()

    try:
        return ComplianceConfig(
            retention=RetentionConfig(
                free_days=settings.compliance_free_retention_days,
                pro_days=settings.compliance_pro_retention_days,
                business_days=settings.compliance_business_retention_days,
            ),
            dsr=DsrConfig(
                max_pending_requests=settings.compliance_dsr_max_pending,
                auto_approval_enabled=settings.compliance_dsr_auto_approval,
                auto_approval_kinds=frozenset(
                    k.lower() for k in settings.compliance_dsr_auto_approval_kinds
                ),
                max_processing_days=settings.compliance_dsr_max_processing_days,
            ),
            consent=ConsentConfig(validity_days=settings.compliance_consent_validity_days),
            audit=AuditConfig(
                capture_pii=settings.compliance_capture_pii,
                masked_fields=frozenset(settings.compliance_masked_fields),
                mask_token=settings.compliance_mask_token,
            ),
            cleanup=CleanupConfig(
                auto_enabled=settings.compliance_cleanup_auto_enabled,
                schedule=settings.compliance_cleanup_schedule,
                interval_seconds=settings.compliance_cleanup_interval_seconds,
                notify_on_failure=settings.compliance_cleanup_notify_on_failure,
                max_retries=settings.compliance_cleanup_max_retries,
                max_concurrent_tenants=settings.compliance_cleanup_max_concurrent_tenants,
                lock_ttl_seconds=settings.compliance_lock_ttl_seconds,
            ),
        )
    except PydanticValidationError as e:
        raise ConfigurationError(f"Invalid compliance configuration: {e}") from e
