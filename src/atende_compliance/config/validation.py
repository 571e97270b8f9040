"""Configuration validation for startup checks.

Validates that compliance policy values are present and valid before the
engine starts processing requests or scheduling purges.

Usage:
    from atende_compliance.config.validation import validate_or_raise

    # During startup
    validate_or_raise()
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any

from atende_compliance.compliance.config import build_compliance_config, is_valid_cron
from atende_compliance.compliance.retention import MAX_RETENTION_DAYS
from atende_compliance.compliance.types import DsrKind
from atende_compliance.config.settings import Settings, get_settings
from atende_compliance.core.logging import get_logger
from atende_compliance.utils.exceptions import ConfigurationError

logger = get_logger("atende_compliance.config")


class ValidationSeverity(str, Enum):
    """Severity of configuration validation issues."""

    ERROR = "error"  # Must be fixed, engine cannot start
    WARNING = "warning"  # Engine can start but behaviour may surprise


@dataclass
class ValidationResult:
    """Result of a configuration validation check."""

    field: str
    severity: ValidationSeverity
    message: str
    suggestion: str | None = None

    def __str__(self) -> str:
        prefix = "ERROR" if self.severity == ValidationSeverity.ERROR else "WARNING"
        result = f"[{prefix}] {self.field}: {self.message}"
        if self.suggestion:
            result += f"\n  Suggestion: {self.suggestion}"
        return result


def validate_configuration(settings: Settings | None = None) -> list[ValidationResult]:
    """Validate application configuration.

    Args:
        settings: Settings to validate (default: global settings)

    Returns:
        List of validation results (empty if all checks pass)
    """
    if settings is None:
        settings = get_settings()

    results: list[ValidationResult] = []
    results.extend(_validate_retention(settings))
    results.extend(_validate_dsr(settings))
    results.extend(_validate_audit(settings))
    results.extend(_validate_cleanup(settings))
    results.extend(_validate_backends(settings))
    return results


def validate_or_raise(settings: Settings | None = None) -> None:
    """Validate configuration and raise if errors found.

    Args:
        settings: Settings to validate

    Raises:
        ConfigurationError: If any validation errors are found
    """
    if settings is None:
        settings = get_settings()

    results = validate_configuration(settings)
    errors = [r for r in results if r.severity == ValidationSeverity.ERROR]

    if errors:
        error_messages = "\n".join(str(e) for e in errors)
        raise ConfigurationError(f"Configuration validation failed:\n{error_messages}")

    # Catch anything the field checks above do not cover
    build_compliance_config(settings)

    for warning in (r for r in results if r.severity == ValidationSeverity.WARNING):
        logger.warning("configuration_warning", field=warning.field, message=warning.message)


# =============================================================================
# Validators
# =============================================================================


def _validate_retention(settings: Settings) -> list[ValidationResult]:
    results: list[ValidationResult] = []

    for field in (
        "compliance_free_retention_days",
        "compliance_pro_retention_days",
        "compliance_business_retention_days",
    ):
        days = getattr(settings, field)
        if days <= 0 or days > MAX_RETENTION_DAYS:
            results.append(
                ValidationResult(
                    field=field.upper(),
                    severity=ValidationSeverity.ERROR,
                    message=f"Retention of {days} days is outside 1..{MAX_RETENTION_DAYS}",
                    suggestion="Use a positive number of days within the ceiling",
                )
            )

    if (
        settings.compliance_free_retention_days
        > settings.compliance_pro_retention_days
        or settings.compliance_pro_retention_days
        > settings.compliance_business_retention_days
    ):
        results.append(
            ValidationResult(
                field="COMPLIANCE_*_RETENTION_DAYS",
                severity=ValidationSeverity.WARNING,
                message="Lower tiers retain data longer than higher tiers",
            )
        )

    return results


def _validate_dsr(settings: Settings) -> list[ValidationResult]:
    results: list[ValidationResult] = []

    if settings.compliance_dsr_max_pending < 1:
        results.append(
            ValidationResult(
                field="COMPLIANCE_DSR_MAX_PENDING",
                severity=ValidationSeverity.ERROR,
                message="Maximum pending requests must be at least 1",
            )
        )

    if settings.compliance_dsr_max_processing_days < 1:
        results.append(
            ValidationResult(
                field="COMPLIANCE_DSR_MAX_PROCESSING_DAYS",
                severity=ValidationSeverity.ERROR,
                message="Processing window must be at least 1 day",
            )
        )

    known = {k.value for k in DsrKind}
    unknown = [k for k in settings.compliance_dsr_auto_approval_kinds if k.lower() not in known]
    if unknown:
        results.append(
            ValidationResult(
                field="COMPLIANCE_DSR_AUTO_APPROVAL_KINDS",
                severity=ValidationSeverity.ERROR,
                message=f"Unknown request kinds: {', '.join(unknown)}",
                suggestion=f"Allowed kinds: {', '.join(sorted(known))}",
            )
        )
    elif settings.compliance_dsr_auto_approval and DsrKind.ERASURE.value in {
        k.lower() for k in settings.compliance_dsr_auto_approval_kinds
    }:
        results.append(
            ValidationResult(
                field="COMPLIANCE_DSR_AUTO_APPROVAL_KINDS",
                severity=ValidationSeverity.WARNING,
                message="Erasure requests are auto-approved without manual review",
            )
        )

    return results


def _validate_audit(settings: Settings) -> list[ValidationResult]:
    results: list[ValidationResult] = []

    if settings.ENVIRONMENT == "production" and settings.compliance_capture_pii:
        results.append(
            ValidationResult(
                field="COMPLIANCE_CAPTURE_PII",
                severity=ValidationSeverity.WARNING,
                message="Masked fields are kept (as mask tokens) in production audit payloads",
                suggestion="Set COMPLIANCE_CAPTURE_PII=false to omit them entirely",
            )
        )

    if not [f for f in settings.compliance_masked_fields if f.strip()]:
        results.append(
            ValidationResult(
                field="COMPLIANCE_MASKED_FIELDS",
                severity=ValidationSeverity.WARNING,
                message="No masked fields configured; only value patterns will be masked",
            )
        )

    if not settings.compliance_mask_token:
        results.append(
            ValidationResult(
                field="COMPLIANCE_MASK_TOKEN",
                severity=ValidationSeverity.ERROR,
                message="Mask token must not be empty",
            )
        )

    return results


def _validate_cleanup(settings: Settings) -> list[ValidationResult]:
    results: list[ValidationResult] = []

    if not is_valid_cron(settings.compliance_cleanup_schedule):
        results.append(
            ValidationResult(
                field="COMPLIANCE_CLEANUP_SCHEDULE",
                severity=ValidationSeverity.ERROR,
                message=f"Invalid cron expression: {settings.compliance_cleanup_schedule!r}",
                suggestion="Use five fields, e.g. '0 2 * * *'",
            )
        )

    for field in (
        "compliance_cleanup_interval_seconds",
        "compliance_cleanup_max_retries",
        "compliance_cleanup_max_concurrent_tenants",
        "compliance_lock_ttl_seconds",
    ):
        if getattr(settings, field) < 1:
            results.append(
                ValidationResult(
                    field=field.upper(),
                    severity=ValidationSeverity.ERROR,
                    message="Value must be at least 1",
                )
            )

    return results


def _validate_backends(settings: Settings) -> list[ValidationResult]:
    results: list[ValidationResult] = []

    if not settings.DATABASE_URL:
        results.append(
            ValidationResult(
                field="DATABASE_URL",
                severity=ValidationSeverity.ERROR,
                message="Database URL is not configured",
                suggestion="Set DATABASE_URL environment variable",
            )
        )
    elif not settings.DATABASE_URL.startswith(("postgresql", "sqlite")):
        results.append(
            ValidationResult(
                field="DATABASE_URL",
                severity=ValidationSeverity.WARNING,
                message=f"Unexpected database type in URL: {settings.DATABASE_URL[:20]}...",
                suggestion="Use PostgreSQL or SQLite",
            )
        )

    if settings.LOCK_BACKEND == "redis" and not settings.REDIS_URL:
        results.append(
            ValidationResult(
                field="REDIS_URL",
                severity=ValidationSeverity.ERROR,
                message="Redis lock backend selected but REDIS_URL is not set",
            )
        )
    elif settings.LOCK_BACKEND == "memory" and settings.ENVIRONMENT == "production":
        results.append(
            ValidationResult(
                field="LOCK_BACKEND",
                severity=ValidationSeverity.WARNING,
                message="In-memory leases do not protect against overlapping workers",
                suggestion="Use LOCK_BACKEND=redis when running more than one worker",
            )
        )

    return results


def get_configuration_summary(settings: Settings | None = None) -> dict[str, Any]:
    """Get a summary of current configuration (safe for logging)."""
    if settings is None:
        settings = get_settings()

    return {
        "environment": settings.ENVIRONMENT,
        "log_level": settings.log_level,
        "lock_backend": settings.LOCK_BACKEND,
        "redis_configured": bool(settings.REDIS_URL),
        "retention_days": {
            "free": settings.compliance_free_retention_days,
            "pro": settings.compliance_pro_retention_days,
            "business": settings.compliance_business_retention_days,
        },
        "dsr_max_pending": settings.compliance_dsr_max_pending,
        "dsr_auto_approval": settings.compliance_dsr_auto_approval,
        "capture_pii": settings.compliance_capture_pii,
        "masked_fields_count": len(settings.compliance_masked_fields),
        "cleanup_schedule": settings.compliance_cleanup_schedule,
    }
