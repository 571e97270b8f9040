"""Unit tests for configuration building and startup validation."""

import pytest

from atende_compliance.compliance.config import (
    AuditConfig,
    CleanupConfig,
    ComplianceConfig,
    build_compliance_config,
    is_valid_cron,
)
from atende_compliance.compliance.types import DsrKind, PlanTier
from atende_compliance.config.settings import DEFAULT_MASKED_FIELDS, Settings
from atende_compliance.config.validation import (
    ValidationResult,
    ValidationSeverity,
    get_configuration_summary,
    validate_configuration,
    validate_or_raise,
)
from atende_compliance.utils.exceptions import ConfigurationError


def make_settings(**overrides) -> Settings:
    return Settings(ENVIRONMENT="test", **overrides)


class TestBuildComplianceConfig:
    """Tests for build_compliance_config."""

    def test_defaults(self):
        """Test defaults match the documented policy."""
        config = build_compliance_config(make_settings())

        assert config.retention.days_by_tier() == {
            PlanTier.FREE: 30,
            PlanTier.PRO: 90,
            PlanTier.BUSINESS: 365,
        }
        assert config.dsr.max_pending_requests == 10
        assert config.dsr.auto_approval_enabled is False
        assert config.dsr.auto_approval_kinds == frozenset({DsrKind.ACCESS})
        assert config.dsr.max_processing_days == 30
        assert config.consent.validity_days == 365
        assert config.audit.capture_pii is False
        assert config.audit.masked_fields == frozenset(DEFAULT_MASKED_FIELDS)
        assert config.cleanup.schedule == "0 2 * * *"
        assert config.cleanup.max_retries == 3

    def test_overrides(self):
        """Test flat settings map onto the nested configuration."""
        settings = make_settings(
            compliance_pro_retention_days=120,
            compliance_dsr_auto_approval=True,
            compliance_dsr_auto_approval_kinds=["ACCESS", "portability"],
            compliance_masked_fields=[" Email ", "PHONE", ""],
        )

        config = build_compliance_config(settings)

        assert config.retention.pro_days == 120
        assert config.dsr.auto_approval_kinds == frozenset(
            {DsrKind.ACCESS, DsrKind.PORTABILITY}
        )
        assert config.audit.masked_fields == frozenset({"email", "phone"})

    @pytest.mark.parametrize(
        "overrides",
        [
            {"compliance_free_retention_days": 0},
            {"compliance_business_retention_days": 99999},
            {"compliance_dsr_max_pending": 0},
            {"compliance_dsr_auto_approval_kinds": ["deletion"]},
            {"compliance_cleanup_schedule": "every night"},
            {"compliance_mask_token": ""},
        ],
    )
    def test_invalid_values_raise(self, overrides):
        """Test invalid values fail loudly instead of falling back."""
        with pytest.raises(ConfigurationError, match="Invalid compliance configuration"):
            build_compliance_config(make_settings(**overrides))

    def test_config_is_immutable(self):
        """Test sections cannot be modified after construction."""
        config = ComplianceConfig()

        with pytest.raises(ValueError):
            config.cleanup.max_retries = 10

    def test_audit_config_normalizes_fields(self):
        config = AuditConfig(masked_fields=frozenset({"CPF", " token "}))

        assert config.masked_fields == frozenset({"cpf", "token"})

    def test_cleanup_schedule_validated(self):
        with pytest.raises(ValueError):
            CleanupConfig(schedule="0 2 * *")


class TestIsValidCron:
    """Tests for is_valid_cron."""

    @pytest.mark.parametrize(
        "expression", ["0 2 * * *", "*/15 * * * *", "0 0-6/2 1,15 * 1-5"]
    )
    def test_valid(self, expression):
        assert is_valid_cron(expression)

    @pytest.mark.parametrize("expression", ["", "0 2 * *", "@daily", "a b c d e"])
    def test_invalid(self, expression):
        assert not is_valid_cron(expression)


class TestValidateConfiguration:
    """Tests for validate_configuration."""

    def test_defaults_are_clean(self):
        """Test default settings produce no findings."""
        assert validate_configuration(make_settings()) == []

    def test_retention_out_of_range(self):
        results = validate_configuration(make_settings(compliance_free_retention_days=0))

        errors = [r for r in results if r.severity == ValidationSeverity.ERROR]
        assert [r.field for r in errors] == ["COMPLIANCE_FREE_RETENTION_DAYS"]

    def test_inverted_tiers_warn(self):
        """Test a free tier retaining longer than pro is a warning."""
        results = validate_configuration(make_settings(compliance_free_retention_days=120))

        assert len(results) == 1
        assert results[0].severity == ValidationSeverity.WARNING

    def test_unknown_auto_approval_kind(self):
        results = validate_configuration(
            make_settings(compliance_dsr_auto_approval_kinds=["access", "deletion"])
        )

        assert results[0].field == "COMPLIANCE_DSR_AUTO_APPROVAL_KINDS"
        assert results[0].severity == ValidationSeverity.ERROR
        assert "deletion" in results[0].message

    def test_auto_approving_erasure_warns(self):
        results = validate_configuration(
            make_settings(
                compliance_dsr_auto_approval=True,
                compliance_dsr_auto_approval_kinds=["erasure"],
            )
        )

        assert [r.severity for r in results] == [ValidationSeverity.WARNING]

    def test_capture_pii_in_production_warns(self):
        settings = Settings(
            ENVIRONMENT="production",
            LOCK_BACKEND="redis",
            REDIS_URL="redis://localhost:6379/0",
            compliance_capture_pii=True,
        )

        results = validate_configuration(settings)

        assert [r.field for r in results] == ["COMPLIANCE_CAPTURE_PII"]

    def test_redis_backend_requires_url(self):
        results = validate_configuration(make_settings(LOCK_BACKEND="redis"))

        assert [r.field for r in results] == ["REDIS_URL"]
        assert results[0].severity == ValidationSeverity.ERROR

    def test_memory_lock_in_production_warns(self):
        results = validate_configuration(Settings(ENVIRONMENT="production"))

        assert [r.field for r in results] == ["LOCK_BACKEND"]

    def test_invalid_schedule(self):
        results = validate_configuration(make_settings(compliance_cleanup_schedule="nightly"))

        assert results[0].field == "COMPLIANCE_CLEANUP_SCHEDULE"
        assert results[0].suggestion is not None


class TestValidateOrRaise:
    """Tests for validate_or_raise."""

    def test_passes_with_defaults(self):
        validate_or_raise(make_settings())

    def test_raises_with_all_errors(self):
        """Test every error is listed in the exception message."""
        settings = make_settings(
            compliance_free_retention_days=0,
            compliance_cleanup_max_retries=0,
        )

        with pytest.raises(ConfigurationError) as exc_info:
            validate_or_raise(settings)

        message = str(exc_info.value)
        assert "COMPLIANCE_FREE_RETENTION_DAYS" in message
        assert "COMPLIANCE_CLEANUP_MAX_RETRIES" in message

    def test_warnings_do_not_raise(self):
        validate_or_raise(make_settings(compliance_free_retention_days=120))


class TestValidationResult:
    """Tests for ValidationResult formatting."""

    def test_str_with_suggestion(self):
        result = ValidationResult(
            field="REDIS_URL",
            severity=ValidationSeverity.ERROR,
            message="missing",
            suggestion="set it",
        )

        assert str(result) == "[ERROR] REDIS_URL: missing\n  Suggestion: set it"

    def test_str_warning(self):
        result = ValidationResult(
            field="LOCK_BACKEND", severity=ValidationSeverity.WARNING, message="single worker"
        )

        assert str(result) == "[WARNING] LOCK_BACKEND: single worker"


def test_configuration_summary_hides_secrets():
    """Test the summary only says whether Redis is configured."""
    settings = make_settings(REDIS_URL="redis://:secret@cache:6379/0")

    summary = get_configuration_summary(settings)

    assert summary["redis_configured"] is True
    assert "secret" not in str(summary)
    assert summary["retention_days"] == {"free": 30, "pro": 90, "business": 365}
