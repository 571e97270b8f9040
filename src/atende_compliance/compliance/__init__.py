"""LGPD compliance engine.

This package provides:
- Tiered retention windows per subscription plan
- An append-only consent ledger
- The data subject request lifecycle
- Scheduled, idempotent retention purges
- Compliance reporting

Usage:
    from atende_compliance.compliance import create_compliance_engine

    engine = create_compliance_engine(session_factory, providers=[...])
    status = await engine.current_consent_status(tenant_id, subject, "marketing")
"""

from atende_compliance.compliance.config import (
    AuditConfig,
    CleanupConfig,
    ComplianceConfig,
    ConsentConfig,
    DsrConfig,
    RetentionConfig,
    build_compliance_config,
)
from atende_compliance.compliance.consent import ConsentLedger
from atende_compliance.compliance.dsr import DsrEvent, DsrManager
from atende_compliance.compliance.engine import (
    ComplianceEngine,
    create_compliance_engine,
    get_compliance_engine,
    initialize_compliance_engine,
)
from atende_compliance.compliance.providers import InMemoryRecordProvider, RecordProviderRegistry
from atende_compliance.compliance.purge import (
    PurgeExecutor,
    PurgeRunSummary,
    RetentionPurgeScheduler,
)
from atende_compliance.compliance.reporting import ComplianceReporter
from atende_compliance.compliance.retention import MAX_RETENTION_DAYS, RetentionPolicyResolver
from atende_compliance.compliance.tenants import SqlTenantDirectory, TenantInfo
from atende_compliance.compliance.types import (
    ConsentPurpose,
    ConsentStatus,
    DsrKind,
    DsrStatus,
    PlanTier,
    PurgeOutcome,
    PurgeOutcomeStatus,
    PurgeRunStatus,
    RecordProvider,
    RecordRef,
)

__all__ = [
    # Config
    "AuditConfig",
    "CleanupConfig",
    "ComplianceConfig",
    "ConsentConfig",
    "DsrConfig",
    "RetentionConfig",
    "build_compliance_config",
    # Components
    "ComplianceEngine",
    "ComplianceReporter",
    "ConsentLedger",
    "DsrManager",
    "PurgeExecutor",
    "RetentionPolicyResolver",
    "RetentionPurgeScheduler",
    "RecordProviderRegistry",
    "InMemoryRecordProvider",
    "SqlTenantDirectory",
    # Engine
    "create_compliance_engine",
    "get_compliance_engine",
    "initialize_compliance_engine",
    # Types
    "ConsentPurpose",
    "ConsentStatus",
    "DsrEvent",
    "DsrKind",
    "DsrStatus",
    "MAX_RETENTION_DAYS",
    "PlanTier",
    "PurgeOutcome",
    "PurgeOutcomeStatus",
    "PurgeRunStatus",
    "PurgeRunSummary",
    "RecordProvider",
    "RecordRef",
    "TenantInfo",
]
