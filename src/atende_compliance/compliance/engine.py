"""Compliance engine facade.

Wires the retention resolver, consent ledger, DSR manager, purge executor,
purge scheduler and reporting together and exposes the operations used by
the rest of the platform.

Usage:
    from atende_compliance.compliance.engine import create_compliance_engine

    engine = create_compliance_engine(
        session_factory=session_factory,
        providers=[messages_provider, tickets_provider],
        exporter=export_builder,
    )
    await engine.start()

    request = await engine.submit_dsr(tenant_id, "erasure", "ana@example.com")
    await engine.decide_dsr(request.dsr_id, approve=True, reviewer="dpo@example.com")
    await engine.process_dsr(request.dsr_id)
"""

from collections.abc import Iterable
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from atende_compliance.compliance.config import ComplianceConfig, build_compliance_config
from atende_compliance.compliance.consent import ConsentLedger
from atende_compliance.compliance.dsr.manager import DsrManager
from atende_compliance.compliance.notifications import LoggingNotificationSink, MaskingNotifier
from atende_compliance.compliance.providers import RecordProviderRegistry
from atende_compliance.compliance.purge.executor import PurgeExecutor
from atende_compliance.compliance.purge.scheduler import PurgeRunSummary, RetentionPurgeScheduler
from atende_compliance.compliance.reporting import ComplianceReporter
from atende_compliance.compliance.retention import RetentionPolicyResolver
from atende_compliance.compliance.tenants import SqlTenantDirectory, TenantDirectory
from atende_compliance.compliance.types import (
    ConsentPurpose,
    ConsentStatus,
    DsrKind,
    DsrStatus,
    ExportBuilder,
    NotificationSink,
    RecordProvider,
    Rectifier,
)
from atende_compliance.config.settings import Settings, get_settings
from atende_compliance.core.audit import AuditTrail, PayloadMasker
from atende_compliance.core.locks import InMemoryLeaseLock, LeaseLock
from atende_compliance.core.logging import get_logger
from atende_compliance.core.redis import RedisLeaseLock
from atende_compliance.db.models.audit import AuditAction, AuditEvent
from atende_compliance.db.models.consent import ConsentRecord
from atende_compliance.db.models.dsr import DsrRequest

logger = get_logger(__name__)


class ComplianceEngine:
    """Entry point for consent, DSR, purge and reporting operations."""

    def __init__(
        self,
        config: ComplianceConfig,
        session_factory: async_sessionmaker[AsyncSession],
        lock: LeaseLock,
        tenants: TenantDirectory,
        registry: RecordProviderRegistry | None = None,
        notification_sink: NotificationSink | None = None,
        exporter: ExportBuilder | None = None,
        rectifier: Rectifier | None = None,
    ):
        self.config = config
        self._session_factory = session_factory
        self.masker = PayloadMasker.from_config(config.audit)
        self.registry = registry or RecordProviderRegistry()
        self.tenants = tenants
        self.resolver = RetentionPolicyResolver.from_config(config.retention)

        notifier = MaskingNotifier(notification_sink or LoggingNotificationSink(), self.masker)
        self.executor = PurgeExecutor(self.registry, self.masker)
        self.consent = ConsentLedger(session_factory, config.consent, self.masker)
        self.dsr = DsrManager(
            session_factory,
            config.dsr,
            lock,
            self.registry,
            self.executor,
            self.masker,
            notifier,
            exporter=exporter,
            rectifier=rectifier,
            lock_ttl_seconds=config.cleanup.lock_ttl_seconds,
        )
        self.scheduler = RetentionPurgeScheduler(
            session_factory,
            config.cleanup,
            self.resolver,
            self.registry,
            self.executor,
            tenants,
            lock,
            notifier,
            self.masker,
        )
        self.reporter = ComplianceReporter(
            session_factory, config.dsr, self.resolver, tenants, self.masker
        )

    def register_provider(self, provider: RecordProvider) -> None:
        self.registry.register(provider)

    # Data subject requests

    async def submit_dsr(
        self,
        tenant_id: UUID,
        kind: DsrKind | str,
        requester_contact: str,
        reason: str | None = None,
        **kwargs: Any,
    ) -> DsrRequest:
        return await self.dsr.submit(tenant_id, kind, requester_contact, reason, **kwargs)

    async def begin_dsr_review(self, dsr_id: UUID, reviewer: str) -> DsrRequest:
        return await self.dsr.begin_review(dsr_id, reviewer)

    async def decide_dsr(
        self,
        dsr_id: UUID,
        approve: bool,
        reviewer: str,
        notes: str | None = None,
    ) -> DsrRequest:
        return await self.dsr.decide(dsr_id, approve, reviewer, notes=notes)

    async def process_dsr(self, dsr_id: UUID, actor: str = "system") -> DsrRequest:
        return await self.dsr.process(dsr_id, actor=actor)

    async def abandon_dsr(self, dsr_id: UUID, reviewer: str, reason: str | None = None) -> DsrRequest:
        return await self.dsr.abandon(dsr_id, reviewer, reason)

    async def get_dsr(self, dsr_id: UUID) -> DsrRequest:
        return await self.dsr.get(dsr_id)

    async def list_dsr(
        self,
        tenant_id: UUID,
        status: DsrStatus | str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[DsrRequest]:
        return await self.dsr.list_requests(tenant_id, status, limit, offset)

    # Consent

    async def record_consent(
        self,
        tenant_id: UUID,
        subject: str,
        purpose: ConsentPurpose | str,
        granted: bool,
        source: str,
        **kwargs: Any,
    ) -> ConsentRecord:
        return await self.consent.record(tenant_id, subject, purpose, granted, source, **kwargs)

    async def current_consent_status(
        self,
        tenant_id: UUID,
        subject: str,
        purpose: ConsentPurpose | str,
        as_of: datetime | None = None,
    ) -> ConsentStatus | None:
        return await self.consent.current_status(tenant_id, subject, purpose, as_of)

    async def consent_history(
        self,
        tenant_id: UUID,
        subject: str,
        purpose: ConsentPurpose | str | None = None,
    ) -> list[ConsentRecord]:
        return await self.consent.history(tenant_id, subject, purpose)

    async def has_valid_consent(
        self,
        tenant_id: UUID,
        subject: str,
        purpose: ConsentPurpose | str,
    ) -> bool:
        return await self.consent.has_valid_consent(tenant_id, subject, purpose)

    # Retention

    async def trigger_purge_now(self, tenant_id: UUID) -> PurgeRunSummary:
        return await self.scheduler.trigger_purge_now(tenant_id)

    def retention_days(self, tenant_plan: str) -> int:
        return self.resolver.retention_days(tenant_plan)

    # Reporting

    async def dsr_summary(self, tenant_id: UUID) -> dict[str, Any]:
        return (await self.reporter.dsr_summary(tenant_id)).to_dict()

    async def compliance_summary(self, tenant_id: UUID) -> dict[str, Any]:
        return await self.reporter.compliance_summary(tenant_id)

    async def audit_stats(self, tenant_id: UUID | None = None) -> dict[str, int]:
        return await self.reporter.audit_stats(tenant_id)

    async def query_audit(
        self,
        tenant_id: UUID | None = None,
        action: AuditAction | str | None = None,
        **filters: Any,
    ) -> list[AuditEvent]:
        async with self._session_factory() as session:
            return await AuditTrail(session, self.masker).query(tenant_id, action, **filters)

    # Lifecycle

    async def start(self) -> None:
        """Recover interrupted requests, then start the purge loop."""
        await self.dsr.recover_interrupted()
        await self.scheduler.start()
        logger.info("compliance_engine_started", providers=len(self.registry))

    async def stop(self) -> None:
        await self.scheduler.stop()
        logger.info("compliance_engine_stopped")


def create_lease_lock(settings: Settings | None = None) -> LeaseLock:
    """Lease lock backend selected by LOCK_BACKEND."""
    settings = settings or get_settings()
    if settings.LOCK_BACKEND == "redis":
        return RedisLeaseLock()
    return InMemoryLeaseLock()


def create_compliance_engine(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    settings: Settings | None = None,
    config: ComplianceConfig | None = None,
    lock: LeaseLock | None = None,
    tenants: TenantDirectory | None = None,
    providers: Iterable[RecordProvider] = (),
    notification_sink: NotificationSink | None = None,
    exporter: ExportBuilder | None = None,
    rectifier: Rectifier | None = None,
) -> ComplianceEngine:
    """Factory function to create a ComplianceEngine.

    Args:
        session_factory: Async session factory for the compliance tables
        settings: Settings to build config and lock from (default: global settings)
        config: Pre-built configuration (default: built from settings)
        lock: Lease lock (default: per LOCK_BACKEND)
        tenants: Tenant directory (default: the tenants table)
        providers: Domain record providers
        notification_sink: Operator notifications (default: log)
        exporter: Export bundle builder for ACCESS/PORTABILITY
        rectifier: Optional rectification handler

    Raises:
        ConfigurationError: If the configuration is invalid
    """
    settings = settings or get_settings()
    config = config or build_compliance_config(settings)
    masker = PayloadMasker.from_config(config.audit)

    return ComplianceEngine(
        config=config,
        session_factory=session_factory,
        lock=lock or create_lease_lock(settings),
        tenants=tenants or SqlTenantDirectory(session_factory, masker),
        registry=RecordProviderRegistry(providers),
        notification_sink=notification_sink,
        exporter=exporter,
        rectifier=rectifier,
    )


# Module-level engine instance
_engine: ComplianceEngine | None = None


def get_compliance_engine() -> ComplianceEngine:
    """Get the global compliance engine.

    Raises:
        RuntimeError: If initialize_compliance_engine has not been called
    """
    if _engine is None:
        raise RuntimeError("Compliance engine is not initialized")
    return _engine


def initialize_compliance_engine(
    session_factory: async_sessionmaker[AsyncSession],
    **kwargs: Any,
) -> ComplianceEngine:
    """Create the global compliance engine.

    Accepts the same keyword arguments as :func:`create_compliance_engine`.
    """
    global _engine
    _engine = create_compliance_engine(session_factory, **kwargs)
    return _engine
