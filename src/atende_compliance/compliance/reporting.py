"""Read-only compliance reporting.

Aggregates DSR, consent, audit and purge data into the summaries consumed
by dashboards and operator tooling.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from atende_compliance.compliance.config import DsrConfig
from atende_compliance.compliance.retention import RetentionPolicyResolver
from atende_compliance.compliance.tenants import TenantDirectory
from atende_compliance.compliance.types import TERMINAL_DSR_STATUSES, DsrStatus, PurgeRunStatus
from atende_compliance.core.audit import AuditTrail, PayloadMasker
from atende_compliance.core.exceptions import TenantNotFoundError
from atende_compliance.db.models.base import utc_now
from atende_compliance.db.models.consent import ConsentRecord
from atende_compliance.db.models.dsr import DsrRequest
from atende_compliance.db.models.purge import PurgeRun


@dataclass
class DsrSummary:
    """DSR counts for one tenant."""

    total: int = 0
    by_status: dict[str, int] = field(default_factory=dict)
    pending: int = 0
    overdue: int = 0
    completed_on_time: int = 0
    completed_late: int = 0

    @property
    def on_time_ratio(self) -> float:
        """Share of completed requests closed within the processing window."""
        closed = self.completed_on_time + self.completed_late
        if closed == 0:
            return 1.0
        return self.completed_on_time / closed

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["on_time_ratio"] = round(self.on_time_ratio, 4)
        return data


@dataclass
class ConsentSummary:
    """Consent ledger counts for one tenant."""

    total_records: int = 0
    records_by_purpose: dict[str, int] = field(default_factory=dict)
    granted_subjects_by_purpose: dict[str, int] = field(default_factory=dict)


class ComplianceReporter:
    """Builds reporting summaries. Never writes."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        dsr_config: DsrConfig,
        resolver: RetentionPolicyResolver,
        tenants: TenantDirectory,
        masker: PayloadMasker,
    ):
        self._session_factory = session_factory
        self._dsr_config = dsr_config
        self._resolver = resolver
        self._tenants = tenants
        self._masker = masker

    async def dsr_summary(self, tenant_id: UUID, now: datetime | None = None) -> DsrSummary:
        now = now or utc_now()
        window = timedelta(days=self._dsr_config.max_processing_days)
        summary = DsrSummary()

        async with self._session_factory() as session:
            result = await session.execute(
                select(DsrRequest.status, func.count())
                .where(DsrRequest.tenant_id == tenant_id)
                .group_by(DsrRequest.status)
            )
            summary.by_status = {status: count for status, count in result.all()}

            result = await session.execute(
                select(DsrRequest.status, DsrRequest.created_at, DsrRequest.completed_at).where(
                    DsrRequest.tenant_id == tenant_id
                )
            )
            for status, created_at, completed_at in result.all():
                if DsrStatus(status) not in TERMINAL_DSR_STATUSES:
                    summary.pending += 1
                    if created_at < now - window:
                        summary.overdue += 1
                elif status == DsrStatus.COMPLETED.value and completed_at is not None:
                    if completed_at - created_at <= window:
                        summary.completed_on_time += 1
                    else:
                        summary.completed_late += 1

        summary.total = sum(summary.by_status.values())
        return summary

    async def consent_summary(
        self,
        tenant_id: UUID,
        now: datetime | None = None,
    ) -> ConsentSummary:
        """Record counts, plus subjects whose newest record is an unexpired grant."""
        now = now or utc_now()
        summary = ConsentSummary()

        async with self._session_factory() as session:
            result = await session.execute(
                select(ConsentRecord.purpose, func.count())
                .where(ConsentRecord.tenant_id == tenant_id)
                .group_by(ConsentRecord.purpose)
            )
            summary.records_by_purpose = {purpose: count for purpose, count in result.all()}

            result = await session.execute(
                select(
                    ConsentRecord.subject,
                    ConsentRecord.purpose,
                    ConsentRecord.granted,
                    ConsentRecord.expires_at,
                )
                .where(ConsentRecord.tenant_id == tenant_id, ConsentRecord.recorded_at <= now)
                .order_by(ConsentRecord.recorded_at.desc(), ConsentRecord.consent_id.desc())
            )
            seen: set[tuple[str, str]] = set()
            for subject, purpose, granted, expires_at in result.all():
                if (subject, purpose) in seen:
                    continue
                seen.add((subject, purpose))
                if granted and expires_at > now:
                    summary.granted_subjects_by_purpose[purpose] = (
                        summary.granted_subjects_by_purpose.get(purpose, 0) + 1
                    )

        summary.total_records = sum(summary.records_by_purpose.values())
        return summary

    async def audit_stats(
        self,
        tenant_id: UUID | None = None,
        since: datetime | None = None,
    ) -> dict[str, int]:
        """Audit event counts per action."""
        async with self._session_factory() as session:
            return await AuditTrail(session, self._masker).count_by_action(tenant_id, since)

    async def last_cleanup(self, tenant_id: UUID) -> datetime | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.max(PurgeRun.finished_at)).where(
                    PurgeRun.tenant_id == tenant_id,
                    PurgeRun.status.in_(
                        (
                            PurgeRunStatus.COMPLETED.value,
                            PurgeRunStatus.COMPLETED_WITH_FAILURES.value,
                        )
                    ),
                )
            )
            return result.scalar_one_or_none()

    async def compliance_summary(
        self,
        tenant_id: UUID,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        """Tenant-level overview.

        Raises:
            TenantNotFoundError: If the tenant does not exist
        """
        tenant = await self._tenants.get(tenant_id)
        if tenant is None:
            raise TenantNotFoundError(tenant_id)

        now = now or utc_now()
        dsr = await self.dsr_summary(tenant_id, now)
        consent = await self.consent_summary(tenant_id, now)
        last_cleanup = await self.last_cleanup(tenant_id)

        return {
            "tenant_id": str(tenant_id),
            "plan": tenant.plan.value,
            "consent_events": consent.total_records,
            "dsr_requests": dsr.total,
            "pending_dsr": dsr.pending,
            "overdue_dsr": dsr.overdue,
            "dsr_on_time_ratio": round(dsr.on_time_ratio, 4),
            "retention_days": self._resolver.retention_days(tenant.plan),
            "last_cleanup": last_cleanup.isoformat() if last_cleanup else None,
        }
