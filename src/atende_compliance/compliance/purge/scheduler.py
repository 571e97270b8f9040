"""Retention purge scheduler.

On every tick, for every active tenant, computes the retention cutoff from
the tenant's plan, asks each registered record provider for records older
than the cutoff and purges them through the executor. Each tenant run is
guarded by a lease so runs never overlap for the same tenant, while
different tenants are processed concurrently.

Runs are idempotent: outcomes are stored per record in ``purge_run_items``
and records with a SUCCESS (or NOT_FOUND) outcome are skipped by later
runs. Failed records are retried on later ticks up to ``max_retries``
attempts, after which they are reported through the notification sink.
A delivered report is marked with a RETENTION_PURGE_ESCALATED audit event;
exhausted records without that marker are reported again on later ticks.
"""

import asyncio
import contextlib
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from atende_compliance.compliance.config import CleanupConfig
from atende_compliance.compliance.notifications import MaskingNotifier
from atende_compliance.compliance.providers import RecordProviderRegistry
from atende_compliance.compliance.purge.executor import PurgeExecutor
from atende_compliance.compliance.retention import RetentionPolicyResolver
from atende_compliance.compliance.tenants import TenantDirectory, TenantInfo
from atende_compliance.compliance.types import (
    PurgeOutcome,
    PurgeOutcomeStatus,
    PurgeRunStatus,
    PurgeTrigger,
)
from atende_compliance.core.audit import AuditTrail, PayloadMasker
from atende_compliance.core.exceptions import TenantNotFoundError
from atende_compliance.core.locks import LeaseLock
from atende_compliance.core.logging import LogContext, get_logger, log_exception
from atende_compliance.db.models.audit import AuditAction, AuditEvent, AuditSeverity
from atende_compliance.db.models.base import utc_now
from atende_compliance.db.models.purge import PurgeRun, PurgeRunItem

logger = get_logger(__name__)

SETTLED_OUTCOMES = (PurgeOutcomeStatus.SUCCESS.value, PurgeOutcomeStatus.NOT_FOUND.value)

RecordKey = tuple[str, str]


@dataclass
class PurgeRunSummary:
    """Result of one tenant run, returned to callers and the tick loop."""

    tenant_id: UUID
    run_id: UUID | None = None
    status: PurgeRunStatus | None = None
    cutoff: datetime | None = None
    trigger: PurgeTrigger = PurgeTrigger.SCHEDULED
    candidates: int = 0
    purged: int = 0
    not_found: int = 0
    failed: int = 0
    skipped: int = 0
    exhausted: list[dict[str, str]] = field(default_factory=list)
    escalation_pending: int = 0
    provider_errors: list[dict[str, str]] = field(default_factory=list)
    lock_skipped: bool = False
    error: str | None = None

    @property
    def has_failures(self) -> bool:
        return bool(self.failed or self.escalation_pending or self.provider_errors)

    def add(self, outcome: PurgeOutcome) -> None:
        if outcome.status == PurgeOutcomeStatus.SUCCESS:
            self.purged += 1
        elif outcome.status == PurgeOutcomeStatus.NOT_FOUND:
            self.not_found += 1
        else:
            self.failed += 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "tenant_id": str(self.tenant_id),
            "run_id": str(self.run_id) if self.run_id else None,
            "status": self.status.value if self.status else None,
            "cutoff": self.cutoff.isoformat() if self.cutoff else None,
            "trigger": self.trigger.value,
            "candidates": self.candidates,
            "purged": self.purged,
            "not_found": self.not_found,
            "failed": self.failed,
            "skipped": self.skipped,
            "escalation_pending": self.escalation_pending,
            "provider_errors": self.provider_errors,
            "lock_skipped": self.lock_skipped,
            "error": self.error,
        }


class RetentionPurgeScheduler:
    """Periodic retention purge across all tenants."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        config: CleanupConfig,
        resolver: RetentionPolicyResolver,
        registry: RecordProviderRegistry,
        executor: PurgeExecutor,
        tenants: TenantDirectory,
        lock: LeaseLock,
        notifier: MaskingNotifier,
        masker: PayloadMasker,
    ):
        self._session_factory = session_factory
        self.config = config
        self._resolver = resolver
        self._registry = registry
        self._executor = executor
        self._tenants = tenants
        self._lock = lock
        self._notifier = notifier
        self._masker = masker

        self._running = False
        self._task: asyncio.Task[None] | None = None
        self.last_tick_at: datetime | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    # =========================================================================
    # Entry points
    # =========================================================================

    async def run_tick(self, now: datetime | None = None) -> list[PurgeRunSummary]:
        """Run one scheduled pass over every active tenant.

        A failure for one tenant is logged and reported in its summary; it
        never stops the other tenants.
        """
        now = now or utc_now()
        tenants = await self._tenants.list_active()
        semaphore = asyncio.Semaphore(self.config.max_concurrent_tenants)

        async def run_one(tenant: TenantInfo) -> PurgeRunSummary:
            async with semaphore:
                try:
                    return await self.purge_tenant(tenant, now, PurgeTrigger.SCHEDULED)
                except Exception as e:
                    log_exception(logger, e, "purge_tenant_failed", tenant_id=str(tenant.tenant_id))
                    return PurgeRunSummary(tenant_id=tenant.tenant_id, error=str(e))

        summaries = list(await asyncio.gather(*(run_one(t) for t in tenants)))
        self.last_tick_at = now

        logger.info(
            "purge_tick_completed",
            tenants=len(tenants),
            purged=sum(s.purged for s in summaries),
            failed=sum(s.failed for s in summaries),
            errors=sum(1 for s in summaries if s.error),
        )
        return summaries

    async def trigger_purge_now(
        self,
        tenant_id: UUID,
        now: datetime | None = None,
    ) -> PurgeRunSummary:
        """Operator-initiated purge for one tenant, outside the schedule.

        Returns:
            Run summary; ``lock_skipped`` is set if a run was already in progress

        Raises:
            TenantNotFoundError: If the tenant does not exist or is inactive
        """
        tenant = await self._tenants.get(tenant_id)
        if tenant is None or not tenant.is_active:
            raise TenantNotFoundError(tenant_id)
        return await self.purge_tenant(tenant, now or utc_now(), PurgeTrigger.MANUAL)

    async def purge_tenant(
        self,
        tenant: TenantInfo,
        now: datetime,
        trigger: PurgeTrigger = PurgeTrigger.SCHEDULED,
    ) -> PurgeRunSummary:
        """Purge one tenant's stale records under the tenant lease.

        If the lease is held elsewhere the run is skipped without error.
        """
        lease_key = f"purge:{tenant.tenant_id}"
        ttl = self.config.lock_ttl_seconds

        token = await self._lock.acquire(lease_key, ttl)
        if token is None:
            logger.info("purge_run_skipped_locked", tenant_id=str(tenant.tenant_id))
            return PurgeRunSummary(tenant_id=tenant.tenant_id, trigger=trigger, lock_skipped=True)

        try:
            with LogContext(tenant_id=str(tenant.tenant_id)):
                return await self._run_locked(tenant, now, trigger, lease_key, token)
        finally:
            await self._lock.release(lease_key, token)

    # =========================================================================
    # Run
    # =========================================================================

    async def _run_locked(
        self,
        tenant: TenantInfo,
        now: datetime,
        trigger: PurgeTrigger,
        lease_key: str,
        token: str,
    ) -> PurgeRunSummary:
        cutoff = self._resolver.cutoff(tenant.plan, now)
        summary = PurgeRunSummary(
            tenant_id=tenant.tenant_id, cutoff=cutoff, trigger=trigger
        )

        async with self._session_factory() as session:
            interrupted = await self._interrupt_stale_runs(session, tenant.tenant_id, now)
            run = PurgeRun(
                tenant_id=tenant.tenant_id,
                plan=tenant.plan.value,
                cutoff=cutoff,
                trigger=trigger.value,
                status=PurgeRunStatus.RUNNING.value,
                started_at=now,
            )
            session.add(run)
            await session.commit()
            summary.run_id = run.run_id

        logger.info(
            "purge_run_started",
            run_id=str(run.run_id),
            plan=tenant.plan.value,
            cutoff=cutoff.isoformat(),
            trigger=trigger.value,
            resumed_after_interruption=interrupted > 0,
        )

        try:
            await self._purge_candidates(tenant, run, cutoff, summary, lease_key, token)
            await self._finish_run(run.run_id, summary, now)
        except BaseException as e:
            await self._mark_interrupted(run.run_id, summary)
            log_exception(logger, e, "purge_run_interrupted", run_id=str(run.run_id))
            raise

        logger.info(
            "purge_run_completed",
            run_id=str(run.run_id),
            status=summary.status.value if summary.status else None,
            candidates=summary.candidates,
            purged=summary.purged,
            failed=summary.failed,
            skipped=summary.skipped,
            provider_errors=len(summary.provider_errors),
        )
        return summary

    async def _purge_candidates(
        self,
        tenant: TenantInfo,
        run: PurgeRun,
        cutoff: datetime,
        summary: PurgeRunSummary,
        lease_key: str,
        token: str,
    ) -> None:
        max_retries = self.config.max_retries

        async with self._session_factory() as session:
            settled = await self._settled_records(session, tenant.tenant_id)
            failures = await self._failure_counts(session, tenant.tenant_id)
            escalated = await self._escalated_records(session, tenant.tenant_id)
            await session.commit()

            for provider in self._registry:
                try:
                    refs = await provider.list_stale(tenant.tenant_id, cutoff)
                except Exception as e:
                    log_exception(
                        logger, e, "purge_list_stale_failed", record_type=provider.record_type
                    )
                    summary.provider_errors.append(
                        {"record_type": provider.record_type, "error": str(e)}
                    )
                    continue

                for ref in refs:
                    # Exactly at the cutoff is still inside the window
                    if ref.last_activity_at is None or not ref.last_activity_at < cutoff:
                        continue

                    summary.candidates += 1
                    key: RecordKey = (provider.record_type, ref.record_id)
                    if key in settled:
                        summary.skipped += 1
                        continue
                    if failures.get(key, 0) >= max_retries:
                        summary.skipped += 1
                        if key not in escalated:
                            reason = await self._last_failure_reason(session, tenant.tenant_id, key)
                            if await self._escalate(
                                session, tenant, run, key, reason, failures[key], summary
                            ):
                                escalated.add(key)
                        continue

                    outcome = await self._executor.purge(
                        session,
                        provider.record_type,
                        ref.record_id,
                        tenant_id=tenant.tenant_id,
                        actor="system",
                        context={"run_id": str(run.run_id)},
                    )
                    session.add(
                        PurgeRunItem(
                            run_id=run.run_id,
                            tenant_id=tenant.tenant_id,
                            record_type=provider.record_type,
                            record_id=ref.record_id,
                            outcome=outcome.status.value,
                            reason=outcome.reason,
                        )
                    )
                    await session.commit()
                    summary.add(outcome)

                    if outcome.failed:
                        failures[key] = failures.get(key, 0) + 1
                        if failures[key] >= max_retries and await self._escalate(
                            session, tenant, run, key, outcome.reason, failures[key], summary
                        ):
                            escalated.add(key)
                    else:
                        settled.add(key)

                    if not await self._lock.extend(lease_key, token, self.config.lock_ttl_seconds):
                        logger.warning("purge_lease_lost", run_id=str(run.run_id))

    async def _escalate(
        self,
        session: AsyncSession,
        tenant: TenantInfo,
        run: PurgeRun,
        key: RecordKey,
        reason: str | None,
        attempts: int,
        summary: PurgeRunSummary,
    ) -> bool:
        """Report a record whose retries are exhausted.

        Returns True once the report is delivered and marked in the audit
        trail. A sink error leaves the record unmarked so the next run
        reports it again.
        """
        record_type, record_id = key
        detail = {
            "record_type": record_type,
            "record_id": record_id,
            "reason": reason or "unknown",
        }
        summary.exhausted.append(detail)
        logger.error(
            "purge_retries_exhausted",
            run_id=str(run.run_id),
            record_type=record_type,
            record_id=record_id,
            attempts=attempts,
        )

        if self.config.notify_on_failure:
            try:
                await self._notifier.notify(
                    "retention.purge_failed",
                    {
                        "tenant_id": str(tenant.tenant_id),
                        "run_id": str(run.run_id),
                        "attempts": attempts,
                        **detail,
                    },
                )
            except Exception as e:
                log_exception(
                    logger,
                    e,
                    "purge_escalation_failed",
                    run_id=str(run.run_id),
                    record_type=record_type,
                    record_id=record_id,
                )
                summary.escalation_pending += 1
                return False

        await AuditTrail(session, self._masker).append(
            AuditAction.RETENTION_PURGE_ESCALATED,
            actor="system",
            target_type=record_type,
            target_id=record_id,
            tenant_id=tenant.tenant_id,
            severity=AuditSeverity.ERROR,
            payload={
                "run_id": str(run.run_id),
                "attempts": attempts,
                "reason": detail["reason"],
                "notified": self.config.notify_on_failure,
            },
        )
        await session.commit()
        return True

    async def _finish_run(self, run_id: UUID, summary: PurgeRunSummary, now: datetime) -> None:
        status = (
            PurgeRunStatus.COMPLETED_WITH_FAILURES
            if summary.has_failures
            else PurgeRunStatus.COMPLETED
        )
        async with self._session_factory() as session:
            run = await session.get(PurgeRun, run_id)
            run.status = status.value
            run.finished_at = now
            run.candidates = summary.candidates
            run.purged = summary.purged
            run.not_found = summary.not_found
            run.failed = summary.failed
            run.skipped = summary.skipped

            await AuditTrail(session, self._masker).append(
                AuditAction.RETENTION_PURGE_RUN,
                actor="system",
                target_type="purge_run",
                target_id=str(run_id),
                tenant_id=summary.tenant_id,
                severity=AuditSeverity.WARNING if summary.has_failures else AuditSeverity.INFO,
                payload={
                    "cutoff": summary.cutoff,
                    "trigger": summary.trigger.value,
                    "status": status.value,
                    "candidates": summary.candidates,
                    "purged": summary.purged,
                    "not_found": summary.not_found,
                    "failed": summary.failed,
                    "skipped": summary.skipped,
                    "exhausted": len(summary.exhausted),
                    "escalation_pending": summary.escalation_pending,
                    "provider_errors": summary.provider_errors,
                },
            )
            await session.commit()
        summary.status = status

    async def _mark_interrupted(self, run_id: UUID, summary: PurgeRunSummary) -> None:
        async with self._session_factory() as session:
            run = await session.get(PurgeRun, run_id)
            if run is None or run.status != PurgeRunStatus.RUNNING.value:
                return
            run.status = PurgeRunStatus.INTERRUPTED.value
            run.finished_at = utc_now()
            run.candidates = summary.candidates
            run.purged = summary.purged
            run.not_found = summary.not_found
            run.failed = summary.failed
            run.skipped = summary.skipped
            await session.commit()
        summary.status = PurgeRunStatus.INTERRUPTED

    # =========================================================================
    # Bookkeeping queries
    # =========================================================================

    async def _interrupt_stale_runs(self, session: AsyncSession, tenant_id: UUID, now: datetime) -> int:
        """Close runs left RUNNING by a crashed worker. We hold the lease, so none is live."""
        result = await session.execute(
            select(PurgeRun).where(
                PurgeRun.tenant_id == tenant_id,
                PurgeRun.status == PurgeRunStatus.RUNNING.value,
            )
        )
        stale = list(result.scalars().all())
        for run in stale:
            run.status = PurgeRunStatus.INTERRUPTED.value
            run.finished_at = now
            logger.warning("purge_run_marked_interrupted", run_id=str(run.run_id))
        return len(stale)

    async def _settled_records(self, session: AsyncSession, tenant_id: UUID) -> set[RecordKey]:
        result = await session.execute(
            select(PurgeRunItem.record_type, PurgeRunItem.record_id)
            .where(
                PurgeRunItem.tenant_id == tenant_id,
                PurgeRunItem.outcome.in_(SETTLED_OUTCOMES),
            )
            .distinct()
        )
        return {(record_type, record_id) for record_type, record_id in result.all()}

    async def _failure_counts(self, session: AsyncSession, tenant_id: UUID) -> dict[RecordKey, int]:
        result = await session.execute(
            select(PurgeRunItem.record_type, PurgeRunItem.record_id, func.count())
            .where(
                PurgeRunItem.tenant_id == tenant_id,
                PurgeRunItem.outcome == PurgeOutcomeStatus.FAILED.value,
            )
            .group_by(PurgeRunItem.record_type, PurgeRunItem.record_id)
        )
        return {(record_type, record_id): count for record_type, record_id, count in result.all()}

    async def _escalated_records(self, session: AsyncSession, tenant_id: UUID) -> set[RecordKey]:
        result = await session.execute(
            select(AuditEvent.target_type, AuditEvent.target_id)
            .where(
                AuditEvent.tenant_id == tenant_id,
                AuditEvent.action == AuditAction.RETENTION_PURGE_ESCALATED.value,
            )
            .distinct()
        )
        return {(record_type, record_id) for record_type, record_id in result.all()}

    async def _last_failure_reason(
        self, session: AsyncSession, tenant_id: UUID, key: RecordKey
    ) -> str | None:
        record_type, record_id = key
        result = await session.execute(
            select(PurgeRunItem.reason)
            .where(
                PurgeRunItem.tenant_id == tenant_id,
                PurgeRunItem.record_type == record_type,
                PurgeRunItem.record_id == record_id,
                PurgeRunItem.outcome == PurgeOutcomeStatus.FAILED.value,
            )
            .order_by(PurgeRunItem.attempted_at.desc(), PurgeRunItem.item_id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    # =========================================================================
    # Background loop
    # =========================================================================

    async def start(self) -> None:
        """Start the periodic purge loop."""
        if not self.config.auto_enabled:
            logger.warning("purge_scheduler_disabled")
            return
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._background_loop(), name="retention_purge")
        logger.info(
            "purge_scheduler_started",
            interval_seconds=self.config.interval_seconds,
            schedule=self.config.schedule,
        )

    async def stop(self) -> None:
        """Stop the periodic purge loop."""
        self._running = False
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        logger.info("purge_scheduler_stopped")

    async def _background_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.config.interval_seconds)
                await self.run_tick()
            except asyncio.CancelledError:
                break
            except Exception as e:
                log_exception(logger, e, "purge_loop_error")
