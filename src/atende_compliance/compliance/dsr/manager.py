"""Data subject request lifecycle manager.

Owns every status change of a :class:`DsrRequest`. Changes to one request
are serialized with a lease on ``dsr:{id}``, every change is committed
together with its audit event, and the decision's audit event is durable
before processing starts.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from atende_compliance.compliance.config import DsrConfig
from atende_compliance.compliance.dsr.lifecycle import DsrEvent, next_status
from atende_compliance.compliance.notifications import MaskingNotifier
from atende_compliance.compliance.providers import RecordProviderRegistry
from atende_compliance.compliance.purge.executor import PurgeExecutor
from atende_compliance.compliance.types import (
    TERMINAL_DSR_STATUSES,
    DsrKind,
    DsrStatus,
    ExportBuilder,
    PurgeSummary,
    Rectifier,
    parse_enum,
)
from atende_compliance.core.audit import AuditTrail, PayloadMasker
from atende_compliance.core.exceptions import (
    DsrNotFoundError,
    TooManyPendingRequests,
    ValidationError,
)
from atende_compliance.core.locks import LeaseLock, hold_lease
from atende_compliance.core.logging import get_logger, log_exception
from atende_compliance.db.models.audit import AuditAction, AuditSeverity
from atende_compliance.db.models.base import utc_now
from atende_compliance.db.models.dsr import DsrRequest
from atende_compliance.utils.exceptions import ConfigurationError

logger = get_logger(__name__)

SYSTEM_REVIEWER = "system"

_OUTSTANDING = [s.value for s in DsrStatus if s not in TERMINAL_DSR_STATUSES]


class DsrSubmission(BaseModel):
    """Validated input of a new request."""

    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    kind: DsrKind
    requester_contact: str = Field(min_length=1, max_length=255)
    subject: str | None = Field(default=None, min_length=1, max_length=255)
    reason: str | None = Field(default=None, max_length=2000)


class DsrManager:
    """Drives data subject requests from submission to closure."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        config: DsrConfig,
        lock: LeaseLock,
        registry: RecordProviderRegistry,
        executor: PurgeExecutor,
        masker: PayloadMasker,
        notifier: MaskingNotifier,
        exporter: ExportBuilder | None = None,
        rectifier: Rectifier | None = None,
        lock_ttl_seconds: float = 900,
    ):
        self._session_factory = session_factory
        self.config = config
        self._lock = lock
        self._registry = registry
        self._executor = executor
        self._masker = masker
        self._notifier = notifier
        self._exporter = exporter
        self._rectifier = rectifier
        self._lock_ttl = lock_ttl_seconds

    # =========================================================================
    # Submission and review
    # =========================================================================

    async def submit(
        self,
        tenant_id: UUID,
        kind: DsrKind | str,
        requester_contact: str,
        reason: str | None = None,
        *,
        subject: str | None = None,
        actor: str | None = None,
        now: datetime | None = None,
    ) -> DsrRequest:
        """Create a request in REQUESTED.

        If auto-approval is enabled and the kind is in the allow-list, the
        request is immediately decided with reviewer "system".

        Args:
            tenant_id: Owning tenant
            kind: ACCESS, ERASURE, PORTABILITY or RECTIFICATION
            requester_contact: E-mail or subject id of the requester
            reason: Optional free text
            subject: Data subject the request is about (default: requester_contact)
            actor: Who submitted it (default: the requester)
            now: Submission time (default: now)

        Raises:
            ValidationError: If the submission is malformed
            TooManyPendingRequests: If the tenant is at its outstanding limit
            ConcurrencyConflict: If another submission for the tenant is in flight
        """
        submission = _validate_submission(kind, requester_contact, subject, reason)
        now = now or utc_now()

        async with hold_lease(self._lock, f"dsr-submit:{tenant_id}", self._lock_ttl):
            async with self._session_factory() as session:
                pending = await self._count_outstanding(session, tenant_id)
                if pending >= self.config.max_pending_requests:
                    logger.warning(
                        "dsr_submission_rejected_limit",
                        tenant_id=str(tenant_id),
                        pending=pending,
                        limit=self.config.max_pending_requests,
                    )
                    raise TooManyPendingRequests(
                        tenant_id, pending, self.config.max_pending_requests
                    )

                request = DsrRequest(
                    tenant_id=tenant_id,
                    kind=submission.kind.value,
                    status=DsrStatus.REQUESTED.value,
                    requester_contact=submission.requester_contact,
                    subject=submission.subject or submission.requester_contact,
                    reason=submission.reason,
                    attempts=0,
                    created_at=now,
                    updated_at=now,
                )
                session.add(request)
                await session.flush()

                await AuditTrail(session, self._masker).append(
                    AuditAction.DSR_REQUESTED,
                    actor=actor or submission.requester_contact,
                    target_type="dsr_request",
                    target_id=str(request.dsr_id),
                    tenant_id=tenant_id,
                    payload={
                        "kind": submission.kind.value,
                        "requester_contact": submission.requester_contact,
                        "has_reason": submission.reason is not None,
                    },
                )
                await session.commit()

        logger.info(
            "dsr_submitted",
            tenant_id=str(tenant_id),
            dsr_id=str(request.dsr_id),
            kind=submission.kind.value,
        )

        if self.config.auto_approval_enabled and submission.kind in self.config.auto_approval_kinds:
            return await self.decide(request.dsr_id, approve=True, reviewer=SYSTEM_REVIEWER, now=now)
        return request

    async def begin_review(
        self,
        dsr_id: UUID,
        reviewer: str,
        now: datetime | None = None,
    ) -> DsrRequest:
        """Move a request from REQUESTED to IN_REVIEW and assign the reviewer."""
        now = now or utc_now()
        async with hold_lease(self._lock, _lease_key(dsr_id), self._lock_ttl):
            async with self._session_factory() as session:
                request = await self._load(session, dsr_id)
                request.status = next_status(dsr_id, request.status, DsrEvent.BEGIN_REVIEW).value
                request.reviewer = reviewer
                request.updated_at = now

                await self._audit(
                    session,
                    request,
                    AuditAction.DSR_REVIEW_STARTED,
                    actor=reviewer,
                    payload={"reviewer": reviewer},
                )
                await session.commit()
        return request

    async def decide(
        self,
        dsr_id: UUID,
        approve: bool,
        reviewer: str,
        *,
        notes: str | None = None,
        now: datetime | None = None,
    ) -> DsrRequest:
        """Approve or reject a request.

        Valid from IN_REVIEW; a request still in REQUESTED is moved to
        IN_REVIEW first as part of the same change. Exactly one audit
        event (DSR_APPROVED or DSR_REJECTED) is written.

        Raises:
            DsrNotFoundError: If the request does not exist
            InvalidTransitionError: If the request is past review
            ConcurrencyConflict: If another change to the request is in flight
        """
        now = now or utc_now()
        async with hold_lease(self._lock, _lease_key(dsr_id), self._lock_ttl):
            async with self._session_factory() as session:
                request = await self._load(session, dsr_id)
                previous = DsrStatus(request.status)

                status = previous
                if status == DsrStatus.REQUESTED:
                    status = next_status(dsr_id, status, DsrEvent.BEGIN_REVIEW)
                event = DsrEvent.APPROVE if approve else DsrEvent.REJECT
                target = next_status(dsr_id, status, event)

                request.status = target.value
                request.reviewer = reviewer
                request.decided_at = now
                request.updated_at = now

                await self._audit(
                    session,
                    request,
                    AuditAction.DSR_APPROVED if approve else AuditAction.DSR_REJECTED,
                    actor=reviewer,
                    payload={
                        "reviewer": reviewer,
                        "previous_status": previous.value,
                        "automatic": reviewer == SYSTEM_REVIEWER,
                        "notes": notes,
                    },
                )
                await session.commit()

        logger.info(
            "dsr_decided",
            dsr_id=str(dsr_id),
            status=target.value,
            automatic=reviewer == SYSTEM_REVIEWER,
        )
        return request

    async def abandon(
        self,
        dsr_id: UUID,
        reviewer: str,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> DsrRequest:
        """Give up on a FAILED request, closing it as REJECTED."""
        now = now or utc_now()
        async with hold_lease(self._lock, _lease_key(dsr_id), self._lock_ttl):
            async with self._session_factory() as session:
                request = await self._load(session, dsr_id)
                request.status = next_status(dsr_id, request.status, DsrEvent.ABANDON).value
                request.reviewer = reviewer
                request.decided_at = now
                request.updated_at = now

                await self._audit(
                    session,
                    request,
                    AuditAction.DSR_ABANDONED,
                    actor=reviewer,
                    payload={"reviewer": reviewer, "reason": reason},
                )
                await session.commit()
        return request

    # =========================================================================
    # Processing
    # =========================================================================

    async def process(
        self,
        dsr_id: UUID,
        *,
        actor: str = "system",
        now: datetime | None = None,
    ) -> DsrRequest:
        """Carry out an approved (or retry a failed) request.

        ERASURE purges every record of the subject through the executor
        and completes only if none failed. ACCESS and PORTABILITY build an
        export bundle. RECTIFICATION is delegated to the rectifier, or
        closed for manual handling when none is configured.

        Re-invoking after an interruption is safe: purges are idempotent
        per record.

        Returns:
            The request in COMPLETED or FAILED

        Raises:
            DsrNotFoundError: If the request does not exist
            InvalidTransitionError: If the request is not APPROVED or FAILED
            ConcurrencyConflict: If another change to the request is in flight
            ConfigurationError: If the request needs an exporter and none is set
        """
        async with hold_lease(self._lock, _lease_key(dsr_id), self._lock_ttl) as token:
            async with self._session_factory() as session:
                request = await self._load(session, dsr_id)
                target = next_status(dsr_id, request.status, DsrEvent.START_PROCESSING)
                kind = DsrKind(request.kind)
                if kind in (DsrKind.ACCESS, DsrKind.PORTABILITY) and self._exporter is None:
                    raise ConfigurationError(f"No export builder configured for {kind.value} requests")

                request.status = target.value
                request.attempts += 1
                request.failure_reason = None
                request.updated_at = now or utc_now()

                await self._audit(
                    session,
                    request,
                    AuditAction.DSR_PROCESSING_STARTED,
                    actor=actor,
                    payload={"attempt": request.attempts},
                )
                await session.commit()

            logger.info("dsr_processing_started", dsr_id=str(dsr_id), kind=kind.value)

            try:
                result, failure = await self._execute(request, actor, token)
            except asyncio.CancelledError:
                await self._finish(dsr_id, None, "processing was cancelled", actor)
                raise
            except Exception as e:
                log_exception(logger, e, "dsr_processing_error", dsr_id=str(dsr_id))
                return await self._finish(dsr_id, None, f"{type(e).__name__}: {e}", actor)

            return await self._finish(dsr_id, result, failure, actor)

    async def _execute(
        self,
        request: DsrRequest,
        actor: str,
        token: str,
    ) -> tuple[dict[str, Any], str | None]:
        """Do the work for a request. Returns (result, failure_reason)."""
        kind = DsrKind(request.kind)

        if kind == DsrKind.ERASURE:
            summary = await self._erase_subject(request, actor, token)
            failure = None
            if summary.has_failures:
                failure = f"{summary.failed} record(s) could not be purged"
            return {"purge": summary.to_dict()}, failure

        if kind in (DsrKind.ACCESS, DsrKind.PORTABILITY):
            bundle_ref = await self._exporter.build_export(request.tenant_id, request.subject, kind)
            return {"bundle_ref": bundle_ref}, None

        if self._rectifier is not None:
            details = await self._rectifier.rectify(request.tenant_id, request.subject, request.reason)
            return {"rectification": details}, None
        return {"rectification": "manual"}, None

    async def _erase_subject(self, request: DsrRequest, actor: str, token: str) -> PurgeSummary:
        summary = PurgeSummary()
        for provider in self._registry:
            refs = await provider.list_for_subject(request.tenant_id, request.subject)
            for ref in refs:
                async with self._session_factory() as session:
                    outcome = await self._executor.purge(
                        session,
                        provider.record_type,
                        ref.record_id,
                        tenant_id=request.tenant_id,
                        actor=actor,
                        context={"dsr_id": str(request.dsr_id)},
                    )
                    await session.commit()
                summary.add(outcome)
                await self._lock.extend(_lease_key(request.dsr_id), token, self._lock_ttl)
        return summary

    async def _finish(
        self,
        dsr_id: UUID,
        result: dict[str, Any] | None,
        failure: str | None,
        actor: str,
    ) -> DsrRequest:
        now = utc_now()
        succeeded = failure is None
        async with self._session_factory() as session:
            request = await self._load(session, dsr_id)
            event = DsrEvent.COMPLETE if succeeded else DsrEvent.FAIL
            request.status = next_status(dsr_id, request.status, event).value
            request.result = result
            request.failure_reason = failure
            request.updated_at = now
            if succeeded:
                request.completed_at = now

            await self._audit(
                session,
                request,
                AuditAction.DSR_COMPLETED if succeeded else AuditAction.DSR_FAILED,
                actor=actor,
                severity=AuditSeverity.INFO if succeeded else AuditSeverity.WARNING,
                payload={"attempt": request.attempts, "result": result, "failure_reason": failure},
            )
            await session.commit()

        if succeeded:
            logger.info("dsr_completed", dsr_id=str(dsr_id), kind=request.kind)
        else:
            logger.warning("dsr_failed", dsr_id=str(dsr_id), kind=request.kind, reason=failure)
            await self._notifier.notify(
                "dsr.failed",
                {
                    "dsr_id": str(dsr_id),
                    "tenant_id": str(request.tenant_id),
                    "kind": request.kind,
                    "attempts": request.attempts,
                    "reason": failure,
                },
            )
        return request

    async def recover_interrupted(self) -> list[UUID]:
        """Fail requests left in PROCESSING by a worker that died.

        A request is only touched when nobody holds its lease, so a live
        process() is never disturbed. Failed requests can be retried.
        """
        async with self._session_factory() as session:
            result = await session.execute(
                select(DsrRequest.dsr_id).where(DsrRequest.status == DsrStatus.PROCESSING.value)
            )
            candidates = list(result.scalars().all())

        recovered: list[UUID] = []
        for dsr_id in candidates:
            token = await self._lock.acquire(_lease_key(dsr_id), self._lock_ttl)
            if token is None:
                continue
            try:
                await self._finish(dsr_id, None, "interrupted before completion", "system")
                recovered.append(dsr_id)
            finally:
                await self._lock.release(_lease_key(dsr_id), token)

        if recovered:
            logger.warning("dsr_interrupted_requests_recovered", count=len(recovered))
        return recovered

    # =========================================================================
    # Queries
    # =========================================================================

    async def get(self, dsr_id: UUID) -> DsrRequest:
        """Get a request by ID.

        Raises:
            DsrNotFoundError: If the request does not exist
        """
        async with self._session_factory() as session:
            return await self._load(session, dsr_id)

    async def list_requests(
        self,
        tenant_id: UUID,
        status: DsrStatus | str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[DsrRequest]:
        """List a tenant's requests, newest first."""
        query = select(DsrRequest).where(DsrRequest.tenant_id == tenant_id)
        if status is not None:
            query = query.where(
                DsrRequest.status == parse_enum(DsrStatus, status, "status").value
            )
        query = query.order_by(DsrRequest.created_at.desc()).limit(min(limit, 1000)).offset(offset)

        async with self._session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def count_outstanding(self, tenant_id: UUID) -> int:
        async with self._session_factory() as session:
            return await self._count_outstanding(session, tenant_id)

    async def find_overdue(
        self,
        tenant_id: UUID | None = None,
        now: datetime | None = None,
    ) -> list[DsrRequest]:
        """Open requests older than the processing window.

        Reporting only: overdue requests are not transitioned.
        """
        now = now or utc_now()
        deadline = now - timedelta(days=self.config.max_processing_days)
        query = select(DsrRequest).where(
            DsrRequest.status.in_(_OUTSTANDING),
            DsrRequest.created_at < deadline,
        )
        if tenant_id is not None:
            query = query.where(DsrRequest.tenant_id == tenant_id)

        async with self._session_factory() as session:
            result = await session.execute(query.order_by(DsrRequest.created_at))
            return list(result.scalars().all())

    async def flag_overdue(
        self,
        tenant_id: UUID | None = None,
        now: datetime | None = None,
    ) -> list[DsrRequest]:
        """Notify operators about every overdue request."""
        now = now or utc_now()
        overdue = await self.find_overdue(tenant_id, now)
        for request in overdue:
            await self._notifier.notify(
                "dsr.overdue",
                {
                    "dsr_id": str(request.dsr_id),
                    "tenant_id": str(request.tenant_id),
                    "kind": request.kind,
                    "status": request.status,
                    "age_days": (now - request.created_at).days,
                },
            )
        if overdue:
            logger.warning("dsr_overdue_flagged", count=len(overdue))
        return overdue

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _load(self, session: AsyncSession, dsr_id: UUID) -> DsrRequest:
        request = await session.get(DsrRequest, dsr_id)
        if request is None:
            raise DsrNotFoundError(dsr_id)
        return request

    async def _count_outstanding(self, session: AsyncSession, tenant_id: UUID) -> int:
        result = await session.execute(
            select(func.count())
            .select_from(DsrRequest)
            .where(DsrRequest.tenant_id == tenant_id, DsrRequest.status.in_(_OUTSTANDING))
        )
        return result.scalar_one()

    async def _audit(
        self,
        session: AsyncSession,
        request: DsrRequest,
        action: AuditAction,
        *,
        actor: str,
        payload: dict[str, Any],
        severity: AuditSeverity = AuditSeverity.INFO,
    ) -> None:
        await AuditTrail(session, self._masker).append(
            action,
            actor=actor,
            target_type="dsr_request",
            target_id=str(request.dsr_id),
            tenant_id=request.tenant_id,
            severity=severity,
            payload={"kind": request.kind, "status": request.status, **payload},
        )


def _lease_key(dsr_id: UUID) -> str:
    return f"dsr:{dsr_id}"


def _validate_submission(
    kind: DsrKind | str,
    requester_contact: str,
    subject: str | None,
    reason: str | None,
) -> DsrSubmission:
    kind = parse_enum(DsrKind, kind, "kind")
    try:
        return DsrSubmission(
            kind=kind,
            requester_contact=requester_contact,
            subject=subject,
            reason=reason or None,
        )
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(p) for p in first["loc"]) or None
        raise ValidationError(first["msg"], field=field) from e
