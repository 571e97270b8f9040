"""Purge executor: deletes or redacts one domain record and audits it."""

from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from atende_compliance.compliance.providers import RecordProviderRegistry
from atende_compliance.compliance.types import PurgeOutcome, PurgeOutcomeStatus, RecordRef
from atende_compliance.core.audit import AuditTrail, PayloadMasker
from atende_compliance.core.exceptions import PurgeFailure
from atende_compliance.core.logging import get_logger
from atende_compliance.db.models.audit import AuditAction, AuditSeverity

logger = get_logger(__name__)

MAX_REASON_LENGTH = 500

_AUDIT_FOR_OUTCOME = {
    PurgeOutcomeStatus.SUCCESS: (AuditAction.RECORD_PURGED, AuditSeverity.INFO),
    PurgeOutcomeStatus.NOT_FOUND: (AuditAction.RECORD_PURGE_SKIPPED, AuditSeverity.INFO),
    PurgeOutcomeStatus.FAILED: (AuditAction.RECORD_PURGE_FAILED, AuditSeverity.ERROR),
}


class PurgeExecutor:
    """Purges single records through their domain provider.

    Each call produces exactly one audit event in the caller's session:
    RECORD_PURGED, RECORD_PURGE_SKIPPED (already gone) or
    RECORD_PURGE_FAILED. Provider errors become a FAILED outcome and are
    never raised; audit write failures are raised.
    """

    def __init__(self, registry: RecordProviderRegistry, masker: PayloadMasker):
        self._registry = registry
        self._masker = masker

    async def purge(
        self,
        db: AsyncSession,
        record_type: str,
        record_id: str,
        *,
        tenant_id: UUID,
        actor: str = "system",
        context: dict[str, str] | None = None,
    ) -> PurgeOutcome:
        """Purge one record.

        Args:
            db: Session the audit event is written to; the caller commits
            record_type: Registered domain record type
            record_id: Record identifier
            tenant_id: Owning tenant
            actor: Who requested the purge
            context: Extra audit fields (run id, request id)

        Returns:
            PurgeOutcome with SUCCESS, NOT_FOUND or FAILED(reason)

        Raises:
            ValidationError: If the record type is not registered
            AuditWriteFailure: If the audit event could not be written
        """
        provider = self._registry.get(record_type)
        ref = RecordRef(record_type=record_type, record_id=record_id, tenant_id=tenant_id)

        try:
            deleted = await provider.delete_or_redact(ref)
        except PurgeFailure as e:
            outcome = PurgeOutcome(
                record_type, record_id, PurgeOutcomeStatus.FAILED, _truncate(e.reason)
            )
        except Exception as e:
            outcome = PurgeOutcome(
                record_type,
                record_id,
                PurgeOutcomeStatus.FAILED,
                _truncate(f"{type(e).__name__}: {e}"),
            )
        else:
            status = PurgeOutcomeStatus.SUCCESS if deleted else PurgeOutcomeStatus.NOT_FOUND
            outcome = PurgeOutcome(record_type, record_id, status)

        if outcome.failed:
            logger.warning(
                "record_purge_failed",
                tenant_id=str(tenant_id),
                record_type=record_type,
                record_id=record_id,
                reason=self._masker.mask_text(outcome.reason or ""),
            )

        action, severity = _AUDIT_FOR_OUTCOME[outcome.status]
        payload: dict[str, str] = {
            "record_type": record_type,
            "outcome": outcome.status.value,
            **(context or {}),
        }
        if outcome.reason:
            payload["reason"] = outcome.reason

        await AuditTrail(db, self._masker).append(
            action,
            actor=actor,
            target_type=record_type,
            target_id=record_id,
            tenant_id=tenant_id,
            severity=severity,
            payload=payload,
        )
        return outcome


def _truncate(reason: str) -> str:
    return reason if len(reason) <= MAX_REASON_LENGTH else reason[: MAX_REASON_LENGTH - 3] + "..."
