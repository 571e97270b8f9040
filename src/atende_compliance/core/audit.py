"""Audit trail with payload masking.

Every mutating compliance operation appends exactly one audit event. The
payload is masked before it reaches the database, and a failed write raises
:class:`AuditWriteFailure` so the caller's transaction is rolled back
instead of committing an unaudited change.
"""

import re
from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from atende_compliance.core.context import get_current_context_or_none
from atende_compliance.core.exceptions import AuditWriteFailure
from atende_compliance.core.logging import get_logger
from atende_compliance.db.models.audit import AuditAction, AuditEvent, AuditSeverity

logger = get_logger(__name__)

# Value patterns masked wherever they appear, independent of the key name
PII_VALUE_PATTERNS: dict[str, re.Pattern[str]] = {
    "email": re.compile(r"[\w.+-]+@[\w-]+(?:\.[\w-]+)+"),
    "cnpj": re.compile(r"\b\d{2}\.\d{3}\.\d{3}/\d{4}-\d{2}\b|(?<![\w-])\d{14}(?![\w-])"),
    "cpf": re.compile(r"\b\d{3}\.\d{3}\.\d{3}-\d{2}\b|(?<![\w-])\d{11}(?![\w-])"),
}


class PayloadMasker:
    """Masks sensitive data in audit and notification payloads.

    Keys listed in ``masked_fields`` (case-insensitive, at any depth) are
    replaced by ``mask_token``; with ``capture_pii`` disabled they are
    dropped from the payload altogether. String values anywhere are also
    scanned for e-mail addresses and CPF/CNPJ numbers.
    """

    def __init__(
        self,
        masked_fields: Iterable[str],
        capture_pii: bool = False,
        mask_token: str = "***",
    ):
        self.masked_fields = frozenset(f.strip().lower() for f in masked_fields if f.strip())
        self.capture_pii = capture_pii
        self.mask_token = mask_token

    @classmethod
    def from_config(cls, config: Any) -> "PayloadMasker":
        """Build from an object exposing masked_fields, capture_pii and mask_token."""
        return cls(config.masked_fields, config.capture_pii, config.mask_token)

    def mask_text(self, value: str) -> str:
        for pattern in PII_VALUE_PATTERNS.values():
            value = pattern.sub(self.mask_token, value)
        return value

    def mask(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        """Return a masked copy of payload."""
        masked: dict[str, Any] = {}
        for key, value in payload.items():
            if str(key).lower() in self.masked_fields:
                if self.capture_pii and value is not None:
                    masked[key] = self.mask_token
                continue
            masked[key] = self._mask_value(value)
        return masked

    def _mask_value(self, value: Any) -> Any:
        if isinstance(value, Mapping):
            return self.mask(value)
        if isinstance(value, (list, tuple, set, frozenset)):
            return [self._mask_value(v) for v in value]
        if isinstance(value, str):
            return self.mask_text(value)
        if isinstance(value, (UUID, datetime)):
            return str(value) if isinstance(value, UUID) else value.isoformat()
        return value


class AuditTrail:
    """Append-only audit log bound to one database session.

    The event is flushed inside the caller's transaction, so it commits or
    rolls back together with the change it describes.
    """

    def __init__(self, db: AsyncSession, masker: PayloadMasker):
        """Initialize audit trail with database session.

        Args:
            db: Async SQLAlchemy session of the triggering operation
            masker: Masker applied to every payload
        """
        self.db = db
        self.masker = masker

    async def append(
        self,
        action: AuditAction,
        *,
        actor: str,
        target_type: str,
        target_id: str | UUID,
        payload: Mapping[str, Any] | None = None,
        tenant_id: UUID | None = None,
        severity: AuditSeverity = AuditSeverity.INFO,
        correlation_id: UUID | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> AuditEvent:
        """Append one masked audit event.

        Args:
            action: Enumerated verb
            actor: Who performed the action ("system" for automation)
            target_type: Kind of object acted upon
            target_id: Identifier of that object, stored as given
            payload: Event details, masked before storage
            tenant_id: Owning tenant (None for system-wide events)
            severity: Event severity
            correlation_id: Defaults to the active RequestContext's id
            ip_address: Client IP address, kept only with capture_pii
            user_agent: Client user agent string, kept only with capture_pii

        Returns:
            The persisted AuditEvent

        Raises:
            AuditWriteFailure: If the event could not be flushed
        """
        ctx = get_current_context_or_none()
        if correlation_id is None and ctx is not None:
            correlation_id = ctx.correlation_id

        event = AuditEvent(
            action=action.value,
            severity=severity.value,
            tenant_id=tenant_id,
            actor=self.masker.mask_text(actor),
            correlation_id=correlation_id,
            target_type=target_type,
            target_id=str(target_id),
            payload=self.masker.mask(payload or {}),
            ip_address=ip_address if self.masker.capture_pii else None,
            user_agent=user_agent if self.masker.capture_pii else None,
        )

        try:
            self.db.add(event)
            await self.db.flush()
        except SQLAlchemyError as e:
            logger.error(
                "audit_write_failed",
                action=action.value,
                target_type=target_type,
                error_type=type(e).__name__,
            )
            raise AuditWriteFailure(action.value, str(e)) from e

        return event

    async def query(
        self,
        tenant_id: UUID | None = None,
        action: AuditAction | str | None = None,
        target_type: str | None = None,
        target_id: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[AuditEvent]:
        """Query audit events with filters.

        Args:
            tenant_id: Filter by tenant
            action: Filter by action
            target_type: Filter by target type
            target_id: Filter by target id
            since: Events at or after this instant
            until: Events at or before this instant
            limit: Max results (max 1000)
            offset: Pagination offset

        Returns:
            Matching events, newest first
        """
        if isinstance(action, AuditAction):
            action = action.value

        query = select(AuditEvent).order_by(
            AuditEvent.created_at.desc(),
            AuditEvent.audit_id.desc(),  # Secondary sort for equal timestamps
        )

        if tenant_id is not None:
            query = query.where(AuditEvent.tenant_id == tenant_id)
        if action is not None:
            query = query.where(AuditEvent.action == action)
        if target_type is not None:
            query = query.where(AuditEvent.target_type == target_type)
        if target_id is not None:
            query = query.where(AuditEvent.target_id == target_id)
        if since is not None:
            query = query.where(AuditEvent.created_at >= since)
        if until is not None:
            query = query.where(AuditEvent.created_at <= until)

        query = query.limit(min(limit, 1000)).offset(offset)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def count_by_action(
        self,
        tenant_id: UUID | None = None,
        since: datetime | None = None,
    ) -> dict[str, int]:
        """Count events per action."""
        query = select(AuditEvent.action, func.count()).group_by(AuditEvent.action)
        if tenant_id is not None:
            query = query.where(AuditEvent.tenant_id == tenant_id)
        if since is not None:
            query = query.where(AuditEvent.created_at >= since)

        result = await self.db.execute(query)
        return {action: count for action, count in result.all()}
