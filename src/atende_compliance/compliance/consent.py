"""Consent ledger.

Append-only record of consent grants and revocations per (subject, purpose).
The current state is the newest record; if that record's validity window
has lapsed the state is unknown, which consumers treat as not granted.
Expiry is evaluated on read, not by a background job.
"""

from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from atende_compliance.compliance.config import ConsentConfig
from atende_compliance.compliance.types import ConsentPurpose, ConsentStatus, parse_enum
from atende_compliance.core.audit import AuditTrail, PayloadMasker
from atende_compliance.core.exceptions import ValidationError
from atende_compliance.core.logging import get_logger
from atende_compliance.db.models.audit import AuditAction
from atende_compliance.db.models.base import utc_now
from atende_compliance.db.models.consent import ConsentRecord

logger = get_logger(__name__)

MAX_SUBJECT_LENGTH = 255
MAX_SOURCE_LENGTH = 50


class ConsentLedger:
    """Records consent changes and answers "is X consented for Y".

    Each record is written in the same transaction as its audit event;
    if the audit write fails nothing is committed.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        config: ConsentConfig,
        masker: PayloadMasker,
    ):
        self._session_factory = session_factory
        self._config = config
        self._masker = masker

    async def record(
        self,
        tenant_id: UUID,
        subject: str,
        purpose: ConsentPurpose | str,
        granted: bool,
        source: str,
        *,
        actor: str = "system",
        ip_address: str | None = None,
        user_agent: str | None = None,
        recorded_at: datetime | None = None,
    ) -> ConsentRecord:
        """Append a grant or revocation.

        Args:
            tenant_id: Owning tenant
            subject: Data subject identifier (e-mail, phone or internal id)
            purpose: Consent purpose
            granted: True for a grant, False for a revocation
            source: Origin channel (webhook, ui, api, ...)
            actor: Who recorded the change
            ip_address: Client IP address
            user_agent: Client user agent string
            recorded_at: When the subject gave or withdrew consent (default: now)

        Returns:
            The persisted ConsentRecord

        Raises:
            ValidationError: If subject, purpose or source are malformed
            AuditWriteFailure: If the audit event could not be written;
                the consent record is rolled back
        """
        purpose = parse_enum(ConsentPurpose, purpose, "purpose")
        subject = _require_text(subject, "subject", MAX_SUBJECT_LENGTH)
        source = _require_text(source, "source", MAX_SOURCE_LENGTH)
        if not isinstance(granted, bool):
            raise ValidationError("granted must be a boolean", field="granted")

        recorded_at = recorded_at or utc_now()
        if recorded_at.tzinfo is None:
            raise ValidationError("recorded_at must be timezone-aware", field="recorded_at")

        async with self._session_factory() as session, session.begin():
            record = ConsentRecord(
                tenant_id=tenant_id,
                subject=subject,
                purpose=purpose.value,
                granted=granted,
                source=source,
                actor=actor,
                recorded_at=recorded_at,
                expires_at=recorded_at + timedelta(days=self._config.validity_days),
                ip_address=ip_address,
                user_agent=user_agent,
            )
            session.add(record)
            await session.flush()

            await AuditTrail(session, self._masker).append(
                AuditAction.CONSENT_RECORDED,
                actor=actor,
                target_type="consent_record",
                target_id=str(record.consent_id),
                tenant_id=tenant_id,
                payload={
                    "subject": subject,
                    "purpose": purpose.value,
                    "granted": granted,
                    "source": source,
                    "expires_at": record.expires_at,
                },
                ip_address=ip_address,
                user_agent=user_agent,
            )

        logger.info(
            "consent_recorded",
            tenant_id=str(tenant_id),
            consent_id=str(record.consent_id),
            purpose=purpose.value,
            granted=granted,
        )
        return record

    async def current_status(
        self,
        tenant_id: UUID,
        subject: str,
        purpose: ConsentPurpose | str,
        as_of: datetime | None = None,
    ) -> ConsentStatus | None:
        """Current consent state for (subject, purpose).

        Returns:
            The status from the newest record, or None (unknown) when there
            is no record or the newest one has expired
        """
        purpose = parse_enum(ConsentPurpose, purpose, "purpose")
        as_of = as_of or utc_now()

        async with self._session_factory() as session:
            result = await session.execute(
                select(ConsentRecord)
                .where(
                    ConsentRecord.tenant_id == tenant_id,
                    ConsentRecord.subject == subject,
                    ConsentRecord.purpose == purpose.value,
                    ConsentRecord.recorded_at <= as_of,
                )
                .order_by(ConsentRecord.recorded_at.desc(), ConsentRecord.consent_id.desc())
                .limit(1)
            )
            latest = result.scalar_one_or_none()

        if latest is None or latest.expires_at <= as_of:
            return None

        return ConsentStatus(
            purpose=purpose,
            granted=latest.granted,
            granted_at=latest.recorded_at,
            expires_at=latest.expires_at,
            source=latest.source,
        )

    async def has_valid_consent(
        self,
        tenant_id: UUID,
        subject: str,
        purpose: ConsentPurpose | str,
        as_of: datetime | None = None,
    ) -> bool:
        """True only for a current, unexpired grant."""
        status = await self.current_status(tenant_id, subject, purpose, as_of)
        return status is not None and status.granted

    async def history(
        self,
        tenant_id: UUID,
        subject: str,
        purpose: ConsentPurpose | str | None = None,
        limit: int = 100,
    ) -> list[ConsentRecord]:
        """Consent records for a subject, newest first."""
        query = select(ConsentRecord).where(
            ConsentRecord.tenant_id == tenant_id,
            ConsentRecord.subject == subject,
        )
        if purpose is not None:
            query = query.where(
                ConsentRecord.purpose == parse_enum(ConsentPurpose, purpose, "purpose").value
            )
        query = query.order_by(
            ConsentRecord.recorded_at.desc(), ConsentRecord.consent_id.desc()
        ).limit(min(limit, 1000))

        async with self._session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def count_by_purpose(self, tenant_id: UUID) -> dict[str, int]:
        """Number of consent records per purpose."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(ConsentRecord.purpose, func.count())
                .where(ConsentRecord.tenant_id == tenant_id)
                .group_by(ConsentRecord.purpose)
            )
            return {purpose: count for purpose, count in result.all()}


def _require_text(value: str, field: str, max_length: int) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required", field=field)
    value = value.strip()
    if len(value) > max_length:
        raise ValidationError(f"{field} exceeds {max_length} characters", field=field)
    return value
