"""Registry of domain record providers.

Domain modules (messages, tickets, contacts, ...) register a provider that
can enumerate their stale or subject-owned records and purge them. The
engine never touches domain tables directly.
"""

from collections.abc import Iterable, Iterator
from datetime import datetime
from uuid import UUID

from atende_compliance.compliance.types import RecordProvider, RecordRef
from atende_compliance.core.exceptions import ValidationError
from atende_compliance.core.logging import get_logger

logger = get_logger(__name__)


class RecordProviderRegistry:
    """Record providers keyed by record type."""

    def __init__(self, providers: Iterable[RecordProvider] = ()):
        self._providers: dict[str, RecordProvider] = {}
        for provider in providers:
            self.register(provider)

    def register(self, provider: RecordProvider) -> None:
        """Register a provider.

        Raises:
            ValidationError: If another provider already owns the record type
        """
        record_type = provider.record_type
        if record_type in self._providers:
            raise ValidationError(
                f"Record type '{record_type}' is already registered", field="record_type"
            )
        self._providers[record_type] = provider
        logger.info("record_provider_registered", record_type=record_type)

    def get(self, record_type: str) -> RecordProvider:
        """Look up the provider for a record type.

        Raises:
            ValidationError: If the record type is unknown
        """
        try:
            return self._providers[record_type]
        except KeyError as e:
            raise ValidationError(
                f"Unknown record type: {record_type}", field="record_type"
            ) from e

    @property
    def record_types(self) -> list[str]:
        return list(self._providers)

    def __iter__(self) -> Iterator[RecordProvider]:
        return iter(list(self._providers.values()))

    def __len__(self) -> int:
        return len(self._providers)


class InMemoryRecordProvider:
    """Provider over an in-memory table, for tests and local development.

    Records are keyed by tenant and record id, so two tenants may reuse
    the same id.

    Args:
        record_type: Type name reported to the engine
        redact: Keep purged records (flagged as redacted) instead of
            removing them, like a domain that blanks message bodies
    """

    def __init__(self, record_type: str, redact: bool = False):
        self.record_type = record_type
        self.redact = redact
        self._records: dict[tuple[UUID, str], RecordRef] = {}
        self._redacted: set[tuple[UUID, str]] = set()
        self.purge_calls: list[str] = []

    @property
    def redacted(self) -> set[str]:
        return {record_id for _, record_id in self._redacted}

    def add(
        self,
        tenant_id: UUID,
        record_id: str,
        last_activity_at: datetime,
        subject: str | None = None,
    ) -> RecordRef:
        ref = RecordRef(
            record_type=self.record_type,
            record_id=record_id,
            tenant_id=tenant_id,
            last_activity_at=last_activity_at,
            subject=subject,
        )
        self._records[(tenant_id, record_id)] = ref
        return ref

    def exists(self, record_id: str, tenant_id: UUID | None = None) -> bool:
        """Whether a live record with this id exists, in any tenant unless one is given."""
        return any(
            key not in self._redacted
            for key in self._records
            if key[1] == record_id and (tenant_id is None or key[0] == tenant_id)
        )

    async def list_stale(self, tenant_id: UUID, cutoff: datetime) -> list[RecordRef]:
        return [
            ref
            for ref in self._records.values()
            if ref.tenant_id == tenant_id
            and ref.last_activity_at is not None
            and ref.last_activity_at < cutoff
        ]

    async def list_for_subject(self, tenant_id: UUID, subject: str) -> list[RecordRef]:
        return [
            ref
            for ref in self._records.values()
            if ref.tenant_id == tenant_id and ref.subject == subject
        ]

    async def delete_or_redact(self, ref: RecordRef) -> bool:
        self.purge_calls.append(ref.record_id)
        key = (ref.tenant_id, ref.record_id)
        if key not in self._records or key in self._redacted:
            return False
        if self.redact:
            self._redacted.add(key)
        else:
            del self._records[key]
        return True
