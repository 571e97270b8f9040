"""Types and collaborator interfaces for the compliance engine.

Defines the enumerations shared by the consent ledger, the DSR lifecycle,
the purge executor and the scheduler, together with the protocols the
domain modules implement (record providers, exporter, notification sink).
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Protocol, TypeVar, runtime_checkable
from uuid import UUID

from pydantic import BaseModel

from atende_compliance.core.exceptions import ValidationError


class PlanTier(str, Enum):
    """Subscription tier of a tenant."""

    FREE = "free"
    PRO = "pro"
    BUSINESS = "business"


class ConsentPurpose(str, Enum):
    """Category a consent grant or revocation applies to."""

    NECESSARY = "necessary"
    MARKETING = "marketing"
    ANALYTICS = "analytics"
    FUNCTIONAL = "functional"


class DsrKind(str, Enum):
    """Kind of data subject request."""

    ACCESS = "access"
    ERASURE = "erasure"
    PORTABILITY = "portability"
    RECTIFICATION = "rectification"


class DsrStatus(str, Enum):
    """Lifecycle status of a data subject request."""

    REQUESTED = "requested"
    IN_REVIEW = "in_review"
    APPROVED = "approved"
    PROCESSING = "processing"
    COMPLETED = "completed"
    REJECTED = "rejected"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Terminal requests can only be superseded by a new request."""
        return self in (DsrStatus.COMPLETED, DsrStatus.REJECTED)


TERMINAL_DSR_STATUSES = frozenset({DsrStatus.COMPLETED, DsrStatus.REJECTED})


class PurgeOutcomeStatus(str, Enum):
    """Outcome of purging a single record."""

    SUCCESS = "success"
    NOT_FOUND = "not_found"  # Already gone, idempotent no-op
    FAILED = "failed"  # Retryable


class PurgeRunStatus(str, Enum):
    """Status of one scheduler execution against one tenant."""

    RUNNING = "running"
    COMPLETED = "completed"
    COMPLETED_WITH_FAILURES = "completed_with_failures"
    INTERRUPTED = "interrupted"


class PurgeTrigger(str, Enum):
    """What started a purge run."""

    SCHEDULED = "scheduled"
    MANUAL = "manual"


E = TypeVar("E", bound=Enum)


def parse_enum(enum_cls: type[E], value: E | str, field_name: str) -> E:
    """Coerce a string into an enum member.

    Args:
        enum_cls: Target enum class
        value: Enum member or its value (case-insensitive)
        field_name: Field name reported on failure

    Returns:
        The enum member

    Raises:
        ValidationError: If the value is not a member
    """
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).lower())
    except ValueError as e:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(
            f"Unknown {field_name} '{value}' (expected one of: {allowed})",
            field=field_name,
        ) from e


@dataclass(frozen=True)
class RecordRef:
    """Reference to a domain record eligible for purge."""

    record_type: str
    record_id: str
    tenant_id: UUID
    last_activity_at: datetime | None = None
    subject: str | None = None


@dataclass
class PurgeOutcome:
    """Result of one purge invocation."""

    record_type: str
    record_id: str
    status: PurgeOutcomeStatus
    reason: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == PurgeOutcomeStatus.SUCCESS

    @property
    def failed(self) -> bool:
        return self.status == PurgeOutcomeStatus.FAILED


@dataclass
class PurgeSummary:
    """Aggregated outcomes for an erasure or a purge run."""

    purged: int = 0
    not_found: int = 0
    failed: int = 0
    failures: list[dict[str, str]] = field(default_factory=list)

    def add(self, outcome: PurgeOutcome) -> None:
        """Account for one outcome."""
        if outcome.status == PurgeOutcomeStatus.SUCCESS:
            self.purged += 1
        elif outcome.status == PurgeOutcomeStatus.NOT_FOUND:
            self.not_found += 1
        else:
            self.failed += 1
            self.failures.append(
                {
                    "record_type": outcome.record_type,
                    "record_id": outcome.record_id,
                    "reason": outcome.reason or "unknown",
                }
            )

    @property
    def has_failures(self) -> bool:
        return self.failed > 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "purged": self.purged,
            "not_found": self.not_found,
            "failed": self.failed,
            "failures": list(self.failures),
        }


class ConsentStatus(BaseModel):
    """Current consent state for a (subject, purpose) pair."""

    purpose: ConsentPurpose
    granted: bool
    granted_at: datetime
    expires_at: datetime
    source: str


# =============================================================================
# Collaborator protocols
# =============================================================================


@runtime_checkable
class RecordProvider(Protocol):
    """Domain module capability to enumerate and purge its records.

    Implementations must treat deletion of a parent record and its
    dependents as one operation: either everything is removed or the call
    fails (raise PurgeFailure or any exception) leaving nothing orphaned.
    """

    record_type: str

    async def list_stale(self, tenant_id: UUID, cutoff: datetime) -> list[RecordRef]:
        """Records whose last activity is strictly older than cutoff."""
        ...

    async def list_for_subject(self, tenant_id: UUID, subject: str) -> list[RecordRef]:
        """Records that belong to a single data subject."""
        ...

    async def delete_or_redact(self, ref: RecordRef) -> bool:
        """Purge the record. Returns False if it no longer exists."""
        ...


class ExportBuilder(Protocol):
    """Assembles an export bundle for ACCESS and PORTABILITY requests."""

    async def build_export(self, tenant_id: UUID, subject: str, kind: DsrKind) -> str:
        """Build the bundle and return a reference to it."""
        ...


class Rectifier(Protocol):
    """Applies a rectification request to domain data."""

    async def rectify(self, tenant_id: UUID, subject: str, details: str | None) -> dict[str, Any]:
        """Apply the correction and return a result payload."""
        ...


class NotificationSink(Protocol):
    """Delivers operator notifications."""

    async def notify(self, event: str, payload: dict[str, Any]) -> None:
        ...
