"""Audit event model for compliance and accountability."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from uuid_utils.compat import uuid7

from .base import AppendOnlyMixin, Base, PortableJSON, PortableUUID, UTCDateTime, utc_now


class AuditAction(str, Enum):
    """Enumerated verbs recorded in the audit trail."""

    # Consent
    CONSENT_RECORDED = "consent.recorded"

    # Data subject requests
    DSR_REQUESTED = "dsr.requested"
    DSR_REVIEW_STARTED = "dsr.review_started"
    DSR_APPROVED = "dsr.approved"
    DSR_REJECTED = "dsr.rejected"
    DSR_PROCESSING_STARTED = "dsr.processing_started"
    DSR_COMPLETED = "dsr.completed"
    DSR_FAILED = "dsr.failed"
    DSR_ABANDONED = "dsr.abandoned"

    # Purge
    RECORD_PURGED = "record.purged"
    RECORD_PURGE_SKIPPED = "record.purge_skipped"
    RECORD_PURGE_FAILED = "record.purge_failed"
    RETENTION_PURGE_RUN = "retention.purge_run"
    RETENTION_PURGE_ESCALATED = "retention.purge_escalated"

    # Tenants
    TENANT_CREATED = "tenant.created"


class AuditSeverity(str, Enum):
    """Severity levels for audit events."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class AuditEvent(AppendOnlyMixin, Base):
    """Immutable audit log entry.

    Rows are only ever inserted. The payload has already been masked
    when it reaches this model.
    """

    __tablename__ = "audit_events"

    # UUIDv7 is time-ordered, making audit events naturally sortable by ID
    audit_id: Mapped[UUID] = mapped_column(PortableUUID(), primary_key=True, default=uuid7)
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    severity: Mapped[str] = mapped_column(String(20), nullable=False, default="info")

    # Context
    tenant_id: Mapped[UUID | None] = mapped_column(
        PortableUUID(), nullable=True
    )  # null for system-wide events
    actor: Mapped[str] = mapped_column(String(255), nullable=False)
    correlation_id: Mapped[UUID | None] = mapped_column(PortableUUID(), nullable=True)

    # Target
    target_type: Mapped[str] = mapped_column(String(50), nullable=False)
    target_id: Mapped[str] = mapped_column(String(255), nullable=False)

    # Masked event data
    payload: Mapped[dict] = mapped_column(PortableJSON(), nullable=False, default=dict)

    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)  # IPv6 support
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utc_now, nullable=False)

    __table_args__ = (
        Index("idx_audit_tenant", "tenant_id"),
        Index("idx_audit_action", "action"),
        Index("idx_audit_target", "target_type", "target_id"),
        Index("idx_audit_created", "created_at"),
        Index("idx_audit_correlation", "correlation_id"),
    )

    def __repr__(self) -> str:
        return f"<AuditEvent(id={self.audit_id}, action={self.action}, target={self.target_type})>"
