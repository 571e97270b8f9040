"""Data subject request model."""

from datetime import datetime
from uuid import UUID

from sqlalchemy import Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from uuid_utils.compat import uuid7

from .base import Base, PortableJSON, PortableUUID, TimestampMixin, UTCDateTime


class DsrRequest(TimestampMixin, Base):
    """A data subject request and its lifecycle state.

    Status changes are owned by the DSR lifecycle manager; every change
    has a matching audit event.
    """

    __tablename__ = "dsr_requests"

    dsr_id: Mapped[UUID] = mapped_column(PortableUUID(), primary_key=True, default=uuid7)
    tenant_id: Mapped[UUID] = mapped_column(PortableUUID(), nullable=False)

    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    requester_contact: Mapped[str] = mapped_column(String(255), nullable=False)
    subject: Mapped[str] = mapped_column(String(255), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    reviewer: Mapped[str | None] = mapped_column(String(255), nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    # Export bundle reference or purge summary
    result: Mapped[dict | None] = mapped_column(PortableJSON(), nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    attempts: Mapped[int] = mapped_column(nullable=False, default=0)

    __table_args__ = (
        Index("idx_dsr_tenant_status", "tenant_id", "status"),
        Index("idx_dsr_created", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<DsrRequest(id={self.dsr_id}, kind={self.kind}, status={self.status})>"
