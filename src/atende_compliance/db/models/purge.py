"""Purge run bookkeeping models."""

from datetime import datetime
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from uuid_utils.compat import uuid7

from .base import AppendOnlyMixin, Base, PortableUUID, UTCDateTime, utc_now


class PurgeRun(Base):
    """One execution of the retention scheduler against one tenant."""

    __tablename__ = "purge_runs"

    run_id: Mapped[UUID] = mapped_column(PortableUUID(), primary_key=True, default=uuid7)
    tenant_id: Mapped[UUID] = mapped_column(PortableUUID(), nullable=False)
    plan: Mapped[str] = mapped_column(String(20), nullable=False)
    cutoff: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    trigger: Mapped[str] = mapped_column(String(20), nullable=False, default="scheduled")
    status: Mapped[str] = mapped_column(String(30), nullable=False)

    candidates: Mapped[int] = mapped_column(nullable=False, default=0)
    purged: Mapped[int] = mapped_column(nullable=False, default=0)
    not_found: Mapped[int] = mapped_column(nullable=False, default=0)
    failed: Mapped[int] = mapped_column(nullable=False, default=0)
    skipped: Mapped[int] = mapped_column(nullable=False, default=0)

    started_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utc_now, nullable=False)
    finished_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    __table_args__ = (Index("idx_purge_run_tenant_status", "tenant_id", "status"),)

    def __repr__(self) -> str:
        return f"<PurgeRun(id={self.run_id}, tenant={self.tenant_id}, status={self.status})>"


class PurgeRunItem(AppendOnlyMixin, Base):
    """Outcome of one purge attempt on one record within a run."""

    __tablename__ = "purge_run_items"

    item_id: Mapped[UUID] = mapped_column(PortableUUID(), primary_key=True, default=uuid7)
    run_id: Mapped[UUID] = mapped_column(
        PortableUUID(), ForeignKey("purge_runs.run_id"), nullable=False
    )
    tenant_id: Mapped[UUID] = mapped_column(PortableUUID(), nullable=False)
    record_type: Mapped[str] = mapped_column(String(50), nullable=False)
    record_id: Mapped[str] = mapped_column(String(255), nullable=False)
    outcome: Mapped[str] = mapped_column(String(20), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    attempted_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utc_now, nullable=False)

    __table_args__ = (
        Index("idx_purge_item_record", "tenant_id", "record_type", "record_id"),
        Index("idx_purge_item_run", "run_id"),
    )
