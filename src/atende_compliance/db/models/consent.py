"""Consent ledger model."""

from datetime import datetime
from uuid import UUID

from sqlalchemy import Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from uuid_utils.compat import uuid7

from .base import AppendOnlyMixin, Base, PortableUUID, UTCDateTime


class ConsentRecord(AppendOnlyMixin, Base):
    """One grant or revocation of consent.

    Revocation is a new row with granted=False; rows are never changed.
    The current state for (subject, purpose) is the newest row.
    """

    __tablename__ = "consent_records"

    consent_id: Mapped[UUID] = mapped_column(PortableUUID(), primary_key=True, default=uuid7)
    tenant_id: Mapped[UUID] = mapped_column(PortableUUID(), nullable=False)
    subject: Mapped[str] = mapped_column(String(255), nullable=False)
    purpose: Mapped[str] = mapped_column(String(20), nullable=False)
    granted: Mapped[bool] = mapped_column(nullable=False)
    source: Mapped[str] = mapped_column(String(50), nullable=False)
    actor: Mapped[str] = mapped_column(String(255), nullable=False)

    recorded_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("idx_consent_lookup", "tenant_id", "subject", "purpose", "recorded_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<ConsentRecord(id={self.consent_id}, purpose={self.purpose}, "
            f"granted={self.granted})>"
        )
