"""Tenant model for multi-tenancy support."""

from uuid import UUID

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column
from uuid_utils.compat import uuid7

from .base import Base, PortableUUID, TimestampMixin


class Tenant(TimestampMixin, Base):
    """Tenant (customer organization) and its subscription plan.

    The plan tier decides the retention window applied by the purge
    scheduler.
    """

    __tablename__ = "tenants"

    tenant_id: Mapped[UUID] = mapped_column(PortableUUID(), primary_key=True, default=uuid7)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    plan: Mapped[str] = mapped_column(String(20), nullable=False, default="free")

    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)

    __table_args__ = (Index("idx_tenant_active", "is_active"),)

    def __repr__(self) -> str:
        return f"<Tenant(id={self.tenant_id}, name={self.name}, plan={self.plan})>"
