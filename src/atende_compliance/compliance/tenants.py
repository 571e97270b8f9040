"""Tenant directory: which tenants are active and on which plan."""

from dataclasses import dataclass
from typing import Protocol
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from atende_compliance.compliance.types import PlanTier, parse_enum
from atende_compliance.core.audit import AuditTrail, PayloadMasker
from atende_compliance.core.exceptions import TenantNotFoundError
from atende_compliance.db.models.audit import AuditAction
from atende_compliance.db.models.tenant import Tenant


@dataclass(frozen=True)
class TenantInfo:
    """Snapshot of a tenant as seen by the scheduler and reporting."""

    tenant_id: UUID
    plan: PlanTier
    is_active: bool = True


class TenantDirectory(Protocol):
    """Source of tenants and their plan tiers."""

    async def list_active(self) -> list[TenantInfo]:
        ...

    async def get(self, tenant_id: UUID) -> TenantInfo | None:
        ...


def _to_info(tenant: Tenant) -> TenantInfo:
    return TenantInfo(
        tenant_id=tenant.tenant_id,
        plan=PlanTier(tenant.plan),
        is_active=tenant.is_active,
    )


class SqlTenantDirectory:
    """Tenant directory backed by the ``tenants`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], masker: PayloadMasker):
        self._session_factory = session_factory
        self._masker = masker

    async def create_tenant(
        self,
        name: str,
        slug: str,
        plan: PlanTier | str = PlanTier.FREE,
        actor: str = "system",
    ) -> TenantInfo:
        """Create a tenant. The creation is audit-logged.

        Raises:
            ValidationError: If the plan tier is unknown
            IntegrityError: If slug already exists
        """
        tier = parse_enum(PlanTier, plan, "plan")
        async with self._session_factory() as session, session.begin():
            tenant = Tenant(name=name, slug=slug.lower(), plan=tier.value, is_active=True)
            session.add(tenant)
            await session.flush()

            await AuditTrail(session, self._masker).append(
                AuditAction.TENANT_CREATED,
                actor=actor,
                target_type="tenant",
                target_id=str(tenant.tenant_id),
                tenant_id=tenant.tenant_id,
                payload={"name": name, "slug": slug.lower(), "plan": tier.value},
            )
            return _to_info(tenant)

    async def list_active(self) -> list[TenantInfo]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Tenant).where(Tenant.is_active.is_(True)).order_by(Tenant.created_at)
            )
            return [_to_info(t) for t in result.scalars().all()]

    async def get(self, tenant_id: UUID) -> TenantInfo | None:
        async with self._session_factory() as session:
            tenant = await session.get(Tenant, tenant_id)
            return _to_info(tenant) if tenant is not None else None

    async def get_or_raise(self, tenant_id: UUID) -> TenantInfo:
        """Get an active tenant.

        Raises:
            TenantNotFoundError: If the tenant does not exist or is inactive
        """
        info = await self.get(tenant_id)
        if info is None or not info.is_active:
            raise TenantNotFoundError(tenant_id)
        return info
