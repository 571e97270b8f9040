"""Pytest fixtures for compliance engine tests."""

from collections.abc import AsyncGenerator
from datetime import UTC, datetime
from typing import Any

import pytest
import pytest_asyncio
import structlog
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from atende_compliance.compliance.config import (
    AuditConfig,
    CleanupConfig,
    ComplianceConfig,
    DsrConfig,
)
from atende_compliance.compliance.engine import ComplianceEngine
from atende_compliance.compliance.providers import InMemoryRecordProvider, RecordProviderRegistry
from atende_compliance.compliance.tenants import SqlTenantDirectory, TenantInfo
from atende_compliance.compliance.types import DsrKind, PlanTier
from atende_compliance.config.settings import Settings
from atende_compliance.core.audit import PayloadMasker
from atende_compliance.core.locks import InMemoryLeaseLock
from atende_compliance.db.config import (
    close_db,
    create_database_engine,
    create_schema,
    create_session_factory,
)


# =============================================================================
# Structlog Configuration Fixture
# =============================================================================


@pytest.fixture(scope="function", autouse=True)
def reset_structlog_after_test():
    """Reset structlog configuration after each test.

    This ensures tests that modify structlog global state
    don't affect other tests.
    """
    yield
    structlog.reset_defaults()
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )


# =============================================================================
# Helpers
# =============================================================================


class RecordingSink:
    """Notification sink that keeps every notification for assertions."""

    def __init__(self):
        self.notifications: list[tuple[str, dict[str, Any]]] = []

    async def notify(self, event: str, payload: dict[str, Any]) -> None:
        self.notifications.append((event, payload))

    def events(self) -> list[str]:
        return [event for event, _ in self.notifications]


class StaticExporter:
    """Export builder returning a fixed bundle reference."""

    def __init__(self, bundle_ref: str = "exports/bundle-1.zip"):
        self.bundle_ref = bundle_ref
        self.calls: list[tuple[Any, str, DsrKind]] = []

    async def build_export(self, tenant_id, subject: str, kind: DsrKind) -> str:
        self.calls.append((tenant_id, subject, kind))
        return self.bundle_ref


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# =============================================================================
# Settings and configuration
# =============================================================================


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Settings for an isolated SQLite database."""
    return Settings(
        ENVIRONMENT="test",
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path}/compliance.db",
        log_level="DEBUG",
        LOCK_BACKEND="memory",
    )


@pytest.fixture
def compliance_config() -> ComplianceConfig:
    """Default policy with one tenant at a time (SQLite has a single writer)."""
    return ComplianceConfig(cleanup=CleanupConfig(max_concurrent_tenants=1))


@pytest.fixture
def masker() -> PayloadMasker:
    return PayloadMasker.from_config(AuditConfig())


@pytest.fixture
def now() -> datetime:
    return datetime(2026, 6, 1, 12, 0, tzinfo=UTC)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest_asyncio.fixture
async def db_engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine, None]:
    """Create a test database engine with the full schema."""
    engine = create_database_engine(settings=test_settings)
    await create_schema(engine)
    yield engine
    await close_db(engine)


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(db_engine)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


# =============================================================================
# Engine fixtures
# =============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def lease_lock() -> InMemoryLeaseLock:
    return InMemoryLeaseLock()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def exporter() -> StaticExporter:
    return StaticExporter()


@pytest.fixture
def messages() -> InMemoryRecordProvider:
    return InMemoryRecordProvider("messages")


@pytest.fixture
def tickets() -> InMemoryRecordProvider:
    return InMemoryRecordProvider("tickets")


@pytest.fixture
def tenant_directory(
    session_factory: async_sessionmaker[AsyncSession],
    masker: PayloadMasker,
) -> SqlTenantDirectory:
    return SqlTenantDirectory(session_factory, masker)


@pytest_asyncio.fixture
async def tenant(tenant_directory: SqlTenantDirectory) -> TenantInfo:
    return await tenant_directory.create_tenant("Acme Atendimento", "acme", PlanTier.FREE)


@pytest.fixture
def make_engine(
    session_factory: async_sessionmaker[AsyncSession],
    compliance_config: ComplianceConfig,
    lease_lock: InMemoryLeaseLock,
    tenant_directory: SqlTenantDirectory,
    messages: InMemoryRecordProvider,
    tickets: InMemoryRecordProvider,
    sink: RecordingSink,
    exporter: StaticExporter,
):
    """Factory building a ComplianceEngine, optionally overriding config sections."""

    def _make(
        *,
        providers: list[InMemoryRecordProvider] | None = None,
        with_exporter: bool = True,
        rectifier: Any = None,
        **overrides: Any,
    ) -> ComplianceEngine:
        config = compliance_config.model_copy(update=overrides)
        return ComplianceEngine(
            config=config,
            session_factory=session_factory,
            lock=lease_lock,
            tenants=tenant_directory,
            registry=RecordProviderRegistry(providers if providers is not None else [messages, tickets]),
            notification_sink=sink,
            exporter=exporter if with_exporter else None,
            rectifier=rectifier,
        )

    return _make


@pytest.fixture
def engine(make_engine) -> ComplianceEngine:
    return make_engine()


@pytest.fixture
def auto_approving_engine(make_engine) -> ComplianceEngine:
    return make_engine(dsr=DsrConfig(auto_approval_enabled=True))
