"""Database configuration and session management."""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from atende_compliance.config.settings import Settings, get_settings
from atende_compliance.db.models import Base


def create_database_engine(
    url: str | None = None,
    *,
    echo: bool | None = None,
    settings: Settings | None = None,
) -> AsyncEngine:
    """Create the async engine.

    Args:
        url: Database URL (default from settings)
        echo: Log SQL statements (default from settings)
        settings: Settings to read defaults from
    """
    settings = settings or get_settings()
    return create_async_engine(
        url or settings.DATABASE_URL,
        echo=settings.DATABASE_ECHO if echo is None else echo,
        poolclass=NullPool if settings.ENVIRONMENT == "test" else None,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory shared by all compliance components."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def init_db(engine: AsyncEngine) -> None:
    """Verify connectivity before accepting work."""
    async with engine.begin() as conn:
        await conn.execute(text("SELECT 1"))


async def create_schema(engine: AsyncEngine) -> None:
    """Create all tables from the ORM metadata.

    Intended for development and tests; deployments run the alembic
    migrations instead.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db(engine: AsyncEngine) -> None:
    """Release all pooled connections."""
    await engine.dispose()
