"""Base models and portable column types for SQLAlchemy."""

from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import JSON, DateTime, String, event
from sqlalchemy.dialects.postgresql import JSONB, UUID as PGUUID
from sqlalchemy.orm import DeclarativeBase, Mapped, ORMExecuteState, Session, mapped_column
from sqlalchemy.types import TypeDecorator

from atende_compliance.core.exceptions import AppendOnlyViolation


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


class PortableJSON(TypeDecorator):
    """JSON type that uses JSONB on PostgreSQL and JSON elsewhere."""

    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(JSONB())
        return dialect.type_descriptor(JSON())


class PortableUUID(TypeDecorator):
    """UUID type that uses native UUID on PostgreSQL and String elsewhere."""

    impl = String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PGUUID(as_uuid=True))
        return dialect.type_descriptor(String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if dialect.name == "postgresql":
            return value
        return str(value) if isinstance(value, UUID) else value

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, UUID):
            return value
        return UUID(value) if value else None


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime that always comes back as UTC.

    SQLite drops tzinfo, so values are stored as naive UTC there and
    re-tagged on the way out.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            raise ValueError("Naive datetime given; use timezone-aware UTC values")
        value = value.astimezone(UTC)
        if dialect.name == "postgresql":
            return value
        return value.replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class TimestampMixin:
    """Mixin for created_at/updated_at timestamps."""

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=utc_now,
        onupdate=utc_now,
        nullable=False,
    )


class AppendOnlyMixin:
    """Marks a model as insert-only.

    Flushing a modified or deleted instance, or executing an UPDATE/DELETE
    statement against the table through a Session, raises
    AppendOnlyViolation.
    """

    __append_only__ = True


def _is_append_only(cls: type) -> bool:
    return isinstance(cls, type) and issubclass(cls, AppendOnlyMixin)


@event.listens_for(AppendOnlyMixin, "before_update", propagate=True)
def _reject_update(mapper, connection, target) -> None:
    raise AppendOnlyViolation(type(target).__name__, "update")


@event.listens_for(AppendOnlyMixin, "before_delete", propagate=True)
def _reject_delete(mapper, connection, target) -> None:
    raise AppendOnlyViolation(type(target).__name__, "delete")


@event.listens_for(Session, "do_orm_execute")
def _reject_bulk_statements(orm_execute_state: ORMExecuteState) -> None:
    if not (orm_execute_state.is_update or orm_execute_state.is_delete):
        return

    operation = "update" if orm_execute_state.is_update else "delete"
    for mapper in orm_execute_state.all_mappers:
        if _is_append_only(mapper.class_):
            raise AppendOnlyViolation(mapper.class_.__name__, operation)

    table = getattr(orm_execute_state.statement, "table", None)
    if table is not None and table.name in append_only_tables():
        raise AppendOnlyViolation(table.name, operation)


def append_only_tables() -> frozenset[str]:
    """Names of every mapped table whose model is append-only."""
    return frozenset(
        mapper.local_table.name
        for mapper in Base.registry.mappers
        if _is_append_only(mapper.class_)
    )
