"""Unit tests for database configuration and portable column types."""

from datetime import UTC, datetime, timedelta, timezone

import pytest
from sqlalchemy import inspect
from sqlalchemy.exc import StatementError
from uuid_utils.compat import uuid7

from atende_compliance.db.config import init_db
from atende_compliance.db.models import PurgeRun
from atende_compliance.db.models.base import PortableUUID, UTCDateTime


class TestEngineSetup:
    """Tests for engine helpers."""

    @pytest.mark.asyncio
    async def test_init_db(self, db_engine):
        # Should not raise
        await init_db(db_engine)

    @pytest.mark.asyncio
    async def test_schema_has_all_tables(self, db_engine):
        async with db_engine.connect() as conn:
            tables = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())

        assert set(tables) >= {
            "tenants",
            "audit_events",
            "consent_records",
            "dsr_requests",
            "purge_runs",
            "purge_run_items",
        }


class TestUTCDateTime:
    """Tests for the UTC datetime column type."""

    def test_naive_rejected(self):
        with pytest.raises(ValueError, match="Naive datetime"):
            UTCDateTime().process_bind_param(datetime(2026, 1, 1), _Dialect("sqlite"))

    def test_stored_naive_utc_on_sqlite(self):
        sao_paulo = timezone(timedelta(hours=-3))
        value = datetime(2026, 1, 1, 9, tzinfo=sao_paulo)

        stored = UTCDateTime().process_bind_param(value, _Dialect("sqlite"))

        assert stored == datetime(2026, 1, 1, 12)

    def test_result_is_aware(self):
        loaded = UTCDateTime().process_result_value(datetime(2026, 1, 1, 12), _Dialect("sqlite"))

        assert loaded == datetime(2026, 1, 1, 12, tzinfo=UTC)
        assert loaded.tzinfo is UTC

    @pytest.mark.asyncio
    async def test_round_trip_through_database(self, db_session):
        started = datetime(2026, 1, 1, 9, tzinfo=timezone(timedelta(hours=-3)))
        run = PurgeRun(
            tenant_id=uuid7(),
            plan="free",
            cutoff=started - timedelta(days=30),
            status="running",
            started_at=started,
        )
        db_session.add(run)
        await db_session.flush()
        await db_session.refresh(run)

        assert run.started_at == started
        assert run.started_at.tzinfo == UTC

    @pytest.mark.asyncio
    async def test_naive_flush_fails(self, db_session):
        db_session.add(
            PurgeRun(
                tenant_id=uuid7(),
                plan="free",
                cutoff=datetime(2026, 1, 1),
                status="running",
            )
        )

        with pytest.raises(StatementError):
            await db_session.flush()


class TestPortableUUID:
    """Tests for the UUID column type."""

    def test_string_on_sqlite(self):
        value = uuid7()

        assert PortableUUID().process_bind_param(value, _Dialect("sqlite")) == str(value)
        assert PortableUUID().process_result_value(str(value), _Dialect("sqlite")) == value

    def test_none_passthrough(self):
        assert PortableUUID().process_bind_param(None, _Dialect("sqlite")) is None
        assert PortableUUID().process_result_value(None, _Dialect("sqlite")) is None


class _Dialect:
    def __init__(self, name: str):
        self.name = name
