"""Unit tests for the consent ledger."""

from datetime import UTC, datetime, timedelta
from unittest.mock import patch

import pytest
from sqlalchemy import func, select
from uuid_utils.compat import uuid7

from atende_compliance.compliance.config import ConsentConfig
from atende_compliance.compliance.consent import ConsentLedger
from atende_compliance.compliance.types import ConsentPurpose
from atende_compliance.core.audit import AuditTrail
from atende_compliance.core.exceptions import AuditWriteFailure, ValidationError
from atende_compliance.db.models.audit import AuditAction, AuditEvent
from atende_compliance.db.models.consent import ConsentRecord


@pytest.fixture
def ledger(session_factory, masker) -> ConsentLedger:
    return ConsentLedger(session_factory, ConsentConfig(validity_days=365), masker)


class TestRecordConsent:
    """Tests for ConsentLedger.record."""

    @pytest.mark.asyncio
    async def test_grant_is_persisted_and_audited(self, ledger, session_factory):
        """Test a grant writes one record and one audit event."""
        tenant_id = uuid7()
        recorded_at = datetime(2026, 1, 10, 9, 0, tzinfo=UTC)

        record = await ledger.record(
            tenant_id,
            "ana@example.com",
            "marketing",
            True,
            "webhook",
            actor="api",
            ip_address="10.0.0.1",
            recorded_at=recorded_at,
        )

        assert record.purpose == ConsentPurpose.MARKETING.value
        assert record.granted is True
        assert record.expires_at == recorded_at + timedelta(days=365)

        async with session_factory() as session:
            events = list(
                (
                    await session.execute(
                        select(AuditEvent).where(AuditEvent.target_id == str(record.consent_id))
                    )
                ).scalars()
            )

        assert len(events) == 1
        assert events[0].action == AuditAction.CONSENT_RECORDED.value
        assert events[0].ip_address is None
        assert events[0].payload["granted"] is True
        assert events[0].payload["purpose"] == "marketing"
        assert "subject" not in events[0].payload
        assert "ana@example.com" not in str(events[0].payload)

    @pytest.mark.asyncio
    async def test_unknown_purpose_rejected(self, ledger, session_factory):
        """Test nothing is written for an unknown purpose."""
        with pytest.raises(ValidationError) as exc_info:
            await ledger.record(uuid7(), "ana@example.com", "profiling", True, "ui")

        assert exc_info.value.field == "purpose"
        async with session_factory() as session:
            count = await session.scalar(select(func.count()).select_from(ConsentRecord))
        assert count == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("subject", "source", "field"),
        [("", "ui", "subject"), ("   ", "ui", "subject"), ("ana", "", "source"), ("ana", "x" * 51, "source")],
    )
    async def test_malformed_input_rejected(self, ledger, subject, source, field):
        with pytest.raises(ValidationError) as exc_info:
            await ledger.record(uuid7(), subject, ConsentPurpose.ANALYTICS, True, source)

        assert exc_info.value.field == field

    @pytest.mark.asyncio
    async def test_naive_timestamp_rejected(self, ledger):
        with pytest.raises(ValidationError, match="timezone-aware"):
            await ledger.record(
                uuid7(), "ana", "marketing", True, "ui", recorded_at=datetime(2026, 1, 1)
            )

    @pytest.mark.asyncio
    async def test_audit_failure_rolls_back_record(self, ledger, session_factory):
        """Test a consent change without its audit event is never committed."""
        failure = AuditWriteFailure(AuditAction.CONSENT_RECORDED.value, "disk full")

        with patch.object(AuditTrail, "append", side_effect=failure):
            with pytest.raises(AuditWriteFailure):
                await ledger.record(uuid7(), "ana@example.com", "marketing", True, "ui")

        async with session_factory() as session:
            count = await session.scalar(select(func.count()).select_from(ConsentRecord))
        assert count == 0


class TestCurrentStatus:
    """Tests for ConsentLedger.current_status."""

    @pytest.mark.asyncio
    async def test_no_record_is_unknown(self, ledger):
        assert await ledger.current_status(uuid7(), "ana", "marketing") is None

    @pytest.mark.asyncio
    async def test_latest_record_wins(self, ledger):
        """Test grant then revoke yields a revoked status."""
        tenant_id = uuid7()
        t0 = datetime(2026, 1, 1, tzinfo=UTC)
        await ledger.record(tenant_id, "ana", "marketing", True, "ui", recorded_at=t0)
        await ledger.record(
            tenant_id, "ana", "marketing", False, "ui", recorded_at=t0 + timedelta(days=3)
        )

        status = await ledger.current_status(
            tenant_id, "ana", "marketing", as_of=t0 + timedelta(days=5)
        )

        assert status is not None
        assert status.granted is False
        assert status.granted_at == t0 + timedelta(days=3)
        assert not await ledger.has_valid_consent(
            tenant_id, "ana", "marketing", as_of=t0 + timedelta(days=5)
        )

    @pytest.mark.asyncio
    async def test_as_of_ignores_later_records(self, ledger):
        """Test the state is evaluated at a point in time."""
        tenant_id = uuid7()
        t0 = datetime(2026, 1, 1, tzinfo=UTC)
        await ledger.record(tenant_id, "ana", "analytics", True, "ui", recorded_at=t0)
        await ledger.record(
            tenant_id, "ana", "analytics", False, "ui", recorded_at=t0 + timedelta(days=10)
        )

        assert await ledger.has_valid_consent(
            tenant_id, "ana", "analytics", as_of=t0 + timedelta(days=1)
        )

    @pytest.mark.asyncio
    async def test_expired_grant_is_unknown(self, ledger):
        """Test a grant older than the validity window reads as unknown."""
        tenant_id = uuid7()
        t0 = datetime(2025, 1, 1, tzinfo=UTC)
        await ledger.record(tenant_id, "ana", "marketing", True, "ui", recorded_at=t0)

        before = await ledger.current_status(
            tenant_id, "ana", "marketing", as_of=t0 + timedelta(days=364)
        )
        at_expiry = await ledger.current_status(
            tenant_id, "ana", "marketing", as_of=t0 + timedelta(days=365)
        )
        after = await ledger.current_status(
            tenant_id, "ana", "marketing", as_of=t0 + timedelta(days=366)
        )

        assert before is not None and before.granted is True
        assert at_expiry is None
        assert after is None

    @pytest.mark.asyncio
    async def test_purposes_and_tenants_are_independent(self, ledger):
        tenant_a, tenant_b = uuid7(), uuid7()
        await ledger.record(tenant_a, "ana", "marketing", True, "ui")

        assert await ledger.has_valid_consent(tenant_a, "ana", "marketing")
        assert not await ledger.has_valid_consent(tenant_a, "ana", "analytics")
        assert not await ledger.has_valid_consent(tenant_b, "ana", "marketing")


class TestHistory:
    """Tests for history and counts."""

    @pytest.mark.asyncio
    async def test_history_newest_first(self, ledger):
        tenant_id = uuid7()
        t0 = datetime(2026, 1, 1, tzinfo=UTC)
        for days, granted in ((0, True), (1, False), (2, True)):
            await ledger.record(
                tenant_id, "ana", "marketing", granted, "ui", recorded_at=t0 + timedelta(days=days)
            )
        await ledger.record(tenant_id, "ana", "analytics", True, "ui", recorded_at=t0)

        history = await ledger.history(tenant_id, "ana", purpose="marketing")

        assert [r.granted for r in history] == [True, False, True]
        assert history[0].recorded_at == t0 + timedelta(days=2)
        assert len(await ledger.history(tenant_id, "ana")) == 4

    @pytest.mark.asyncio
    async def test_count_by_purpose(self, ledger):
        tenant_id = uuid7()
        await ledger.record(tenant_id, "ana", "marketing", True, "ui")
        await ledger.record(tenant_id, "bia", "marketing", False, "ui")
        await ledger.record(tenant_id, "ana", "necessary", True, "ui")

        assert await ledger.count_by_purpose(tenant_id) == {"marketing": 2, "necessary": 1}
