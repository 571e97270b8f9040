"""Unit tests for the purge executor and provider registry."""

from datetime import UTC, datetime, timedelta

import pytest
from uuid_utils.compat import uuid7

from atende_compliance.compliance.providers import InMemoryRecordProvider, RecordProviderRegistry
from atende_compliance.compliance.purge.executor import MAX_REASON_LENGTH, PurgeExecutor
from atende_compliance.compliance.types import PurgeOutcomeStatus
from atende_compliance.core.audit import AuditTrail
from atende_compliance.core.exceptions import PurgeFailure, ValidationError
from atende_compliance.db.models.audit import AuditAction, AuditSeverity

ACTIVITY = datetime(2025, 1, 1, tzinfo=UTC)


class BrokenProvider(InMemoryRecordProvider):
    def __init__(self, record_type: str, error: Exception):
        super().__init__(record_type)
        self.error = error

    async def delete_or_redact(self, ref):
        raise self.error


@pytest.fixture
def provider() -> InMemoryRecordProvider:
    return InMemoryRecordProvider("messages")


@pytest.fixture
def executor(provider, masker) -> PurgeExecutor:
    return PurgeExecutor(RecordProviderRegistry([provider]), masker)


class TestPurgeExecutor:
    """Tests for PurgeExecutor.purge."""

    @pytest.mark.asyncio
    async def test_success_then_not_found(self, executor, provider, db_session, masker):
        """Test purging twice is a no-op the second time, with one purge audit."""
        tenant_id = uuid7()
        provider.add(tenant_id, "m-1", ACTIVITY)

        first = await executor.purge(db_session, "messages", "m-1", tenant_id=tenant_id)
        second = await executor.purge(db_session, "messages", "m-1", tenant_id=tenant_id)

        assert first.status == PurgeOutcomeStatus.SUCCESS
        assert first.succeeded
        assert second.status == PurgeOutcomeStatus.NOT_FOUND
        assert not provider.exists("m-1")

        trail = AuditTrail(db_session, masker)
        assert len(await trail.query(tenant_id, AuditAction.RECORD_PURGED)) == 1
        skipped = await trail.query(tenant_id, AuditAction.RECORD_PURGE_SKIPPED)
        assert len(skipped) == 1
        assert skipped[0].payload == {"record_type": "messages", "outcome": "not_found"}

    @pytest.mark.asyncio
    async def test_redacting_provider_is_idempotent(self, masker, db_session):
        redactor = InMemoryRecordProvider("messages", redact=True)
        executor = PurgeExecutor(RecordProviderRegistry([redactor]), masker)
        tenant_id = uuid7()
        redactor.add(tenant_id, "m-1", ACTIVITY)

        first = await executor.purge(db_session, "messages", "m-1", tenant_id=tenant_id)
        second = await executor.purge(db_session, "messages", "m-1", tenant_id=tenant_id)

        assert first.status == PurgeOutcomeStatus.SUCCESS
        assert second.status == PurgeOutcomeStatus.NOT_FOUND
        assert redactor.redacted == {"m-1"}

    @pytest.mark.asyncio
    async def test_same_record_id_in_two_tenants(self, executor, provider, db_session):
        """Test purging one tenant's record leaves another tenant's record with that id."""
        tenant_a, tenant_b = uuid7(), uuid7()
        provider.add(tenant_a, "m-1", ACTIVITY)
        provider.add(tenant_b, "m-1", ACTIVITY)

        outcome = await executor.purge(db_session, "messages", "m-1", tenant_id=tenant_a)

        assert outcome.status == PurgeOutcomeStatus.SUCCESS
        assert not provider.exists("m-1", tenant_a)
        assert provider.exists("m-1", tenant_b)
        assert [r.tenant_id for r in await provider.list_stale(tenant_b, ACTIVITY + timedelta(days=1))] == [
            tenant_b
        ]

    @pytest.mark.asyncio
    async def test_purge_failure_is_an_outcome(self, masker, db_session):
        """Test provider failures are returned, never raised."""
        broken = BrokenProvider("tickets", PurgeFailure("tickets", "t-1", "row locked"))
        executor = PurgeExecutor(RecordProviderRegistry([broken]), masker)
        tenant_id = uuid7()

        outcome = await executor.purge(
            db_session, "tickets", "t-1", tenant_id=tenant_id, context={"run_id": "r-1"}
        )

        assert outcome.failed
        assert outcome.reason == "row locked"
        events = await AuditTrail(db_session, masker).query(tenant_id)
        assert len(events) == 1
        assert events[0].action == AuditAction.RECORD_PURGE_FAILED.value
        assert events[0].severity == AuditSeverity.ERROR.value
        assert events[0].payload == {
            "record_type": "tickets",
            "outcome": "failed",
            "run_id": "r-1",
            "reason": "row locked",
        }

    @pytest.mark.asyncio
    async def test_unexpected_error_is_truncated(self, masker, db_session):
        broken = BrokenProvider("tickets", RuntimeError("x" * 2000))
        executor = PurgeExecutor(RecordProviderRegistry([broken]), masker)

        outcome = await executor.purge(db_session, "tickets", "t-1", tenant_id=uuid7())

        assert outcome.status == PurgeOutcomeStatus.FAILED
        assert outcome.reason.startswith("RuntimeError: xxx")
        assert len(outcome.reason) == MAX_REASON_LENGTH

    @pytest.mark.asyncio
    async def test_reason_pii_masked_in_audit(self, masker, db_session):
        broken = BrokenProvider(
            "contacts", PurgeFailure("contacts", "c-1", "owner ana@example.com objected")
        )
        executor = PurgeExecutor(RecordProviderRegistry([broken]), masker)
        tenant_id = uuid7()

        await executor.purge(db_session, "contacts", "c-1", tenant_id=tenant_id)

        events = await AuditTrail(db_session, masker).query(tenant_id)
        assert events[0].payload["reason"] == "owner *** objected"

    @pytest.mark.asyncio
    async def test_unknown_record_type(self, executor, db_session):
        with pytest.raises(ValidationError):
            await executor.purge(db_session, "invoices", "i-1", tenant_id=uuid7())


class TestRecordProviderRegistry:
    """Tests for RecordProviderRegistry."""

    def test_register_and_get(self, provider):
        registry = RecordProviderRegistry()
        registry.register(provider)

        assert registry.get("messages") is provider
        assert registry.record_types == ["messages"]
        assert len(registry) == 1
        assert list(registry) == [provider]

    def test_duplicate_rejected(self, provider):
        registry = RecordProviderRegistry([provider])

        with pytest.raises(ValidationError, match="already registered"):
            registry.register(InMemoryRecordProvider("messages"))

    def test_unknown_type(self):
        with pytest.raises(ValidationError, match="Unknown record type"):
            RecordProviderRegistry().get("messages")


class TestInMemoryRecordProvider:
    """Tests for the in-memory provider used by tests and local setups."""

    @pytest.mark.asyncio
    async def test_list_stale_is_strict(self, provider):
        tenant_id = uuid7()
        provider.add(tenant_id, "at-cutoff", ACTIVITY)
        provider.add(tenant_id, "before", ACTIVITY - timedelta(milliseconds=1))

        stale = await provider.list_stale(tenant_id, ACTIVITY)

        assert [r.record_id for r in stale] == ["before"]

    @pytest.mark.asyncio
    async def test_list_for_subject_scoped_to_tenant(self, provider):
        tenant_a, tenant_b = uuid7(), uuid7()
        provider.add(tenant_a, "m-1", ACTIVITY, subject="ana")
        provider.add(tenant_b, "m-2", ACTIVITY, subject="ana")

        refs = await provider.list_for_subject(tenant_a, "ana")

        assert [r.record_id for r in refs] == ["m-1"]
