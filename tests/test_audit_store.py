"""
Audit Trail Store Tests.

Tests: hash computation, append + chain linkage, tamper detection,
retention filtering and purge, query filters, merged recent events.
"""

import pytest
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import update

from trustwatch.audit import AuditCategory, AuditEvent, AuditResult, AuditSeverity
from trustwatch.audit.schemas import MAX_RESOURCE_LENGTH
from trustwatch.audit.store import compute_entry_hash
from trustwatch.db.models import (
    ConfidentialAccessLog,
    FinancialAuditLog,
    PrivacyAuditLog,
    SecurityAuditLog,
)
from trustwatch.errors import MAX_KEY_LENGTH, ValidationError


def _event(action="LOGIN_SUCCESS", category=AuditCategory.SECURITY, **kw) -> AuditEvent:
    values = dict(
        category=category,
        action=action,
        result=AuditResult.SUCCESS,
        severity=AuditSeverity.INFO,
        actor_id="alice@example.com",
    )
    values.update(kw)
    return AuditEvent(**values)


class TestComputeEntryHash:
    ARGS = dict(
        entry_id="id", sequence=1, timestamp="ts", category="SECURITY", action="LOGIN",
        result="SUCCESS", severity="INFO", actor_id="u", details={"a": 1}, previous_hash="",
    )

    def test_deterministic(self):
        assert compute_entry_hash(**self.ARGS) == compute_entry_hash(**self.ARGS)

    def test_is_sha256_hex(self):
        h = compute_entry_hash(**self.ARGS)
        assert len(h) == 64
        int(h, 16)

    def test_previous_hash_changes_hash(self):
        assert compute_entry_hash(**self.ARGS) != compute_entry_hash(
            **{**self.ARGS, "previous_hash": "abc"}
        )

    def test_details_key_order_irrelevant(self):
        a = compute_entry_hash(**{**self.ARGS, "details": {"x": 1, "y": 2}})
        b = compute_entry_hash(**{**self.ARGS, "details": {"y": 2, "x": 1}})
        assert a == b


@pytest.mark.asyncio
class TestAppend:
    async def test_append_stamps_timestamp_and_hash(self, store, clock):
        stored = await store.append(_event())
        assert stored.timestamp == clock.now()
        assert stored.event_id is not None
        assert len(stored.entry_hash) == 64

    async def test_append_accepts_dict(self, store):
        stored = await store.append({
            "category": "PRIVACY",
            "action": "CONSENT_GIVEN",
            "result": "SUCCESS",
            "actor_id": "bob",
        })
        assert stored.category == AuditCategory.PRIVACY

    async def test_missing_actor_rejected(self, store):
        with pytest.raises(ValidationError):
            await store.append({"category": "SECURITY", "action": "X", "result": "SUCCESS"})

    async def test_blank_action_rejected(self, store):
        with pytest.raises(ValidationError):
            await store.append(
                {"category": "SECURITY", "action": "  ", "result": "SUCCESS", "actor_id": "a"}
            )

    async def test_append_pushes_to_tail(self, store):
        await store.append(_event("A"))
        await store.append(_event("B"))
        assert [e.action for e in store.tail.snapshot()] == ["B", "A"]


@pytest.mark.asyncio
class TestHashChain:
    async def test_empty_chain(self, store):
        report = await store.verify_chain(AuditCategory.SECURITY)
        assert report.status == "empty"
        assert report.chain_intact

    async def test_chain_intact_after_appends(self, store, clock):
        for i in range(5):
            await store.append(_event(f"ACTION_{i}", metadata={"i": i}))
            clock.advance(seconds=1)
        report = await store.verify_chain(AuditCategory.SECURITY)
        assert report.status == "intact"
        assert report.total_entries == 5

    async def test_chain_intact_with_identical_timestamps(self, store):
        for i in range(3):
            await store.append(_event(f"SAME_TIME_{i}"))
        report = await store.verify_chain(AuditCategory.SECURITY)
        assert report.chain_intact

    async def test_categories_chain_independently(self, store):
        await store.append(_event())
        await store.append(_event("TRANSACTION_PAYMENT", category=AuditCategory.FINANCIAL))
        events = await store.query(AuditCategory.FINANCIAL)
        rows_report = await store.verify_chain(AuditCategory.FINANCIAL)
        assert rows_report.total_entries == 1
        assert events[0].action == "TRANSACTION_PAYMENT"

    async def test_tampering_detected(self, store, database):
        await store.append(_event("LOGIN_FAILED"))
        await store.append(_event("LOGIN_SUCCESS"))

        async with database.session() as session:
            await session.execute(
                update(SecurityAuditLog)
                .where(SecurityAuditLog.sequence == 1)
                .values(action="NOTHING_TO_SEE")
            )

        report = await store.verify_chain(AuditCategory.SECURITY)
        assert report.status == "broken"
        assert report.breaks[0]["issue"] == "entry_hash_mismatch"
        assert report.breaks[0]["sequence"] == 1


@pytest.mark.asyncio
class TestRetention:
    async def test_expired_events_hidden_from_queries(self, store, clock):
        await store.append(_event())
        clock.advance(days=91)
        assert await store.query(AuditCategory.SECURITY) == []
        assert await store.count(AuditCategory.SECURITY) == 0

    async def test_financial_outlives_security(self, store, clock):
        await store.append(_event())
        await store.append(_event("TRANSACTION_PAYMENT", category=AuditCategory.FINANCIAL))
        clock.advance(days=91)
        assert await store.count(AuditCategory.FINANCIAL) == 1

    async def test_purge_removes_expired_rows(self, store, clock):
        await store.append(_event())
        await store.append(_event("CONSENT_GIVEN", category=AuditCategory.PRIVACY))
        clock.advance(days=90)

        purged = await store.purge_expired()
        assert purged["SECURITY"] == 1
        assert purged["PRIVACY"] == 0

        report = await store.verify_chain(AuditCategory.SECURITY)
        assert report.total_entries == 0

    async def test_chain_verifies_after_partial_purge(self, store, clock):
        await store.append(_event("OLD"))
        clock.advance(days=60)
        await store.append(_event("NEWER"))
        await store.append(_event("NEWEST"))
        clock.advance(days=31)

        await store.purge_expired()
        report = await store.verify_chain(AuditCategory.SECURITY)
        assert report.total_entries == 2
        assert report.chain_intact


@pytest.mark.asyncio
class TestQuery:
    async def test_time_window_and_order(self, store, clock):
        start = clock.now()
        for i in range(3):
            await store.append(_event(f"E{i}"))
            clock.advance(minutes=10)

        desc = await store.query(AuditCategory.SECURITY)
        assert [e.action for e in desc] == ["E2", "E1", "E0"]

        asc = await store.query(AuditCategory.SECURITY, order="asc", limit=2)
        assert [e.action for e in asc] == ["E0", "E1"]

        windowed = await store.query(
            AuditCategory.SECURITY, since=start.replace(minute=5), until=start.replace(minute=15)
        )
        assert [e.action for e in windowed] == ["E1"]

    async def test_filters(self, store):
        await store.append(_event("LOGIN_FAILED", result=AuditResult.FAILURE,
                                  severity=AuditSeverity.MEDIUM))
        await store.append(_event("LOGIN_SUCCESS", actor_id="bob"))

        assert await store.count(AuditCategory.SECURITY, actor_id="bob") == 1
        assert await store.count(AuditCategory.SECURITY, severity=AuditSeverity.MEDIUM) == 1
        failed = await store.query(AuditCategory.SECURITY, result=AuditResult.FAILURE)
        assert [e.action for e in failed] == ["LOGIN_FAILED"]

    async def test_invalid_order_and_limit(self, store):
        with pytest.raises(ValidationError):
            await store.query(AuditCategory.SECURITY, order="sideways")
        with pytest.raises(ValidationError):
            await store.query(AuditCategory.SECURITY, limit=0)

    async def test_count_by_action(self, store):
        for _ in range(3):
            await store.append(_event("LOGIN_FAILED"))
        await store.append(_event("LOGIN_SUCCESS"))
        assert await store.count_by_action(AuditCategory.SECURITY) == {
            "LOGIN_FAILED": 3,
            "LOGIN_SUCCESS": 1,
        }

    async def test_metadata_round_trips(self, store):
        await store.append(_event(metadata={"attempts": 3, "nested": {"ok": True}}))
        [event] = await store.query(AuditCategory.SECURITY)
        assert event.metadata == {"attempts": 3, "nested": {"ok": True}}

    async def test_recent_events_merges_categories(self, store, clock):
        await store.append(_event("FIRST"))
        clock.advance(seconds=1)
        await store.append(_event("SECOND", category=AuditCategory.FINANCIAL))
        clock.advance(seconds=1)
        await store.append(_event("THIRD", category=AuditCategory.PRIVACY))

        recent = await store.recent_events(limit=2)
        assert [e.action for e in recent] == ["THIRD", "SECOND"]

    async def test_sum_metadata(self, store):
        await store.append(_event("TRANSACTION_PAYMENT", category=AuditCategory.FINANCIAL,
                                  metadata={"amount": 10.5}))
        await store.append(_event("TRANSACTION_PAYMENT", category=AuditCategory.FINANCIAL,
                                  metadata={"amount": "4.5"}))
        await store.append(_event("TRANSACTION_NOTE", category=AuditCategory.FINANCIAL))
        assert await store.sum_metadata(AuditCategory.FINANCIAL, "amount") == 15.0


class TestColumnWidths:
    @pytest.mark.parametrize("model", [
        SecurityAuditLog, FinancialAuditLog, ConfidentialAccessLog, PrivacyAuditLog,
    ])
    def test_columns_hold_longest_valid_values(self, model):
        columns = model.__table__.c
        assert columns.actor_id.type.length == MAX_KEY_LENGTH
        assert columns.source_address.type.length == MAX_KEY_LENGTH
        assert columns.resource.type.length == MAX_RESOURCE_LENGTH

    def test_event_rejects_values_wider_than_columns(self):
        with pytest.raises(PydanticValidationError):
            _event(source_address="1" * (MAX_KEY_LENGTH + 1))
        with pytest.raises(PydanticValidationError):
            _event(resource="r" * (MAX_RESOURCE_LENGTH + 1))


@pytest.mark.asyncio
class TestWideValues:
    async def test_longest_source_and_resource_round_trip(self, store):
        await store.append(_event(source_address="2" * MAX_KEY_LENGTH, resource="r" * MAX_RESOURCE_LENGTH))
        [event] = await store.query(AuditCategory.SECURITY)
        assert event.source_address == "2" * MAX_KEY_LENGTH
        assert len(event.resource) == MAX_RESOURCE_LENGTH
