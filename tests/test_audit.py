"""
Test suite for audit trail

Tests hash chaining, tamper detection, searching, and the fire-and-forget
emitter: background persistence, username resolution and the guarantee that
audit failures never reach the caller.
"""

import json

import pytest

from secbank.audit import (
    AuditAction,
    AuditEmitter,
    AuditLogRecord,
    AuditModule,
    AuditTrail,
    serialize_snapshot,
)
from secbank.storage import InMemoryStorage


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def trail(storage):
    return AuditTrail(storage)


@pytest.fixture
def emitter(trail):
    emitter = AuditEmitter(trail, username_resolver=lambda user_id: f"user-{user_id}")
    emitter.start()
    yield emitter
    emitter.stop()


class TestAuditTrail:
    """Test AuditTrail functionality"""

    def test_first_record_starts_chain(self, trail):
        record = trail.record(AuditAction.LOGIN, AuditModule.AUTHENTICATION, "User", "u1", user_id="u1")

        assert record.sequence == 1
        assert record.previous_hash == ""
        assert record.current_hash == record.calculate_hash()

    def test_records_are_chained(self, trail):
        first = trail.record(AuditAction.CREATE, AuditModule.CUSTOMER, "Customer", "c1")
        second = trail.record(AuditAction.OPEN, AuditModule.CASA, "Account", "a1")

        assert second.sequence == 2
        assert second.previous_hash == first.current_hash

    def test_chain_continues_after_reload(self, storage, trail):
        first = trail.record(AuditAction.CREATE, AuditModule.CUSTOMER, "Customer", "c1")

        reopened = AuditTrail(storage)
        second = reopened.record(AuditAction.UPDATE, AuditModule.CUSTOMER, "Customer", "c1")

        assert second.sequence == 2
        assert second.previous_hash == first.current_hash

    def test_user_agent_truncated(self, trail):
        record = trail.record(AuditAction.LOGIN, AuditModule.AUTHENTICATION, user_agent="x" * 800)
        assert len(record.user_agent) == 500

    def test_records_for_entity(self, trail):
        trail.record(AuditAction.OPEN, AuditModule.CASA, "Account", "a1")
        trail.record(AuditAction.OPEN, AuditModule.CASA, "Account", "a2")
        trail.record(AuditAction.FREEZE, AuditModule.CASA, "Account", "a1")

        records = trail.get_records_for_entity("Account", "a1")
        assert [r.action for r in records] == [AuditAction.OPEN, AuditAction.FREEZE]

    def test_search_newest_first_with_limit(self, trail):
        for entity_id in ("a1", "a2", "a3"):
            trail.record(AuditAction.OPEN, AuditModule.CASA, "Account", entity_id, user_id="u1")
        trail.record(AuditAction.LOGIN, AuditModule.AUTHENTICATION, "User", "u1", user_id="u1")

        records = trail.search(user_id="u1", module=AuditModule.CASA, limit=2)
        assert [r.entity_id for r in records] == ["a3", "a2"]

    def test_verify_integrity_valid_chain(self, trail):
        for i in range(5):
            trail.record(AuditAction.UPDATE, AuditModule.CASA, "Account", f"a{i}")

        result = trail.verify_integrity()
        assert result["valid"] is True
        assert result["total_records"] == 5

    def test_verify_integrity_detects_tampering(self, storage, trail):
        trail.record(AuditAction.OPEN, AuditModule.CASA, "Account", "a1")
        victim = trail.record(AuditAction.CLOSE, AuditModule.CASA, "Account", "a1")

        data = storage.load("audit_logs", victim.id)
        data["description"] = "nothing to see here"
        storage.save("audit_logs", victim.id, data)

        result = trail.verify_integrity()
        assert result["valid"] is False
        assert result["hash_errors"][0]["record_id"] == victim.id

    def test_verify_integrity_detects_deleted_record(self, storage, trail):
        trail.record(AuditAction.OPEN, AuditModule.CASA, "Account", "a1")
        middle = trail.record(AuditAction.FREEZE, AuditModule.CASA, "Account", "a1")
        trail.record(AuditAction.UNFREEZE, AuditModule.CASA, "Account", "a1")

        storage.delete("audit_logs", middle.id)

        result = trail.verify_integrity()
        assert result["valid"] is False
        assert len(result["chain_breaks"]) == 1


class TestSnapshotSerialization:
    """Test old/new value serialization"""

    def test_none_stays_none(self):
        assert serialize_snapshot(None) is None

    def test_dict_serialized_with_sorted_keys(self):
        assert serialize_snapshot({"b": 1, "a": 2}) == '{"a": 2, "b": 1}'

    def test_record_serialized_via_to_dict(self, trail):
        record = trail.record(AuditAction.OPEN, AuditModule.CASA, "Account", "a1")
        snapshot = json.loads(serialize_snapshot(record))
        assert snapshot["entity_id"] == "a1"


class TestAuditEmitter:
    """Test fire-and-forget emission"""

    def test_record_persisted_in_background(self, emitter, trail):
        assert emitter.log_action("u1", AuditAction.FREEZE, AuditModule.CASA, "Account", "a1",
                                  old_value={"status": "ACTIVE"}, new_value={"status": "FROZEN"},
                                  description="Account frozen") is True
        emitter.flush()

        records = trail.get_records_for_entity("Account", "a1")
        assert len(records) == 1
        record = records[0]
        assert record.username == "user-u1"
        assert json.loads(record.new_value) == {"status": "FROZEN"}
        assert record.description == "Account frozen"

    def test_no_username_lookup_without_user(self, emitter, trail):
        emitter.log_action(None, AuditAction.CREATE, AuditModule.ADMINISTRATION, "Branch", "b1")
        emitter.flush()
        assert trail.get_records_for_entity("Branch", "b1")[0].username is None

    def test_stopped_emitter_drops_without_raising(self, trail):
        emitter = AuditEmitter(trail)
        assert emitter.log_action("u1", AuditAction.LOGIN, AuditModule.AUTHENTICATION) is False
        assert trail.count() == 0

    def test_disabled_emitter_drops(self, trail):
        emitter = AuditEmitter(trail, enabled=False)
        emitter.start()
        assert emitter.log_action("u1", AuditAction.LOGIN, AuditModule.AUTHENTICATION) is False
        emitter.stop()
        assert trail.count() == 0

    def test_full_queue_drops_without_raising(self, trail):
        emitter = AuditEmitter(trail, max_queue_size=1)
        # Mark running without a worker so nothing drains the queue
        emitter._running = True

        assert emitter.log_action("u1", AuditAction.LOGIN, AuditModule.AUTHENTICATION) is True
        assert emitter.log_action("u1", AuditAction.LOGOUT, AuditModule.AUTHENTICATION) is False

    def test_persist_failure_is_contained(self, trail):
        def broken_resolver(user_id):
            raise RuntimeError("directory unavailable")

        emitter = AuditEmitter(trail, username_resolver=broken_resolver)
        emitter.start()
        try:
            assert emitter.log_action("u1", AuditAction.LOGIN, AuditModule.AUTHENTICATION) is True
            emitter.flush()
            assert emitter.is_running
            assert trail.count() == 0

            emitter.username_resolver = None
            emitter.log_action("u1", AuditAction.LOGOUT, AuditModule.AUTHENTICATION)
            emitter.flush()
            assert trail.count() == 1
        finally:
            emitter.stop()

    def test_stop_drains_pending_records(self, trail):
        emitter = AuditEmitter(trail)
        emitter.start()
        for i in range(20):
            emitter.log_action("u1", AuditAction.UPDATE, AuditModule.CASA, "Account", f"a{i}")
        emitter.stop()

        assert trail.count() == 20
        assert not emitter.is_running
