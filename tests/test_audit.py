"""
Tests for the Audit Trail Module

Validates hash chaining, tamper detection and that audit rows share the
fate of the storage transaction they were written in.
"""

import pytest
from datetime import datetime, timezone

from timelock_savings.audit import AuditTrail, AuditEvent, AuditEventType
from timelock_savings.storage import InMemoryStorage


@pytest.fixture
def audit_trail():
    return AuditTrail(InMemoryStorage())


class TestAuditChain:
    """Test hash chaining"""

    def test_first_event_has_empty_previous_hash(self, audit_trail):
        """Test the chain genesis"""
        event = audit_trail.log_event(
            event_type=AuditEventType.DEPOSIT_CREATED,
            entity_type="deposit",
            entity_id="alice:0",
            metadata={"amount": 100, "start_time": datetime(2025, 1, 1, tzinfo=timezone.utc)},
            user_id="alice"
        )

        assert event.previous_hash == ""
        assert event.verify_hash()
        assert event.metadata["start_time"] == "2025-01-01T00:00:00+00:00"
        assert audit_trail.get_latest_hash() == event.current_hash

    def test_events_are_chained(self, audit_trail):
        """Test that each event points at its predecessor"""
        first = audit_trail.log_event(AuditEventType.DEPOSIT_CREATED, "deposit", "alice:0", {"amount": 100})
        second = audit_trail.log_event(AuditEventType.DEPOSIT_WITHDRAWN, "deposit", "alice:0", {"payout": 90})

        assert second.previous_hash == first.current_hash
        result = audit_trail.verify_integrity()
        assert result['valid']
        assert result['total_events'] == 2

    def test_tampering_detected(self, audit_trail):
        """Test that editing a stored event breaks verification"""
        event = audit_trail.log_event(AuditEventType.RESERVE_FUNDED, "ledger", "totals", {"amount": 100})
        stored = audit_trail.storage.load(audit_trail.table_name, event.id)
        stored["metadata"]["amount"] = 1_000_000
        audit_trail.storage.save(audit_trail.table_name, event.id, stored)

        result = audit_trail.verify_integrity()

        assert not result['valid']
        assert result['hash_errors'][0]['event_id'] == event.id

    def test_rolled_back_event_is_not_a_chain_parent(self, audit_trail):
        """Test that an event discarded by rollback does not break the chain"""
        kept = audit_trail.log_event(AuditEventType.DEPOSIT_CREATED, "deposit", "alice:0", {})
        with pytest.raises(RuntimeError):
            with audit_trail.storage.atomic():
                audit_trail.log_event(AuditEventType.DEPOSIT_CREATED, "deposit", "alice:1", {})
                raise RuntimeError("abort")

        after = audit_trail.log_event(AuditEventType.DEPOSIT_CREATED, "deposit", "alice:1", {})

        assert after.previous_hash == kept.current_hash
        assert audit_trail.verify_integrity()['valid']
        assert audit_trail.count_events() == 2


class TestAuditQueries:
    """Test audit retrieval"""

    def test_events_for_entity_and_type(self, audit_trail):
        """Test filtering by entity and by event type"""
        audit_trail.log_event(AuditEventType.DEPOSIT_CREATED, "deposit", "alice:0", {})
        audit_trail.log_event(AuditEventType.DEPOSIT_CREATED, "deposit", "bob:0", {})
        audit_trail.log_event(AuditEventType.DEPOSIT_WITHDRAWN, "deposit", "alice:0", {})

        alice = audit_trail.get_events_for_entity("deposit", "alice:0")
        assert [e.event_type for e in alice] == [
            AuditEventType.DEPOSIT_CREATED, AuditEventType.DEPOSIT_WITHDRAWN
        ]
        assert len(audit_trail.get_events_for_entity("deposit", "alice:0", limit=1)) == 1
        assert len(audit_trail.get_events_by_type(AuditEventType.DEPOSIT_CREATED)) == 2

    def test_round_trip_through_storage(self, audit_trail):
        """Test that a reloaded event still verifies"""
        event = audit_trail.log_event(AuditEventType.SURPLUS_EXTRACTED, "ledger", "totals", {"extracted": 5})
        reloaded = AuditEvent.from_dict(audit_trail.storage.load(audit_trail.table_name, event.id))

        assert reloaded.event_type == AuditEventType.SURPLUS_EXTRACTED
        assert reloaded.verify_hash()
