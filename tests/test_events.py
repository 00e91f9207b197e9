"""
Tests for the Event System

Tests the dispatcher and the field order of ledger notifications.
"""

from dataclasses import fields
from datetime import datetime
from unittest.mock import Mock

from timelock_savings.events import (
    DomainEvent, EventPayload, EventDispatcher, DepositRecorded, DepositWithdrawn,
    create_deposit_recorded_event, create_deposit_withdrawn_event
)


class TestNotifications:
    """Test notification field order"""

    def test_deposit_recorded_field_order(self):
        """Test (owner, amount, deposit_index) ordering"""
        assert [f.name for f in fields(DepositRecorded)] == ["owner", "amount", "deposit_index"]
        assert DepositRecorded(owner="U", amount=100, deposit_index=0).as_tuple() == ("U", 100, 0)

    def test_deposit_withdrawn_field_order(self):
        """Test (owner, deposit_index, principal_paid, reward_or_penalty_paid) ordering"""
        assert [f.name for f in fields(DepositWithdrawn)] == [
            "owner", "deposit_index", "principal_paid", "reward_or_penalty_paid"
        ]

    def test_event_factories(self):
        """Test payload construction from notifications"""
        event = create_deposit_recorded_event(DepositRecorded(owner="U", amount=100, deposit_index=3))
        assert event.event_type == DomainEvent.DEPOSIT_RECORDED
        assert event.entity_id == "U:3"
        assert event.data == {"owner": "U", "amount": 100, "deposit_index": 3}

        event = create_deposit_withdrawn_event(DepositWithdrawn("U", 3, 1000, 20))
        assert event.event_type == DomainEvent.DEPOSIT_WITHDRAWN
        assert event.to_dict()["data"]["reward_or_penalty_paid"] == 20
        assert isinstance(event.timestamp, datetime)


class TestEventDispatcher:
    """Test the event dispatcher"""

    def _event(self, event_type=DomainEvent.DEPOSIT_RECORDED):
        return EventPayload(event_type=event_type, entity_type="deposit", entity_id="U:0", data={})

    def test_subscribe_and_publish(self):
        """Test that subscribers receive only their event type"""
        dispatcher = EventDispatcher()
        recorded = Mock()
        withdrawn = Mock()
        dispatcher.subscribe(DomainEvent.DEPOSIT_RECORDED, recorded)
        dispatcher.subscribe(DomainEvent.DEPOSIT_WITHDRAWN, withdrawn)

        event = self._event()
        dispatcher.publish(event)

        recorded.assert_called_once_with(event)
        withdrawn.assert_not_called()

    def test_global_handlers_receive_everything(self):
        """Test catch-all subscription"""
        dispatcher = EventDispatcher()
        handler = Mock()
        dispatcher.subscribe_all(handler)

        dispatcher.publish(self._event(DomainEvent.RESERVE_FUNDED))
        dispatcher.publish(self._event(DomainEvent.SURPLUS_EXTRACTED))

        assert handler.call_count == 2

    def test_handler_errors_are_isolated(self):
        """Test that one failing handler does not stop the others"""
        dispatcher = EventDispatcher()
        failing = Mock(side_effect=RuntimeError("boom"))
        working = Mock()
        dispatcher.subscribe(DomainEvent.DEPOSIT_RECORDED, failing)
        dispatcher.subscribe(DomainEvent.DEPOSIT_RECORDED, working)

        dispatcher.publish(self._event())

        working.assert_called_once()

    def test_unsubscribe_and_counts(self):
        """Test handler bookkeeping"""
        dispatcher = EventDispatcher()
        handler = Mock()
        dispatcher.subscribe(DomainEvent.DEPOSIT_RECORDED, handler)
        dispatcher.subscribe_all(Mock())
        assert dispatcher.get_handler_count() == 2
        assert dispatcher.get_handler_count(DomainEvent.DEPOSIT_RECORDED) == 1

        dispatcher.unsubscribe(DomainEvent.DEPOSIT_RECORDED, handler)
        dispatcher.unsubscribe(DomainEvent.DEPOSIT_WITHDRAWN, handler)
        assert dispatcher.get_handler_count(DomainEvent.DEPOSIT_RECORDED) == 0

        dispatcher.clear()
        assert dispatcher.get_handler_count() == 0
