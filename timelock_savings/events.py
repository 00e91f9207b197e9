"""
Event System Module

Publish/subscribe dispatcher for ledger notifications. Deposit and
withdrawal notifications are frozen dataclasses whose field order is a
compatibility contract with downstream consumers: ``as_tuple()`` always
yields the fields in declaration order.
"""

from enum import Enum
from typing import Callable, Dict, List, Any, Optional, Union
from dataclasses import dataclass, field, astuple, asdict
from datetime import datetime, timezone
import uuid
import logging
from threading import RLock


class DomainEvent(Enum):
    """Domain events emitted by the savings ledger"""
    DEPOSIT_RECORDED = "deposit.recorded"
    DEPOSIT_WITHDRAWN = "deposit.withdrawn"
    RESERVE_FUNDED = "reserve.funded"
    SURPLUS_EXTRACTED = "surplus.extracted"


@dataclass(frozen=True)
class DepositRecorded:
    """Emitted after a deposit commits: (owner, amount, deposit_index)"""
    owner: str
    amount: int
    deposit_index: int

    def as_tuple(self) -> tuple:
        return astuple(self)


@dataclass(frozen=True)
class DepositWithdrawn:
    """Emitted after a withdrawal commits: (owner, deposit_index, principal_paid, reward_or_penalty_paid)"""
    owner: str
    deposit_index: int
    principal_paid: int
    reward_or_penalty_paid: int

    def as_tuple(self) -> tuple:
        return astuple(self)


Notification = Union[DepositRecorded, DepositWithdrawn]


@dataclass
class EventPayload:
    """Payload for domain events"""
    event_type: DomainEvent
    entity_type: str
    entity_id: str
    data: Dict[str, Any]
    notification: Optional[Notification] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        return {
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'data': self.data,
            'timestamp': self.timestamp.isoformat(),
            'event_id': self.event_id
        }


def create_deposit_recorded_event(notification: DepositRecorded) -> EventPayload:
    """Create the event published after a committed deposit"""
    return EventPayload(
        event_type=DomainEvent.DEPOSIT_RECORDED,
        entity_type="deposit",
        entity_id=f"{notification.owner}:{notification.deposit_index}",
        data=asdict(notification),
        notification=notification
    )


def create_deposit_withdrawn_event(notification: DepositWithdrawn) -> EventPayload:
    """Create the event published after a committed withdrawal"""
    return EventPayload(
        event_type=DomainEvent.DEPOSIT_WITHDRAWN,
        entity_type="deposit",
        entity_id=f"{notification.owner}:{notification.deposit_index}",
        data=asdict(notification),
        notification=notification
    )


class EventDispatcher:
    """Central event dispatcher, publish/subscribe pattern"""

    def __init__(self):
        self._handlers: Dict[DomainEvent, List[Callable]] = {}
        self._global_handlers: List[Callable] = []
        self._lock = RLock()
        self.logger = logging.getLogger("timelock_savings.events")

    @staticmethod
    def _name(handler: Callable) -> str:
        return getattr(handler, "__name__", repr(handler))

    def subscribe(self, event_type: DomainEvent, handler: Callable) -> None:
        """Subscribe to a specific event type"""
        with self._lock:
            self._handlers.setdefault(event_type, []).append(handler)
            self.logger.debug(f"Subscribed handler {self._name(handler)} to {event_type.value}")

    def subscribe_all(self, handler: Callable) -> None:
        """Subscribe to ALL events"""
        with self._lock:
            self._global_handlers.append(handler)
            self.logger.debug(f"Subscribed global handler {self._name(handler)}")

    def unsubscribe(self, event_type: DomainEvent, handler: Callable) -> None:
        """Unsubscribe from a specific event type"""
        with self._lock:
            try:
                self._handlers.get(event_type, []).remove(handler)
            except ValueError:
                self.logger.warning(f"Handler {self._name(handler)} was not subscribed to {event_type.value}")

    def publish(self, event: EventPayload) -> None:
        """Publish event to all subscribers"""
        with self._lock:
            handlers = list(self._handlers.get(event.event_type, [])) + list(self._global_handlers)

        self.logger.debug(f"Publishing event {event.event_type.value} for {event.entity_type}:{event.entity_id}")
        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                # The operation already committed; a consumer failure must not undo it
                self.logger.error(f"Error in event handler {self._name(handler)} for {event.event_type.value}: {e}")

    def clear(self) -> None:
        """Clear all handlers"""
        with self._lock:
            self._handlers.clear()
            self._global_handlers.clear()

    def get_handler_count(self, event_type: Optional[DomainEvent] = None) -> int:
        """Get count of handlers for a specific event type or all"""
        with self._lock:
            if event_type:
                return len(self._handlers.get(event_type, []))
            total = sum(len(handlers) for handlers in self._handlers.values())
            return total + len(self._global_handlers)
