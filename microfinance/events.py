"""
Event System Module

Publish/subscribe dispatcher used to decouple audit logging from the
lending operations. Managers publish after their write transaction commits;
subscriber failures are logged and never undo the business change.
"""

from enum import Enum
from typing import Callable, Dict, List, Any, Optional
from dataclasses import dataclass, field
from datetime import datetime, timezone
import uuid
import logging
from threading import RLock

from .storage import serialize_value


class DomainEvent(Enum):
    """Domain events that can occur in the lending core"""

    # Loan events
    LOAN_CREATED = "loan.created"
    LOAN_UPDATED = "loan.updated"
    LOAN_STATUS_CHANGED = "loan.status_changed"
    LOAN_DISBURSED = "loan.disbursed"
    LOAN_ASSIGNED = "loan.assigned"
    LOAN_COMPLETED = "loan.completed"
    LOAN_DELETED = "loan.deleted"
    SCHEDULE_OVERDUE_MARKED = "loan.schedule_overdue_marked"

    # Repayment events
    REPAYMENT_CREATED = "repayment.created"
    REPAYMENT_UPDATED = "repayment.updated"
    REPAYMENT_DELETED = "repayment.deleted"

    # Loan type events
    LOAN_TYPE_CREATED = "loan_type.created"
    LOAN_TYPE_UPDATED = "loan_type.updated"
    LOAN_TYPE_DELETED = "loan_type.deleted"

    # Branch events
    BRANCH_CREATED = "branch.created"
    BRANCH_UPDATED = "branch.updated"
    BRANCH_DELETED = "branch.deleted"

    # Customer events
    CUSTOMER_CREATED = "customer.created"
    CUSTOMER_UPDATED = "customer.updated"
    CUSTOMER_DELETED = "customer.deleted"

    # Staff user events
    USER_CREATED = "user.created"
    USER_UPDATED = "user.updated"
    USER_DEACTIVATED = "user.deactivated"


@dataclass
class EventPayload:
    """Payload for domain events"""
    event_type: DomainEvent
    entity_type: str
    entity_id: str
    actor_id: Optional[str] = None
    before: Optional[Dict[str, Any]] = None
    after: Optional[Dict[str, Any]] = None
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def action(self) -> str:
        """Verb part of the event name, e.g. ``created``"""
        return self.event_type.value.split(".", 1)[1]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        return {
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'actor_id': self.actor_id,
            'before': serialize_value(self.before),
            'after': serialize_value(self.after),
            'data': serialize_value(self.data),
            'timestamp': self.timestamp.isoformat(),
            'event_id': self.event_id
        }


class EventDispatcher:
    """Central event dispatcher, publish/subscribe pattern"""

    def __init__(self):
        self._handlers: Dict[DomainEvent, List[Callable]] = {}
        self._global_handlers: List[Callable] = []  # catch-all handlers
        self._lock = RLock()
        self.logger = logging.getLogger("microfinance.events")

    def subscribe(self, event_type: DomainEvent, handler: Callable) -> None:
        """Subscribe to a specific event type"""
        with self._lock:
            if event_type not in self._handlers:
                self._handlers[event_type] = []
            self._handlers[event_type].append(handler)
            self.logger.debug(f"Subscribed handler {_name(handler)} to {event_type.value}")

    def subscribe_all(self, handler: Callable) -> None:
        """Subscribe to ALL events"""
        with self._lock:
            self._global_handlers.append(handler)
            self.logger.debug(f"Subscribed global handler {_name(handler)}")

    def unsubscribe(self, event_type: DomainEvent, handler: Callable) -> None:
        """Unsubscribe from a specific event type"""
        with self._lock:
            if event_type in self._handlers:
                try:
                    self._handlers[event_type].remove(handler)
                except ValueError:
                    self.logger.warning(f"Handler {_name(handler)} was not subscribed to {event_type.value}")

    def publish(self, event: EventPayload) -> None:
        """Publish event to all subscribers"""
        with self._lock:
            handlers = list(self._handlers.get(event.event_type, [])) + list(self._global_handlers)

        self.logger.debug(f"Publishing event {event.event_type.value} for {event.entity_type}:{event.entity_id}")
        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                # Log but don't break the main operation
                self.logger.error(
                    f"Error in event handler {_name(handler)} for {event.event_type.value}: {e}",
                    exc_info=True
                )

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


def _name(handler: Callable) -> str:
    return getattr(handler, "__name__", repr(handler))


class EventPublisherMixin:
    """Mixin giving managers a ``publish_event`` helper bound to an optional dispatcher"""

    event_dispatcher: Optional[EventDispatcher] = None

    def publish_event(
        self,
        event_type: DomainEvent,
        entity_type: str,
        entity_id: str,
        actor_id: Optional[str] = None,
        before: Optional[Dict[str, Any]] = None,
        after: Optional[Dict[str, Any]] = None,
        **data: Any
    ) -> None:
        """Publish a domain event if a dispatcher is attached"""
        if self.event_dispatcher is None:
            return
        self.event_dispatcher.publish(EventPayload(
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            actor_id=actor_id,
            before=before,
            after=after,
            data=data
        ))
