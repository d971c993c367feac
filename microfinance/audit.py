"""
Audit Trail Module

Hash-chained immutable audit log with SHA-256 for tamper detection.
Every mutating lending operation ends up here through the event dispatcher.
"""

import hashlib
import json
import threading
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional, Any
from enum import Enum
import uuid
import logging

from .storage import StorageInterface, StorageRecord, serialize_value
from .events import DomainEvent, EventDispatcher, EventPayload


logger = logging.getLogger("microfinance.audit")


class AuditEventType(Enum):
    """Types of audit events"""
    # Loan events
    LOAN_CREATED = "loan_created"
    LOAN_UPDATED = "loan_updated"
    LOAN_STATUS_CHANGED = "loan_status_changed"
    LOAN_DISBURSED = "loan_disbursed"
    LOAN_ASSIGNED = "loan_assigned"
    LOAN_COMPLETED = "loan_completed"
    LOAN_DELETED = "loan_deleted"
    SCHEDULE_OVERDUE_MARKED = "schedule_overdue_marked"

    # Repayment events
    REPAYMENT_CREATED = "repayment_created"
    REPAYMENT_UPDATED = "repayment_updated"
    REPAYMENT_DELETED = "repayment_deleted"

    # Loan type events
    LOAN_TYPE_CREATED = "loan_type_created"
    LOAN_TYPE_UPDATED = "loan_type_updated"
    LOAN_TYPE_DELETED = "loan_type_deleted"

    # Branch events
    BRANCH_CREATED = "branch_created"
    BRANCH_UPDATED = "branch_updated"
    BRANCH_DELETED = "branch_deleted"

    # Customer events
    CUSTOMER_CREATED = "customer_created"
    CUSTOMER_UPDATED = "customer_updated"
    CUSTOMER_DELETED = "customer_deleted"

    # Staff user events
    USER_CREATED = "user_created"
    USER_UPDATED = "user_updated"
    USER_DEACTIVATED = "user_deactivated"


# Every domain event has an audit counterpart with the same name
EVENT_TO_AUDIT_TYPE = {event: AuditEventType[event.name] for event in DomainEvent}


@dataclass
class AuditEvent(StorageRecord):
    """
    Immutable audit event with hash chaining for tamper detection
    """
    event_type: AuditEventType
    entity_type: str  # loan, repayment, branch, ...
    entity_id: str
    previous_hash: str  # Hash of previous audit event for chaining
    current_hash: str   # SHA-256 hash of this event
    metadata: Dict[str, Any]  # action, before/after snapshots
    user_id: Optional[str] = None  # Staff user who initiated the action

    def __post_init__(self):
        if self.metadata:
            self.metadata = serialize_value(self.metadata)

    def calculate_hash(self) -> str:
        """
        Calculate SHA-256 hash of this event
        Hash includes all fields except current_hash to prevent circular reference
        """
        hash_data = {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'previous_hash': self.previous_hash,
            'user_id': self.user_id,
            'metadata': self.metadata
        }

        json_data = json.dumps(hash_data, sort_keys=True, separators=(',', ':'))
        return hashlib.sha256(json_data.encode('utf-8')).hexdigest()

    def verify_hash(self) -> bool:
        """Verify that the current hash is correct"""
        return self.current_hash == self.calculate_hash()


class AuditTrail:
    """
    Hash-chained audit trail for tamper detection
    """

    def __init__(self, storage: StorageInterface, table_name: str = "audit_events"):
        self.storage = storage
        self.table_name = table_name
        self._last_hash: Optional[str] = None
        self._lock = threading.Lock()
        self._load_last_hash()

    def _load_last_hash(self) -> None:
        """Load the hash of the most recent audit event (storage keeps insertion order)"""
        events = self.storage.load_all(self.table_name)
        self._last_hash = events[-1].get('current_hash') if events else None

    def log_event(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None
    ) -> AuditEvent:
        """
        Log an audit event with hash chaining

        Args:
            event_type: Type of audit event
            entity_type: Type of entity being audited
            entity_id: ID of the entity
            metadata: Additional event-specific data
            user_id: ID of user who initiated the action

        Returns:
            Created AuditEvent
        """
        with self._lock:
            now = datetime.now(timezone.utc)
            self._load_last_hash()

            event = AuditEvent(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                previous_hash=self._last_hash or "",
                current_hash="",
                user_id=user_id,
                metadata=metadata or {}
            )
            event.current_hash = event.calculate_hash()

            self.storage.save(self.table_name, event.id, event.to_dict())
            self._last_hash = event.current_hash
            return event

    def handle_domain_event(self, event: EventPayload) -> None:
        """Dispatcher subscriber: persist a published domain event"""
        self.log_event(
            EVENT_TO_AUDIT_TYPE[event.event_type],
            entity_type=event.entity_type,
            entity_id=event.entity_id,
            metadata={
                'action': event.action,
                'before': event.before,
                'after': event.after,
                **event.data
            },
            user_id=event.actor_id
        )

    def attach(self, dispatcher: EventDispatcher) -> None:
        """Subscribe this trail to every event on a dispatcher"""
        dispatcher.subscribe_all(self.handle_domain_event)

    def get_events(
        self,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        event_type: Optional[AuditEventType] = None,
        user_id: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None
    ) -> List[AuditEvent]:
        """
        Query audit events, oldest first

        Args:
            entity_type: Restrict to one entity type
            entity_id: Restrict to one entity
            event_type: Restrict to one event type
            user_id: Restrict to one acting user
            start_time: Start of time range (inclusive)
            end_time: End of time range (inclusive)
        """
        filters: Dict[str, Any] = {}
        if entity_type:
            filters['entity_type'] = entity_type
        if entity_id:
            filters['entity_id'] = entity_id
        if event_type:
            filters['event_type'] = event_type.value
        if user_id:
            filters['user_id'] = user_id

        events = [AuditEvent.from_dict(data) for data in self.storage.find(self.table_name, filters)]
        if start_time:
            events = [e for e in events if e.created_at >= start_time]
        if end_time:
            events = [e for e in events if e.created_at <= end_time]
        return events

    def get_events_for_entity(self, entity_type: str, entity_id: str) -> List[AuditEvent]:
        """Get all audit events for a specific entity"""
        return self.get_events(entity_type=entity_type, entity_id=entity_id)

    def verify_integrity(self) -> Dict[str, Any]:
        """
        Verify the integrity of the entire audit chain

        Returns:
            Dictionary with integrity check results
        """
        result = {
            'valid': True,
            'total_events': 0,
            'hash_errors': [],
            'chain_breaks': []
        }

        events = [AuditEvent.from_dict(data) for data in self.storage.load_all(self.table_name)]
        result['total_events'] = len(events)

        previous_hash = ""
        for i, event in enumerate(events):
            if not event.verify_hash():
                result['valid'] = False
                result['hash_errors'].append({
                    'event_id': event.id,
                    'position': i,
                    'expected_hash': event.calculate_hash(),
                    'actual_hash': event.current_hash
                })
            if event.previous_hash != previous_hash:
                result['valid'] = False
                result['chain_breaks'].append({
                    'event_id': event.id,
                    'position': i,
                    'expected_previous_hash': previous_hash,
                    'actual_previous_hash': event.previous_hash
                })
            previous_hash = event.current_hash

        if not result['valid']:
            logger.warning("Audit chain integrity check failed",
                           extra={'extra': {'hash_errors': len(result['hash_errors']),
                                            'chain_breaks': len(result['chain_breaks'])}})
        return result

    def get_event_by_id(self, event_id: str) -> Optional[AuditEvent]:
        """Get a specific audit event by ID"""
        event_data = self.storage.load(self.table_name, event_id)
        if event_data:
            return AuditEvent.from_dict(event_data)
        return None

    def count_events(self) -> int:
        """Get total number of audit events"""
        return self.storage.count(self.table_name)
