"""
Audit Trail Module

Hash-chained append-only log of customer and loan lifecycle events. Repeated
mark-paid calls overwrite the installment itself, so the amendment history of
an installment lives here.
"""

import hashlib
import json
import threading
from datetime import datetime
from dataclasses import dataclass
from typing import Dict, List, Optional, Any
from enum import Enum
import uuid

from .clock import Clock, SystemClock
from .storage import StorageInterface, StorageRecord, to_document, parse_datetime


class AuditEventType(Enum):
    """Types of audit events"""
    CUSTOMER_CREATED = "customer_created"
    CUSTOMER_UPDATED = "customer_updated"
    CUSTOMER_DELETED = "customer_deleted"

    LOAN_CREATED = "loan_created"
    LOAN_UPDATED = "loan_updated"
    LOAN_RESCHEDULED = "loan_rescheduled"
    INTEREST_PAYMENT_MARKED_PAID = "interest_payment_marked_paid"
    PRINCIPAL_MARKED_PAID = "principal_marked_paid"
    LOAN_CLOSED = "loan_closed"
    LOAN_SOFT_DELETED = "loan_soft_deleted"
    LOAN_RESTORED = "loan_restored"
    LOAN_PERMANENTLY_DELETED = "loan_permanently_deleted"


@dataclass
class AuditEvent(StorageRecord):
    """Immutable audit event chained to its predecessor by hash"""
    event_type: AuditEventType
    entity_type: str
    entity_id: str
    previous_hash: str
    current_hash: str
    metadata: Dict[str, Any]
    user_id: Optional[str] = None

    def __post_init__(self):
        self.metadata = to_document(self.metadata or {})

    def calculate_hash(self) -> str:
        """SHA-256 over every field except current_hash"""
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
        return self.current_hash == self.calculate_hash()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditEvent':
        return cls(
            id=data['id'],
            created_at=parse_datetime(data['created_at']),
            updated_at=parse_datetime(data['updated_at']),
            event_type=AuditEventType(data['event_type']),
            entity_type=data['entity_type'],
            entity_id=data['entity_id'],
            previous_hash=data['previous_hash'],
            current_hash=data['current_hash'],
            metadata=data.get('metadata') or {},
            user_id=data.get('user_id')
        )


class AuditTrail:
    """
    Hash-chained audit trail for tamper detection
    """

    def __init__(self, storage: StorageInterface, clock: Optional[Clock] = None,
                 table_name: str = "audit_events"):
        self.storage = storage
        self.clock = clock or SystemClock()
        self.table_name = table_name
        self._sequence = 0
        self._last_hash: Optional[str] = None
        self._lock = threading.Lock()
        self._load_last_hash()

    def _ordered(self, events: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return sorted(events, key=lambda x: (x.get('created_at', ''), x.get('sequence', 0)))

    def _load_last_hash(self) -> None:
        """Load the hash and sequence number of the most recent audit event"""
        events = self._ordered(self.storage.load_all(self.table_name))
        if events:
            self._last_hash = events[-1].get('current_hash')
            self._sequence = max(e.get('sequence', 0) for e in events)

    def log_event(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None
    ) -> AuditEvent:
        """
        Append an audit event chained to the previous one

        Args:
            event_type: Type of audit event
            entity_type: "loan" or "customer"
            entity_id: ID of the entity
            metadata: Event-specific data
            user_id: ID of user who initiated the action

        Returns:
            Created AuditEvent
        """
        with self._lock:
            now = self.clock.now()
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

            # Events sharing a timestamp (frozen clocks) keep insertion order
            self._sequence += 1
            document = event.to_dict()
            document['sequence'] = self._sequence
            self.storage.save(self.table_name, event.id, document)

            self._last_hash = event.current_hash
            return event

    def _load_events(self, filters: Dict[str, Any]) -> List[AuditEvent]:
        return [AuditEvent.from_dict(data)
                for data in self._ordered(self.storage.find(self.table_name, filters))]

    def get_events_for_entity(self, entity_type: str, entity_id: str,
                              limit: Optional[int] = None) -> List[AuditEvent]:
        """All events for one entity, oldest first"""
        events = self._load_events({'entity_type': entity_type, 'entity_id': entity_id})
        if limit:
            events = events[-limit:]
        return events

    def get_payment_amendments(self, loan_id: str, payment_id: str) -> List[AuditEvent]:
        """Every mark-paid event recorded for one installment, oldest first"""
        return [
            event for event in self.get_events_for_entity("loan", loan_id)
            if event.event_type == AuditEventType.INTEREST_PAYMENT_MARKED_PAID
            and event.metadata.get('payment_id') == payment_id
        ]

    def verify_integrity(self) -> Dict[str, Any]:
        """
        Verify every event hash and the continuity of the chain

        Returns:
            Dictionary with integrity check results
        """
        result = {
            'valid': True,
            'total_events': 0,
            'hash_errors': [],
            'chain_breaks': []
        }

        events = self._load_events({})
        result['total_events'] = len(events)

        previous_hash = ""
        for position, event in enumerate(events):
            if not event.verify_hash():
                result['valid'] = False
                result['hash_errors'].append({'event_id': event.id, 'position': position})
            if event.previous_hash != previous_hash:
                result['valid'] = False
                result['chain_breaks'].append({'event_id': event.id, 'position': position})
            previous_hash = event.current_hash

        return result

    def count_events(self) -> int:
        return self.storage.count(self.table_name)
