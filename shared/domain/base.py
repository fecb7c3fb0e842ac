"""
Base Domain Classes

This module provides the foundational building blocks for Domain-Driven Design:
- ValueObject: Immutable objects compared by value
- EventRecorder: Lets an aggregate root (a Django model here) collect domain events
- DomainEvent: Events that represent something that happened
"""

from abc import ABC
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from typing import List
from uuid import UUID, uuid4


@dataclass(frozen=True)
class ValueObject(ABC):
    """
    Base class for value objects

    Value objects are immutable and have no identity.
    Two value objects are equal if all their attributes are equal.
    """
    pass


class EventRecorder:
    """
    Mixin for aggregate roots

    Aggregates are the consistency boundaries in DDD.
    They collect domain events that will be published after successful transaction.
    The list lives on the instance only and is never persisted.
    """

    def add_event(self, event: 'DomainEvent'):
        """Add a domain event to be published"""
        if not hasattr(self, '_pending_events'):
            self._pending_events = []
        self._pending_events.append(event)

    def clear_events(self):
        """Clear all collected events (called after publishing)"""
        self._pending_events = []

    @property
    def events(self) -> List['DomainEvent']:
        """Get copy of collected events"""
        return list(getattr(self, '_pending_events', []))


@dataclass(kw_only=True)
class DomainEvent:
    """
    Base class for domain events

    Domain events represent something that happened in the domain.
    They are used to communicate between bounded contexts.
    """
    event_id: UUID = field(default_factory=uuid4)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    aggregate_id: UUID | None = None

    def to_dict(self) -> dict:
        """
        Convert event to dictionary for serialization

        Payload fields declared by subclasses are rendered as strings
        (Money as "100.00 AED", UUIDs and Decimals via str()).
        """
        data = {
            'event_id': str(self.event_id),
            'event_type': self.__class__.__name__,
            'occurred_at': self.occurred_at.isoformat(),
            'aggregate_id': str(self.aggregate_id) if self.aggregate_id else None,
        }
        for item in fields(self):
            if item.name in data:
                continue
            value = getattr(self, item.name)
            if value is None or isinstance(value, (bool, int, str)):
                data[item.name] = value
            else:
                data[item.name] = str(value)
        return data
