"""
Audit Trail

Every domain event is written to the ``audit`` logger as a structured
record after the transaction that produced it commits.
"""

from typing import Iterable, Type

import structlog

from shared.application.message_bus import message_bus
from shared.domain.base import DomainEvent

audit_log = structlog.get_logger("audit")


def record_event(event: DomainEvent) -> None:
    """Event handler: emit one audit line per domain event"""
    payload = event.to_dict()
    audit_log.info(payload.pop('event_type'), **payload)


def register_audit_handlers(event_types: Iterable[Type[DomainEvent]]) -> None:
    """Subscribe the audit writer to the given event types"""
    for event_type in event_types:
        message_bus.register_event_handler(event_type, record_event)
