"""
Booking Domain Events

Events that represent things that have happened in the booking domain.
These are published after successful transaction commits and end up in
the audit log.
"""

from dataclasses import dataclass

from shared.domain.base import DomainEvent
from shared.domain.value_objects import Money


@dataclass(kw_only=True)
class BookingStatusChanged(DomainEvent):
    """
    Event: a booking moved along its state machine

    Raised for every transition, including emergency overrides.
    """
    booking_id: str
    from_status: str
    to_status: str
    actor: str
    reason: str = ""


@dataclass(kw_only=True)
class RefundIssued(DomainEvent):
    """Event: a REFUND entry was posted and will be sent to the gateway"""
    booking_id: str
    transaction_id: str
    amount: Money
    policy: str


@dataclass(kw_only=True)
class DisputeOpened(DomainEvent):
    booking_id: str
    actor: str
    reason: str


@dataclass(kw_only=True)
class DisputeResolved(DomainEvent):
    """Event: an operator closed a dispute"""
    booking_id: str
    outcome: str
    refund_amount: Money
    actor: str


@dataclass(kw_only=True)
class EmergencyOverrideApplied(DomainEvent):
    """
    Event: an operator forced a booking out of the normal flow

    Always accompanied by an EmergencyIncident row.
    """
    booking_id: str
    action: str
    operator: str
    justification: str
    previous_status: str


ALL_EVENTS = (
    BookingStatusChanged,
    RefundIssued,
    DisputeOpened,
    DisputeResolved,
    EmergencyOverrideApplied,
)
