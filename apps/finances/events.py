"""
Finance Domain Events

Published after the ledger or payout change that raised them commits.
"""

from dataclasses import dataclass

from shared.domain.base import DomainEvent
from shared.domain.value_objects import Money


@dataclass(kw_only=True)
class PaymentSettled(DomainEvent):
    """A guest payment was confirmed by the gateway and split"""
    booking_id: str
    transaction_id: str
    amount: Money


@dataclass(kw_only=True)
class PaymentFailed(DomainEvent):
    booking_id: str
    transaction_id: str
    reason: str


@dataclass(kw_only=True)
class RefundSettled(DomainEvent):
    booking_id: str
    transaction_id: str
    amount: Money


@dataclass(kw_only=True)
class RefundFailed(DomainEvent):
    """The gateway refused a refund; an operator has to retry it"""
    booking_id: str
    transaction_id: str
    reason: str


@dataclass(kw_only=True)
class PayoutCreated(DomainEvent):
    payout_id: str
    host_id: str
    amount: Money
    transaction_count: int


@dataclass(kw_only=True)
class PayoutCompleted(DomainEvent):
    payout_id: str
    host_id: str
    amount: Money


@dataclass(kw_only=True)
class PayoutFailed(DomainEvent):
    payout_id: str
    host_id: str
    reason: str


@dataclass(kw_only=True)
class PayoutCancelled(DomainEvent):
    payout_id: str
    host_id: str


ALL_EVENTS = (
    PaymentSettled,
    PaymentFailed,
    RefundSettled,
    RefundFailed,
    PayoutCreated,
    PayoutCompleted,
    PayoutFailed,
    PayoutCancelled,
)
