"""Shared fixtures for booking and settlement tests."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

from django.utils import timezone

from apps.bookings.application.command_handlers import BookingStateMachine
from apps.bookings.models import Booking
from apps.finances.ledger import Ledger
from apps.finances.models import Transaction
from apps.finances.payments import PaymentService
from apps.finances.tests.fakes import ScriptedPaymentGateway
from shared.domain.value_objects import Money


def make_booking(**overrides) -> Booking:
    now = timezone.now()
    values = {
        "guest_id": "guest-1",
        "host_id": "host-1",
        "agent_id": "agent-1",
        "property_id": "property-1",
        "total_amount": Decimal("1000.00"),
        "currency": "AED",
        "check_in": now + timedelta(days=7),
        "check_out": now + timedelta(days=10),
    }
    values.update(overrides)
    return Booking.objects.create(**values)


def make_machine(gateway: ScriptedPaymentGateway | None = None) -> BookingStateMachine:
    gateway = gateway or ScriptedPaymentGateway()
    return BookingStateMachine(payments=PaymentService(gateway=gateway))


def confirm_and_pay(machine: BookingStateMachine, booking: Booking, **kwargs):
    """Confirm ``booking`` and charge the guest through the machine's gateway."""
    return machine.transition(
        booking.pk,
        Booking.Status.CONFIRMED,
        reason="guest paid",
        actor="guest-1",
        payment_source="tok_visa",
        **kwargs,
    )


def entries(booking: Booking, entry_type: str, *statuses: str):
    queryset = Transaction.objects.filter(booking=booking, type=entry_type)
    if statuses:
        queryset = queryset.filter(status__in=statuses)
    return queryset


def credit(amount: str, host_id: str = "host-1", **booking_fields) -> Transaction:
    """A settled host credit on a fresh booking, ready to be batched."""
    booking = make_booking(host_id=host_id, **booking_fields)
    return Ledger().post(
        booking,
        Transaction.Type.HOST_PAYOUT,
        Money(amount, booking.currency),
        status=Transaction.Status.COMPLETED,
        beneficiary_id=host_id,
    )
