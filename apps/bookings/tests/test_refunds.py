"""Tests for cancellation refunds and the refund policy calculation."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

from django.conf import settings
from django.test import SimpleTestCase, TestCase, override_settings
from django.utils import timezone

from apps.bookings.application.commands import CancellationReason
from apps.bookings.domain.refund_policy import quote_refund
from apps.bookings.domain.state_machine import BookingStatus
from apps.bookings.models import Booking
from apps.finances.conf import finance_settings
from apps.finances.gateways import GatewayStatus
from apps.finances.ledger import Ledger
from apps.finances.models import Transaction
from apps.finances.tests.fakes import ScriptedPaymentGateway
from shared.domain.exceptions import GatewayRejected, InvalidTransition, RefundExceedsPaid
from shared.domain.value_objects import Money

from .helpers import confirm_and_pay, entries, make_booking, make_machine


def aed(value: str) -> Money:
    return Money(Decimal(value), "AED")


class RefundPolicyTests(SimpleTestCase):
    def setUp(self) -> None:
        self.conf = finance_settings()

    def quote(self, policy: str, hours: str, **kwargs):
        values = {
            "paid": aed("1000.00"),
            "refundable": aed("1000.00"),
            "terms": self.conf.policy(policy),
            "hours_before_check_in": Decimal(hours),
            "non_refundable_fee": aed("0"),
        }
        values.update(kwargs)
        return quote_refund(**values)

    def test_strict_inside_window_refunds_nothing(self) -> None:
        quote = self.quote("STRICT", "2")
        self.assertTrue(quote.within_window)
        self.assertEqual(quote.amount, aed("0"))

    def test_strict_before_window_refunds_half(self) -> None:
        quote = self.quote("STRICT", "48")
        self.assertFalse(quote.within_window)
        self.assertEqual(quote.amount, aed("500.00"))

    def test_flexible_inside_window_refunds_all_but_the_fee(self) -> None:
        self.assertEqual(self.quote("FLEXIBLE", "2").amount, aed("1000.00"))

        quote = self.quote("FLEXIBLE", "2", non_refundable_fee=aed("50.00"))
        self.assertEqual(quote.amount, aed("950.00"))
        self.assertEqual(quote.fee_deducted, aed("50.00"))

    def test_fee_is_kept_only_inside_the_window(self) -> None:
        quote = self.quote("FLEXIBLE", "12", non_refundable_fee=aed("50.00"))
        self.assertEqual(quote.amount, aed("1000.00"))

    def test_full_policy_refunds_fee_too(self) -> None:
        quote = self.quote("FULL", "0", non_refundable_fee=aed("50.00"))
        self.assertEqual(quote.amount, aed("1000.00"))

    def test_amount_never_exceeds_refundable(self) -> None:
        for policy in ("FULL", "FLEXIBLE", "STRICT"):
            for hours in ("-5", "0", "2", "6", "23.9", "24", "72"):
                for refundable in ("0", "120.00", "999.99", "1000.00"):
                    quote = self.quote(policy, hours, refundable=aed(refundable))
                    self.assertLessEqual(quote.amount, aed(refundable))
                    self.assertGreaterEqual(quote.amount, aed("0"))

    def test_requested_amount_above_refundable_is_an_error(self) -> None:
        with self.assertRaises(RefundExceedsPaid):
            self.quote("FULL", "72", refundable=aed("400.00"), requested=aed("400.01"))

    def test_requested_amount_is_capped_by_policy(self) -> None:
        quote = self.quote("STRICT", "48", requested=aed("800.00"))
        self.assertEqual(quote.amount, aed("500.00"))

        quote = self.quote("STRICT", "48", requested=aed("120.00"))
        self.assertEqual(quote.amount, aed("120.00"))


class CancellationTests(TestCase):
    def setUp(self) -> None:
        self.gateway = ScriptedPaymentGateway()
        self.machine = make_machine(self.gateway)
        self.ledger = Ledger()

    def booking_checking_in_in(self, hours: int, policy: str) -> Booking:
        now = timezone.now()
        return make_booking(
            check_in=now + timedelta(hours=hours),
            check_out=now + timedelta(days=3),
            cancellation_policy=policy,
        )

    def cancel(self, booking: Booking, **kwargs):
        return self.machine.transition(
            booking.pk,
            BookingStatus.CANCELLED,
            reason="guest changed plans",
            actor="guest-1",
            **kwargs,
        )

    def test_strict_two_hours_before_check_in_refunds_nothing(self) -> None:
        booking = self.booking_checking_in_in(2, Booking.CancellationPolicy.STRICT)
        confirm_and_pay(self.machine, booking)

        result = self.cancel(booking)

        self.assertEqual(result.to_status, BookingStatus.CANCELLED)
        self.assertIsNone(result.refund_transaction_id)
        self.assertFalse(entries(booking, Transaction.Type.REFUND).exists())
        host = entries(booking, Transaction.Type.HOST_PAYOUT).get()
        self.assertEqual(host.status, Transaction.Status.COMPLETED)
        self.assertEqual(host.amount, Decimal("850.00"))
        self.assertTrue(self.ledger.net_liability(Booking.objects.get(pk=booking.pk)).is_zero())

    def test_flexible_two_hours_before_check_in_refunds_in_full(self) -> None:
        booking = self.booking_checking_in_in(2, Booking.CancellationPolicy.FLEXIBLE)
        confirm_and_pay(self.machine, booking)

        result = self.cancel(booking)

        refund = Transaction.objects.get(pk=result.refund_transaction_id)
        self.assertEqual(refund.amount, Decimal("1000.00"))
        self.assertEqual(refund.status, Transaction.Status.COMPLETED)
        self.assertEqual(refund.beneficiary_id, "guest-1")
        self.assertEqual(Decimal(result.refund_amount), Decimal("1000.00"))
        self.assertEqual(len(self.gateway.refunds), 1)

        booking = Booking.objects.get(pk=booking.pk)
        self.assertEqual(booking.refund_amount, Decimal("1000.00"))
        self.assertEqual(
            entries(booking, Transaction.Type.HOST_PAYOUT).get().status, Transaction.Status.CANCELLED
        )
        self.assertTrue(self.ledger.refundable(booking).is_zero())
        self.assertTrue(self.ledger.net_liability(booking).is_zero())

    def test_flexible_refund_keeps_non_refundable_fee(self) -> None:
        finance = {**settings.FINANCE, "NON_REFUNDABLE_FEE": "50"}
        with override_settings(FINANCE=finance):
            machine = make_machine(self.gateway)
            booking = self.booking_checking_in_in(2, Booking.CancellationPolicy.FLEXIBLE)
            confirm_and_pay(machine, booking)

            result = machine.transition(
                booking.pk, BookingStatus.CANCELLED, reason="guest changed plans", actor="guest-1"
            )

        self.assertEqual(Decimal(result.refund_amount), Decimal("950.00"))
        booking = Booking.objects.get(pk=booking.pk)
        self.assertEqual(self.ledger.refundable(booking), Money(Decimal("50.00"), "AED"))
        self.assertTrue(self.ledger.net_liability(booking).is_zero())

    def test_partial_refund_resplits_what_is_retained(self) -> None:
        booking = self.booking_checking_in_in(48, Booking.CancellationPolicy.STRICT)
        confirm_and_pay(self.machine, booking)

        result = self.cancel(booking)

        self.assertEqual(Decimal(result.refund_amount), Decimal("500.00"))
        live = (Transaction.Status.COMPLETED,)
        fees = sum(e.amount for e in entries(booking, Transaction.Type.PLATFORM_FEE, *live))
        commissions = sum(e.amount for e in entries(booking, Transaction.Type.COMMISSION, *live))
        host = sum(e.amount for e in entries(booking, Transaction.Type.HOST_PAYOUT, *live))
        self.assertEqual(fees, Decimal("50.00"))
        self.assertEqual(commissions, Decimal("25.00"))
        self.assertEqual(host, Decimal("425.00"))
        self.assertTrue(self.ledger.net_liability(Booking.objects.get(pk=booking.pk)).is_zero())

    def test_host_cancellation_refunds_in_full_regardless_of_policy(self) -> None:
        booking = self.booking_checking_in_in(2, Booking.CancellationPolicy.STRICT)
        confirm_and_pay(self.machine, booking)

        result = self.cancel(booking, cancellation_reason=CancellationReason.HOST_CANCELLED)

        self.assertEqual(Decimal(result.refund_amount), Decimal("1000.00"))

    def test_requested_refund_above_payment_is_rejected(self) -> None:
        booking = self.booking_checking_in_in(72, Booking.CancellationPolicy.FULL)
        confirm_and_pay(self.machine, booking)

        with self.assertRaises(RefundExceedsPaid):
            self.cancel(booking, requested_refund=Decimal("1000.01"))

        booking = Booking.objects.get(pk=booking.pk)
        self.assertEqual(booking.status, BookingStatus.CONFIRMED)
        self.assertFalse(entries(booking, Transaction.Type.REFUND).exists())

    def test_cancelling_unpaid_booking_cancels_the_pending_payment(self) -> None:
        booking = make_booking()
        self.machine.transition(booking.pk, BookingStatus.CONFIRMED, actor="host-1")

        result = self.cancel(booking)

        self.assertIsNone(result.refund_transaction_id)
        payment = entries(booking, Transaction.Type.BOOKING_PAYMENT).get()
        self.assertEqual(payment.status, Transaction.Status.CANCELLED)

    def test_cancelled_booking_cannot_be_cancelled_again(self) -> None:
        booking = make_booking()
        self.cancel(booking)

        with self.assertRaises(InvalidTransition):
            self.cancel(booking)

    def test_refund_quote_matches_the_refund_applied(self) -> None:
        booking = self.booking_checking_in_in(48, Booking.CancellationPolicy.STRICT)
        confirm_and_pay(self.machine, booking)

        quote = self.machine.resolver.compute_refund(Booking.objects.get(pk=booking.pk))
        result = self.cancel(booking)

        self.assertEqual(Decimal(result.refund_amount), quote.amount.amount)


class LatePaymentTests(TestCase):
    def test_payment_settling_after_cancellation_is_refunded(self) -> None:
        gateway = ScriptedPaymentGateway(charges=[GatewayStatus.PENDING])
        machine = make_machine(gateway)
        booking = make_booking()
        result = confirm_and_pay(machine, booking)
        payment = Transaction.objects.get(pk=result.payment_transaction_id)
        self.assertEqual(payment.status, Transaction.Status.PROCESSING)

        machine.transition(booking.pk, BookingStatus.CANCELLED, reason="no show", actor="host-1")
        machine.payments.on_payment_status_changed(payment.gateway_reference, "success")

        payment.refresh_from_db()
        self.assertEqual(payment.status, Transaction.Status.COMPLETED)
        refund = entries(booking, Transaction.Type.REFUND).get()
        self.assertEqual(refund.amount, Decimal("1000.00"))
        self.assertEqual(refund.status, Transaction.Status.COMPLETED)
        self.assertFalse(entries(booking, Transaction.Type.HOST_PAYOUT).exists())
        self.assertTrue(Ledger().net_liability(Booking.objects.get(pk=booking.pk)).is_zero())

    def test_capture_of_cancelled_unsent_payment_is_recorded_and_refunded(self) -> None:
        gateway = ScriptedPaymentGateway()
        machine = make_machine(gateway)
        booking = make_booking()
        result = machine.transition(
            booking.pk, BookingStatus.CONFIRMED, reason="pay by link", actor="guest-1", payment_source=""
        )
        payment = Transaction.objects.get(pk=result.payment_transaction_id)
        self.assertEqual(payment.status, Transaction.Status.PENDING)

        machine.transition(booking.pk, BookingStatus.CANCELLED, reason="changed plans", actor="guest-1")
        payment.refresh_from_db()
        self.assertEqual(payment.status, Transaction.Status.CANCELLED)

        machine.payments.on_payment_status_changed(payment.reference, "success")

        payment.refresh_from_db()
        self.assertEqual(payment.status, Transaction.Status.CANCELLED)
        captured = entries(booking, Transaction.Type.BOOKING_PAYMENT, Transaction.Status.COMPLETED).get()
        self.assertEqual(captured.amount, Decimal("1000.00"))
        self.assertEqual(captured.gateway_reference, payment.reference)
        refund = entries(booking, Transaction.Type.REFUND).get()
        self.assertEqual(refund.amount, Decimal("1000.00"))
        self.assertEqual(refund.status, Transaction.Status.COMPLETED)
        self.assertEqual(gateway.refunds[0][0], payment.reference)
        self.assertEqual(Booking.objects.get(pk=booking.pk).refund_amount, Decimal("1000.00"))
        self.assertFalse(entries(booking, Transaction.Type.HOST_PAYOUT).exists())
        self.assertTrue(Ledger().net_liability(Booking.objects.get(pk=booking.pk)).is_zero())

        count = Transaction.objects.filter(booking=booking).count()
        machine.payments.on_payment_status_changed(payment.reference, "success")
        self.assertEqual(Transaction.objects.filter(booking=booking).count(), count)


class FailedRefundTests(TestCase):
    def test_rejected_refund_can_be_retried(self) -> None:
        gateway = ScriptedPaymentGateway(refunds=[GatewayRejected("account closed")])
        machine = make_machine(gateway)
        booking = make_booking(cancellation_policy=Booking.CancellationPolicy.FULL)
        confirm_and_pay(machine, booking)

        with self.assertRaises(GatewayRejected):
            machine.transition(booking.pk, BookingStatus.CANCELLED, reason="sick", actor="guest-1")

        failed = entries(booking, Transaction.Type.REFUND).get()
        self.assertEqual(failed.status, Transaction.Status.FAILED)
        self.assertEqual(Booking.objects.get(pk=booking.pk).status, BookingStatus.CANCELLED)
        self.assertEqual(Booking.objects.get(pk=booking.pk).refund_amount, Decimal("0"))

        retry = machine.resolver.retry_refund(failed.pk, actor="ops-1")

        self.assertEqual(retry.status, Transaction.Status.COMPLETED)
        self.assertEqual(retry.amount, Decimal("1000.00"))
        self.assertEqual(Booking.objects.get(pk=booking.pk).refund_amount, Decimal("1000.00"))

    def test_only_failed_refunds_can_be_retried(self) -> None:
        machine = make_machine()
        booking = make_booking()
        result = confirm_and_pay(machine, booking)

        with self.assertRaises(InvalidTransition):
            machine.resolver.retry_refund(result.payment_transaction_id, actor="ops-1")
