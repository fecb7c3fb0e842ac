"""Tests for payment settlement and reconciliation."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

from django.test import TestCase

from apps.bookings.models import Booking
from apps.bookings.tests.helpers import confirm_and_pay, entries, make_booking, make_machine
from apps.finances.gateways import GatewayResult, GatewayStatus
from apps.finances.ledger import Ledger
from apps.finances.models import Transaction
from apps.finances.payments import PaymentService
from apps.finances.tests.fakes import ScriptedPaymentGateway
from shared.domain.exceptions import GatewayRejected, GatewayTimeout, InvalidTransition
from shared.domain.value_objects import Money


class ReconcilePendingTests(TestCase):
    def setUp(self) -> None:
        self.booking = make_booking()

    def _stuck_payment(self) -> Transaction:
        machine = make_machine(ScriptedPaymentGateway(charges=[GatewayTimeout()]))
        confirm_and_pay(machine, self.booking)
        return entries(self.booking, Transaction.Type.BOOKING_PAYMENT).get()

    def test_unanswered_charge_is_settled_by_polling(self) -> None:
        payment = self._stuck_payment()
        self.assertEqual(payment.status, Transaction.Status.PROCESSING)
        gateway = ScriptedPaymentGateway()

        counts = PaymentService(gateway=gateway).reconcile_pending(older_than=timedelta(0))

        self.assertEqual(counts, {"polled": 1, "settled": 1, "failed": 0, "sent": 0, "errors": 0})
        self.assertEqual(gateway.polls, [payment.reference])
        payment.refresh_from_db()
        self.assertEqual(payment.status, Transaction.Status.COMPLETED)
        self.assertEqual(entries(self.booking, Transaction.Type.HOST_PAYOUT).get().amount, Decimal("850.00"))

    def test_poll_reporting_failure_fails_payment(self) -> None:
        payment = self._stuck_payment()
        gateway = ScriptedPaymentGateway(
            statuses=[GatewayResult(GatewayStatus.FAILED, failure_reason="3ds abandoned")]
        )

        counts = PaymentService(gateway=gateway).reconcile_pending(older_than=timedelta(0))

        self.assertEqual(counts["failed"], 1)
        payment.refresh_from_db()
        self.assertEqual(payment.failure_reason, "3ds abandoned")

    def test_poll_errors_are_counted_and_retried_later(self) -> None:
        payment = self._stuck_payment()
        gateway = ScriptedPaymentGateway(statuses=[GatewayTimeout()])

        counts = PaymentService(gateway=gateway).reconcile_pending(older_than=timedelta(0))

        self.assertEqual(counts["errors"], 1)
        payment.refresh_from_db()
        self.assertEqual(payment.status, Transaction.Status.PROCESSING)

    def test_recent_entries_are_not_polled(self) -> None:
        self._stuck_payment()
        gateway = ScriptedPaymentGateway()

        counts = PaymentService(gateway=gateway).reconcile_pending(older_than=timedelta(hours=1))

        self.assertEqual(counts["polled"], 0)
        self.assertEqual(gateway.polls, [])

    def test_unsent_refunds_are_sent(self) -> None:
        confirm_and_pay(make_machine(), self.booking)
        refund = Ledger().post(
            self.booking, Transaction.Type.REFUND, Money("200.00", "AED"), beneficiary_id="guest-1"
        )
        gateway = ScriptedPaymentGateway()

        counts = PaymentService(gateway=gateway).reconcile_pending(older_than=timedelta(0))

        self.assertEqual(counts["sent"], 1)
        refund.refresh_from_db()
        self.assertEqual(refund.status, Transaction.Status.COMPLETED)
        payment = entries(self.booking, Transaction.Type.BOOKING_PAYMENT).get()
        self.assertEqual(gateway.refunds[0][0], payment.gateway_reference)


class PaymentResultTests(TestCase):
    def setUp(self) -> None:
        self.booking = make_booking()
        self.service = PaymentService(gateway=ScriptedPaymentGateway())

    def test_payment_on_completed_booking_releases_host_credit_immediately(self) -> None:
        machine = make_machine(ScriptedPaymentGateway(charges=[GatewayStatus.PENDING]))
        confirm_and_pay(machine, self.booking)
        payment = entries(self.booking, Transaction.Type.BOOKING_PAYMENT).get()
        Booking.objects.filter(pk=self.booking.pk).update(status=Booking.Status.COMPLETED)

        self.service.apply_payment_result(payment.pk, GatewayResult(GatewayStatus.SUCCEEDED))

        host = entries(self.booking, Transaction.Type.HOST_PAYOUT).get()
        self.assertEqual(host.status, Transaction.Status.COMPLETED)

    def test_result_for_settled_payment_is_ignored(self) -> None:
        confirm_and_pay(make_machine(), self.booking)
        payment = entries(self.booking, Transaction.Type.BOOKING_PAYMENT).get()

        self.service.apply_payment_result(payment.pk, GatewayResult(GatewayStatus.FAILED))

        payment.refresh_from_db()
        self.assertEqual(payment.status, Transaction.Status.COMPLETED)
        self.assertEqual(entries(self.booking, Transaction.Type.PLATFORM_FEE).count(), 1)

    def test_refund_needs_a_completed_payment(self) -> None:
        refund = Ledger().post(self.booking, Transaction.Type.REFUND, Money("10", "AED"))

        with self.assertRaises(InvalidTransition):
            self.service.initiate_refund(refund.pk)

    def test_only_refund_entries_are_refunded(self) -> None:
        fee = Ledger().post(self.booking, Transaction.Type.PLATFORM_FEE, Money("10", "AED"))

        with self.assertRaises(ValueError):
            self.service.initiate_refund(fee.pk)

    def test_rejected_late_refund_waits_for_retry(self) -> None:
        machine = make_machine(ScriptedPaymentGateway(charges=[GatewayStatus.PENDING]))
        confirm_and_pay(machine, self.booking)
        machine.transition(self.booking.pk, Booking.Status.CANCELLED, reason="guest left", actor="guest-1")
        payment = entries(self.booking, Transaction.Type.BOOKING_PAYMENT).get()
        service = PaymentService(
            gateway=ScriptedPaymentGateway(refunds=[GatewayRejected("charge too old")])
        )

        service.on_payment_status_changed(payment.gateway_reference, "succeeded")

        refund = entries(self.booking, Transaction.Type.REFUND).get()
        self.assertEqual(refund.status, Transaction.Status.FAILED)
        self.assertEqual(refund.failure_reason, "charge too old")
