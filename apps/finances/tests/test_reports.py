"""Tests for the financial summaries."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

from django.test import TestCase
from django.utils import timezone

from apps.bookings.models import Booking
from apps.bookings.tests.helpers import confirm_and_pay, credit, make_booking, make_machine
from apps.finances import reports
from apps.finances.models import PayoutAccount
from apps.finances.payouts import PayoutBatcher
from apps.finances.tests.fakes import ScriptedPayoutGateway


class FinancialSummaryTests(TestCase):
    def setUp(self) -> None:
        self.machine = make_machine()

    def test_totals_follow_the_ledger(self) -> None:
        kept = make_booking()
        confirm_and_pay(self.machine, kept)
        refunded = make_booking(total_amount=Decimal("500.00"))
        confirm_and_pay(self.machine, refunded)
        self.machine.transition(refunded.pk, Booking.Status.CANCELLED, reason="sick", actor="guest-1")

        summary = reports.financial_summary()

        self.assertEqual(summary["currency"], "AED")
        self.assertEqual(Decimal(summary["total_revenue"]), Decimal("1500.00"))
        self.assertEqual(Decimal(summary["platform_fees"]), Decimal("100.00"))
        self.assertEqual(Decimal(summary["agent_commissions"]), Decimal("50.00"))
        self.assertEqual(Decimal(summary["refunds_issued"]), Decimal("500.00"))
        self.assertEqual(Decimal(summary["refunds_pending"]), Decimal("0"))
        self.assertEqual(Decimal(summary["held_host_earnings"]), Decimal("850.00"))
        self.assertEqual(summary["bookings"], 2)

    def test_since_and_currency_filters(self) -> None:
        confirm_and_pay(self.machine, make_booking())

        later = reports.financial_summary(since=timezone.now() + timedelta(minutes=1))
        other_currency = reports.financial_summary(currency="usd")

        self.assertEqual(Decimal(later["total_revenue"]), Decimal("0"))
        self.assertEqual(other_currency["currency"], "USD")
        self.assertEqual(other_currency["bookings"], 0)


class HostSummaryTests(TestCase):
    def setUp(self) -> None:
        PayoutAccount.objects.create(host_id="host-1", destination="AE070331234567890123456")

    def test_balances_by_state(self) -> None:
        batcher = PayoutBatcher(gateway=ScriptedPayoutGateway())
        credit("200.00")
        paid = batcher.build_payout("host-1")
        batcher.process_payout(paid.pk)
        credit("300.00")
        batcher.build_payout("host-1")
        credit("40.00")
        frozen = credit("70.00")
        Booking.objects.filter(pk=frozen.booking_id).update(status=Booking.Status.DISPUTED)

        summary = reports.host_summary("host-1")

        self.assertEqual(Decimal(summary["total_paid_out"]), Decimal("200.00"))
        self.assertEqual(Decimal(summary["pending_payout"]), Decimal("300.00"))
        self.assertEqual(Decimal(summary["available_balance"]), Decimal("40.00"))
        self.assertEqual(Decimal(summary["frozen_by_dispute"]), Decimal("70.00"))
        self.assertEqual(len(summary["payouts"]), 2)
        self.assertIsNotNone(summary["last_payout_at"])

    def test_held_earnings_of_a_disputed_stay_are_frozen(self) -> None:
        machine = make_machine()
        booking = make_booking()
        confirm_and_pay(machine, booking)
        machine.resolver.open_dispute(booking.pk, "missing towels", actor="guest-1")

        summary = reports.host_summary("host-1")

        self.assertEqual(Decimal(summary["held_earnings"]), Decimal("850.00"))
        self.assertEqual(Decimal(summary["frozen_by_dispute"]), Decimal("850.00"))
        self.assertEqual(Decimal(summary["available_balance"]), Decimal("0"))
