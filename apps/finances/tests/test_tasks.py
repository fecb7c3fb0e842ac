"""Tests for the scheduled payout tasks."""

from __future__ import annotations

from unittest import mock

from django.test import TestCase

from apps.bookings.tests.helpers import credit
from apps.finances.models import Payout, PayoutAccount
from apps.finances.tasks import build_scheduled_payouts, process_pending_payouts
from apps.finances.tests.fakes import ScriptedPayoutGateway
from shared.domain.exceptions import GatewayRejected, GatewayTimeout


class ScheduledPayoutTests(TestCase):
    def setUp(self) -> None:
        for host_id in ("host-1", "host-2", "host-3"):
            PayoutAccount.objects.create(host_id=host_id, destination=f"wallet-{host_id}")
            credit("150.00", host_id=host_id)

    @mock.patch("apps.finances.tasks.process_pending_payouts.delay")
    def test_weekly_run_builds_and_queues_sending(self, send) -> None:
        credit("20.00", host_id="host-4")

        counts = build_scheduled_payouts()

        self.assertEqual(counts["created"], 3)
        self.assertEqual(counts["carried_over"], 1)
        self.assertEqual(Payout.objects.filter(status=Payout.Status.PENDING).count(), 3)
        send.assert_called_once_with()

    def test_pending_payouts_are_sent_and_outcomes_counted(self) -> None:
        with mock.patch("apps.finances.tasks.process_pending_payouts.delay"):
            build_scheduled_payouts()
        gateway = ScriptedPayoutGateway(transfers=[GatewayRejected("closed account"), GatewayTimeout()])

        with mock.patch("apps.finances.payouts.get_payout_gateway", return_value=gateway):
            counts = process_pending_payouts()

        self.assertEqual(counts, {"sent": 1, "failed": 1, "unanswered": 1})
        self.assertEqual(len(gateway.transfers), 3)
        self.assertEqual(
            sorted(Payout.objects.values_list("status", flat=True)),
            sorted([Payout.Status.COMPLETED, Payout.Status.FAILED, Payout.Status.PROCESSING]),
        )
