"""Tests for the signed gateway webhook endpoints."""

from __future__ import annotations

import json

from django.urls import reverse
from rest_framework import status
from rest_framework.test import APITestCase

from apps.bookings.tests.helpers import (
    confirm_and_pay,
    credit,
    entries,
    make_booking,
    make_machine,
)
from apps.finances.gateways import GatewayStatus, sign
from apps.finances.models import GatewayCallback, Payout, PayoutAccount, Transaction
from apps.finances.payouts import PayoutBatcher
from apps.finances.tests.fakes import ScriptedPaymentGateway, ScriptedPayoutGateway
from shared.domain.exceptions import GatewayTimeout

WEBHOOK_SECRET = "test-webhook-secret"


class WebhookTestMixin:
    def deliver(self, url_name: str, payload, secret: str = WEBHOOK_SECRET, raw: bytes | None = None):
        body = raw if raw is not None else json.dumps(payload).encode()
        return self.client.post(
            reverse(url_name),
            data=body,
            content_type="application/json",
            HTTP_X_GATEWAY_SIGNATURE=sign(body, secret),
        )


class PaymentWebhookTests(WebhookTestMixin, APITestCase):
    def setUp(self) -> None:
        self.booking = make_booking()
        machine = make_machine(ScriptedPaymentGateway(charges=[GatewayStatus.PENDING]))
        confirm_and_pay(machine, self.booking)
        self.payment = entries(self.booking, Transaction.Type.BOOKING_PAYMENT).get()

    def test_success_callback_settles_payment(self) -> None:
        self.assertEqual(self.payment.status, Transaction.Status.PROCESSING)

        response = self.deliver(
            "webhook-payments", {"reference": self.payment.gateway_reference, "status": "success"}
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.payment.refresh_from_db()
        self.assertEqual(self.payment.status, Transaction.Status.COMPLETED)
        self.assertTrue(entries(self.booking, Transaction.Type.PLATFORM_FEE).exists())
        callback = GatewayCallback.objects.get()
        self.assertTrue(callback.processed)
        self.assertEqual(callback.kind, GatewayCallback.Kind.PAYMENT)

    def test_duplicate_callback_is_harmless(self) -> None:
        payload = {"id": self.payment.reference, "status": "succeeded"}

        self.deliver("webhook-payments", payload)
        response = self.deliver("webhook-payments", payload)

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(entries(self.booking, Transaction.Type.PLATFORM_FEE).count(), 1)
        self.assertEqual(GatewayCallback.objects.count(), 2)

    def test_failure_callback_fails_payment(self) -> None:
        response = self.deliver(
            "webhook-payments",
            {"reference": self.payment.gateway_reference, "status": "declined", "error": "expired card"},
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.payment.refresh_from_db()
        self.assertEqual(self.payment.status, Transaction.Status.FAILED)
        self.assertEqual(self.payment.failure_reason, "expired card")

    def test_bad_signature_is_rejected_before_anything_is_stored(self) -> None:
        response = self.deliver(
            "webhook-payments",
            {"reference": self.payment.gateway_reference, "status": "success"},
            secret="forged",
        )

        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertFalse(GatewayCallback.objects.exists())
        self.payment.refresh_from_db()
        self.assertEqual(self.payment.status, Transaction.Status.PROCESSING)

    def test_unknown_reference_is_recorded(self) -> None:
        response = self.deliver("webhook-payments", {"reference": "ch_missing", "status": "success"})

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        callback = GatewayCallback.objects.get()
        self.assertFalse(callback.processed)
        self.assertEqual(callback.error, "unknown reference")

    def test_malformed_payloads_are_rejected(self) -> None:
        self.assertEqual(
            self.deliver("webhook-payments", None, raw=b"not json").status_code,
            status.HTTP_400_BAD_REQUEST,
        )
        self.assertEqual(
            self.deliver("webhook-payments", ["a", "list"]).status_code,
            status.HTTP_400_BAD_REQUEST,
        )
        self.assertEqual(
            self.deliver("webhook-payments", {"reference": self.payment.reference}).status_code,
            status.HTTP_400_BAD_REQUEST,
        )

    def test_unknown_status_is_a_bad_request(self) -> None:
        response = self.deliver(
            "webhook-payments", {"reference": self.payment.reference, "status": "maybe"}
        )

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("maybe", GatewayCallback.objects.get().error)


class TransferWebhookTests(WebhookTestMixin, APITestCase):
    def setUp(self) -> None:
        PayoutAccount.objects.create(host_id="host-1", destination="AE070331234567890123456")
        credit("150.00")
        batcher = PayoutBatcher(gateway=ScriptedPayoutGateway(transfers=[GatewayTimeout()]))
        self.payout = batcher.build_payout("host-1")
        with self.assertRaises(GatewayTimeout):
            batcher.process_payout(self.payout.pk)

    def test_completed_transfer_settles_payout(self) -> None:
        response = self.deliver(
            "webhook-transfers", {"reference": f"{self.payout.reference}-1", "status": "completed"}
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        payout = Payout.objects.get(pk=self.payout.pk)
        self.assertEqual(payout.status, Payout.Status.COMPLETED)
        self.assertFalse(Transaction.objects.filter(payout=payout, settled_at__isnull=True).exists())
        self.assertEqual(GatewayCallback.objects.get().kind, GatewayCallback.Kind.TRANSFER)

    def test_unknown_transfer_is_not_found(self) -> None:
        response = self.deliver("webhook-transfers", {"reference": "po_unknown-1", "status": "failed"})

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(Payout.objects.get(pk=self.payout.pk).status, Payout.Status.PROCESSING)
