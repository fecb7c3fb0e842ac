"""Tests for the gateway adapters and webhook signatures."""

from __future__ import annotations

from unittest import mock

import requests
from django.test import SimpleTestCase, override_settings

from apps.finances.conf import finance_settings
from apps.finances.gateways import (
    SIGNATURE_HEADER,
    EmulatedPaymentGateway,
    GatewayResult,
    GatewayStatus,
    HttpPaymentGateway,
    HttpPayoutGateway,
    get_payment_gateway,
    sign,
    to_minor_units,
    verify_signature,
)
from shared.domain.exceptions import GatewayRejected, GatewayTimeout
from shared.domain.value_objects import Money

LIVE_FINANCE = {
    "PAYMENT_GATEWAY": "apps.finances.gateways.HttpPaymentGateway",
    "PAYOUT_GATEWAY": "apps.finances.gateways.HttpPayoutGateway",
    "GATEWAY_API_URL": "https://gateway.test/v1/",
    "GATEWAY_API_KEY": "key_live",
    "GATEWAY_SECRET": "outbound-secret",
}


def response(status_code: int, payload=None) -> mock.Mock:
    reply = mock.Mock(status_code=status_code)
    if payload is None:
        reply.json.side_effect = ValueError("no body")
    else:
        reply.json.return_value = payload
    return reply


class StatusParsingTests(SimpleTestCase):
    def test_provider_spellings_are_normalised(self) -> None:
        self.assertEqual(GatewayStatus.parse("success"), GatewayStatus.SUCCEEDED)
        self.assertEqual(GatewayStatus.parse(" Paid "), GatewayStatus.SUCCEEDED)
        self.assertEqual(GatewayStatus.parse("declined"), GatewayStatus.FAILED)
        self.assertEqual(GatewayStatus.parse("in_progress"), GatewayStatus.PENDING)

    def test_unknown_status_is_an_error(self) -> None:
        with self.assertRaises(ValueError):
            GatewayStatus.parse("maybe")

    def test_result_from_payload(self) -> None:
        result = GatewayResult.from_payload({"status": "failed", "id": "ch_1", "error": "stolen card"})

        self.assertTrue(result.failed)
        self.assertEqual(result.reference, "ch_1")
        self.assertEqual(result.failure_reason, "stolen card")

    def test_minor_units(self) -> None:
        self.assertEqual(to_minor_units(Money("12.34", "AED")), 1234)
        self.assertEqual(to_minor_units(Money("500", "JPY")), 500)
        self.assertEqual(to_minor_units(Money("1.005", "KWD")), 1005)


class SignatureTests(SimpleTestCase):
    def test_valid_signature_is_accepted(self) -> None:
        body = b'{"reference": "tx_1", "status": "success"}'

        self.assertTrue(verify_signature(body, sign(body, "s3cret"), "s3cret"))

    def test_tampered_body_or_wrong_secret_is_rejected(self) -> None:
        body = b'{"reference": "tx_1", "status": "success"}'
        header = sign(body, "s3cret")

        self.assertFalse(verify_signature(body + b" ", header, "s3cret"))
        self.assertFalse(verify_signature(body, header, "other"))
        self.assertFalse(verify_signature(body, None, "s3cret"))

    def test_missing_secret_rejects_everything(self) -> None:
        body = b"{}"
        self.assertFalse(verify_signature(body, sign(body, ""), ""))


@override_settings(FINANCE=LIVE_FINANCE)
class HttpGatewayTests(SimpleTestCase):
    def setUp(self) -> None:
        self.session = mock.Mock(spec=requests.Session)
        self.gateway = HttpPaymentGateway(finance_settings(), session=self.session)

    def test_charge_sends_signed_request(self) -> None:
        self.session.request.return_value = response(200, {"status": "succeeded", "id": "ch_9"})

        result = self.gateway.charge(Money("100.50", "AED"), "tok_visa", reference="tx_1", timeout=5)

        self.assertTrue(result.succeeded)
        self.assertEqual(result.reference, "ch_9")
        method, url = self.session.request.call_args.args
        kwargs = self.session.request.call_args.kwargs
        self.assertEqual((method, url), ("POST", "https://gateway.test/v1/charges"))
        self.assertEqual(kwargs["timeout"], 5)
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer key_live")
        self.assertEqual(kwargs["headers"][SIGNATURE_HEADER], sign(kwargs["data"], "outbound-secret"))
        self.assertIn(b'"amount": 10050', kwargs["data"])

    def test_declined_charge_raises_rejected(self) -> None:
        self.session.request.return_value = response(402, {"error": "insufficient funds"})

        with self.assertRaises(GatewayRejected) as caught:
            self.gateway.charge(Money("10", "AED"), "tok", reference="tx_2", timeout=5)
        self.assertEqual(caught.exception.reason, "insufficient funds")

    def test_failed_status_in_success_response_raises_rejected(self) -> None:
        self.session.request.return_value = response(200, {"status": "declined", "id": "ch_3"})

        with self.assertRaises(GatewayRejected):
            self.gateway.charge(Money("10", "AED"), "tok", reference="tx_3", timeout=5)

    def test_timeouts_and_server_errors_leave_outcome_unknown(self) -> None:
        self.session.request.side_effect = requests.Timeout("read timed out")
        with self.assertRaises(GatewayTimeout):
            self.gateway.refund("ch_1", Money("10", "AED"), reference="tx_4", timeout=5)

        self.session.request.side_effect = requests.ConnectionError("refused")
        with self.assertRaises(GatewayTimeout):
            self.gateway.fetch_status("tx_4")

        self.session.request.side_effect = None
        self.session.request.return_value = response(503)
        with self.assertRaises(GatewayTimeout):
            self.gateway.fetch_status("tx_4")

    def test_payout_transfer(self) -> None:
        gateway = HttpPayoutGateway(finance_settings(), session=self.session)
        self.session.request.return_value = response(200, {"status": "processing", "id": "tr_1"})

        result = gateway.transfer(Money("120", "AED"), "AE07", reference="po_1-1", timeout=5)

        self.assertEqual(result.status, GatewayStatus.PENDING)
        self.assertEqual(self.session.request.call_args.args[1], "https://gateway.test/v1/transfers")


class GatewaySelectionTests(SimpleTestCase):
    @override_settings(FINANCE={**LIVE_FINANCE, "GATEWAY_API_KEY": ""})
    def test_missing_api_key_falls_back_to_emulator(self) -> None:
        self.assertIsInstance(get_payment_gateway(), EmulatedPaymentGateway)

    @override_settings(FINANCE=LIVE_FINANCE, DEBUG=False)
    def test_configured_gateway_is_used(self) -> None:
        self.assertIsInstance(get_payment_gateway(), HttpPaymentGateway)
