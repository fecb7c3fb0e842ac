"""
Payment and payout gateway adapters

The settlement engine talks to two external providers: a payment gateway
(charges and refunds to the guest) and a payout gateway (transfers to the
host). Both are reached over signed JSON HTTP calls with a per-call timeout.
Every call carries our own unique reference, so repeating a call after a
timeout never moves money twice and the outcome can be polled later.

For development the emulated gateways answer immediately without network
access; they are selected when DEBUG is on or no API key is configured.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum

import requests
from django.conf import settings  # type: ignore
from django.utils.module_loading import import_string  # type: ignore

from shared.domain.exceptions import GatewayRejected, GatewayTimeout
from shared.domain.value_objects import Money

from .conf import FinanceSettings, finance_settings

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Gateway-Signature"


class GatewayStatus(str, Enum):
    SUCCEEDED = "SUCCEEDED"
    PENDING = "PENDING"
    FAILED = "FAILED"

    @classmethod
    def parse(cls, value: str) -> "GatewayStatus":
        """Normalise provider status strings ("success", "declined", ...)."""
        normalized = (value or "").strip().upper()
        if normalized in ("SUCCEEDED", "SUCCESS", "COMPLETED", "PAID"):
            return cls.SUCCEEDED
        if normalized in ("FAILED", "FAILURE", "DECLINED", "REJECTED", "CANCELLED", "ERROR"):
            return cls.FAILED
        if normalized in ("PENDING", "PROCESSING", "IN_PROGRESS", "CREATED"):
            return cls.PENDING
        raise ValueError(f"Unknown gateway status: {value!r}")


@dataclass(frozen=True)
class GatewayResult:
    status: GatewayStatus
    reference: str = ""
    failure_reason: str = ""

    @property
    def succeeded(self) -> bool:
        return self.status == GatewayStatus.SUCCEEDED

    @property
    def failed(self) -> bool:
        return self.status == GatewayStatus.FAILED

    @classmethod
    def from_payload(cls, data: dict) -> "GatewayResult":
        return cls(
            status=GatewayStatus.parse(data.get("status", "")),
            reference=str(data.get("gateway_reference") or data.get("id") or ""),
            failure_reason=str(data.get("failure_reason") or data.get("error") or ""),
        )


def to_minor_units(amount: Money) -> int:
    """Providers take integer minor units (fils, cents)."""
    return int((amount.amount / amount.exponent).to_integral_value())


def sign(body: bytes, secret: str) -> str:
    return "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, header_value: str | None, secret: str) -> bool:
    """Constant-time check of an ``X-Gateway-Signature`` header."""
    if not secret or not header_value:
        return False
    return hmac.compare_digest(sign(body, secret), header_value.strip())


class PaymentGateway(ABC):
    """Charges and refunds guest payments."""

    @abstractmethod
    def charge(self, amount: Money, source: str, reference: str, timeout: int) -> GatewayResult:
        ...

    @abstractmethod
    def refund(
        self, gateway_ref: str, amount: Money, reference: str, timeout: int
    ) -> GatewayResult:
        ...

    @abstractmethod
    def fetch_status(self, reference: str) -> GatewayResult:
        ...


class PayoutGateway(ABC):
    """Transfers host earnings."""

    @abstractmethod
    def transfer(
        self, amount: Money, destination: str, reference: str, timeout: int
    ) -> GatewayResult:
        ...

    @abstractmethod
    def fetch_status(self, reference: str) -> GatewayResult:
        ...


class SignedHttpClient:
    """JSON over HTTPS with Bearer auth and an HMAC-SHA256 body signature."""

    def __init__(self, conf: FinanceSettings | None = None, session: requests.Session | None = None):
        conf = conf or finance_settings()
        self.base_url = conf.gateway_api_url.rstrip("/") + "/"
        self.api_key = conf.gateway_api_key
        self.secret = conf.gateway_secret
        self.default_timeout = conf.gateway_timeout
        self.session = session or requests.Session()

    def _headers(self, body: bytes) -> dict:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if self.secret:
            headers[SIGNATURE_HEADER] = sign(body, self.secret)
        return headers

    def request(self, method: str, path: str, payload: dict | None = None, timeout: int | None = None) -> dict:
        body = json.dumps(payload or {}, sort_keys=True).encode()
        url = f"{self.base_url}{path.lstrip('/')}"
        try:
            response = self.session.request(
                method,
                url,
                data=body if method != "GET" else None,
                headers=self._headers(body),
                timeout=timeout or self.default_timeout,
            )
        except requests.Timeout as exc:
            logger.warning(f"Gateway call {method} {url} timed out: {exc}")
            raise GatewayTimeout(f"Gateway did not answer {method} {path} in time") from exc
        except requests.ConnectionError as exc:
            logger.warning(f"Gateway call {method} {url} failed to connect: {exc}")
            raise GatewayTimeout(f"Gateway unreachable for {method} {path}") from exc

        if response.status_code >= 500:
            logger.warning(f"Gateway returned {response.status_code} for {method} {url}")
            raise GatewayTimeout(f"Gateway error {response.status_code}; outcome unknown")

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.status_code >= 400:
            reason = data.get("failure_reason") or data.get("error") or f"HTTP {response.status_code}"
            logger.error(f"Gateway rejected {method} {url}: {reason}")
            raise GatewayRejected(str(reason))
        return data


class HttpPaymentGateway(SignedHttpClient, PaymentGateway):
    def charge(self, amount: Money, source: str, reference: str, timeout: int) -> GatewayResult:
        logger.info(f"Charging {amount} from source for reference {reference}")
        data = self.request(
            "POST",
            "charges",
            {
                "reference": reference,
                "amount": to_minor_units(amount),
                "currency": amount.currency,
                "source": source,
            },
            timeout=timeout,
        )
        return self._result(data)

    def refund(self, gateway_ref: str, amount: Money, reference: str, timeout: int) -> GatewayResult:
        logger.info(f"Refunding {amount} of charge {gateway_ref} as {reference}")
        data = self.request(
            "POST",
            "refunds",
            {
                "reference": reference,
                "charge": gateway_ref,
                "amount": to_minor_units(amount),
                "currency": amount.currency,
            },
            timeout=timeout,
        )
        return self._result(data)

    def fetch_status(self, reference: str) -> GatewayResult:
        return GatewayResult.from_payload(self.request("GET", f"operations/{reference}"))

    @staticmethod
    def _result(data: dict) -> GatewayResult:
        result = GatewayResult.from_payload(data)
        if result.failed:
            raise GatewayRejected(result.failure_reason or "declined")
        return result


class HttpPayoutGateway(SignedHttpClient, PayoutGateway):
    def transfer(self, amount: Money, destination: str, reference: str, timeout: int) -> GatewayResult:
        logger.info(f"Transferring {amount} as {reference}")
        data = self.request(
            "POST",
            "transfers",
            {
                "reference": reference,
                "amount": to_minor_units(amount),
                "currency": amount.currency,
                "destination": destination,
            },
            timeout=timeout,
        )
        result = GatewayResult.from_payload(data)
        if result.failed:
            raise GatewayRejected(result.failure_reason or "declined")
        return result

    def fetch_status(self, reference: str) -> GatewayResult:
        return GatewayResult.from_payload(self.request("GET", f"transfers/{reference}"))


class EmulatedPaymentGateway(PaymentGateway):
    """Development stand-in: every call succeeds immediately."""

    def charge(self, amount: Money, source: str, reference: str, timeout: int) -> GatewayResult:
        logger.warning(f"Emulated gateway: charge {amount} for {reference}")
        return GatewayResult(GatewayStatus.SUCCEEDED, reference=f"emu_{uuid.uuid4().hex[:16]}")

    def refund(self, gateway_ref: str, amount: Money, reference: str, timeout: int) -> GatewayResult:
        logger.warning(f"Emulated gateway: refund {amount} of {gateway_ref} for {reference}")
        return GatewayResult(GatewayStatus.SUCCEEDED, reference=f"emu_{uuid.uuid4().hex[:16]}")

    def fetch_status(self, reference: str) -> GatewayResult:
        return GatewayResult(GatewayStatus.SUCCEEDED, reference=reference)


class EmulatedPayoutGateway(PayoutGateway):
    """Development stand-in: every transfer succeeds immediately."""

    def transfer(self, amount: Money, destination: str, reference: str, timeout: int) -> GatewayResult:
        logger.warning(f"Emulated gateway: transfer {amount} for {reference}")
        return GatewayResult(GatewayStatus.SUCCEEDED, reference=f"emu_{uuid.uuid4().hex[:16]}")

    def fetch_status(self, reference: str) -> GatewayResult:
        return GatewayResult(GatewayStatus.SUCCEEDED, reference=reference)


def _build(path: str, emulated, conf: FinanceSettings):
    gateway_class = import_string(path)
    if issubclass(gateway_class, SignedHttpClient) and (settings.DEBUG or not conf.gateway_api_key):
        logger.warning(
            f"Using {emulated.__name__} instead of {gateway_class.__name__} "
            "(DEBUG mode or missing API key)"
        )
        return emulated()
    if issubclass(gateway_class, SignedHttpClient):
        return gateway_class(conf)
    return gateway_class()


def get_payment_gateway(conf: FinanceSettings | None = None) -> PaymentGateway:
    conf = conf or finance_settings()
    return _build(conf.payment_gateway, EmulatedPaymentGateway, conf)


def get_payout_gateway(conf: FinanceSettings | None = None) -> PayoutGateway:
    conf = conf or finance_settings()
    return _build(conf.payout_gateway, EmulatedPayoutGateway, conf)
