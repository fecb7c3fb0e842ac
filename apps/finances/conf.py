"""Typed access to the FINANCE settings block.

Settlement code never reads ``settings.FINANCE`` directly; it asks
:func:`finance_settings` for a :class:`FinanceSettings` snapshot so that
defaults, Decimal coercion and validation live in one place and tests can
override single keys with ``override_settings``.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from django.conf import settings  # type: ignore
from django.core.exceptions import ImproperlyConfigured  # type: ignore

DEFAULTS = {
    "DEFAULT_CURRENCY": "AED",
    "COMMISSION": {
        "PLATFORM_PCT": "10",
        "HOST_PCT": "85",
        "AGENT_PCT": "5",
        "TOLERANCE_PCT": "0.01",
    },
    "MINIMUM_PAYOUT": "100",
    "NON_REFUNDABLE_FEE": "0",
    "CANCELLATION_POLICIES": {
        "FULL": {
            "WINDOW_HOURS": 0,
            "REFUND_BEFORE_WINDOW": "1",
            "REFUND_WITHIN_WINDOW": "1",
            "FEE_REFUNDABLE": True,
        },
        "FLEXIBLE": {
            "WINDOW_HOURS": 6,
            "REFUND_BEFORE_WINDOW": "1",
            "REFUND_WITHIN_WINDOW": "1",
            "FEE_REFUNDABLE": False,
        },
        "STRICT": {
            "WINDOW_HOURS": 24,
            "REFUND_BEFORE_WINDOW": "0.5",
            "REFUND_WITHIN_WINDOW": "0",
            "FEE_REFUNDABLE": False,
        },
    },
    "GATEWAY_TIMEOUT_SECONDS": 30,
    "RECONCILE_AFTER_MINUTES": 15,
    "PAYMENT_GATEWAY": "apps.finances.gateways.HttpPaymentGateway",
    "PAYOUT_GATEWAY": "apps.finances.gateways.HttpPayoutGateway",
    "GATEWAY_API_URL": "",
    "GATEWAY_API_KEY": "",
    "GATEWAY_SECRET": "",
    "WEBHOOK_SECRET": "",
}


@dataclass(frozen=True)
class PolicyTerms:
    """Refund terms of one cancellation policy."""

    name: str
    window_hours: Decimal
    refund_before_window: Decimal
    refund_within_window: Decimal
    fee_refundable: bool


@dataclass(frozen=True)
class FinanceSettings:
    default_currency: str
    platform_pct: Decimal
    host_pct: Decimal
    agent_pct: Decimal
    tolerance_pct: Decimal
    minimum_payout: Decimal
    non_refundable_fee: Decimal
    policies: dict
    gateway_timeout: int
    reconcile_after_minutes: int
    payment_gateway: str
    payout_gateway: str
    gateway_api_url: str
    gateway_api_key: str
    gateway_secret: str
    webhook_secret: str

    def policy(self, name: str) -> PolicyTerms:
        try:
            return self.policies[name]
        except KeyError:
            raise ImproperlyConfigured(f"Unknown cancellation policy: {name}") from None


def _decimal(value, key: str) -> Decimal:
    if isinstance(value, float):
        raise ImproperlyConfigured(f"FINANCE[{key!r}] must be a string or int, not float")
    try:
        return Decimal(str(value))
    except ArithmeticError as exc:
        raise ImproperlyConfigured(f"FINANCE[{key!r}] is not a number: {value!r}") from exc


def _policy(name: str, raw: dict) -> PolicyTerms:
    terms = PolicyTerms(
        name=name,
        window_hours=_decimal(raw["WINDOW_HOURS"], f"{name}.WINDOW_HOURS"),
        refund_before_window=_decimal(raw["REFUND_BEFORE_WINDOW"], f"{name}.REFUND_BEFORE_WINDOW"),
        refund_within_window=_decimal(raw["REFUND_WITHIN_WINDOW"], f"{name}.REFUND_WITHIN_WINDOW"),
        fee_refundable=bool(raw["FEE_REFUNDABLE"]),
    )
    for fraction in (terms.refund_before_window, terms.refund_within_window):
        if not Decimal("0") <= fraction <= Decimal("1"):
            raise ImproperlyConfigured(f"Refund fractions of policy {name} must be within [0, 1]")
    if terms.window_hours < 0:
        raise ImproperlyConfigured(f"WINDOW_HOURS of policy {name} cannot be negative")
    return terms


def finance_settings() -> FinanceSettings:
    """Merge ``settings.FINANCE`` over the defaults and coerce the values."""

    configured = getattr(settings, "FINANCE", {}) or {}
    merged = {**DEFAULTS, **configured}
    commission = {**DEFAULTS["COMMISSION"], **configured.get("COMMISSION", {})}

    raw_policies = {**DEFAULTS["CANCELLATION_POLICIES"]}
    for name, overrides in configured.get("CANCELLATION_POLICIES", {}).items():
        raw_policies[name] = {**raw_policies.get(name, {}), **overrides}

    return FinanceSettings(
        default_currency=str(merged["DEFAULT_CURRENCY"]).upper(),
        platform_pct=_decimal(commission["PLATFORM_PCT"], "COMMISSION.PLATFORM_PCT"),
        host_pct=_decimal(commission["HOST_PCT"], "COMMISSION.HOST_PCT"),
        agent_pct=_decimal(commission["AGENT_PCT"], "COMMISSION.AGENT_PCT"),
        tolerance_pct=_decimal(commission["TOLERANCE_PCT"], "COMMISSION.TOLERANCE_PCT"),
        minimum_payout=_decimal(merged["MINIMUM_PAYOUT"], "MINIMUM_PAYOUT"),
        non_refundable_fee=_decimal(merged["NON_REFUNDABLE_FEE"], "NON_REFUNDABLE_FEE"),
        policies={name: _policy(name, raw) for name, raw in raw_policies.items()},
        gateway_timeout=int(merged["GATEWAY_TIMEOUT_SECONDS"]),
        reconcile_after_minutes=int(merged["RECONCILE_AFTER_MINUTES"]),
        payment_gateway=merged["PAYMENT_GATEWAY"],
        payout_gateway=merged["PAYOUT_GATEWAY"],
        gateway_api_url=merged["GATEWAY_API_URL"],
        gateway_api_key=merged["GATEWAY_API_KEY"],
        gateway_secret=merged["GATEWAY_SECRET"],
        webhook_secret=merged["WEBHOOK_SECRET"],
    )
