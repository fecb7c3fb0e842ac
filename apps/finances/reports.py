"""Aggregated ledger figures for the platform dashboard and host payout pages.

All figures are read straight from ledger entries; amounts are returned as
decimal strings with their currency.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from django.db import models  # type: ignore
from django.db.models import Q  # type: ignore

from .conf import finance_settings
from .models import Payout, Transaction


def _total(queryset) -> Decimal:
    return queryset.aggregate(total=models.Sum("amount")).get("total") or Decimal("0")


def _money(value: Decimal) -> str:
    return str(value)


def financial_summary(since: datetime | None = None, currency: str | None = None) -> dict:
    """Platform-wide totals, optionally limited to entries created after ``since``."""
    currency = (currency or finance_settings().default_currency).upper()
    entries = Transaction.objects.filter(currency=currency)
    payouts = Payout.objects.filter(currency=currency)
    if since is not None:
        entries = entries.filter(created_at__gte=since)
        payouts = payouts.filter(created_at__gte=since)

    completed = entries.filter(status=Transaction.Status.COMPLETED)
    host_credits = entries.filter(type=Transaction.Type.HOST_PAYOUT)

    return {
        "currency": currency,
        "since": since.isoformat() if since else None,
        "total_revenue": _money(_total(completed.filter(type=Transaction.Type.BOOKING_PAYMENT))),
        "platform_fees": _money(_total(completed.filter(type=Transaction.Type.PLATFORM_FEE))),
        "agent_commissions": _money(_total(completed.filter(type=Transaction.Type.COMMISSION))),
        "refunds_issued": _money(_total(completed.filter(type=Transaction.Type.REFUND))),
        "refunds_pending": _money(
            _total(
                entries.filter(
                    type=Transaction.Type.REFUND,
                    status__in=(Transaction.Status.PENDING, Transaction.Status.PROCESSING),
                )
            )
        ),
        "paid_out": _money(_total(payouts.filter(status=Payout.Status.COMPLETED))),
        "pending_payouts": _money(_total(payouts.filter(status__in=Payout.ACTIVE_STATUSES))),
        "held_host_earnings": _money(_total(host_credits.filter(status=Transaction.Status.PENDING))),
        "bookings": entries.values("booking_id").distinct().count(),
    }


def host_summary(host_id: str, currency: str | None = None) -> dict:
    """Balances of one host as shown on the host payouts page."""
    currency = (currency or finance_settings().default_currency).upper()
    credits = Transaction.objects.filter(
        type=Transaction.Type.HOST_PAYOUT, beneficiary_id=host_id, currency=currency
    )
    completed = credits.filter(status=Transaction.Status.COMPLETED)
    payouts = Payout.objects.filter(host_id=host_id, currency=currency)

    return {
        "host_id": host_id,
        "currency": currency,
        "available_balance": _money(
            _total(
                completed.filter(payout__isnull=True, settled_at__isnull=True).exclude(
                    booking__status="DISPUTED"
                )
            )
        ),
        "frozen_by_dispute": _money(
            _total(
                credits.filter(
                    status__in=(Transaction.Status.PENDING, Transaction.Status.COMPLETED),
                    payout__isnull=True,
                    booking__status="DISPUTED",
                )
            )
        ),
        "pending_payout": _money(
            _total(completed.filter(payout__isnull=False, settled_at__isnull=True))
        ),
        "total_paid_out": _money(_total(completed.filter(settled_at__isnull=False))),
        "held_earnings": _money(_total(credits.filter(status=Transaction.Status.PENDING))),
        "payouts": [
            {
                "id": str(payout.pk),
                "reference": payout.reference,
                "amount": _money(payout.amount),
                "status": payout.status,
                "created_at": payout.created_at.isoformat(),
                "processed_at": payout.processed_at.isoformat() if payout.processed_at else None,
            }
            for payout in payouts.order_by("-created_at")[:20]
        ],
        "last_payout_at": _last_payout_at(payouts),
    }


def _last_payout_at(payouts) -> str | None:
    last = payouts.filter(
        Q(status=Payout.Status.COMPLETED) & Q(processed_at__isnull=False)
    ).order_by("-processed_at").first()
    return last.processed_at.isoformat() if last else None
