"""
Refund policy

Pure calculation of how much of a guest's payment goes back to them when a
booking is cancelled. Inputs come from the ledger (paid and refundable
amounts) and the policy terms in configuration; nothing here touches the
database.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from shared.domain.exceptions import RefundExceedsPaid
from shared.domain.value_objects import Money


@dataclass(frozen=True)
class RefundQuote:
    amount: Money
    refundable: Money
    policy: str
    fraction: Decimal
    within_window: bool
    hours_before_check_in: Decimal
    fee_deducted: Money

    def as_dict(self) -> dict:
        return {
            "amount": str(self.amount.amount),
            "currency": self.amount.currency,
            "refundable": str(self.refundable.amount),
            "policy": self.policy,
            "fraction": str(self.fraction),
            "within_window": self.within_window,
            "hours_before_check_in": str(self.hours_before_check_in.quantize(Decimal("0.01"))),
            "fee_deducted": str(self.fee_deducted.amount),
        }


def quote_refund(
    *,
    paid: Money,
    refundable: Money,
    terms,
    hours_before_check_in: Decimal,
    non_refundable_fee: Money,
    requested: Money | None = None,
) -> RefundQuote:
    """
    Refund owed under ``terms``.

    ``paid`` is what the guest paid in total and ``refundable`` what is
    left after refunds already committed. The policy maximum is a fraction
    of ``paid`` (minus the non-refundable fee inside the window), truncated
    to minor units and never above ``refundable``. An explicit ``requested``
    amount above ``refundable`` is an error; otherwise the smaller of
    ``requested`` and the policy maximum wins.
    """
    zero = Money.zero(paid.currency)
    if requested is not None:
        if requested.amount < 0:
            raise ValueError("Requested refund cannot be negative")
        if requested > refundable:
            raise RefundExceedsPaid(requested.amount, refundable.amount, refundable.currency)

    within_window = hours_before_check_in < terms.window_hours
    fraction = terms.refund_within_window if within_window else terms.refund_before_window

    maximum = (paid * fraction).truncate()
    fee_deducted = zero
    if within_window and not terms.fee_refundable and non_refundable_fee.is_positive():
        fee_deducted = min(non_refundable_fee, maximum)
        maximum = maximum - fee_deducted

    maximum = max(zero, min(maximum, refundable))
    amount = maximum if requested is None else min(requested.truncate(), maximum)

    return RefundQuote(
        amount=amount,
        refundable=refundable,
        policy=terms.name,
        fraction=fraction,
        within_window=within_window,
        hours_before_check_in=hours_before_check_in,
        fee_deducted=fee_deducted,
    )
