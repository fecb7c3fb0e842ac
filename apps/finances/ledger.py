"""
Ledger Store

Append-only record of the monetary movements of each booking. Entries are
created through :class:`Ledger` only, change status along
``Transaction.TRANSITIONS`` and are corrected by posting offsetting entries,
never by editing or deleting. Callers are expected to hold the booking row
lock (see ``DjangoUnitOfWork.lock``) while posting.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from decimal import Decimal

from django.db.models import Sum  # type: ignore
from django.utils import timezone  # type: ignore

from shared.domain.exceptions import InvalidTransition
from shared.domain.value_objects import Money

from .commission import CommissionSplit, RateConfig, split
from .models import Transaction, TransactionStatusChange

logger = logging.getLogger(__name__)

LIVE_STATUSES = (
    Transaction.Status.PENDING,
    Transaction.Status.PROCESSING,
    Transaction.Status.COMPLETED,
)


class Ledger:
    """Posting and balance queries over ``Transaction`` rows."""

    def __init__(self):
        self._recorders: list[list] = []

    @contextmanager
    def recording(self):
        """Collect every entry posted inside the block."""
        posted: list = []
        self._recorders.append(posted)
        try:
            yield posted
        finally:
            self._recorders = [recorder for recorder in self._recorders if recorder is not posted]

    def post(
        self,
        booking,
        entry_type: str,
        amount: Money,
        *,
        status: str = Transaction.Status.PENDING,
        beneficiary_id: str = "",
        actor: str = "system",
        memo: str = "",
        reverses: Transaction | None = None,
    ) -> Transaction:
        if amount.currency != booking.currency:
            raise ValueError(
                f"Entry currency {amount.currency} does not match booking currency {booking.currency}"
            )
        if amount.truncate() != amount:
            raise ValueError(f"{amount!r} has more precision than {amount.currency} allows")
        if status not in (Transaction.Status.PENDING, Transaction.Status.COMPLETED):
            raise ValueError("Entries are posted PENDING or COMPLETED")

        now = timezone.now()
        entry = Transaction.objects.create(
            booking=booking,
            type=entry_type,
            status=status,
            amount=amount.amount,
            currency=amount.currency,
            beneficiary_id=beneficiary_id,
            actor=actor,
            memo=memo[:255],
            reverses=reverses,
            created_at=now,
            processed_at=now if status == Transaction.Status.COMPLETED else None,
        )
        TransactionStatusChange.objects.create(
            transaction=entry, from_status="", to_status=status, actor=actor, reason=memo[:255]
        )
        for recorder in self._recorders:
            recorder.append(entry)
        logger.info(
            f"Posted {entry_type} {amount} ({status}) for booking {booking.pk} as {entry.reference}"
        )
        return entry

    def transition(
        self,
        entry: Transaction,
        target: str,
        *,
        actor: str = "system",
        reason: str = "",
        failure_reason: str = "",
    ) -> Transaction:
        """Move an entry along the transaction status table; same-status is a no-op."""
        if entry.status == target:
            return entry
        if not entry.can_transition_to(target):
            raise InvalidTransition("transaction", entry.status, target)

        previous = entry.status
        entry.status = target
        update_fields = ["status", "updated_at"]
        if target in Transaction.TERMINAL_STATUSES:
            entry.processed_at = timezone.now()
            update_fields.append("processed_at")
        if failure_reason:
            entry.failure_reason = failure_reason[:255]
            update_fields.append("failure_reason")
        entry.save(update_fields=update_fields)

        TransactionStatusChange.objects.create(
            transaction=entry,
            from_status=previous,
            to_status=target,
            actor=actor,
            reason=(reason or failure_reason)[:255],
        )
        logger.info(f"Transaction {entry.reference} {previous} -> {target}")
        return entry

    def reverse(self, entry: Transaction, *, actor: str, memo: str) -> Transaction | None:
        """
        Undo an entry's effect on the balances.

        Pending entries are cancelled in place; completed entries get an
        offsetting entry of the same type with the negated amount.
        Returns the offsetting entry, if one was posted.
        """
        if entry.status == Transaction.Status.PENDING:
            self.transition(entry, Transaction.Status.CANCELLED, actor=actor, reason=memo)
            return None
        if entry.status != Transaction.Status.COMPLETED:
            raise InvalidTransition(
                "transaction", entry.status, "REVERSED",
                f"Only pending or completed entries can be reversed, not {entry.status}",
            )
        return self.post(
            entry.booking,
            entry.type,
            -entry.money,
            status=Transaction.Status.COMPLETED,
            beneficiary_id=entry.beneficiary_id,
            actor=actor,
            memo=memo,
            reverses=entry,
        )

    # ----- splits -----

    def post_split(
        self,
        booking,
        gross: Money,
        rates: RateConfig,
        *,
        actor: str = "system",
        host_credit_status: str = Transaction.Status.PENDING,
        memo: str = "",
    ) -> CommissionSplit:
        """Post the platform fee, agent commission and host credit for ``gross``."""
        if not booking.agent_id:
            rates = rates.without_agent()
        shares = split(gross, rates)

        if not shares.platform_fee.is_zero():
            self.post(
                booking, Transaction.Type.PLATFORM_FEE, shares.platform_fee,
                status=Transaction.Status.COMPLETED, actor=actor, memo=memo,
            )
        if not shares.agent_commission.is_zero():
            self.post(
                booking, Transaction.Type.COMMISSION, shares.agent_commission,
                status=Transaction.Status.COMPLETED, beneficiary_id=booking.agent_id,
                actor=actor, memo=memo,
            )
        if not shares.host_net.is_zero():
            self.post(
                booking, Transaction.Type.HOST_PAYOUT, shares.host_net,
                status=host_credit_status, beneficiary_id=booking.host_id,
                actor=actor, memo=memo,
            )
        return shares

    def unwind_split(self, booking, *, actor: str, memo: str) -> list[Transaction]:
        """Reverse every fee, commission and host credit still in effect."""
        live = (
            Transaction.objects.for_booking(booking)
            .filter(
                type__in=Transaction.SPLIT_TYPES,
                status__in=(Transaction.Status.PENDING, Transaction.Status.COMPLETED),
                reverses__isnull=True,
            )
            .exclude(reversals__isnull=False)
            .order_by("created_at")
        )
        offsets = []
        for entry in live:
            offset = self.reverse(entry, actor=actor, memo=memo)
            if offset is not None:
                offsets.append(offset)
        return offsets

    def release_host_credits(self, booking, *, actor: str = "system") -> int:
        """Held host credits become available for payout."""
        held = Transaction.objects.for_booking(booking).filter(
            type=Transaction.Type.HOST_PAYOUT, status=Transaction.Status.PENDING
        )
        released = 0
        for entry in held:
            self.transition(
                entry, Transaction.Status.COMPLETED, actor=actor, reason="stay completed"
            )
            released += 1
        return released

    # ----- balances -----

    def _sum(self, booking, **filters) -> Money:
        total = (
            Transaction.objects.for_booking(booking)
            .filter(**filters)
            .aggregate(total=Sum("amount"))["total"]
        )
        return Money(total if total is not None else Decimal("0"), booking.currency)

    def completed_payments(self, booking) -> Money:
        return self._sum(
            booking,
            type=Transaction.Type.BOOKING_PAYMENT,
            status=Transaction.Status.COMPLETED,
        )

    def committed_refunds(self, booking) -> Money:
        return self._sum(booking, type=Transaction.Type.REFUND, status__in=LIVE_STATUSES)

    def refundable(self, booking) -> Money:
        return self.completed_payments(booking) - self.committed_refunds(booking)

    def net_liability(self, booking) -> Money:
        """Completed inflows minus live outflows; zero once a booking is settled."""
        inflows = self._sum(
            booking,
            type__in=Transaction.INFLOW_TYPES,
            status=Transaction.Status.COMPLETED,
        )
        outflows = self._sum(
            booking, type__in=Transaction.OUTFLOW_TYPES, status__in=LIVE_STATUSES
        )
        return inflows - outflows

    def latest_completed_payment(self, booking) -> Transaction | None:
        return (
            Transaction.objects.for_booking(booking)
            .filter(
                type=Transaction.Type.BOOKING_PAYMENT,
                status=Transaction.Status.COMPLETED,
            )
            .order_by("-processed_at")
            .first()
        )

    def entries(self, booking, *types: str):
        queryset = Transaction.objects.for_booking(booking)
        if types:
            queryset = queryset.filter(type__in=types)
        return queryset.order_by("created_at")
