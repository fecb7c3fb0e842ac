"""Ledger, payout and idempotency models of the settlement engine."""

from __future__ import annotations

import uuid
from decimal import Decimal

from django.db import models  # type: ignore
from django.db.models import Q  # type: ignore
from django.utils import timezone  # type: ignore
from django.utils.translation import gettext_lazy as _  # type: ignore

from shared.domain.base import EventRecorder
from shared.domain.exceptions import LedgerImmutable
from shared.domain.value_objects import Money
from shared.infrastructure.encryption import mask
from shared.infrastructure.fields import EncryptedCharField


def _reference(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:24]}"


def new_transaction_reference() -> str:
    return _reference("tx")


def new_payout_reference() -> str:
    return _reference("po")


class TransactionQuerySet(models.QuerySet):
    """Ledger entries are append-only: bulk deletes are refused and bulk
    updates may only touch the payout reservation columns."""

    BULK_MUTABLE = frozenset({"payout", "payout_id", "settled_at", "updated_at"})

    def delete(self):
        raise LedgerImmutable("Ledger entries cannot be deleted")

    def update(self, **kwargs):
        forbidden = set(kwargs) - self.BULK_MUTABLE
        if forbidden:
            raise LedgerImmutable(
                f"Ledger entries cannot be bulk-updated: {', '.join(sorted(forbidden))}"
            )
        return super().update(**kwargs)

    def for_booking(self, booking):
        return self.filter(booking=booking)

    def live(self):
        """Entries that count toward balances (not failed or cancelled)."""
        return self.filter(
            status__in=(
                Transaction.Status.PENDING,
                Transaction.Status.PROCESSING,
                Transaction.Status.COMPLETED,
            )
        )


class Transaction(models.Model):
    """
    One monetary movement attributable to a booking.

    Amounts are signed: a positive amount moves money in the direction the
    type implies (guest to platform for inflows, platform to a beneficiary
    for outflows) and a negative amount of the same type reverses it.
    """

    class Type(models.TextChoices):
        BOOKING_PAYMENT = "BOOKING_PAYMENT", _("Booking payment")
        PLATFORM_FEE = "PLATFORM_FEE", _("Platform fee")
        HOST_PAYOUT = "HOST_PAYOUT", _("Host payout")
        REFUND = "REFUND", _("Refund")
        SECURITY_DEPOSIT = "SECURITY_DEPOSIT", _("Security deposit")
        COMMISSION = "COMMISSION", _("Agent commission")

    class Status(models.TextChoices):
        PENDING = "PENDING", _("Pending")
        PROCESSING = "PROCESSING", _("Processing")
        COMPLETED = "COMPLETED", _("Completed")
        FAILED = "FAILED", _("Failed")
        CANCELLED = "CANCELLED", _("Cancelled")

    INFLOW_TYPES = frozenset({Type.BOOKING_PAYMENT, Type.SECURITY_DEPOSIT})
    OUTFLOW_TYPES = frozenset(
        {Type.PLATFORM_FEE, Type.HOST_PAYOUT, Type.REFUND, Type.COMMISSION}
    )
    SPLIT_TYPES = (Type.PLATFORM_FEE, Type.COMMISSION, Type.HOST_PAYOUT)

    TRANSITIONS = {
        Status.PENDING: frozenset(
            {Status.PROCESSING, Status.COMPLETED, Status.FAILED, Status.CANCELLED}
        ),
        Status.PROCESSING: frozenset(
            {Status.COMPLETED, Status.FAILED, Status.CANCELLED}
        ),
        Status.COMPLETED: frozenset(),
        Status.FAILED: frozenset(),
        Status.CANCELLED: frozenset(),
    }
    TERMINAL_STATUSES = frozenset({Status.COMPLETED, Status.FAILED, Status.CANCELLED})

    # Columns that never change once the entry reached a terminal status
    FROZEN_FIELDS = ("booking_id", "type", "amount", "currency", "status", "reverses_id")

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    booking = models.ForeignKey(
        "bookings.Booking",
        on_delete=models.PROTECT,
        related_name="transactions",
    )
    type = models.CharField(max_length=20, choices=Type.choices)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING)
    amount = models.DecimalField(max_digits=14, decimal_places=3)
    currency = models.CharField(max_length=3)
    beneficiary_id = models.CharField(
        max_length=64,
        blank=True,
        db_index=True,
        help_text=_("Host or agent receiving an outflow"),
    )
    reverses = models.ForeignKey(
        "self",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="reversals",
    )
    reference = models.CharField(
        max_length=64,
        unique=True,
        default=new_transaction_reference,
        help_text=_("Idempotency reference sent to the gateway"),
    )
    gateway_reference = models.CharField(max_length=128, blank=True, db_index=True)
    failure_reason = models.CharField(max_length=255, blank=True)
    actor = models.CharField(max_length=64, blank=True)
    memo = models.CharField(max_length=255, blank=True)

    payout = models.ForeignKey(
        "finances.Payout",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="entries",
    )
    settled_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(default=timezone.now, db_index=True)
    processed_at = models.DateTimeField(null=True, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = TransactionQuerySet.as_manager()

    class Meta:
        verbose_name = _("Transaction")
        verbose_name_plural = _("Transactions")
        ordering = ["created_at"]
        indexes = [
            models.Index(fields=["booking", "type", "status"], name="tx_booking_type_status"),
            models.Index(
                fields=["beneficiary_id", "type", "status"], name="tx_beneficiary_type_status"
            ),
            models.Index(fields=["status", "updated_at"], name="tx_status_updated"),
        ]

    def __str__(self) -> str:
        return f"{self.type} {self.amount} {self.currency} ({self.status})"

    @classmethod
    def from_db(cls, db, field_names, values):
        instance = super().from_db(db, field_names, values)
        instance._remember_frozen()
        return instance

    def _remember_frozen(self) -> None:
        self._frozen = {
            name: self.__dict__[name] for name in self.FROZEN_FIELDS if name in self.__dict__
        }

    def save(self, *args, **kwargs):
        original = getattr(self, "_frozen", None)
        if original and original.get("status") in self.TERMINAL_STATUSES:
            changed = [name for name, value in original.items() if getattr(self, name) != value]
            if changed:
                raise LedgerImmutable(
                    f"Transaction {self.pk} is {original['status']}; "
                    f"cannot change {', '.join(changed)}"
                )
        super().save(*args, **kwargs)
        self._remember_frozen()

    def delete(self, *args, **kwargs):
        raise LedgerImmutable("Ledger entries cannot be deleted")

    @property
    def money(self) -> Money:
        return Money(self.amount, self.currency)

    @property
    def is_inflow(self) -> bool:
        return self.type in self.INFLOW_TYPES

    @property
    def is_terminal(self) -> bool:
        return self.status in self.TERMINAL_STATUSES

    def can_transition_to(self, status: str) -> bool:
        return status in self.TRANSITIONS.get(self.status, frozenset())


class TransactionStatusChange(models.Model):
    """History of ledger entry status changes."""

    transaction = models.ForeignKey(
        Transaction,
        on_delete=models.PROTECT,
        related_name="history",
    )
    from_status = models.CharField(max_length=20, blank=True)
    to_status = models.CharField(max_length=20)
    actor = models.CharField(max_length=64, blank=True)
    reason = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["created_at", "id"]

    def __str__(self) -> str:
        return f"{self.transaction_id}: {self.from_status or '-'} -> {self.to_status}"


class PayoutMethod(models.TextChoices):
    BANK_TRANSFER = "BANK_TRANSFER", _("Bank transfer")
    PAYPAL = "PAYPAL", _("PayPal")
    STRIPE = "STRIPE", _("Stripe")
    WALLET = "WALLET", _("Wallet")


class PayoutAccount(models.Model):
    """Where a host's payouts are sent. The destination is encrypted at rest."""

    host_id = models.CharField(max_length=64, unique=True)
    method = models.CharField(
        max_length=20, choices=PayoutMethod.choices, default=PayoutMethod.BANK_TRANSFER
    )
    destination = EncryptedCharField(max_length=255)
    currency = models.CharField(max_length=3, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Payout account")
        verbose_name_plural = _("Payout accounts")
        ordering = ["host_id"]

    def __str__(self) -> str:
        return f"{self.host_id} {self.method} {self.masked_destination}"

    @property
    def masked_destination(self) -> str:
        return mask(self.destination)


class Payout(EventRecorder, models.Model):
    """A batch of a host's settled earnings transferred in one gateway call."""

    Method = PayoutMethod

    class Status(models.TextChoices):
        PENDING = "PENDING", _("Pending")
        PROCESSING = "PROCESSING", _("Processing")
        COMPLETED = "COMPLETED", _("Completed")
        FAILED = "FAILED", _("Failed")
        CANCELLED = "CANCELLED", _("Cancelled")

    TRANSITIONS = {
        Status.PENDING: frozenset({Status.PROCESSING, Status.CANCELLED}),
        Status.PROCESSING: frozenset({Status.COMPLETED, Status.FAILED}),
        Status.FAILED: frozenset({Status.PROCESSING, Status.CANCELLED}),
        Status.COMPLETED: frozenset(),
        Status.CANCELLED: frozenset(),
    }
    # Payouts in these states hold a reservation on their entries
    ACTIVE_STATUSES = frozenset({Status.PENDING, Status.PROCESSING, Status.FAILED})

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    host_id = models.CharField(max_length=64, db_index=True)
    amount = models.DecimalField(max_digits=14, decimal_places=3)
    currency = models.CharField(max_length=3)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING)
    method = models.CharField(max_length=20, choices=PayoutMethod.choices)
    destination = EncryptedCharField(max_length=255)
    transaction_ids = models.JSONField(default=list)
    reference = models.CharField(max_length=64, unique=True, default=new_payout_reference)
    transfer_reference = models.CharField(max_length=128, blank=True, db_index=True)
    failure_reason = models.CharField(max_length=255, blank=True)
    attempts = models.PositiveSmallIntegerField(default=0)
    as_of = models.DateTimeField()
    created_at = models.DateTimeField(default=timezone.now)
    processed_at = models.DateTimeField(null=True, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Payout")
        verbose_name_plural = _("Payouts")
        ordering = ["-created_at"]
        constraints = [
            models.CheckConstraint(condition=Q(amount__gt=0), name="payout_amount_positive"),
        ]
        indexes = [
            models.Index(fields=["host_id", "status"], name="payout_host_status"),
        ]

    def __str__(self) -> str:
        return f"Payout {self.reference} {self.amount} {self.currency} ({self.status})"

    @property
    def money(self) -> Money:
        return Money(self.amount, self.currency)

    @property
    def attempt_reference(self) -> str:
        """Gateway reference of the current attempt; stable across polls."""
        return f"{self.reference}-{self.attempts}"

    def can_transition_to(self, status: str) -> bool:
        return status in self.TRANSITIONS.get(self.status, frozenset())


class PayoutStatusChange(models.Model):
    payout = models.ForeignKey(Payout, on_delete=models.PROTECT, related_name="history")
    from_status = models.CharField(max_length=20, blank=True)
    to_status = models.CharField(max_length=20)
    actor = models.CharField(max_length=64, blank=True)
    reason = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["created_at", "id"]

    def __str__(self) -> str:
        return f"{self.payout_id}: {self.from_status or '-'} -> {self.to_status}"


class IdempotencyRecord(models.Model):
    """Outcome of a state-changing request, keyed by the caller's idempotency key."""

    key = models.CharField(max_length=128, unique=True)
    operation = models.CharField(max_length=64)
    fingerprint = models.CharField(max_length=64)
    outcome = models.JSONField(default=dict)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        verbose_name = _("Idempotency record")
        verbose_name_plural = _("Idempotency records")
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"{self.operation} [{self.key}]"


class GatewayCallback(models.Model):
    """Raw webhook deliveries from the payment and payout gateways."""

    class Kind(models.TextChoices):
        PAYMENT = "payment", _("Payment")
        TRANSFER = "transfer", _("Transfer")

    kind = models.CharField(max_length=20, choices=Kind.choices)
    reference = models.CharField(max_length=128, db_index=True)
    status = models.CharField(max_length=20, blank=True)
    payload = models.JSONField()
    processed = models.BooleanField(default=False)
    error = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = _("Gateway callback")
        verbose_name_plural = _("Gateway callbacks")
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"{self.kind} {self.reference} ({self.status})"


def sum_amount(queryset, **filters) -> Decimal:
    """Sum of ``amount`` over ``queryset`` (0 when empty)."""
    total = queryset.filter(**filters).aggregate(total=models.Sum("amount"))["total"]
    return total if total is not None else Decimal("0")
