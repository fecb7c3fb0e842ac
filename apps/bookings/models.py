"""Booking models of the rental settlement engine."""

from __future__ import annotations

import secrets
import uuid

from django.conf import settings  # type: ignore
from django.db import models  # type: ignore
from django.utils import timezone  # type: ignore
from django.utils.translation import gettext_lazy as _  # type: ignore

from shared.domain.base import EventRecorder
from shared.domain.exceptions import LedgerImmutable
from shared.domain.value_objects import Money, StayPeriod

from .domain.state_machine import BookingStatus


def default_currency() -> str:
    return getattr(settings, "FINANCE", {}).get("DEFAULT_CURRENCY", "AED")


class Booking(EventRecorder, models.Model):
    """A reservation whose money the engine settles.

    Bookings are created by the reservation flow (outside this engine) in
    PENDING and then only move through the booking state machine.
    """

    Status = BookingStatus

    class Type(models.TextChoices):
        SHORT_TERM = "SHORT_TERM", _("Short term")
        LONG_TERM = "LONG_TERM", _("Long term")

    class CancellationPolicy(models.TextChoices):
        FULL = "FULL", _("Full refund")
        FLEXIBLE = "FLEXIBLE", _("Flexible")
        STRICT = "STRICT", _("Strict")

    # Frozen once the booking has left PENDING
    PRICE_FIELDS = ("total_amount", "currency")

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    code = models.CharField(max_length=12, unique=True, editable=False)
    guest_id = models.CharField(max_length=64, db_index=True)
    host_id = models.CharField(max_length=64, db_index=True)
    agent_id = models.CharField(max_length=64, blank=True)
    property_id = models.CharField(max_length=64)
    type = models.CharField(max_length=20, choices=Type.choices, default=Type.SHORT_TERM)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING)
    cancellation_policy = models.CharField(
        max_length=20,
        choices=CancellationPolicy.choices,
        default=CancellationPolicy.FLEXIBLE,
    )
    total_amount = models.DecimalField(max_digits=14, decimal_places=3)
    currency = models.CharField(max_length=3, default=default_currency)
    check_in = models.DateTimeField()
    check_out = models.DateTimeField()
    status_changed_at = models.DateTimeField(null=True, blank=True)
    status_reason = models.CharField(max_length=255, blank=True)
    refund_amount = models.DecimalField(
        max_digits=14,
        decimal_places=3,
        null=True,
        blank=True,
        help_text=_("Cumulative amount committed to be refunded to the guest"),
    )
    dispute_resolved = models.BooleanField(null=True, blank=True)
    version = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Booking")
        verbose_name_plural = _("Bookings")
        ordering = ["-created_at"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(check_out__gt=models.F("check_in")),
                name="booking_valid_stay",
            ),
            models.CheckConstraint(
                condition=models.Q(total_amount__gt=0),
                name="booking_total_positive",
            ),
        ]
        indexes = [
            models.Index(fields=["status", "check_out"], name="booking_status_checkout"),
            models.Index(fields=["code"], name="booking_code"),
        ]

    def __str__(self) -> str:
        return f"Booking #{self.code} ({self.status})"

    @classmethod
    def from_db(cls, db, field_names, values):
        instance = super().from_db(db, field_names, values)
        instance._loaded_price = {
            "status": instance.__dict__.get("status"),
            **{name: instance.__dict__.get(name) for name in cls.PRICE_FIELDS},
        }
        return instance

    def save(self, *args, **kwargs):  # type: ignore
        if self._state.adding and not self.code:
            self.code = self.generate_code()
        original = getattr(self, "_loaded_price", None)
        if original and original["status"] != BookingStatus.PENDING:
            changed = [name for name in self.PRICE_FIELDS if getattr(self, name) != original[name]]
            if changed:
                raise LedgerImmutable(
                    f"Booking {self.code} is {original['status']}; cannot change {', '.join(changed)}"
                )
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        if self.transactions.exists():
            raise LedgerImmutable("Bookings with ledger entries cannot be deleted")
        return super().delete(*args, **kwargs)

    @staticmethod
    def generate_code() -> str:
        return secrets.token_hex(4).upper()

    @property
    def money(self) -> Money:
        return Money(self.total_amount, self.currency)

    @property
    def stay(self) -> StayPeriod:
        return StayPeriod(self.check_in, self.check_out)

    @property
    def refunded(self) -> Money:
        return Money(self.refund_amount or 0, self.currency)


class BookingStatusChange(models.Model):
    """Every transition of a booking, with who asked for it and why."""

    booking = models.ForeignKey(Booking, on_delete=models.PROTECT, related_name="history")
    from_status = models.CharField(max_length=20)
    to_status = models.CharField(max_length=20)
    actor = models.CharField(max_length=64)
    reason = models.CharField(max_length=255, blank=True)
    idempotency_key = models.CharField(max_length=128, blank=True)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["created_at", "id"]

    def __str__(self) -> str:
        return f"{self.booking_id}: {self.from_status} -> {self.to_status} by {self.actor}"


class DisputeResolution(models.Model):
    class Outcome(models.TextChoices):
        REFUND_GUEST = "REFUND_GUEST", _("Refund guest")
        RELEASE_TO_HOST = "RELEASE_TO_HOST", _("Release to host")
        SPLIT = "SPLIT", _("Split")

    booking = models.ForeignKey(
        Booking, on_delete=models.PROTECT, related_name="dispute_resolutions"
    )
    outcome = models.CharField(max_length=20, choices=Outcome.choices)
    refund_amount = models.DecimalField(max_digits=14, decimal_places=3, default=0)
    notes = models.TextField(blank=True)
    resolved_by = models.CharField(max_length=64)
    resolved_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["-resolved_at"]

    def __str__(self) -> str:
        return f"{self.booking_id}: {self.outcome}"


class EmergencyIncident(models.Model):
    """Audit record of an operator overriding the normal booking flow."""

    class Action(models.TextChoices):
        FORCE_CANCEL = "FORCE_CANCEL", _("Force cancel")
        FORCE_COMPLETE = "FORCE_COMPLETE", _("Force complete")

    booking = models.ForeignKey(
        Booking, on_delete=models.PROTECT, related_name="emergency_incidents"
    )
    action = models.CharField(max_length=20, choices=Action.choices)
    justification = models.TextField()
    operator = models.CharField(max_length=64)
    previous_status = models.CharField(max_length=20)
    refund_amount = models.DecimalField(max_digits=14, decimal_places=3, default=0)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"{self.action} on {self.booking_id} by {self.operator}"
