"""
Booking Commands

The closed set of operations callers can request on a booking. Each command
validates its own payload on construction; the message bus routes it to
exactly one handler (see command_handlers.py).

UI action strings map onto commands:
- "approve"   -> ConfirmBooking
- "complete"  -> CompleteBooking
- "reject"    -> CancelBooking
- "cancel"    -> CancelBooking
- "dispute"   -> OpenDispute
- "resolve"   -> ResolveDispute
- "emergency" -> EmergencyOverride
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from decimal import Decimal
from uuid import UUID

from django.db import models  # type: ignore
from django.utils.translation import gettext_lazy as _  # type: ignore

from apps.bookings.models import DisputeResolution, EmergencyIncident


class CancellationReason(models.TextChoices):
    """Who or what caused a cancellation; decides which refund terms apply."""

    GUEST_REQUEST = "GUEST_REQUEST", _("Guest request")
    HOST_CANCELLED = "HOST_CANCELLED", _("Host cancelled")
    PLATFORM_DECISION = "PLATFORM_DECISION", _("Platform decision")


def _require_text(value: str, name: str) -> None:
    if not value or not value.strip():
        raise ValueError(f"{name} is required")


def _as_decimal(value) -> Decimal | None:
    if value is None:
        return None
    if isinstance(value, float):
        raise ValueError("Amounts must be given as Decimal or string, not float")
    return value if isinstance(value, Decimal) else Decimal(str(value))


@dataclass(frozen=True)
class BookingCommand:
    booking_id: UUID
    actor: str
    idempotency_key: str = field(default="", kw_only=True)
    expected_version: int | None = field(default=None, kw_only=True)

    operation = "booking"

    def __post_init__(self):
        _require_text(self.actor, "actor")

    def payload(self) -> dict:
        """Canonical request body used for idempotency fingerprints."""
        data = asdict(self)
        data.pop("idempotency_key")
        data.pop("expected_version")
        data.pop("actor")
        return {key: str(value) if value is not None else None for key, value in data.items()}


@dataclass(frozen=True)
class ConfirmBooking(BookingCommand):
    reason: str = ""
    payment_source: str = ""

    operation = "booking.confirm"


@dataclass(frozen=True)
class CompleteBooking(BookingCommand):
    reason: str = ""

    operation = "booking.complete"


@dataclass(frozen=True)
class CancelBooking(BookingCommand):
    reason: str = ""
    cancellation_reason: str = CancellationReason.GUEST_REQUEST
    requested_refund: Decimal | None = None

    operation = "booking.cancel"

    def __post_init__(self):
        super().__post_init__()
        _require_text(self.reason, "reason")
        if self.cancellation_reason not in CancellationReason.values:
            raise ValueError(f"Unknown cancellation reason: {self.cancellation_reason}")
        requested = _as_decimal(self.requested_refund)
        if requested is not None and requested < 0:
            raise ValueError("requested_refund cannot be negative")
        object.__setattr__(self, "requested_refund", requested)


@dataclass(frozen=True)
class OpenDispute(BookingCommand):
    reason: str = ""

    operation = "booking.dispute"

    def __post_init__(self):
        super().__post_init__()
        _require_text(self.reason, "reason")


@dataclass(frozen=True)
class ResolveDispute(BookingCommand):
    outcome: str = ""
    refund_amount: Decimal | None = None
    notes: str = ""

    operation = "booking.resolve_dispute"

    def __post_init__(self):
        super().__post_init__()
        if self.outcome not in DisputeResolution.Outcome.values:
            raise ValueError(f"Unknown dispute outcome: {self.outcome!r}")
        amount = _as_decimal(self.refund_amount)
        if self.outcome == DisputeResolution.Outcome.SPLIT:
            if amount is None or amount <= 0:
                raise ValueError("SPLIT requires a positive refund_amount")
        elif amount is not None:
            raise ValueError(f"refund_amount is only accepted with SPLIT, not {self.outcome}")
        object.__setattr__(self, "refund_amount", amount)


@dataclass(frozen=True)
class EmergencyOverride(BookingCommand):
    action: str = ""
    justification: str = ""

    operation = "booking.emergency"

    def __post_init__(self):
        super().__post_init__()
        if self.action not in EmergencyIncident.Action.values:
            raise ValueError(f"Unknown emergency action: {self.action!r}")
        _require_text(self.justification, "justification")


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of a booking command, as stored for idempotent replays."""

    booking_id: str
    from_status: str
    to_status: str
    version: int
    transaction_ids: tuple = ()
    refund_amount: str | None = None
    refund_transaction_id: str | None = None
    payment_transaction_id: str | None = None
    payment_status: str | None = None
    replayed: bool = False

    def to_outcome(self) -> dict:
        data = asdict(self)
        data["transaction_ids"] = list(self.transaction_ids)
        data.pop("replayed")
        data.pop("payment_status")
        return data

    @classmethod
    def from_outcome(cls, data: dict) -> "TransitionResult":
        values = dict(data)
        values.pop("payment_status", None)
        values["transaction_ids"] = tuple(values.get("transaction_ids", ()))
        return cls(**values, replayed=True)
