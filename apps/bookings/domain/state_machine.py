"""
Booking Status State Machine

PENDING ──► CONFIRMED ──► COMPLETED
   │            │  ▲           ▲
   │            │  └─ DISPUTED ┤
   ▼            ▼       │      │
CANCELLED ◄─────────────┘

CANCELLED and COMPLETED are terminal. The table below is the only source of
truth for which moves are legal; emergency overrides are the one caller
allowed to bypass it and they leave an incident record behind.
"""

from django.db import models  # type: ignore
from django.utils.translation import gettext_lazy as _  # type: ignore

from shared.domain.exceptions import InvalidTransition


class BookingStatus(models.TextChoices):
    PENDING = "PENDING", _("Pending")
    CONFIRMED = "CONFIRMED", _("Confirmed")
    CANCELLED = "CANCELLED", _("Cancelled")
    COMPLETED = "COMPLETED", _("Completed")
    DISPUTED = "DISPUTED", _("Disputed")


TRANSITIONS = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset(
        {BookingStatus.COMPLETED, BookingStatus.CANCELLED, BookingStatus.DISPUTED}
    ),
    BookingStatus.DISPUTED: frozenset({BookingStatus.CANCELLED, BookingStatus.COMPLETED}),
    BookingStatus.CANCELLED: frozenset(),
    BookingStatus.COMPLETED: frozenset(),
}

TERMINAL_STATUSES = frozenset({BookingStatus.CANCELLED, BookingStatus.COMPLETED})


def allowed_targets(current: str) -> frozenset:
    return TRANSITIONS.get(current, frozenset())


def can_transition(current: str, target: str) -> bool:
    return target in allowed_targets(current)


def ensure_transition(current: str, target: str) -> None:
    if not can_transition(current, target):
        raise InvalidTransition("booking", current, target)
