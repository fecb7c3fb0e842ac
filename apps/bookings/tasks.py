"""Celery tasks for the booking domain."""

from __future__ import annotations

import logging

from celery import shared_task  # type: ignore
from django.utils import timezone  # type: ignore

from shared.domain.exceptions import SettlementError

from .application.command_handlers import BookingStateMachine
from .models import Booking

logger = logging.getLogger(__name__)


# ============================================================================
# PERIODIC TASKS (run by Celery Beat)
# ============================================================================

@shared_task(name="bookings.complete_finished_bookings")
def complete_finished_bookings() -> dict[str, int]:
    """
    Complete confirmed bookings whose stay is over.

    Completing releases the host's held earnings to the payout pool. Bookings
    whose payment has not completed yet are skipped and picked up by a later
    run; disputed bookings wait for an operator.

    Runs every hour.

    Returns:
        dict: {"completed": ..., "skipped": ...}
    """
    now = timezone.now()
    completed_count = 0
    skipped_count = 0
    machine = BookingStateMachine()

    finished = list(
        Booking.objects.filter(
            status=Booking.Status.CONFIRMED,
            check_out__lte=now,
        ).values_list("pk", "code")
    )

    for booking_id, code in finished:
        try:
            machine.transition(
                booking_id,
                Booking.Status.COMPLETED,
                reason="stay ended",
                actor="scheduler",
                idempotency_key=f"complete-finished:{booking_id}",
            )
            completed_count += 1
            logger.info(f"Booking {code} completed after check-out")
        except SettlementError as e:
            skipped_count += 1
            logger.warning(f"Booking {code} not completed: {e.message}")

    if completed_count > 0:
        logger.info(f"Completed {completed_count} bookings")

    return {"completed": completed_count, "skipped": skipped_count}
