"""Celery tasks for payouts and gateway reconciliation."""

from __future__ import annotations

import logging

from celery import shared_task  # type: ignore

from shared.domain.exceptions import GatewayRejected, GatewayTimeout

from .models import Payout
from .payments import PaymentService
from .payouts import PayoutBatcher

logger = logging.getLogger(__name__)


@shared_task(name="finances.build_scheduled_payouts")
def build_scheduled_payouts() -> dict[str, int]:
    """
    Batch the settled earnings of every host into payouts and send them.

    Hosts below the minimum payout are carried over to the next run.

    Runs weekly (Monday 06:00).
    """
    batcher = PayoutBatcher()
    counts = batcher.build_due_payouts()
    process_pending_payouts.delay()
    return counts


@shared_task(name="finances.process_pending_payouts")
def process_pending_payouts() -> dict[str, int]:
    """Send every PENDING payout to the payout gateway."""
    batcher = PayoutBatcher()
    counts = {"sent": 0, "failed": 0, "unanswered": 0}
    pending = list(Payout.objects.filter(status=Payout.Status.PENDING).values_list("pk", flat=True))
    for payout_id in pending:
        try:
            batcher.process_payout(payout_id, actor="scheduler")
            counts["sent"] += 1
        except GatewayRejected:
            counts["failed"] += 1
        except GatewayTimeout:
            counts["unanswered"] += 1
    logger.info(f"Processed pending payouts: {counts}")
    return counts


@shared_task(name="finances.reconcile_pending_payments")
def reconcile_pending_payments() -> dict[str, int]:
    """
    Poll payments and refunds stuck in PROCESSING and send unsent refunds.

    Runs every 10 minutes.
    """
    return PaymentService().reconcile_pending()


@shared_task(name="finances.reconcile_processing_payouts")
def reconcile_processing_payouts() -> dict[str, int]:
    """
    Poll payouts whose transfer outcome never arrived.

    Runs every 10 minutes.
    """
    return PayoutBatcher().reconcile_processing_payouts()
