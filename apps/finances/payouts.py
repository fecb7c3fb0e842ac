"""
Payout Batcher

Groups a host's settled earnings (COMPLETED HOST_PAYOUT credits) into
payouts and sends them through the payout gateway.

Reservation: a credit joins a payout by a conditional UPDATE that only
matches credits with no payout yet, so two batch runs can never both claim
it. A cancelled payout releases its credits back to the pool; a completed
one stamps them with ``settled_at``.

Sending: the payout is moved to PROCESSING and committed before the gateway
is called, and the gateway reference is derived from the payout reference
and attempt number, so an unanswered transfer is polled rather than sent
twice.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import Decimal

from django.db.models import Q  # type: ignore
from django.utils import timezone  # type: ignore

from apps.bookings.domain.state_machine import BookingStatus
from shared.application.uow import DjangoUnitOfWork
from shared.domain.exceptions import (
    ConcurrentModification,
    GatewayRejected,
    GatewayTimeout,
    InsufficientPayoutBalance,
    InvalidTransition,
    PayoutAccountMissing,
)

from . import idempotency
from .conf import finance_settings
from .events import PayoutCancelled, PayoutCompleted, PayoutCreated, PayoutFailed
from .gateways import GatewayResult, GatewayStatus, PayoutGateway, get_payout_gateway
from .models import Payout, PayoutAccount, PayoutStatusChange, Transaction

logger = logging.getLogger(__name__)


class PayoutBatcher:
    def __init__(self, gateway: PayoutGateway | None = None):
        self._gateway = gateway
        self.conf = finance_settings()

    @property
    def gateway(self) -> PayoutGateway:
        if self._gateway is None:
            self._gateway = get_payout_gateway(self.conf)
        return self._gateway

    # ----- batching -----

    def available_credits(self, host_id: str, currency: str, as_of: datetime):
        """Completed, unreserved, unsettled host credits not frozen by a dispute."""
        return (
            Transaction.objects.filter(
                type=Transaction.Type.HOST_PAYOUT,
                status=Transaction.Status.COMPLETED,
                beneficiary_id=host_id,
                currency=currency,
                payout__isnull=True,
                settled_at__isnull=True,
                processed_at__lte=as_of,
            )
            .exclude(booking__status=BookingStatus.DISPUTED)
            .order_by("processed_at")
        )

    def build_payout(
        self,
        host_id: str,
        as_of: datetime | None = None,
        currency: str | None = None,
        actor: str = "system",
    ) -> Payout:
        as_of = as_of or timezone.now()
        currency = (currency or self.conf.default_currency).upper()
        minimum = self.conf.minimum_payout

        with DjangoUnitOfWork() as uow:
            credits = list(self.available_credits(host_id, currency, as_of))
            total = sum((credit.amount for credit in credits), Decimal("0"))
            if not credits or total < minimum or total <= 0:
                raise InsufficientPayoutBalance(total, minimum, currency)

            account = PayoutAccount.objects.filter(host_id=host_id).first()
            if account is None:
                raise PayoutAccountMissing(f"Host {host_id} has no payout account")

            ids = [credit.pk for credit in credits]
            payout = Payout.objects.create(
                host_id=host_id,
                amount=total,
                currency=currency,
                method=account.method,
                destination=account.destination,
                transaction_ids=[str(pk) for pk in ids],
                as_of=as_of,
            )
            claimed = Transaction.objects.filter(
                pk__in=ids, payout__isnull=True, settled_at__isnull=True
            ).update(payout=payout)
            if claimed != len(ids):
                raise ConcurrentModification(
                    f"Only {claimed} of {len(ids)} credits of host {host_id} could be reserved"
                )

            PayoutStatusChange.objects.create(
                payout=payout, from_status="", to_status=payout.status, actor=actor
            )
            payout.add_event(PayoutCreated(
                aggregate_id=payout.pk,
                payout_id=str(payout.pk),
                host_id=host_id,
                amount=payout.money,
                transaction_count=len(ids),
            ))
            uow.collect_events(payout)

        logger.info(f"Built payout {payout.reference} of {payout.money} for host {host_id} ({len(ids)} credits)")
        return payout

    def build_due_payouts(self, as_of: datetime | None = None) -> dict[str, int]:
        """Batch every host with enough earnings; the rest carry over."""
        as_of = as_of or timezone.now()
        hosts = (
            Transaction.objects.filter(
                type=Transaction.Type.HOST_PAYOUT,
                status=Transaction.Status.COMPLETED,
                payout__isnull=True,
                settled_at__isnull=True,
                processed_at__lte=as_of,
            )
            .exclude(booking__status=BookingStatus.DISPUTED)
            .order_by()
            .values_list("beneficiary_id", "currency")
            .distinct()
        )
        counts = {"created": 0, "carried_over": 0, "missing_account": 0, "conflicts": 0}
        for host_id, currency in list(hosts):
            try:
                self.build_payout(host_id, as_of=as_of, currency=currency)
                counts["created"] += 1
            except InsufficientPayoutBalance:
                counts["carried_over"] += 1
            except PayoutAccountMissing:
                logger.warning(f"Host {host_id} has earnings but no payout account")
                counts["missing_account"] += 1
            except ConcurrentModification as exc:
                logger.warning(f"Skipped host {host_id}: {exc}")
                counts["conflicts"] += 1
        logger.info(f"Scheduled payout run finished: {counts}")
        return counts

    # ----- sending -----

    def _transition(self, payout: Payout, target: str, *, actor: str, reason: str = "") -> None:
        if not payout.can_transition_to(target):
            raise InvalidTransition("payout", payout.status, target)
        previous = payout.status
        payout.status = target
        update_fields = ["status", "updated_at"]
        if target in (Payout.Status.COMPLETED, Payout.Status.FAILED, Payout.Status.CANCELLED):
            payout.processed_at = timezone.now()
            update_fields.append("processed_at")
        if target == Payout.Status.FAILED:
            payout.failure_reason = reason[:255]
            update_fields.append("failure_reason")
        payout.save(update_fields=update_fields)
        PayoutStatusChange.objects.create(
            payout=payout, from_status=previous, to_status=target, actor=actor, reason=reason[:255]
        )
        logger.info(f"Payout {payout.reference} {previous} -> {target}")

    def process_payout(
        self,
        payout_id,
        idempotency_key: str = "",
        actor: str = "system",
        *,
        allowed_from: tuple = (Payout.Status.PENDING, Payout.Status.FAILED, Payout.Status.PROCESSING),
        operation: str = "payout.process",
    ) -> Payout:
        """
        Send (or poll) a payout.

        PENDING and FAILED payouts start a new attempt; a PROCESSING payout
        is polled; a COMPLETED payout is returned unchanged. A rejection
        leaves the payout FAILED and raises GatewayRejected; a timeout
        leaves it PROCESSING and raises GatewayTimeout. Repeating a key
        replays a settled outcome, while an attempt still PROCESSING under
        that key is polled so the retry can finish it.
        """
        payload = {"payout_id": str(payout_id)}
        with DjangoUnitOfWork() as uow:
            payout = uow.lock(Payout.objects, pk=payout_id)
            replayed = idempotency.lookup(idempotency_key, operation, payload) is not None
            if replayed and payout.status != Payout.Status.PROCESSING:
                payout.replayed = True
                return payout
            if payout.status == Payout.Status.COMPLETED:
                return payout
            if not replayed and payout.status not in allowed_from:
                raise InvalidTransition("payout", payout.status, Payout.Status.PROCESSING)

            poll = payout.status == Payout.Status.PROCESSING
            if not poll:
                self._transition(payout, Payout.Status.PROCESSING, actor=actor, reason="transfer sent")
                payout.attempts += 1
                payout.failure_reason = ""
                payout.save(update_fields=["attempts", "failure_reason", "updated_at"])
            if not replayed:
                idempotency.remember(
                    idempotency_key, operation, payload, {"payout_id": str(payout.pk), "attempt": payout.attempts}
                )

        try:
            if poll:
                result = self.gateway.fetch_status(payout.attempt_reference)
            else:
                result = self.gateway.transfer(
                    payout.money,
                    payout.destination,
                    reference=payout.attempt_reference,
                    timeout=self.conf.gateway_timeout,
                )
        except GatewayTimeout:
            logger.warning(f"Transfer {payout.attempt_reference} unanswered; payout stays PROCESSING")
            raise
        except GatewayRejected as exc:
            self.apply_transfer_result(
                payout.pk, GatewayResult(GatewayStatus.FAILED, failure_reason=exc.reason)
            )
            raise

        payout = self.apply_transfer_result(payout.pk, result)
        payout.replayed = replayed
        if payout.status == Payout.Status.FAILED:
            raise GatewayRejected(payout.failure_reason)
        return payout

    def retry_payout(self, payout_id, idempotency_key: str = "", actor: str = "system") -> Payout:
        """Start a new attempt for a FAILED payout."""
        return self.process_payout(
            payout_id,
            idempotency_key,
            actor,
            allowed_from=(Payout.Status.FAILED,),
            operation="payout.retry",
        )

    def apply_transfer_result(self, payout_id, result: GatewayResult) -> Payout:
        with DjangoUnitOfWork() as uow:
            payout = uow.lock(Payout.objects, pk=payout_id)
            if result.reference and not payout.transfer_reference:
                payout.transfer_reference = result.reference
                payout.save(update_fields=["transfer_reference", "updated_at"])

            if payout.status != Payout.Status.PROCESSING or result.status == GatewayStatus.PENDING:
                return payout

            if result.status == GatewayStatus.SUCCEEDED:
                self._transition(payout, Payout.Status.COMPLETED, actor="gateway")
                Transaction.objects.filter(payout=payout).update(settled_at=payout.processed_at)
                payout.add_event(PayoutCompleted(
                    aggregate_id=payout.pk,
                    payout_id=str(payout.pk),
                    host_id=payout.host_id,
                    amount=payout.money,
                ))
            else:
                reason = result.failure_reason or "rejected"
                logger.error(f"Payout {payout.reference} failed: {reason}")
                self._transition(payout, Payout.Status.FAILED, actor="gateway", reason=reason)
                payout.add_event(PayoutFailed(
                    aggregate_id=payout.pk,
                    payout_id=str(payout.pk),
                    host_id=payout.host_id,
                    reason=reason,
                ))
            uow.collect_events(payout)
        return payout

    def cancel_payout(self, payout_id, reason: str = "", actor: str = "system") -> Payout:
        """Cancel a PENDING or FAILED payout and release its credits."""
        with DjangoUnitOfWork() as uow:
            payout = uow.lock(Payout.objects, pk=payout_id)
            self._transition(payout, Payout.Status.CANCELLED, actor=actor, reason=reason)
            released = Transaction.objects.filter(payout=payout).update(payout=None)
            payout.add_event(PayoutCancelled(
                aggregate_id=payout.pk, payout_id=str(payout.pk), host_id=payout.host_id
            ))
            uow.collect_events(payout)
        logger.info(f"Payout {payout.reference} cancelled; {released} credits released")
        return payout

    # ----- callbacks and reconciliation -----

    def on_transfer_status_changed(self, reference: str, status: str, failure_reason: str = "") -> Payout:
        """Webhook entry point; ``reference`` is theirs or our attempt reference."""
        payout_reference = reference.rsplit("-", 1)[0]
        payout = Payout.objects.get(
            Q(transfer_reference=reference) | Q(reference=payout_reference) | Q(reference=reference)
        )
        result = GatewayResult(
            GatewayStatus.parse(status), reference=reference, failure_reason=failure_reason
        )
        return self.apply_transfer_result(payout.pk, result)

    def reconcile_processing_payouts(self, older_than: timedelta | None = None) -> dict[str, int]:
        older_than = older_than or timedelta(minutes=self.conf.reconcile_after_minutes)
        cutoff = timezone.now() - older_than
        counts = {"polled": 0, "completed": 0, "failed": 0, "errors": 0}
        stale = list(Payout.objects.filter(status=Payout.Status.PROCESSING, updated_at__lte=cutoff))
        for payout in stale:
            counts["polled"] += 1
            try:
                result = self.gateway.fetch_status(payout.attempt_reference)
            except (GatewayTimeout, GatewayRejected) as exc:
                logger.warning(f"Could not poll payout {payout.reference}: {exc}")
                counts["errors"] += 1
                continue
            payout = self.apply_transfer_result(payout.pk, result)
            if payout.status == Payout.Status.COMPLETED:
                counts["completed"] += 1
            elif payout.status == Payout.Status.FAILED:
                counts["failed"] += 1
        logger.info(f"Payout reconciliation finished: {counts}")
        return counts
