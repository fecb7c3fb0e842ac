"""
Payment settlement service

Drives guest payments and refunds through the payment gateway:

    initiate -> (gateway call outside any DB lock) -> apply result

A result arrives in one of three ways: the synchronous answer of the
initiating call, a webhook (``on_payment_status_changed``) or the
reconciliation job polling ``fetch_status`` for entries stuck in
PROCESSING. Applying a result is idempotent, so the three paths can race.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from django.db.models import Q  # type: ignore
from django.utils import timezone  # type: ignore

from apps.bookings.models import Booking
from shared.application.uow import DjangoUnitOfWork
from shared.domain.exceptions import (
    GatewayRejected,
    GatewayTimeout,
    InvalidTransition,
    RefundExceedsPaid,
)

from .commission import RateConfig
from .conf import finance_settings
from .events import PaymentFailed, PaymentSettled, RefundFailed, RefundSettled
from .gateways import GatewayResult, GatewayStatus, PaymentGateway, get_payment_gateway
from .ledger import Ledger
from .models import Transaction

logger = logging.getLogger(__name__)

SETTLEABLE_TYPES = (Transaction.Type.BOOKING_PAYMENT, Transaction.Type.SECURITY_DEPOSIT)


class PaymentService:
    def __init__(self, gateway: PaymentGateway | None = None, ledger: Ledger | None = None):
        self._gateway = gateway
        self.ledger = ledger or Ledger()
        self.conf = finance_settings()

    @property
    def gateway(self) -> PaymentGateway:
        if self._gateway is None:
            self._gateway = get_payment_gateway(self.conf)
        return self._gateway

    def _lock(self, uow: DjangoUnitOfWork, transaction_id) -> tuple[Booking, Transaction]:
        """Lock booking first, then the entry, the same order every booking command uses."""
        booking_id = Transaction.objects.values_list("booking_id", flat=True).get(pk=transaction_id)
        booking = uow.lock(Booking.objects, pk=booking_id)
        entry = uow.lock(Transaction.objects, pk=transaction_id)
        return booking, entry

    # ----- charges -----

    def initiate_charge(self, transaction_id, source: str) -> Transaction:
        """Send a pending payment to the gateway."""
        with DjangoUnitOfWork() as uow:
            booking, entry = self._lock(uow, transaction_id)
            if entry.type not in SETTLEABLE_TYPES:
                raise ValueError(f"{entry.type} entries are not charged")
            if entry.status != Transaction.Status.PENDING:
                logger.info(f"Charge {entry.reference} already {entry.status}; not re-sending")
                return entry
            self.ledger.transition(
                entry, Transaction.Status.PROCESSING, actor="gateway", reason="charge sent"
            )

        try:
            result = self.gateway.charge(
                entry.money, source, reference=entry.reference, timeout=self.conf.gateway_timeout
            )
        except GatewayTimeout:
            logger.warning(f"Charge {entry.reference} timed out; left PROCESSING for reconciliation")
            return entry
        except GatewayRejected as exc:
            self.apply_payment_result(
                entry.pk, GatewayResult(GatewayStatus.FAILED, failure_reason=exc.reason)
            )
            raise
        return self.apply_payment_result(entry.pk, result)

    def apply_payment_result(self, transaction_id, result: GatewayResult) -> Transaction:
        """
        Record the gateway's answer for a payment.

        On success the payment is split (fee and commission COMPLETED, host
        credit held until the stay completes). A payment that succeeds after
        its booking was cancelled is refunded in full, and so is a capture
        reported for a payment we had already cancelled.
        """
        late_refund = None
        with DjangoUnitOfWork() as uow:
            booking, entry = self._lock(uow, transaction_id)
            if result.reference and not entry.gateway_reference:
                entry.gateway_reference = result.reference
                entry.save(update_fields=["gateway_reference", "updated_at"])

            captured_after_cancel = False
            if entry.is_terminal:
                if not self._is_capture_of_cancelled(entry, result):
                    logger.info(f"Payment {entry.reference} already {entry.status}; ignoring {result.status}")
                    return entry
                recovered = self._record_capture_of_cancelled(booking, entry)
                if recovered is None:
                    return entry
                entry, captured_after_cancel = recovered, True

            elif result.status == GatewayStatus.PENDING:
                self.ledger.transition(entry, Transaction.Status.PROCESSING, actor="gateway")
                return entry

            elif result.status == GatewayStatus.FAILED:
                self.ledger.transition(
                    entry, Transaction.Status.FAILED, actor="gateway",
                    failure_reason=result.failure_reason or "declined",
                )
                booking.add_event(PaymentFailed(
                    aggregate_id=booking.pk,
                    booking_id=str(booking.pk),
                    transaction_id=str(entry.pk),
                    reason=entry.failure_reason,
                ))
                uow.collect_events(booking)
                return entry

            else:
                self.ledger.transition(entry, Transaction.Status.COMPLETED, actor="gateway")

            booking.add_event(PaymentSettled(
                aggregate_id=booking.pk,
                booking_id=str(booking.pk),
                transaction_id=str(entry.pk),
                amount=entry.money,
            ))

            if entry.type == Transaction.Type.BOOKING_PAYMENT:
                if captured_after_cancel or booking.status == Booking.Status.CANCELLED:
                    logger.warning(
                        f"Payment {entry.reference} settled after booking {booking.code} "
                        f"or its payment was cancelled; refunding"
                    )
                    late_refund = self.ledger.post(
                        booking, Transaction.Type.REFUND, entry.money,
                        beneficiary_id=booking.guest_id, actor="system",
                        memo=f"late payment {entry.reference} on cancelled booking",
                    )
                    Booking.objects.filter(pk=booking.pk).update(
                        refund_amount=booking.refunded.amount + entry.amount
                    )
                else:
                    host_status = (
                        Transaction.Status.COMPLETED
                        if booking.status == Booking.Status.COMPLETED
                        else Transaction.Status.PENDING
                    )
                    self.ledger.post_split(
                        booking, entry.money, RateConfig.from_settings(self.conf),
                        actor="system", host_credit_status=host_status,
                        memo=f"split of {entry.reference}",
                    )
            uow.collect_events(booking)

        if late_refund is not None:
            try:
                self.initiate_refund(late_refund.pk)
            except GatewayRejected as exc:
                # the refund is FAILED now and waits for retry_refund
                logger.error(f"Refund {late_refund.reference} of late payment rejected: {exc.reason}")
        return entry

    @staticmethod
    def _is_capture_of_cancelled(entry: Transaction, result: GatewayResult) -> bool:
        return (
            entry.type == Transaction.Type.BOOKING_PAYMENT
            and entry.status == Transaction.Status.CANCELLED
            and result.status == GatewayStatus.SUCCEEDED
        )

    def _record_capture_of_cancelled(self, booking, cancelled: Transaction) -> Transaction | None:
        """
        Post the money the gateway took for a payment we had cancelled.

        The new COMPLETED entry carries the charge's gateway reference, so the
        refund goes back against it and a repeated webhook finds it recorded.
        """
        charge_ref = cancelled.gateway_reference or cancelled.reference
        already = (
            Transaction.objects.for_booking(booking)
            .filter(
                type=cancelled.type,
                status=Transaction.Status.COMPLETED,
                gateway_reference=charge_ref,
            )
            .exclude(pk=cancelled.pk)
            .exists()
        )
        if already:
            logger.info(f"Capture of cancelled payment {cancelled.reference} already recorded")
            return None

        logger.warning(f"Gateway captured cancelled payment {cancelled.reference}; recording it")
        recovered = self.ledger.post(
            booking, cancelled.type, cancelled.money,
            status=Transaction.Status.COMPLETED, beneficiary_id=cancelled.beneficiary_id,
            actor="gateway", memo=f"captured after {cancelled.reference} was cancelled",
        )
        recovered.gateway_reference = charge_ref
        recovered.save(update_fields=["gateway_reference", "updated_at"])
        return recovered

    # ----- refunds -----

    def initiate_refund(self, transaction_id) -> Transaction:
        """Send a pending refund to the gateway. Rejections are raised after commit."""
        with DjangoUnitOfWork() as uow:
            booking, entry = self._lock(uow, transaction_id)
            if entry.type != Transaction.Type.REFUND:
                raise ValueError(f"{entry.type} entries are not refunded")
            if entry.status != Transaction.Status.PENDING:
                return entry
            payment = self.ledger.latest_completed_payment(booking)
            if payment is None:
                raise InvalidTransition(
                    "transaction", entry.status, Transaction.Status.PROCESSING,
                    f"Booking {booking.code} has no completed payment to refund",
                )
            self.ledger.transition(
                entry, Transaction.Status.PROCESSING, actor="gateway", reason="refund sent"
            )

        try:
            result = self.gateway.refund(
                payment.gateway_reference or payment.reference,
                entry.money,
                reference=entry.reference,
                timeout=self.conf.gateway_timeout,
            )
        except GatewayTimeout:
            logger.warning(f"Refund {entry.reference} timed out; left PROCESSING for reconciliation")
            return entry
        except GatewayRejected as exc:
            self.apply_refund_result(
                entry.pk, GatewayResult(GatewayStatus.FAILED, failure_reason=exc.reason)
            )
            raise
        return self.apply_refund_result(entry.pk, result)

    def apply_refund_result(self, transaction_id, result: GatewayResult) -> Transaction:
        with DjangoUnitOfWork() as uow:
            booking, entry = self._lock(uow, transaction_id)
            if result.reference and not entry.gateway_reference:
                entry.gateway_reference = result.reference
                entry.save(update_fields=["gateway_reference", "updated_at"])

            if entry.is_terminal:
                return entry

            if result.status == GatewayStatus.PENDING:
                self.ledger.transition(entry, Transaction.Status.PROCESSING, actor="gateway")
                return entry

            if result.status == GatewayStatus.FAILED:
                self.ledger.transition(
                    entry, Transaction.Status.FAILED, actor="gateway",
                    failure_reason=result.failure_reason or "rejected",
                )
                # a failed refund is no longer committed to the guest
                Booking.objects.filter(pk=booking.pk).update(
                    refund_amount=max(booking.refunded.amount - entry.amount, 0)
                )
                logger.error(f"Refund {entry.reference} rejected: {entry.failure_reason}")
                booking.add_event(RefundFailed(
                    aggregate_id=booking.pk,
                    booking_id=str(booking.pk),
                    transaction_id=str(entry.pk),
                    reason=entry.failure_reason,
                ))
            else:
                self.ledger.transition(entry, Transaction.Status.COMPLETED, actor="gateway")
                booking.add_event(RefundSettled(
                    aggregate_id=booking.pk,
                    booking_id=str(booking.pk),
                    transaction_id=str(entry.pk),
                    amount=entry.money,
                ))
            uow.collect_events(booking)
        return entry

    def retry_refund(self, transaction_id, *, actor: str) -> Transaction:
        """
        Re-issue a refund the gateway rejected.

        The failed entry stays as it is; a new REFUND for the same amount is
        posted and sent, provided the guest still has that much refundable.
        """
        with DjangoUnitOfWork() as uow:
            booking, failed = self._lock(uow, transaction_id)
            if failed.type != Transaction.Type.REFUND or failed.status != Transaction.Status.FAILED:
                raise InvalidTransition(
                    "transaction", failed.status, Transaction.Status.PENDING,
                    "Only failed refunds can be retried",
                )
            refundable = self.ledger.refundable(booking)
            if failed.money > refundable:
                raise RefundExceedsPaid(failed.amount, refundable.amount, refundable.currency)
            retry = self.ledger.post(
                booking, Transaction.Type.REFUND, failed.money,
                beneficiary_id=failed.beneficiary_id, actor=actor,
                memo=f"retry of {failed.reference}",
            )
            Booking.objects.filter(pk=booking.pk).update(
                refund_amount=booking.refunded.amount + retry.amount
            )
        return self.initiate_refund(retry.pk)

    # ----- callbacks and reconciliation -----

    def on_payment_status_changed(self, gateway_ref: str, status: str, failure_reason: str = "") -> Transaction:
        """Webhook entry point; ``gateway_ref`` may be theirs or our reference."""
        # a recorded capture shares the charge reference; the original entry answers
        entry = (
            Transaction.objects.filter(Q(gateway_reference=gateway_ref) | Q(reference=gateway_ref))
            .filter(type__in=(*SETTLEABLE_TYPES, Transaction.Type.REFUND))
            .order_by("created_at")
            .first()
        )
        if entry is None:
            raise Transaction.DoesNotExist(f"No payment or refund for {gateway_ref!r}")
        result = GatewayResult(
            GatewayStatus.parse(status), reference=gateway_ref, failure_reason=failure_reason
        )
        if entry.type == Transaction.Type.REFUND:
            return self.apply_refund_result(entry.pk, result)
        return self.apply_payment_result(entry.pk, result)

    def reconcile_pending(self, older_than: timedelta | None = None) -> dict[str, int]:
        """
        Settle entries whose gateway outcome never arrived.

        PROCESSING payments and refunds are polled by our reference; refunds
        still PENDING (never sent, e.g. the process died after commit) are sent.
        """
        older_than = older_than or timedelta(minutes=self.conf.reconcile_after_minutes)
        cutoff = timezone.now() - older_than
        counts = {"polled": 0, "settled": 0, "failed": 0, "sent": 0, "errors": 0}

        stuck = list(
            Transaction.objects.filter(
                type__in=(*SETTLEABLE_TYPES, Transaction.Type.REFUND),
                status=Transaction.Status.PROCESSING,
                updated_at__lte=cutoff,
            )
        )
        for entry in stuck:
            counts["polled"] += 1
            try:
                result = self.gateway.fetch_status(entry.reference)
            except (GatewayTimeout, GatewayRejected) as exc:
                logger.warning(f"Could not poll {entry.reference}: {exc}")
                counts["errors"] += 1
                continue
            if entry.type == Transaction.Type.REFUND:
                entry = self.apply_refund_result(entry.pk, result)
            else:
                entry = self.apply_payment_result(entry.pk, result)
            if entry.status == Transaction.Status.COMPLETED:
                counts["settled"] += 1
            elif entry.status == Transaction.Status.FAILED:
                counts["failed"] += 1

        unsent = list(
            Transaction.objects.filter(
                type=Transaction.Type.REFUND,
                status=Transaction.Status.PENDING,
                created_at__lte=cutoff,
            )
        )
        for entry in unsent:
            try:
                self.initiate_refund(entry.pk)
                counts["sent"] += 1
            except GatewayRejected:
                counts["failed"] += 1
            except InvalidTransition as exc:
                logger.warning(f"Refund {entry.reference} cannot be sent: {exc}")
                counts["errors"] += 1

        logger.info(f"Payment reconciliation finished: {counts}")
        return counts
