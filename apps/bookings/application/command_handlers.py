"""
Booking Command Handlers

These are the use cases for the booking domain. They orchestrate domain
operations within transactions.

Every state change runs the same way (see BookingStateMachine.execute):
1. Start a unit of work (atomic block)
2. Lock the booking row (SELECT ... FOR UPDATE)
3. Replay the stored outcome if the idempotency key was seen before
4. Check the caller's expected version
5. Validate the transition and write status change plus ledger entries
6. Compare-and-swap the booking version
7. Store the idempotency outcome
8. Commit, then publish events and call gateways
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace

from django.db.models import F  # type: ignore
from django.utils import timezone  # type: ignore

from apps.bookings.domain.events import BookingStatusChanged, DisputeOpened
from apps.bookings.domain.state_machine import BookingStatus, ensure_transition
from apps.bookings.models import Booking, BookingStatusChange
from apps.finances import idempotency
from apps.finances.ledger import Ledger
from apps.finances.models import Transaction
from apps.finances.payments import PaymentService
from shared.application.message_bus import MessageBus, message_bus
from shared.application.uow import DjangoUnitOfWork
from shared.domain.exceptions import (
    ConcurrentModification,
    DisputeAlreadyOpen,
    GatewayRejected,
    InvalidTransition,
)

from .commands import (
    CancelBooking,
    CancellationReason,
    CompleteBooking,
    ConfirmBooking,
    EmergencyOverride,
    OpenDispute,
    ResolveDispute,
    TransitionResult,
)

logger = logging.getLogger(__name__)


@dataclass
class Effects:
    """What a command did besides the status change; acted on after commit."""

    posted: list = field(default_factory=list)
    refunds: list = field(default_factory=list)
    payment: Transaction | None = None
    payment_source: str = ""


class BookingStateMachine:
    """
    Applies status transitions to bookings together with their ledger effects.

    Gateway calls (charges, refunds) are made only after the unit of work
    has committed, never while the booking row is locked.
    """

    def __init__(self, ledger: Ledger | None = None, payments: PaymentService | None = None):
        self.ledger = ledger or Ledger()
        self.payments = payments or PaymentService(ledger=self.ledger)
        self._resolver = None

    @property
    def resolver(self):
        if self._resolver is None:
            from .resolver import DisputeRefundResolver

            self._resolver = DisputeRefundResolver(self)
        return self._resolver

    # ----- generic execution -----

    def execute(
        self,
        booking_id,
        *,
        operation: str,
        payload: dict,
        actor: str,
        apply,
        idempotency_key: str = "",
        expected_version: int | None = None,
    ) -> TransitionResult:
        effects = Effects()
        with DjangoUnitOfWork() as uow:
            booking = uow.lock(Booking.objects, pk=booking_id)

            stored = idempotency.lookup(idempotency_key, operation, payload)
            if stored is not None:
                return self._with_payment_status(TransitionResult.from_outcome(stored))

            if expected_version is not None and booking.version != expected_version:
                raise ConcurrentModification(
                    f"Booking {booking.code} is at version {booking.version}, "
                    f"expected {expected_version}"
                )

            seen_version = booking.version
            from_status = booking.status
            with self.ledger.recording() as posted:
                apply(booking, effects)
            effects.posted = posted
            self._save(booking, seen_version)

            result = TransitionResult(
                booking_id=str(booking.pk),
                from_status=from_status,
                to_status=booking.status,
                version=booking.version,
                transaction_ids=tuple(str(entry.pk) for entry in posted),
                refund_amount=str(booking.refund_amount) if booking.refund_amount is not None else None,
                refund_transaction_id=str(effects.refunds[-1].pk) if effects.refunds else None,
                payment_transaction_id=str(effects.payment.pk) if effects.payment else None,
            )
            idempotency.remember(idempotency_key, operation, payload, result.to_outcome())
            uow.collect_events(booking)

        logger.info(
            f"{operation} by {actor}: booking {booking.code} {from_status} -> {booking.status}"
        )
        self._after_commit(effects)
        return self._with_payment_status(result)

    def move(
        self,
        booking: Booking,
        target: str,
        *,
        actor: str,
        reason: str = "",
        idempotency_key: str = "",
        enforce: bool = True,
    ) -> None:
        """Change the in-memory status and record history; persisted by execute()."""
        if enforce:
            ensure_transition(booking.status, target)
        elif booking.status == target:
            raise InvalidTransition("booking", booking.status, target)

        previous = booking.status
        booking.status = target
        booking.status_changed_at = timezone.now()
        booking.status_reason = reason[:255]
        BookingStatusChange.objects.create(
            booking=booking,
            from_status=previous,
            to_status=target,
            actor=actor,
            reason=reason[:255],
            idempotency_key=idempotency_key,
            created_at=booking.status_changed_at,
        )
        booking.add_event(BookingStatusChanged(
            aggregate_id=booking.pk,
            booking_id=str(booking.pk),
            from_status=previous,
            to_status=target,
            actor=actor,
            reason=reason,
        ))

    def _save(self, booking: Booking, seen_version: int) -> None:
        updated = Booking.objects.filter(pk=booking.pk, version=seen_version).update(
            status=booking.status,
            status_changed_at=booking.status_changed_at,
            status_reason=booking.status_reason,
            refund_amount=booking.refund_amount,
            dispute_resolved=booking.dispute_resolved,
            version=F("version") + 1,
            updated_at=timezone.now(),
        )
        if updated != 1:
            raise ConcurrentModification(f"Booking {booking.code} was modified concurrently")
        booking.version = seen_version + 1

    def _after_commit(self, effects: Effects) -> None:
        for refund in effects.refunds:
            self.payments.initiate_refund(refund.pk)
        if effects.payment is not None and effects.payment_source:
            try:
                self.payments.initiate_charge(effects.payment.pk, effects.payment_source)
            except GatewayRejected as exc:
                # the transition stands; the FAILED payment is reported on the result
                logger.error(f"Charge {effects.payment.reference} rejected after commit: {exc.reason}")

    @staticmethod
    def _with_payment_status(result: TransitionResult) -> TransitionResult:
        if result.payment_transaction_id is None:
            return result
        status = (
            Transaction.objects.filter(pk=result.payment_transaction_id)
            .values_list("status", flat=True)
            .first()
        )
        return replace(result, payment_status=status)

    # ----- transitions -----

    def transition(
        self,
        booking_id,
        target_status: str,
        reason: str = "",
        actor: str = "system",
        idempotency_key: str = "",
        expected_version: int | None = None,
        *,
        payment_source: str = "",
        cancellation_reason: str = CancellationReason.GUEST_REQUEST,
        requested_refund=None,
    ) -> TransitionResult:
        """Move a booking to ``target_status`` with the ledger effects that implies."""
        target = BookingStatus(target_status)
        payload = {
            "booking_id": str(booking_id),
            "target": target.value,
            "reason": reason,
            "payment_source": payment_source,
            "cancellation_reason": cancellation_reason,
            "requested_refund": str(requested_refund) if requested_refund is not None else None,
        }

        def apply(booking: Booking, effects: Effects) -> None:
            if target == BookingStatus.DISPUTED and booking.status == BookingStatus.DISPUTED:
                raise DisputeAlreadyOpen(f"Booking {booking.code} is already disputed")
            ensure_transition(booking.status, target)

            if target == BookingStatus.CONFIRMED:
                effects.payment = self.ledger.post(
                    booking, Transaction.Type.BOOKING_PAYMENT, booking.money,
                    actor=actor, memo=f"payment for booking {booking.code}",
                )
                effects.payment_source = payment_source
            elif target == BookingStatus.COMPLETED:
                self.require_completed_payment(booking, target)
                self.ledger.release_host_credits(booking, actor=actor)
            elif target == BookingStatus.CANCELLED:
                self.resolver.settle_cancellation(
                    booking, effects,
                    cancellation_reason=cancellation_reason,
                    requested_refund=requested_refund,
                    actor=actor,
                    memo=reason,
                )
            elif target == BookingStatus.DISPUTED:
                booking.dispute_resolved = False
                booking.add_event(DisputeOpened(
                    aggregate_id=booking.pk,
                    booking_id=str(booking.pk),
                    actor=actor,
                    reason=reason,
                ))

            self.move(
                booking, target, actor=actor, reason=reason,
                idempotency_key=idempotency_key, enforce=False,
            )

        return self.execute(
            booking_id,
            operation=f"booking.transition.{target.value.lower()}",
            payload=payload,
            actor=actor,
            apply=apply,
            idempotency_key=idempotency_key,
            expected_version=expected_version,
        )

    def require_completed_payment(self, booking: Booking, target: str) -> None:
        if not self.ledger.completed_payments(booking).is_positive():
            raise InvalidTransition(
                "booking", booking.status, target,
                f"Booking {booking.code} has no completed payment",
            )


# ===== Command Handlers =====

def handle_confirm(command: ConfirmBooking) -> TransitionResult:
    return BookingStateMachine().transition(
        command.booking_id,
        BookingStatus.CONFIRMED,
        reason=command.reason,
        actor=command.actor,
        idempotency_key=command.idempotency_key,
        expected_version=command.expected_version,
        payment_source=command.payment_source,
    )


def handle_complete(command: CompleteBooking) -> TransitionResult:
    return BookingStateMachine().transition(
        command.booking_id,
        BookingStatus.COMPLETED,
        reason=command.reason,
        actor=command.actor,
        idempotency_key=command.idempotency_key,
        expected_version=command.expected_version,
    )


def handle_cancel(command: CancelBooking) -> TransitionResult:
    return BookingStateMachine().transition(
        command.booking_id,
        BookingStatus.CANCELLED,
        reason=command.reason,
        actor=command.actor,
        idempotency_key=command.idempotency_key,
        expected_version=command.expected_version,
        cancellation_reason=command.cancellation_reason,
        requested_refund=command.requested_refund,
    )


def handle_open_dispute(command: OpenDispute) -> TransitionResult:
    return BookingStateMachine().resolver.open_dispute(
        command.booking_id,
        command.reason,
        actor=command.actor,
        idempotency_key=command.idempotency_key,
        expected_version=command.expected_version,
    )


def handle_resolve_dispute(command: ResolveDispute) -> TransitionResult:
    return BookingStateMachine().resolver.resolve_dispute(
        command.booking_id,
        command.outcome,
        refund_amount=command.refund_amount,
        notes=command.notes,
        actor=command.actor,
        idempotency_key=command.idempotency_key,
        expected_version=command.expected_version,
    )


def handle_emergency_override(command: EmergencyOverride) -> TransitionResult:
    return BookingStateMachine().resolver.emergency_override(
        command.booking_id,
        command.action,
        command.justification,
        operator=command.actor,
        idempotency_key=command.idempotency_key,
    )


COMMAND_HANDLERS = {
    ConfirmBooking: handle_confirm,
    CompleteBooking: handle_complete,
    CancelBooking: handle_cancel,
    OpenDispute: handle_open_dispute,
    ResolveDispute: handle_resolve_dispute,
    EmergencyOverride: handle_emergency_override,
}


def register_command_handlers(bus: MessageBus = message_bus) -> None:
    for command_type, handler in COMMAND_HANDLERS.items():
        if not bus.has_command_handler(command_type):
            bus.register_command_handler(command_type, handler)


def dispatch(command) -> TransitionResult:
    """Route a booking command to its handler through the message bus."""
    return message_bus.handle_command(command)
