"""
Dispute / Refund Resolver

Decides how much money goes back to the guest when a booking is cancelled,
disputed or overridden by an operator, and posts the matching ledger
entries. A refund always comes with a re-split of what the platform keeps:
the fee, commission and host credit of the original payment are reversed
and the retained amount is split again, so the booking's net liability
stays at zero.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal

from django.utils import timezone  # type: ignore

from apps.bookings.domain.events import DisputeResolved, EmergencyOverrideApplied, RefundIssued
from apps.bookings.domain.refund_policy import RefundQuote, quote_refund
from apps.bookings.domain.state_machine import BookingStatus
from apps.bookings.models import Booking, DisputeResolution, EmergencyIncident
from apps.finances.commission import RateConfig
from apps.finances.conf import finance_settings
from apps.finances.models import Transaction
from shared.domain.exceptions import InvalidTransition, RefundExceedsPaid
from shared.domain.value_objects import Money

from .commands import CancellationReason, TransitionResult

logger = logging.getLogger(__name__)

EMERGENCY_ACTOR = "emergency"

# Cancellations the guest did not cause are refunded in full
FULL_REFUND_REASONS = frozenset(
    {CancellationReason.HOST_CANCELLED, CancellationReason.PLATFORM_DECISION}
)


class DisputeRefundResolver:
    def __init__(self, machine):
        self.machine = machine
        self.ledger = machine.ledger
        self.conf = finance_settings()

    # ----- quotes -----

    def compute_refund(
        self,
        booking: Booking,
        reason: str = CancellationReason.GUEST_REQUEST,
        requested_amount: Decimal | None = None,
        policy: str | None = None,
        now: datetime | None = None,
    ) -> RefundQuote:
        """Refund owed if ``booking`` were cancelled now for ``reason``."""
        if policy is None:
            policy = (
                Booking.CancellationPolicy.FULL
                if reason in FULL_REFUND_REASONS
                else booking.cancellation_policy
            )
        terms = self.conf.policy(policy)
        requested = (
            Money(requested_amount, booking.currency) if requested_amount is not None else None
        )
        return quote_refund(
            paid=self.ledger.completed_payments(booking),
            refundable=self.ledger.refundable(booking),
            terms=terms,
            hours_before_check_in=booking.stay.hours_until_check_in(now or timezone.now()),
            non_refundable_fee=Money(self.conf.non_refundable_fee, booking.currency).truncate(),
            requested=requested,
        )

    # ----- ledger effects -----

    def settle_cancellation(
        self,
        booking: Booking,
        effects,
        *,
        cancellation_reason: str,
        requested_refund: Decimal | None,
        actor: str,
        memo: str,
    ) -> RefundQuote:
        quote = self.compute_refund(booking, cancellation_reason, requested_amount=requested_refund)
        self._cancel_unsent_payments(booking, actor)
        self._refund(booking, quote.amount, effects, actor=actor, memo=memo or "cancellation", policy=quote.policy)
        return quote

    def _cancel_unsent_payments(self, booking: Booking, actor: str) -> None:
        """Payments not yet sent to the gateway die with the booking.

        Payments already in flight stay; if they succeed later they are
        refunded in full. So is a capture the gateway reports for one
        cancelled here.
        """
        unsent = self.ledger.entries(booking, Transaction.Type.BOOKING_PAYMENT).filter(
            status=Transaction.Status.PENDING, gateway_reference=""
        )
        for payment in unsent:
            self.ledger.transition(
                payment, Transaction.Status.CANCELLED, actor=actor, reason="booking cancelled"
            )

    def _refund(self, booking: Booking, amount: Money, effects, *, actor: str, memo: str, policy: str):
        if not amount.is_positive():
            # nothing goes back: the host keeps its share of what was paid
            self.ledger.release_host_credits(booking, actor=actor)
            return None

        refund = self.ledger.post(
            booking, Transaction.Type.REFUND, amount,
            beneficiary_id=booking.guest_id, actor=actor, memo=memo,
        )
        booking.refund_amount = booking.refunded.amount + amount.amount

        self.ledger.unwind_split(booking, actor=actor, memo=f"re-split after refund {refund.reference}")
        retained = self.ledger.refundable(booking)
        if retained.is_positive():
            self.ledger.post_split(
                booking, retained, RateConfig.from_settings(self.conf),
                actor=actor, host_credit_status=Transaction.Status.COMPLETED,
                memo=f"retained after refund {refund.reference}",
            )

        effects.refunds.append(refund)
        booking.add_event(RefundIssued(
            aggregate_id=booking.pk,
            booking_id=str(booking.pk),
            transaction_id=str(refund.pk),
            amount=amount,
            policy=policy,
        ))
        logger.info(f"Refund {amount} posted for booking {booking.code} under {policy}")
        return refund

    # ----- disputes -----

    def open_dispute(
        self,
        booking_id,
        reason: str,
        *,
        actor: str,
        idempotency_key: str = "",
        expected_version: int | None = None,
    ) -> TransitionResult:
        return self.machine.transition(
            booking_id,
            BookingStatus.DISPUTED,
            reason=reason,
            actor=actor,
            idempotency_key=idempotency_key,
            expected_version=expected_version,
        )

    def resolve_dispute(
        self,
        booking_id,
        outcome: str,
        *,
        refund_amount: Decimal | None = None,
        notes: str = "",
        actor: str,
        idempotency_key: str = "",
        expected_version: int | None = None,
    ) -> TransitionResult:
        outcome = DisputeResolution.Outcome(outcome)
        if outcome == DisputeResolution.Outcome.SPLIT and (refund_amount is None or refund_amount <= 0):
            raise ValueError("SPLIT requires a positive refund_amount")

        payload = {
            "booking_id": str(booking_id),
            "outcome": outcome.value,
            "refund_amount": str(refund_amount) if refund_amount is not None else None,
            "notes": notes,
        }

        def apply(booking: Booking, effects) -> None:
            if booking.status != BookingStatus.DISPUTED:
                raise InvalidTransition(
                    "booking", booking.status, "RESOLVED",
                    f"Booking {booking.code} has no open dispute",
                )
            memo = f"dispute resolved: {outcome.value}"
            zero = Money.zero(booking.currency)

            if outcome == DisputeResolution.Outcome.REFUND_GUEST:
                target = BookingStatus.CANCELLED
                self._cancel_unsent_payments(booking, actor)
                refunded = self.ledger.refundable(booking)
                self._refund(booking, refunded, effects, actor=actor, memo=memo, policy=outcome.value)
            elif outcome == DisputeResolution.Outcome.RELEASE_TO_HOST:
                target = BookingStatus.COMPLETED
                self.machine.require_completed_payment(booking, target)
                self.ledger.release_host_credits(booking, actor=actor)
                refunded = zero
            else:
                target = BookingStatus.COMPLETED
                self.machine.require_completed_payment(booking, target)
                refunded = Money(refund_amount, booking.currency)
                refundable = self.ledger.refundable(booking)
                if refunded > refundable:
                    raise RefundExceedsPaid(refunded.amount, refundable.amount, refundable.currency)
                if refunded.truncate() != refunded:
                    raise ValueError(f"{refunded!r} has more precision than {refunded.currency} allows")
                self._refund(booking, refunded, effects, actor=actor, memo=memo, policy=outcome.value)

            booking.dispute_resolved = True
            DisputeResolution.objects.create(
                booking=booking,
                outcome=outcome,
                refund_amount=refunded.amount,
                notes=notes,
                resolved_by=actor,
            )
            booking.add_event(DisputeResolved(
                aggregate_id=booking.pk,
                booking_id=str(booking.pk),
                outcome=outcome.value,
                refund_amount=refunded,
                actor=actor,
            ))
            self.machine.move(
                booking, target, actor=actor, reason=memo, idempotency_key=idempotency_key
            )

        return self.machine.execute(
            booking_id,
            operation="booking.resolve_dispute",
            payload=payload,
            actor=actor,
            apply=apply,
            idempotency_key=idempotency_key,
            expected_version=expected_version,
        )

    # ----- emergency overrides -----

    def emergency_override(
        self,
        booking_id,
        action: str,
        justification: str,
        *,
        operator: str,
        idempotency_key: str = "",
    ) -> TransitionResult:
        """
        Force a booking out of the normal flow.

        FORCE_CANCEL refunds everything refundable from any non-cancelled
        state; if the stay was already completed the host's earnings are
        clawed back with negative credits. FORCE_COMPLETE still needs a
        completed payment. Every effect is recorded with actor "emergency".
        """
        action = EmergencyIncident.Action(action)
        if not justification or not justification.strip():
            raise ValueError("An emergency override requires a justification")

        payload = {"booking_id": str(booking_id), "action": action.value, "justification": justification}

        def apply(booking: Booking, effects) -> None:
            previous = booking.status
            refunded = Money.zero(booking.currency)

            if action == EmergencyIncident.Action.FORCE_CANCEL:
                if booking.status == BookingStatus.CANCELLED:
                    raise InvalidTransition(
                        "booking", booking.status, BookingStatus.CANCELLED,
                        f"Booking {booking.code} is already cancelled",
                    )
                target = BookingStatus.CANCELLED
                self._cancel_unsent_payments(booking, EMERGENCY_ACTOR)
                refunded = self.ledger.refundable(booking)
                self._refund(
                    booking, refunded, effects,
                    actor=EMERGENCY_ACTOR, memo=justification, policy=action.value,
                )
            else:
                if booking.status in (BookingStatus.COMPLETED, BookingStatus.CANCELLED):
                    raise InvalidTransition(
                        "booking", booking.status, BookingStatus.COMPLETED,
                        f"Booking {booking.code} is already {booking.status}",
                    )
                target = BookingStatus.COMPLETED
                self.machine.require_completed_payment(booking, target)
                self.ledger.release_host_credits(booking, actor=EMERGENCY_ACTOR)

            EmergencyIncident.objects.create(
                booking=booking,
                action=action,
                justification=justification,
                operator=operator,
                previous_status=previous,
                refund_amount=refunded.amount,
            )
            booking.add_event(EmergencyOverrideApplied(
                aggregate_id=booking.pk,
                booking_id=str(booking.pk),
                action=action.value,
                operator=operator,
                justification=justification,
                previous_status=previous,
            ))
            logger.warning(
                f"Emergency {action.value} on booking {booking.code} by {operator}: {justification}"
            )
            self.machine.move(
                booking, target, actor=EMERGENCY_ACTOR, reason=justification,
                idempotency_key=idempotency_key, enforce=False,
            )

        return self.machine.execute(
            booking_id,
            operation="booking.emergency",
            payload=payload,
            actor=EMERGENCY_ACTOR,
            apply=apply,
            idempotency_key=idempotency_key,
        )

    # ----- operator follow-ups -----

    def retry_refund(self, transaction_id, *, actor: str) -> Transaction:
        """Re-send a refund the gateway rejected."""
        return self.machine.payments.retry_refund(transaction_id, actor=actor)
