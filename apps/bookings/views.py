"""API views for the booking domain.

Bookings are created by the reservation service; this API only reads them
and moves them through their lifecycle. Every money-moving action accepts an
``Idempotency-Key`` header and an optional ``expected_version`` so clients
can retry safely.
"""

from __future__ import annotations

import logging

from django_filters.rest_framework import DjangoFilterBackend  # type: ignore
from rest_framework import serializers, status, viewsets  # type: ignore
from rest_framework.decorators import action  # type: ignore
from rest_framework.filters import OrderingFilter  # type: ignore
from rest_framework.response import Response  # type: ignore

from .application.command_handlers import BookingStateMachine, dispatch
from .application.commands import (
    CancelBooking,
    CompleteBooking,
    ConfirmBooking,
    EmergencyOverride,
    OpenDispute,
    ResolveDispute,
)
from .models import Booking
from .serializers import (
    BookingListSerializer,
    BookingSerializer,
    CancelSerializer,
    ConfirmSerializer,
    DisputeSerializer,
    EmergencySerializer,
    RefundQuoteQuerySerializer,
    ResolveDisputeSerializer,
    TransitionResultSerializer,
    TransitionSerializer,
)

logger = logging.getLogger(__name__)

IDEMPOTENCY_HEADER = "Idempotency-Key"


def actor_for(request) -> str:
    user = request.user
    return user.get_username() or str(user.pk)


def idempotency_key_for(request) -> str:
    return request.headers.get(IDEMPOTENCY_HEADER, "").strip()


class BookingViewSet(viewsets.ReadOnlyModelViewSet):
    """Read bookings and apply lifecycle actions to them."""

    queryset = Booking.objects.prefetch_related("history", "dispute_resolutions").all()
    filter_backends = [DjangoFilterBackend, OrderingFilter]
    filterset_fields = ["status", "guest_id", "host_id", "agent_id", "currency", "type"]
    ordering_fields = ["created_at", "check_in", "total_amount"]
    ordering = ["-created_at"]

    def get_serializer_class(self):  # type: ignore
        if self.action == "list":
            return BookingListSerializer
        return BookingSerializer

    def _run(self, request, command_type, payload_serializer, **extra):
        serializer = payload_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = dict(serializer.validated_data)
        booking = self.get_object()
        try:
            command = command_type(
                booking.pk,
                actor_for(request),
                idempotency_key=idempotency_key_for(request),
                expected_version=data.pop("expected_version", None),
                **data,
                **extra,
            )
        except ValueError as exc:
            raise serializers.ValidationError({"non_field_errors": [str(exc)]})

        result = dispatch(command)
        if result.replayed:
            logger.info(f"Replayed {command.operation} for booking {booking.code}")
        return Response(TransitionResultSerializer(result).data, status=status.HTTP_200_OK)

    @action(detail=True, methods=["post"])
    def confirm(self, request, pk=None):  # type: ignore
        """Confirm a pending booking and post the guest payment."""
        return self._run(request, ConfirmBooking, ConfirmSerializer)

    @action(detail=True, methods=["post"])
    def complete(self, request, pk=None):  # type: ignore
        """Complete a confirmed booking and release the host's earnings."""
        return self._run(request, CompleteBooking, TransitionSerializer)

    @action(detail=True, methods=["post"])
    def cancel(self, request, pk=None):  # type: ignore
        """Cancel a booking and refund the guest under the applicable policy."""
        return self._run(request, CancelBooking, CancelSerializer)

    @action(detail=True, methods=["post"])
    def dispute(self, request, pk=None):  # type: ignore
        """Open a dispute; the host's earnings stay frozen until it is resolved."""
        return self._run(request, OpenDispute, DisputeSerializer)

    @action(detail=True, methods=["post"], url_path="resolve-dispute")
    def resolve_dispute(self, request, pk=None):  # type: ignore
        return self._run(request, ResolveDispute, ResolveDisputeSerializer)

    @action(detail=True, methods=["post"])
    def emergency(self, request, pk=None):  # type: ignore
        """
        Force-cancel or force-complete a booking outside the normal flow.

        The operator is recorded on the incident; ledger effects are
        attributed to the "emergency" actor.
        """
        serializer = EmergencySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        booking = self.get_object()
        try:
            command = EmergencyOverride(
                booking.pk,
                actor_for(request),
                idempotency_key=idempotency_key_for(request),
                **serializer.validated_data,
            )
        except ValueError as exc:
            raise serializers.ValidationError({"non_field_errors": [str(exc)]})
        result = dispatch(command)
        return Response(TransitionResultSerializer(result).data, status=status.HTTP_200_OK)

    @action(detail=True, methods=["get"], url_path="refund-quote")
    def refund_quote(self, request, pk=None):  # type: ignore
        """What a cancellation would refund right now. Nothing is written."""
        query = RefundQuoteQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        booking = self.get_object()
        quote = BookingStateMachine().resolver.compute_refund(
            booking,
            query.validated_data["cancellation_reason"],
            requested_amount=query.validated_data.get("requested_refund"),
        )
        return Response(quote.as_dict())
