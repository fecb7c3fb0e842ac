"""API views for the finance domain.

Ledger entries are read-only: they are written by booking actions and by
gateway callbacks, never edited through the API. Operators build, send,
retry and cancel host payouts here, and the gateways report outcomes to the
signed webhook endpoints.
"""

from __future__ import annotations

import json
import logging

from django.core.exceptions import MultipleObjectsReturned, ObjectDoesNotExist  # type: ignore
from django_filters.rest_framework import DjangoFilterBackend  # type: ignore
from rest_framework import mixins, status, viewsets  # type: ignore
from rest_framework.decorators import action  # type: ignore
from rest_framework.filters import OrderingFilter  # type: ignore
from rest_framework.permissions import AllowAny  # type: ignore
from rest_framework.response import Response  # type: ignore
from rest_framework.views import APIView  # type: ignore

from apps.bookings.views import actor_for, idempotency_key_for
from shared.domain.exceptions import SettlementError

from . import reports
from .conf import finance_settings
from .gateways import SIGNATURE_HEADER, verify_signature
from .models import GatewayCallback, Payout, PayoutAccount, Transaction
from .payments import PaymentService
from .payouts import PayoutBatcher
from .serializers import (
    BuildPayoutSerializer,
    CancelPayoutSerializer,
    PayoutAccountSerializer,
    PayoutSerializer,
    SummaryQuerySerializer,
    TransactionSerializer,
)

logger = logging.getLogger(__name__)


class TransactionViewSet(viewsets.ReadOnlyModelViewSet):
    """Ledger entries with their status history."""

    queryset = Transaction.objects.select_related("booking").prefetch_related("history").all()
    serializer_class = TransactionSerializer
    filter_backends = [DjangoFilterBackend, OrderingFilter]
    filterset_fields = ["booking", "type", "status", "beneficiary_id", "payout", "currency"]
    ordering_fields = ["created_at", "amount"]
    ordering = ["-created_at"]

    @action(detail=True, methods=["post"], url_path="retry-refund")
    def retry_refund(self, request, pk=None):  # type: ignore
        """Send a rejected refund again as a new entry."""
        entry = self.get_object()
        retry = PaymentService().retry_refund(entry.pk, actor=actor_for(request))
        return Response(self.get_serializer(retry).data, status=status.HTTP_201_CREATED)


class PayoutViewSet(viewsets.ReadOnlyModelViewSet):
    """Host payouts and the operator actions on them."""

    queryset = Payout.objects.prefetch_related("history").all()
    serializer_class = PayoutSerializer
    filter_backends = [DjangoFilterBackend, OrderingFilter]
    filterset_fields = ["host_id", "status", "currency", "method"]
    ordering_fields = ["created_at", "amount"]
    ordering = ["-created_at"]

    @action(detail=False, methods=["post"])
    def build(self, request):  # type: ignore
        """
        Batch settled host earnings into payouts.

        With ``host_id`` a single payout is built (or an error explains why
        not); without it every host with enough earnings is batched.
        """
        serializer = BuildPayoutSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        batcher = PayoutBatcher()

        if not data["host_id"]:
            counts = batcher.build_due_payouts(as_of=data.get("as_of"))
            return Response(counts, status=status.HTTP_200_OK)

        payout = batcher.build_payout(
            data["host_id"],
            as_of=data.get("as_of"),
            currency=data["currency"] or None,
            actor=actor_for(request),
        )
        return Response(self.get_serializer(payout).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=["post"])
    def process(self, request, pk=None):  # type: ignore
        payout = self.get_object()
        payout = PayoutBatcher().process_payout(
            payout.pk, idempotency_key_for(request), actor_for(request)
        )
        return Response(self.get_serializer(payout).data)

    @action(detail=True, methods=["post"])
    def retry(self, request, pk=None):  # type: ignore
        payout = self.get_object()
        payout = PayoutBatcher().retry_payout(
            payout.pk, idempotency_key_for(request), actor_for(request)
        )
        return Response(self.get_serializer(payout).data)

    @action(detail=True, methods=["post"])
    def cancel(self, request, pk=None):  # type: ignore
        """Cancel a pending or failed payout; its credits return to the pool."""
        serializer = CancelPayoutSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        payout = self.get_object()
        payout = PayoutBatcher().cancel_payout(
            payout.pk, reason=serializer.validated_data["reason"], actor=actor_for(request)
        )
        return Response(self.get_serializer(payout).data)


class PayoutAccountViewSet(
    mixins.CreateModelMixin,
    mixins.UpdateModelMixin,
    mixins.RetrieveModelMixin,
    mixins.ListModelMixin,
    viewsets.GenericViewSet,
):
    """Where each host is paid. Destinations are never returned unmasked."""

    queryset = PayoutAccount.objects.all()
    serializer_class = PayoutAccountSerializer
    lookup_field = "host_id"
    filter_backends = [DjangoFilterBackend]
    filterset_fields = ["method", "currency"]


class FinancialSummaryView(APIView):
    """Platform revenue, fees, refunds and payouts."""

    def get(self, request, format=None):  # type: ignore
        query = SummaryQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        return Response(
            reports.financial_summary(
                since=query.validated_data.get("since"),
                currency=query.validated_data["currency"] or None,
            )
        )


class HostSummaryView(APIView):
    """One host's balances and payout history."""

    def get(self, request, host_id: str, format=None):  # type: ignore
        query = SummaryQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        return Response(
            reports.host_summary(host_id, currency=query.validated_data["currency"] or None)
        )


class GatewayWebhookView(APIView):
    """
    Base view for gateway callbacks.

    The raw body must carry a valid ``X-Gateway-Signature`` header. Every
    accepted delivery is stored as a GatewayCallback before it is applied,
    so failed deliveries can be inspected and replayed.
    """

    authentication_classes: list = []
    permission_classes = [AllowAny]
    kind = ""

    def apply(self, reference: str, status_value: str, failure_reason: str) -> None:
        raise NotImplementedError

    def post(self, request, format=None):  # type: ignore
        body = request.body
        secret = finance_settings().webhook_secret
        if not verify_signature(body, request.headers.get(SIGNATURE_HEADER), secret):
            logger.warning(f"Rejected {self.kind} webhook with an invalid signature")
            return Response({"detail": "Invalid signature."}, status=status.HTTP_401_UNAUTHORIZED)

        try:
            data = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            return Response({"detail": "Invalid JSON."}, status=status.HTTP_400_BAD_REQUEST)
        if not isinstance(data, dict):
            return Response({"detail": "Expected a JSON object."}, status=status.HTTP_400_BAD_REQUEST)

        reference = str(data.get("reference") or data.get("gateway_reference") or data.get("id") or "")
        status_value = str(data.get("status") or "")
        if not reference or not status_value:
            return Response(
                {"detail": "reference and status are required."}, status=status.HTTP_400_BAD_REQUEST
            )
        failure_reason = str(data.get("failure_reason") or data.get("error") or "")

        callback = GatewayCallback.objects.create(
            kind=self.kind, reference=reference[:128], status=status_value[:20], payload=data
        )
        try:
            self.apply(reference, status_value, failure_reason)
        except ValueError as exc:
            self._record_error(callback, str(exc))
            return Response({"detail": str(exc)}, status=status.HTTP_400_BAD_REQUEST)
        except (ObjectDoesNotExist, MultipleObjectsReturned):
            self._record_error(callback, "unknown reference")
            logger.error(f"{self.kind} webhook for unknown reference {reference}")
            return Response({"detail": "Unknown reference."}, status=status.HTTP_404_NOT_FOUND)
        except SettlementError as exc:
            self._record_error(callback, exc.message)
            raise

        callback.processed = True
        callback.save(update_fields=["processed"])
        logger.info(f"Applied {self.kind} webhook {reference}: {status_value}")
        return Response({"status": "ok"}, status=status.HTTP_200_OK)

    def _record_error(self, callback: GatewayCallback, error: str) -> None:
        callback.error = error[:255]
        callback.save(update_fields=["error"])


class PaymentWebhookView(GatewayWebhookView):
    kind = GatewayCallback.Kind.PAYMENT

    def apply(self, reference: str, status_value: str, failure_reason: str) -> None:
        PaymentService().on_payment_status_changed(reference, status_value, failure_reason)


class TransferWebhookView(GatewayWebhookView):
    kind = GatewayCallback.Kind.TRANSFER

    def apply(self, reference: str, status_value: str, failure_reason: str) -> None:
        PayoutBatcher().on_transfer_status_changed(reference, status_value, failure_reason)
