"""Serializers for the finance domain (ledger entries and payouts)."""

from __future__ import annotations

from rest_framework import serializers  # type: ignore

from shared.infrastructure.encryption import mask

from .models import Payout, PayoutAccount, PayoutStatusChange, Transaction, TransactionStatusChange


class TransactionStatusChangeSerializer(serializers.ModelSerializer):
    class Meta:
        model = TransactionStatusChange
        fields = ["from_status", "to_status", "actor", "reason", "created_at"]
        read_only_fields = fields


class TransactionSerializer(serializers.ModelSerializer):
    """Ledger entry with its status history."""

    booking_code = serializers.ReadOnlyField(source="booking.code")
    history = TransactionStatusChangeSerializer(many=True, read_only=True)

    class Meta:
        model = Transaction
        fields = [
            "id",
            "booking",
            "booking_code",
            "type",
            "status",
            "amount",
            "currency",
            "beneficiary_id",
            "reverses",
            "reference",
            "gateway_reference",
            "failure_reason",
            "actor",
            "memo",
            "payout",
            "settled_at",
            "created_at",
            "processed_at",
            "history",
        ]
        read_only_fields = fields


class PayoutStatusChangeSerializer(serializers.ModelSerializer):
    class Meta:
        model = PayoutStatusChange
        fields = ["from_status", "to_status", "actor", "reason", "created_at"]
        read_only_fields = fields


class PayoutSerializer(serializers.ModelSerializer):
    """Payout as shown to operators; the destination is masked."""

    destination = serializers.SerializerMethodField()
    history = PayoutStatusChangeSerializer(many=True, read_only=True)

    class Meta:
        model = Payout
        fields = [
            "id",
            "host_id",
            "amount",
            "currency",
            "status",
            "method",
            "destination",
            "transaction_ids",
            "reference",
            "transfer_reference",
            "failure_reason",
            "attempts",
            "as_of",
            "created_at",
            "processed_at",
            "history",
        ]
        read_only_fields = fields

    def get_destination(self, obj: Payout) -> str:
        return mask(obj.destination)


class PayoutAccountSerializer(serializers.ModelSerializer):
    destination = serializers.CharField(write_only=True, max_length=255)
    masked_destination = serializers.ReadOnlyField()

    class Meta:
        model = PayoutAccount
        fields = ["id", "host_id", "method", "destination", "masked_destination", "currency", "updated_at"]
        read_only_fields = ["id", "updated_at"]


class BuildPayoutSerializer(serializers.Serializer):
    """Build one host's payout, or every due payout when host_id is omitted."""

    host_id = serializers.CharField(max_length=64, required=False, allow_blank=True, default="")
    currency = serializers.CharField(max_length=3, required=False, allow_blank=True, default="")
    as_of = serializers.DateTimeField(required=False, allow_null=True)


class CancelPayoutSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")


class SummaryQuerySerializer(serializers.Serializer):
    since = serializers.DateTimeField(required=False, allow_null=True)
    currency = serializers.CharField(max_length=3, required=False, allow_blank=True, default="")

