"""Serializers for the booking domain."""

from __future__ import annotations

from rest_framework import serializers  # type: ignore

from .application.commands import CancellationReason
from .models import Booking, BookingStatusChange, DisputeResolution, EmergencyIncident


class BookingStatusChangeSerializer(serializers.ModelSerializer):
    class Meta:
        model = BookingStatusChange
        fields = ["from_status", "to_status", "actor", "reason", "idempotency_key", "created_at"]
        read_only_fields = fields


class DisputeResolutionSerializer(serializers.ModelSerializer):
    class Meta:
        model = DisputeResolution
        fields = ["outcome", "refund_amount", "notes", "resolved_by", "resolved_at"]
        read_only_fields = fields


class BookingSerializer(serializers.ModelSerializer):
    """Detailed booking with its status history."""

    history = BookingStatusChangeSerializer(many=True, read_only=True)
    dispute_resolutions = DisputeResolutionSerializer(many=True, read_only=True)

    class Meta:
        model = Booking
        fields = [
            "id",
            "code",
            "guest_id",
            "host_id",
            "agent_id",
            "property_id",
            "type",
            "status",
            "cancellation_policy",
            "total_amount",
            "currency",
            "check_in",
            "check_out",
            "status_changed_at",
            "status_reason",
            "refund_amount",
            "dispute_resolved",
            "version",
            "created_at",
            "updated_at",
            "history",
            "dispute_resolutions",
        ]
        read_only_fields = fields


class BookingListSerializer(serializers.ModelSerializer):
    class Meta:
        model = Booking
        fields = [
            "id",
            "code",
            "guest_id",
            "host_id",
            "status",
            "total_amount",
            "currency",
            "check_in",
            "check_out",
            "refund_amount",
            "version",
        ]
        read_only_fields = fields


# ----- action payloads -----

class TransitionSerializer(serializers.Serializer):
    """Common fields of every booking action."""

    reason = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")
    expected_version = serializers.IntegerField(min_value=0, required=False, allow_null=True)


class ConfirmSerializer(TransitionSerializer):
    payment_source = serializers.CharField(
        max_length=255,
        required=False,
        allow_blank=True,
        default="",
        help_text="Tokenised card or wallet to charge once the booking is confirmed",
    )


class CancelSerializer(TransitionSerializer):
    reason = serializers.CharField(max_length=255)
    cancellation_reason = serializers.ChoiceField(
        choices=CancellationReason.choices, default=CancellationReason.GUEST_REQUEST
    )
    requested_refund = serializers.DecimalField(
        max_digits=14, decimal_places=3, min_value=0, required=False, allow_null=True
    )


class DisputeSerializer(TransitionSerializer):
    reason = serializers.CharField(max_length=255)


class ResolveDisputeSerializer(serializers.Serializer):
    outcome = serializers.ChoiceField(choices=DisputeResolution.Outcome.choices)
    refund_amount = serializers.DecimalField(
        max_digits=14, decimal_places=3, min_value=0, required=False, allow_null=True
    )
    notes = serializers.CharField(required=False, allow_blank=True, default="")
    expected_version = serializers.IntegerField(min_value=0, required=False, allow_null=True)

    def validate(self, attrs):  # type: ignore
        amount = attrs.get("refund_amount")
        if attrs["outcome"] == DisputeResolution.Outcome.SPLIT:
            if amount is None or amount <= 0:
                raise serializers.ValidationError(
                    {"refund_amount": "A positive amount is required for SPLIT."}
                )
        elif amount is not None:
            raise serializers.ValidationError(
                {"refund_amount": "Only accepted when the outcome is SPLIT."}
            )
        return attrs


class EmergencySerializer(serializers.Serializer):
    action = serializers.ChoiceField(choices=EmergencyIncident.Action.choices)
    justification = serializers.CharField()


class RefundQuoteQuerySerializer(serializers.Serializer):
    cancellation_reason = serializers.ChoiceField(
        choices=CancellationReason.choices, default=CancellationReason.GUEST_REQUEST
    )
    requested_refund = serializers.DecimalField(
        max_digits=14, decimal_places=3, min_value=0, required=False, allow_null=True
    )


class TransitionResultSerializer(serializers.Serializer):
    booking_id = serializers.CharField()
    from_status = serializers.CharField()
    to_status = serializers.CharField()
    version = serializers.IntegerField()
    transaction_ids = serializers.ListField(child=serializers.CharField())
    refund_amount = serializers.CharField(allow_null=True)
    refund_transaction_id = serializers.CharField(allow_null=True)
    payment_transaction_id = serializers.CharField(allow_null=True)
    payment_status = serializers.CharField(allow_null=True)
    replayed = serializers.BooleanField()
