"""Admin registration for bookings.

Bookings are read-only here: status changes go through the API actions so
that ledger entries are always written with them.
"""

from __future__ import annotations

from django.contrib import admin

from .models import Booking, BookingStatusChange, DisputeResolution, EmergencyIncident


class BookingStatusChangeInline(admin.TabularInline):
    model = BookingStatusChange
    extra = 0
    can_delete = False
    readonly_fields = ("from_status", "to_status", "actor", "reason", "idempotency_key", "created_at")

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    list_display = (
        "code",
        "guest_id",
        "host_id",
        "status",
        "total_amount",
        "currency",
        "check_in",
        "check_out",
        "refund_amount",
        "created_at",
    )
    list_filter = ("status", "type", "cancellation_policy", "currency")
    search_fields = ("code", "guest_id", "host_id", "property_id")
    readonly_fields = (
        "code",
        "status",
        "status_changed_at",
        "status_reason",
        "refund_amount",
        "dispute_resolved",
        "version",
        "created_at",
        "updated_at",
    )
    inlines = [BookingStatusChangeInline]

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(DisputeResolution)
class DisputeResolutionAdmin(admin.ModelAdmin):
    list_display = ("booking", "outcome", "refund_amount", "resolved_by", "resolved_at")
    list_filter = ("outcome",)
    search_fields = ("booking__code",)


@admin.register(EmergencyIncident)
class EmergencyIncidentAdmin(admin.ModelAdmin):
    list_display = ("booking", "action", "operator", "previous_status", "refund_amount", "created_at")
    list_filter = ("action",)
    search_fields = ("booking__code", "operator")
