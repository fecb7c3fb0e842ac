"""Admin registration for the ledger and payouts.

Ledger entries and payouts are shown read-only; corrections are made with
offsetting entries through the API, never by editing rows here.
"""

from __future__ import annotations

from django.contrib import admin

from .models import GatewayCallback, Payout, PayoutAccount, Transaction


class ReadOnlyAdmin(admin.ModelAdmin):
    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Transaction)
class TransactionAdmin(ReadOnlyAdmin):
    list_display = (
        "reference",
        "booking",
        "type",
        "status",
        "amount",
        "currency",
        "beneficiary_id",
        "created_at",
    )
    list_filter = ("type", "status", "currency")
    search_fields = ("reference", "gateway_reference", "booking__code", "beneficiary_id")


@admin.register(Payout)
class PayoutAdmin(ReadOnlyAdmin):
    list_display = ("reference", "host_id", "amount", "currency", "status", "attempts", "created_at")
    list_filter = ("status", "method", "currency")
    search_fields = ("reference", "transfer_reference", "host_id")
    exclude = ("destination",)


@admin.register(PayoutAccount)
class PayoutAccountAdmin(admin.ModelAdmin):
    list_display = ("host_id", "method", "masked_destination", "currency", "updated_at")
    list_filter = ("method",)
    search_fields = ("host_id",)


@admin.register(GatewayCallback)
class GatewayCallbackAdmin(ReadOnlyAdmin):
    list_display = ("kind", "reference", "status", "processed", "error", "created_at")
    list_filter = ("kind", "processed")
    search_fields = ("reference",)
