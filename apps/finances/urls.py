"""URL routing for the finance domain."""

from __future__ import annotations

from django.urls import include, path  # type: ignore
from rest_framework.routers import DefaultRouter  # type: ignore

from .views import (
    FinancialSummaryView,
    HostSummaryView,
    PaymentWebhookView,
    PayoutAccountViewSet,
    PayoutViewSet,
    TransactionViewSet,
    TransferWebhookView,
)

router = DefaultRouter()
router.register(r"transactions", TransactionViewSet, basename="transaction")
router.register(r"payouts", PayoutViewSet, basename="payout")
router.register(r"payout-accounts", PayoutAccountViewSet, basename="payout-account")

urlpatterns = [
    path("summary/", FinancialSummaryView.as_view(), name="finance-summary"),
    path("hosts/<str:host_id>/summary/", HostSummaryView.as_view(), name="host-summary"),
    path("webhooks/payments/", PaymentWebhookView.as_view(), name="webhook-payments"),
    path("webhooks/transfers/", TransferWebhookView.as_view(), name="webhook-transfers"),
    path("", include(router.urls)),
]
