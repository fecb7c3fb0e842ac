import os

from celery import Celery
from celery.schedules import crontab  # type: ignore

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings.dev")

app = Celery("rental_settlement")

app.config_from_object("django.conf:settings", namespace="CELERY")
app.autodiscover_tasks()


# ============================================================================
# CELERY BEAT SCHEDULE (Periodic Tasks)
# ============================================================================

app.conf.beat_schedule = {
    # Stays that ended: release held host earnings
    "complete-finished-bookings": {
        "task": "bookings.complete_finished_bookings",
        "schedule": crontab(minute=15),  # every hour at :15
    },
    # Payments and refunds stuck after a gateway timeout
    "reconcile-pending-payments": {
        "task": "finances.reconcile_pending_payments",
        "schedule": crontab(minute="*/10"),
        "options": {"expires": 540},
    },
    # Transfers that never got a webhook
    "reconcile-processing-payouts": {
        "task": "finances.reconcile_processing_payouts",
        "schedule": crontab(minute="5-55/10"),
        "options": {"expires": 540},
    },
    # Weekly host payouts, Monday morning
    "build-scheduled-payouts": {
        "task": "finances.build_scheduled_payouts",
        "schedule": crontab(minute=0, hour=6, day_of_week="mon"),
    },
}

app.conf.timezone = "Asia/Dubai"
