from django.apps import AppConfig


class FinancesConfig(AppConfig):
    name = 'apps.finances'
    default_auto_field = 'django.db.models.BigAutoField'
    verbose_name = 'Finances'

    def ready(self):
        from shared.application.audit import register_audit_handlers

        from . import events

        register_audit_handlers(events.ALL_EVENTS)
