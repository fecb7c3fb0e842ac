from django.apps import AppConfig


class BookingsConfig(AppConfig):
    name = 'apps.bookings'
    default_auto_field = 'django.db.models.BigAutoField'
    verbose_name = 'Bookings'

    def ready(self):
        from shared.application.audit import register_audit_handlers

        from .application.command_handlers import register_command_handlers
        from .domain import events

        register_command_handlers()
        register_audit_handlers(events.ALL_EVENTS)
