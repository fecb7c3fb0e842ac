"""
Unit of Work

One database transaction around a settlement operation: the rows it locks,
the ledger entries it posts and the domain events its aggregates record.
Events leave the process only after the transaction commits; a rollback
discards them together with the rows.
"""

from typing import List
import logging

from django.db import transaction

from shared.domain.base import DomainEvent

logger = logging.getLogger(__name__)


class DjangoUnitOfWork:
    """
    Usage:
        with DjangoUnitOfWork() as uow:
            booking = uow.lock(Booking.objects, pk=booking_id)
            machine.apply(booking, ...)
            uow.collect_events(booking)
        # committed; events are published from transaction.on_commit

    Nested units of work share the outer transaction (``atomic`` savepoints),
    so their events are published once the outermost block commits.
    """

    def __init__(self):
        self._events: List[DomainEvent] = []
        self._atomic = None

    def __enter__(self):
        self._atomic = transaction.atomic()
        self._atomic.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            if exc_type is None:
                self._schedule_publish()
            elif self._events:
                logger.info(f"Rolled back; dropped {len(self._events)} pending events ({exc_type.__name__})")
        finally:
            self._events = []
            self._atomic.__exit__(exc_type, exc_val, exc_tb)

    def lock(self, queryset, **lookup):
        """
        Load one row with SELECT ... FOR UPDATE

        Concurrent units of work touching the same booking or payout
        serialize here. SQLite has no row locks; there the database write
        lock plus the callers' version checks keep updates consistent.
        """
        return queryset.select_for_update().get(**lookup)

    def collect_events(self, aggregate):
        """Take the events recorded on ``aggregate`` into this unit of work."""
        recorded = aggregate.events
        if recorded:
            self._events.extend(recorded)
            aggregate.clear_events()

    def _schedule_publish(self):
        events = list(self._events)
        if events:
            transaction.on_commit(lambda: _publish(events))


def _publish(events: List[DomainEvent]):
    from shared.application.message_bus import message_bus

    logger.debug(f"Publishing {len(events)} committed events")
    message_bus.publish_events(events)
