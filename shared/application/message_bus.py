"""
Message Bus

Routes booking commands to the single handler that executes them and fans
committed domain events out to their subscribers (audit trail, gateway
follow-ups).

Commands form a closed set of typed dataclasses; dispatching an object that
has no registered handler is an error rather than a silent no-op.
"""

from typing import Any, Callable, Dict, List, Type
import logging

from shared.domain.base import DomainEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[DomainEvent], None]


class MessageBus:
    """
    Commands: exactly one handler per command type
    Events: any number of subscribers per event type
    """

    def __init__(self):
        self._subscribers: Dict[Type[DomainEvent], List[EventHandler]] = {}
        self._handlers: Dict[Type, Callable[[Any], Any]] = {}

    def register_event_handler(self, event_type: Type[DomainEvent], handler: EventHandler):
        """Subscribe ``handler`` to ``event_type``; subscribing twice is ignored."""
        subscribers = self._subscribers.setdefault(event_type, [])
        if handler not in subscribers:
            subscribers.append(handler)
            logger.debug(f"{getattr(handler, '__name__', handler)} subscribed to {event_type.__name__}")

    def register_command_handler(self, command_type: Type, handler: Callable[[Any], Any]):
        if command_type in self._handlers:
            raise ValueError(f"{command_type.__name__} already has a handler")
        self._handlers[command_type] = handler

    def has_command_handler(self, command_type: Type) -> bool:
        return command_type in self._handlers

    def handle_command(self, command: Any) -> Any:
        """
        Run the handler registered for ``type(command)`` and return its result.

        Settlement errors raised by the handler propagate unchanged so the
        API layer can map them to responses.
        """
        name = type(command).__name__
        handler = self._handlers.get(type(command))
        if handler is None:
            raise ValueError(f"Unknown command {name}")

        logger.info(f"Dispatching {name}")
        try:
            return handler(command)
        except Exception as exc:
            logger.warning(f"{name} failed: {exc}")
            raise

    def publish_events(self, events: List[DomainEvent]):
        """
        Deliver committed events to their subscribers.

        The ledger rows behind an event are already committed, so a failing
        subscriber is logged and the remaining subscribers still run.
        """
        for event in events:
            subscribers = self._subscribers.get(type(event), [])
            if not subscribers:
                logger.debug(f"No subscribers for {type(event).__name__}")
                continue

            for handler in subscribers:
                try:
                    handler(event)
                except Exception:
                    logger.exception(
                        f"Subscriber {getattr(handler, '__name__', handler)} failed on "
                        f"{type(event).__name__} {event.event_id}"
                    )


# Process-wide bus; handlers are registered from the apps' ready() hooks
message_bus = MessageBus()
