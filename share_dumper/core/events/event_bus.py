"""
In-process event bus between the job queue, the SMB services and the UI.
"""
import asyncio
import logging
from collections import defaultdict
from typing import Awaitable, Callable, Dict, List, Type

from share_dumper.core.events.domain_event import DomainEvent

EventHandler = Callable[[DomainEvent], Awaitable[None]]


class DomainEventBus:
    """
    Routes each event to the handlers subscribed to its exact class.

    Publishing awaits every handler, so a publisher that awaits ``publish``
    knows the event has been fully handled before it sends the next one.
    A handler that raises is logged and skipped.
    """

    def __init__(self) -> None:
        self._handlers: Dict[Type[DomainEvent], List[EventHandler]] = defaultdict(list)
        self._lock = asyncio.Lock()

    async def subscribe(self, event_type: Type[DomainEvent], handler: EventHandler) -> None:
        """Add ``handler`` for ``event_type``. Subscribing the same handler twice is a no-op."""
        async with self._lock:
            if handler in self._handlers[event_type]:
                logging.debug(f"{_handler_name(handler)} already subscribed to {event_type.__name__}")
                return
            self._handlers[event_type].append(handler)
            logging.debug(f"{_handler_name(handler)} subscribed to {event_type.__name__}")

    async def unsubscribe(self, event_type: Type[DomainEvent], handler: EventHandler) -> None:
        async with self._lock:
            if handler in self._handlers.get(event_type, []):
                self._handlers[event_type].remove(handler)

    def handler_count(self, event_type: Type[DomainEvent]) -> int:
        return len(self._handlers.get(event_type, []))

    async def publish(self, event: DomainEvent) -> None:
        handlers = list(self._handlers.get(type(event), []))
        if not handlers:
            logging.debug(f"No handlers for {event.name}")
            return

        logging.debug(f"Publishing {event.name} {event.payload()} to {len(handlers)} handler(s)")
        await asyncio.gather(*(self._safe_execute(handler, event) for handler in handlers))

    async def _safe_execute(self, handler: EventHandler, event: DomainEvent) -> None:
        try:
            await handler(event)
        except Exception as e:
            logging.error(
                f"Handler '{_handler_name(handler)}' failed for {event.name}: {e}",
                exc_info=True,
            )


def _handler_name(handler: EventHandler) -> str:
    return getattr(handler, "__qualname__", None) or getattr(handler, "__name__", repr(handler))
