"""Progress events from the auth and request layers.

Components take an optional :class:`EventBus` and report what they are doing
through :func:`emit`; presentation code (the CLI) subscribes to render it.
Delivery is sequential in subscription order, so a subscriber sees events in
the order the component produced them.
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Callable

from copilot_sdk.types import EventType, SdkEvent

_logger = logging.getLogger(__name__)

Handler = Callable[[SdkEvent], Any]


class EventBus:
    """Deliver :class:`SdkEvent` objects to subscribed handlers.

    Handlers may be plain functions or coroutine functions.  A failing
    handler is logged and skipped; it never breaks the operation that
    emitted the event.
    """

    def __init__(self) -> None:
        self._subscribers: list[tuple[frozenset[EventType], Handler]] = []

    def subscribe(self, handler: Handler, *event_types: EventType) -> None:
        """Call *handler* for the given event types, or for every event if none."""
        self._subscribers.append((frozenset(event_types), handler))

    async def publish(self, event: SdkEvent) -> None:
        for event_types, handler in list(self._subscribers):
            if event_types and event.type not in event_types:
                continue
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                _logger.exception(
                    "Event handler %s failed on %s",
                    getattr(handler, "__qualname__", handler), event.type.value,
                )


async def emit(
    bus: EventBus | None,
    event_type: EventType,
    **data: Any,
) -> None:
    """Publish *event_type* with *data* on *bus*; no-op without a bus."""
    if bus is None:
        return
    await bus.publish(SdkEvent(type=event_type, data=data))
