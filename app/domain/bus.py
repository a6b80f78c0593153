"""Synchronous in-process event bus for task events."""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Callable, TypeVar

from app.domain.events import TaskEvent

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=TaskEvent)


class EventBus:
    """Publish/subscribe bus for task events.

    A handler subscribed to an event class also receives its subclasses, so
    subscribing to :class:`TaskEvent` sees every task event. Handlers run in
    the publisher's thread, most specific class first and then in
    registration order. A failing handler is logged and its error reaches the
    publisher.
    """

    def __init__(self) -> None:
        self._subscribers: dict[type[TaskEvent], list[Callable[[TaskEvent], None]]] = (
            defaultdict(list)
        )

    def subscribe(self, event_type: type[E], handler: Callable[[E], None]) -> None:
        self._subscribers[event_type].append(handler)

    def handlers_for(self, event: TaskEvent) -> list[Callable[[TaskEvent], None]]:
        handlers: list[Callable[[TaskEvent], None]] = []
        for cls in type(event).__mro__:
            handlers.extend(self._subscribers.get(cls, []))
        return handlers

    def publish(self, event: TaskEvent) -> None:
        handlers = self.handlers_for(event)
        logger.debug(
            "Publishing %s for task %s to %d handler(s)",
            type(event).__name__,
            event.task_id,
            len(handlers),
        )
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "Handler %r failed on %s", handler, type(event).__name__
                )
                raise
