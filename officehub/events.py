"""Typed in-process events between the sync core and its side effects."""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from officehub.core.models import Notification

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationArrived:
    notification: Notification
    unread_count: int


@dataclass(frozen=True)
class UnreadCountChanged:
    count: int


class EventBus:
    """Synchronous publish/subscribe keyed by event type.

    A failing handler is logged and does not stop delivery to the others.
    """

    def __init__(self):
        self._handlers: dict[type, list[Callable[[Any], None]]] = {}

    def subscribe(self, event_type: type, handler: Callable[[Any], None]) -> Callable[[], None]:
        self._handlers.setdefault(event_type, []).append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def emit(self, event: Any) -> None:
        for handler in list(self._handlers.get(type(event), [])):
            try:
                handler(event)
            except Exception as e:
                log.warning(f"{type(event).__name__} handler failed: {e}", exc_info=True)

    def handler_count(self, event_type: type | None = None) -> int:
        if event_type is None:
            return sum(len(h) for h in self._handlers.values())
        return len(self._handlers.get(event_type, []))
