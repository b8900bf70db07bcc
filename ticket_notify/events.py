"""In-process notification events.

Background deliveries (executor timers, in-process timers, immediate
reminders) publish a :class:`NotificationEvent` on a
:class:`NotificationBus`. Consumers such as a UI register a callback with
:meth:`NotificationBus.subscribe` and call the returned function when they
are torn down.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, List

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationEvent:
    title: str
    body: str
    tag: str | None = None
    source: str = "local"


Subscriber = Callable[[NotificationEvent], None]


class NotificationBus:
    """Publish/subscribe registry for :class:`NotificationEvent` objects."""

    def __init__(self) -> None:
        self._subscribers: List[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback`` and return a function that unregisters it."""

        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, event: NotificationEvent) -> int:
        """Deliver ``event`` to every subscriber and return how many got it."""

        with self._lock:
            subscribers = list(self._subscribers)
        delivered = 0
        for callback in subscribers:
            try:
                callback(event)
            except Exception:
                logger.exception("Notification subscriber failed for %s", event.tag)
            else:
                delivered += 1
        logger.info("Showing notification %r (%s)", event.title, event.source)
        return delivered

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscribers)


_default_bus: NotificationBus | None = None


def get_default_bus() -> NotificationBus:
    """Return the process-wide bus, creating it on first use."""

    global _default_bus
    if _default_bus is None:
        _default_bus = NotificationBus()
    return _default_bus


def show_notification(
    title: str, body: str, tag: str | None = None, *, source: str = "local"
) -> None:
    """Default notifier: publish on the process-wide bus."""

    get_default_bus().publish(NotificationEvent(title=title, body=body, tag=tag, source=source))


__all__ = [
    "NotificationEvent",
    "NotificationBus",
    "get_default_bus",
    "show_notification",
]
