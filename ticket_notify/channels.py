"""Delivery channels tried in order by :class:`~ticket_notify.client.ReminderClient`.

Every channel implements ``attempt(request) -> AttemptResult``. The client
walks its channels until one answers :attr:`AttemptResult.DELIVERED`:

1. durable push API (:class:`RemoteScheduleChannel` over HTTP, or
   :class:`StoreScheduleChannel` when the process shares the store),
2. a live :class:`~ticket_notify.executor.BackgroundExecutor`
   (:class:`ExecutorChannel`),
3. an in-process timer (:class:`TimerChannel`), which only fires while the
   current process keeps running.
"""

from __future__ import annotations

import functools
import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Tuple

import requests

from .errors import EventAlreadyPassed, ValidationError
from .events import show_notification
from .executor import (
    CANCEL_ALL_NOTIFICATIONS,
    CANCEL_NOTIFICATION,
    IMMEDIATE_NOTIFICATION,
    SCHEDULE_NOTIFICATION,
)
from .http_utils import request_with_retry
from .timing import utcnow

if TYPE_CHECKING:  # pragma: no cover - type hints only
    from .dispatcher import NotificationDispatcher
    from .executor import BackgroundExecutor

logger = logging.getLogger(__name__)

SCHEDULE_PATH = "/api/push/schedule"


class AttemptResult(str, Enum):
    DELIVERED = "delivered"
    UNAVAILABLE = "unavailable"
    FAILED = "failed"


@dataclass(frozen=True)
class ReminderRequest:
    """A reminder on its way through the fallback chain."""

    notification_id: str
    task_id: str
    title: str
    body: str
    scheduled_date: str
    scheduled_time: str
    reminder_minutes: float
    fire_time: datetime
    immediate: bool = False
    subscription_endpoint: str = ""

    def payload(self) -> Dict[str, Any]:
        return {
            "taskId": self.task_id,
            "title": self.title,
            "body": self.body,
            "scheduledDate": self.scheduled_date,
            "scheduledTime": self.scheduled_time,
            "reminderMinutes": self.reminder_minutes,
            "subscriptionEndpoint": self.subscription_endpoint,
        }


class DeliveryChannel:
    """Abstract delivery channel interface."""

    name = "channel"

    def attempt(self, request: ReminderRequest) -> AttemptResult:
        """Try to schedule or show ``request``."""
        raise NotImplementedError

    def cancel(self, task_id: str) -> None:
        """Cancel anything this channel holds for ``task_id``."""

    def cancel_all(self) -> None:
        """Cancel everything this channel holds."""


class RemoteScheduleChannel(DeliveryChannel):
    """Schedule through the HTTP schedule endpoint of a notification server."""

    name = "remote"

    def __init__(
        self,
        base_url: str | None,
        *,
        timeout: float = 5.0,
        retries: int = 3,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/") if base_url else None
        self.timeout = timeout
        self.retries = retries
        self.session = session

    def _url(self) -> str:
        return f"{self.base_url}{SCHEDULE_PATH}"

    def attempt(self, request: ReminderRequest) -> AttemptResult:
        if not self.base_url or request.immediate:
            return AttemptResult.UNAVAILABLE
        try:
            response = request_with_retry(
                "POST",
                self._url(),
                timeout=self.timeout,
                retries=self.retries,
                session=self.session,
                json=request.payload(),
            )
        except requests.RequestException as exc:
            logger.warning("Push API failed to schedule %s: %s", request.task_id, exc)
            return AttemptResult.FAILED
        try:
            scheduled = response.json().get("scheduledTime")
        except ValueError:
            scheduled = None
        logger.info("Push API scheduled %s for %s", request.task_id, scheduled)
        return AttemptResult.DELIVERED

    def cancel(self, task_id: str) -> None:
        if not self.base_url:
            return
        try:
            request_with_retry(
                "DELETE",
                self._url(),
                timeout=self.timeout,
                retries=self.retries,
                session=self.session,
                json={"taskId": task_id},
            )
        except requests.RequestException as exc:
            logger.warning("Push API failed to cancel %s: %s", task_id, exc)


class StoreScheduleChannel(DeliveryChannel):
    """Schedule straight into the shared store through a dispatcher."""

    name = "store"

    def __init__(self, dispatcher: "NotificationDispatcher") -> None:
        self.dispatcher = dispatcher

    def attempt(self, request: ReminderRequest) -> AttemptResult:
        if request.immediate:
            return AttemptResult.UNAVAILABLE
        try:
            self.dispatcher.schedule(
                request.task_id,
                request.title,
                request.body,
                request.scheduled_date,
                request.scheduled_time,
                request.reminder_minutes,
                request.subscription_endpoint,
            )
        except (EventAlreadyPassed, ValidationError) as exc:
            logger.warning("Store rejected %s: %s", request.task_id, exc)
            return AttemptResult.FAILED
        return AttemptResult.DELIVERED

    def cancel(self, task_id: str) -> None:
        self.dispatcher.cancel(task_id)

    def cancel_all(self) -> None:
        self.dispatcher.cancel_all()


class ExecutorChannel(DeliveryChannel):
    """Hand the reminder to a live background executor."""

    name = "executor"

    def __init__(self, executor: "BackgroundExecutor | None") -> None:
        self.executor = executor

    @property
    def available(self) -> bool:
        return self.executor is not None and self.executor.alive

    def attempt(self, request: ReminderRequest) -> AttemptResult:
        if not self.available:
            return AttemptResult.UNAVAILABLE
        assert self.executor is not None
        message = IMMEDIATE_NOTIFICATION if request.immediate else SCHEDULE_NOTIFICATION
        result = self.executor.handle_message(message, request.payload())
        return AttemptResult.DELIVERED if result else AttemptResult.FAILED

    def cancel(self, task_id: str) -> None:
        if self.available:
            assert self.executor is not None
            self.executor.handle_message(CANCEL_NOTIFICATION, {"taskId": task_id})

    def cancel_all(self) -> None:
        if self.available:
            assert self.executor is not None
            self.executor.handle_message(CANCEL_ALL_NOTIFICATIONS, {})


class TimerChannel(DeliveryChannel):
    """Last resort: a :class:`threading.Timer` in the current process."""

    name = "timer"

    def __init__(
        self,
        notifier: Callable[[str, str, Optional[str]], None] | None = None,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.notifier = notifier or functools.partial(show_notification, source="timer")
        self.clock = clock
        self._timers: Dict[str, Tuple[threading.Timer, ReminderRequest]] = {}
        self._lock = threading.Lock()

    def attempt(self, request: ReminderRequest) -> AttemptResult:
        if request.immediate:
            self.notifier(request.title, request.body, request.task_id)
            return AttemptResult.DELIVERED
        self.cancel(request.task_id)
        delay = max(0.0, (request.fire_time - self.clock()).total_seconds())
        timer = threading.Timer(delay, self._fire, args=(request,))
        timer.daemon = True
        with self._lock:
            self._timers[request.task_id] = (timer, request)
        timer.start()
        logger.info(
            "In-process timer armed for %s (in %s minutes)",
            request.task_id,
            round(delay / 60),
        )
        return AttemptResult.DELIVERED

    def _fire(self, request: ReminderRequest) -> None:
        with self._lock:
            entry = self._timers.get(request.task_id)
            if entry is None or entry[1] is not request:
                return
            del self._timers[request.task_id]
        try:
            self.notifier(request.title, request.body, request.task_id)
        except Exception:
            logger.exception("Failed to show notification for %s", request.task_id)

    def cancel(self, task_id: str) -> None:
        with self._lock:
            entry = self._timers.pop(task_id, None)
        if entry is not None:
            entry[0].cancel()

    def cancel_all(self) -> None:
        with self._lock:
            entries = list(self._timers.values())
            self._timers.clear()
        for timer, _request in entries:
            timer.cancel()

    def scheduled(self) -> List[ReminderRequest]:
        with self._lock:
            return [request for _timer, request in self._timers.values()]


__all__ = [
    "AttemptResult",
    "ReminderRequest",
    "DeliveryChannel",
    "RemoteScheduleChannel",
    "StoreScheduleChannel",
    "ExecutorChannel",
    "TimerChannel",
]
