"""Notification dispatcher.

Turns reminder requests into durable schedules (or immediate deliveries),
delivers push payloads through a :class:`~ticket_notify.push.PushProvider`
and sweeps the schedule store for due records.

Delivery is attempted at most once per due schedule: a record is purged
after its attempt whether or not the provider accepted it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional
from zoneinfo import ZoneInfo

from . import metrics
from .config import load_config
from .errors import (
    DeliveryPermanentFailure,
    DeliveryTransientFailure,
    EventAlreadyPassed,
    ValidationError,
)
from .models import PushSubscription, ScheduledNotification, new_notification_id
from .push import PushProvider, WebPushProvider
from .schedule_store import ScheduleStore
from .subscription_registry import SubscriptionRegistry
from .timing import Decision, parse_event_time, plan, utcnow

logger = logging.getLogger(__name__)


def default_body(scheduled_time: str) -> str:
    return f"Starting soon: {scheduled_time}"


@dataclass(frozen=True)
class ScheduleResult:
    """What :meth:`NotificationDispatcher.schedule` did with a request."""

    notification: ScheduledNotification
    immediate: bool
    sent_count: int = 0


class NotificationDispatcher:
    """Stateless processor over the schedule store and subscription registry.

    Parameters
    ----------
    store, registry:
        Shared durable state. Defaults use the configured data directory.
    provider:
        Push provider used for delivery.
    clock:
        Callable returning the current aware datetime.
    timezone:
        Zone event dates and times are interpreted in.
    """

    def __init__(
        self,
        store: Optional[ScheduleStore] = None,
        registry: Optional[SubscriptionRegistry] = None,
        provider: Optional[PushProvider] = None,
        *,
        clock: Callable[[], datetime] = utcnow,
        timezone: str | ZoneInfo = "UTC",
    ) -> None:
        self.store = store or ScheduleStore()
        self.registry = registry or SubscriptionRegistry()
        self.provider = provider or WebPushProvider()
        self.clock = clock
        self.timezone = ZoneInfo(timezone) if isinstance(timezone, str) else timezone

    @property
    def public_key(self) -> str:
        return getattr(self.provider, "public_key", "") or ""

    # ------------------------------------------------------------------
    # Scheduling
    def schedule(
        self,
        task_id: str,
        title: str,
        body: str | None,
        scheduled_date: str,
        scheduled_time: str,
        reminder_minutes: int | float | None = 0,
        subscription_endpoint: str | None = "",
    ) -> ScheduleResult:
        """Persist a reminder for ``task_id`` or deliver it right away.

        Raises :class:`ValidationError` for missing or malformed input and
        :class:`EventAlreadyPassed` when the event is not in the future.
        Nothing is written in either case.
        """

        if not task_id or not title or not scheduled_date or not scheduled_time:
            raise ValidationError("Missing required fields")
        event_time = parse_event_time(scheduled_date, scheduled_time, self.timezone)
        now = self.clock()
        schedule_plan = plan(event_time, reminder_minutes, now)
        if schedule_plan.decision is Decision.REJECT:
            logger.info("Not scheduling task %s: event %s has passed", task_id, event_time)
            raise EventAlreadyPassed()

        record = ScheduledNotification(
            id=new_notification_id(task_id),
            task_id=task_id,
            title=title,
            body=body or default_body(scheduled_time),
            scheduled_time=schedule_plan.fire_time.astimezone(timezone.utc),
            subscription_endpoint=subscription_endpoint or "",
            created_at=now,
        )

        if schedule_plan.decision is Decision.IMMEDIATE:
            logger.info(
                "Reminder window for task %s already open; delivering immediately",
                task_id,
            )
            self.store.remove_by_task(task_id)
            sent = self.deliver(record)
            return ScheduleResult(notification=record, immediate=True, sent_count=sent)

        self.store.upsert_by_task(record)
        minutes = round((record.scheduled_time - now).total_seconds() / 60)
        logger.info(
            "Notification scheduled for task %s at %s (in %s minutes)",
            task_id,
            record.scheduled_time.isoformat(),
            minutes,
        )
        return ScheduleResult(notification=record, immediate=False)

    def cancel(self, task_id: str) -> None:
        self.store.remove_by_task(task_id)
        logger.info("Notification cancelled for task %s", task_id)

    def cancel_all(self) -> None:
        self.store.clear()
        logger.info("All scheduled notifications cancelled")

    def list_schedules(self) -> List[ScheduledNotification]:
        return self.store.list()

    # ------------------------------------------------------------------
    # Delivery
    def send(self, subscription: PushSubscription, payload: Mapping[str, Any]) -> bool:
        """Send ``payload`` to ``subscription`` and report success.

        A subscription the provider reports as gone is removed from the
        registry. Other failures leave it in place.
        """

        try:
            self.provider.send(subscription, payload)
        except DeliveryPermanentFailure as exc:
            logger.warning("Subscription expired, removing: %s", exc.endpoint)
            metrics.NOTIFICATIONS_FAILED.labels("gone").inc()
            self.registry.remove(subscription.endpoint)
            metrics.SUBSCRIPTIONS_PRUNED.inc()
            return False
        except DeliveryTransientFailure as exc:
            logger.error("Failed to send notification to %s: %s", subscription.endpoint, exc)
            metrics.NOTIFICATIONS_FAILED.labels("transient").inc()
            return False
        metrics.NOTIFICATIONS_SENT.inc()
        logger.debug("Notification sent to %s", subscription.endpoint)
        return True

    def deliver(
        self,
        record: ScheduledNotification,
        subscriptions: Optional[List[PushSubscription]] = None,
    ) -> int:
        """Deliver ``record`` and return the number of successful sends.

        The record goes to its bound subscription when that is still
        registered; otherwise it is broadcast to every known subscription.
        """

        if subscriptions is None:
            subscriptions = self.registry.list()
        payload = record.payload()
        bound = next(
            (s for s in subscriptions if s.endpoint == record.subscription_endpoint),
            None,
        )
        if bound is not None:
            return 1 if self.send(bound, payload) else 0
        if not subscriptions:
            logger.warning("No subscriptions to deliver task %s to", record.task_id)
            return 0
        sent = 0
        for sub in subscriptions:
            if self.send(sub, payload):
                sent += 1
        return sent

    @metrics.track_sweep(source="dispatcher")
    def check_and_send_due_notifications(self, now: datetime | None = None) -> int:
        """Deliver every due schedule once and purge it.

        Schedules are processed in store order. Each due record is removed
        after its delivery attempt regardless of the outcome; the removals
        happen in one batch after the scan. Calling this again with nothing
        newly due sends nothing.
        """

        now = now or self.clock()
        schedules = self.store.list()
        subscriptions = self.registry.list()
        sent_count = 0
        to_remove: List[str] = []

        for record in schedules:
            if not record.is_due(now):
                continue
            logger.info("Sending due notification for task %s", record.task_id)
            try:
                sent_count += self.deliver(record, subscriptions)
            except Exception:
                logger.exception("Delivery of task %s failed", record.task_id)
            to_remove.append(record.id)

        self.store.remove_many(to_remove)
        if to_remove:
            logger.info(
                "Sweep complete: %s due, %s sent", len(to_remove), sent_count
            )
        return sent_count

    def send_test(
        self,
        title: str = "Test notification",
        body: str = "Push notifications are working.",
    ) -> int:
        """Broadcast a test payload to every subscription."""

        sent = 0
        for sub in self.registry.list():
            if self.send(sub, {"title": title, "body": body, "tag": "test"}):
                sent += 1
        return sent

    def describe(self) -> Dict[str, Any]:
        return {
            "schedules": [s.to_dict() for s in self.store.list()],
            "subscriptions": len(self.registry.list()),
        }


# ---------------------------------------------------------------------------
# Default dispatcher accessor

_default_dispatcher: NotificationDispatcher | None = None


def create_dispatcher(cfg: Mapping[str, Any] | None = None) -> NotificationDispatcher:
    """Build a dispatcher from configuration."""

    cfg = cfg if cfg is not None else load_config()
    data_dir = cfg.get("data_dir")
    return NotificationDispatcher(
        ScheduleStore(path=data_dir),
        SubscriptionRegistry(path=data_dir),
        WebPushProvider.from_config(cfg),
        timezone=cfg.get("timezone", "UTC"),
    )


def set_default_dispatcher(dispatcher: NotificationDispatcher | None) -> None:
    """Set the process-wide default dispatcher."""

    global _default_dispatcher
    _default_dispatcher = dispatcher


def get_default_dispatcher() -> NotificationDispatcher:
    """Return the default dispatcher, creating it from configuration if needed."""

    global _default_dispatcher
    if _default_dispatcher is None:
        _default_dispatcher = create_dispatcher()
    return _default_dispatcher


__all__ = [
    "NotificationDispatcher",
    "ScheduleResult",
    "default_body",
    "create_dispatcher",
    "set_default_dispatcher",
    "get_default_dispatcher",
]
