"""Client-side reminder scheduling with a layered fallback chain."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, List, Mapping, Optional, Sequence
from zoneinfo import ZoneInfo

from .channels import (
    AttemptResult,
    DeliveryChannel,
    ExecutorChannel,
    ReminderRequest,
    RemoteScheduleChannel,
    StoreScheduleChannel,
    TimerChannel,
)
from .config import load_config
from .errors import ValidationError
from .models import new_notification_id
from .timing import Decision, parse_event_time, plan, reminder_offset, utcnow

logger = logging.getLogger(__name__)


class ReminderClient:
    """Schedule and cancel task reminders.

    ``channels`` are tried in order for every reminder; the first one that
    confirms wins. ``subscription_endpoint`` is the push endpoint of this
    client, forwarded so the server can target it.
    """

    def __init__(
        self,
        channels: Sequence[DeliveryChannel],
        *,
        timezone: str | ZoneInfo = "UTC",
        clock: Callable[[], datetime] = utcnow,
        subscription_endpoint: str = "",
    ) -> None:
        self.channels: List[DeliveryChannel] = list(channels)
        self.timezone = ZoneInfo(timezone) if isinstance(timezone, str) else timezone
        self.clock = clock
        self.subscription_endpoint = subscription_endpoint

    @classmethod
    def from_config(
        cls,
        cfg: Mapping[str, Any] | None = None,
        *,
        dispatcher=None,
        executor=None,
        notifier=None,
    ) -> "ReminderClient":
        """Build the standard three-tier chain from configuration.

        With ``server_url`` configured the first tier talks HTTP to the
        notification server, otherwise it writes to the shared store.
        """

        cfg = cfg if cfg is not None else load_config()
        server_url = cfg.get("server_url")
        first: DeliveryChannel
        if server_url:
            first = RemoteScheduleChannel(
                server_url, timeout=float(cfg.get("request_timeout", 5.0))
            )
        else:
            if dispatcher is None:
                from .dispatcher import get_default_dispatcher

                dispatcher = get_default_dispatcher()
            first = StoreScheduleChannel(dispatcher)
        return cls(
            [first, ExecutorChannel(executor), TimerChannel(notifier)],
            timezone=cfg.get("timezone", "UTC"),
        )

    def schedule_notification(
        self,
        task_id: str,
        title: str,
        body: str,
        scheduled_date: str,
        scheduled_time: str,
        reminder_minutes: int | float = 0,
    ) -> str | None:
        """Schedule a reminder and return its id.

        Returns ``None`` when the event has already passed, the input is
        malformed or no channel accepted the reminder. Any earlier reminder
        for ``task_id`` is cancelled first.
        """

        try:
            event_time = parse_event_time(scheduled_date, scheduled_time, self.timezone)
            schedule_plan = plan(event_time, reminder_minutes, self.clock())
            minutes = reminder_offset(reminder_minutes).total_seconds() / 60
        except ValidationError as exc:
            logger.warning("Cannot schedule notification for %s: %s", task_id, exc)
            return None

        if schedule_plan.decision is Decision.REJECT:
            logger.warning("Event time has already passed for task %s", task_id)
            return None

        request = ReminderRequest(
            notification_id=new_notification_id(task_id),
            task_id=task_id,
            title=title,
            body=body,
            scheduled_date=scheduled_date,
            scheduled_time=scheduled_time,
            reminder_minutes=minutes,
            fire_time=schedule_plan.fire_time,
            immediate=schedule_plan.decision is Decision.IMMEDIATE,
            subscription_endpoint=self.subscription_endpoint,
        )
        if request.immediate:
            logger.info("Reminder window already open for %s, sending immediately", task_id)

        self.cancel_notification(task_id)

        for channel in self.channels:
            try:
                result = channel.attempt(request)
            except Exception:
                logger.exception("%s channel raised for %s", channel.name, task_id)
                result = AttemptResult.FAILED
            if result is AttemptResult.DELIVERED:
                logger.info(
                    "Notification for %s handled by %s channel", task_id, channel.name
                )
                return request.notification_id
            logger.info(
                "%s channel %s for %s, falling back",
                channel.name,
                result.value,
                task_id,
            )
        logger.error("No channel accepted the notification for %s", task_id)
        return None

    def cancel_notification(self, task_id: str) -> None:
        """Cancel the reminder for ``task_id`` everywhere; safe to repeat."""

        for channel in self.channels:
            try:
                channel.cancel(task_id)
            except Exception:
                logger.exception("%s channel failed to cancel %s", channel.name, task_id)

    def cancel_all_notifications(self) -> None:
        for channel in self.channels:
            try:
                channel.cancel_all()
            except Exception:
                logger.exception("%s channel failed to cancel all", channel.name)

    def scheduled_notifications(self) -> List[ReminderRequest]:
        """Reminders currently held by in-process timers."""

        pending: List[ReminderRequest] = []
        for channel in self.channels:
            if isinstance(channel, TimerChannel):
                pending.extend(channel.scheduled())
        return pending

    def test_scheduled_notification(self) -> Optional[str]:
        """Schedule a test reminder one minute from now."""

        at = (self.clock() + timedelta(minutes=1)).astimezone(self.timezone)
        return self.schedule_notification(
            f"test-scheduled-{int(at.timestamp())}",
            "Scheduled test notification",
            "This reminder was scheduled one minute ago.",
            at.strftime("%Y-%m-%d"),
            at.strftime("%H:%M"),
            0,
        )


__all__ = ["ReminderClient"]
