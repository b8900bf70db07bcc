"""Keep task reminders in step with task CRUD events."""

from __future__ import annotations

import logging
from typing import Any, Mapping

from .client import ReminderClient
from .dispatcher import default_body

logger = logging.getLogger(__name__)


def _field(task: Any, name: str, default: Any = None) -> Any:
    if isinstance(task, Mapping):
        return task.get(name, default)
    return getattr(task, name, default)


class TaskReminders:
    """Hooks a task store calls after creating, updating or deleting tasks.

    A task is any mapping or object exposing ``id``, ``title``,
    ``scheduledDate``, ``scheduledTime``, ``reminderEnabled`` and
    ``reminderMinutes``. Reminder failures are logged and never propagate
    into the task store.
    """

    def __init__(self, client: ReminderClient) -> None:
        self.client = client

    def _wants_reminder(self, task: Any) -> bool:
        return bool(
            _field(task, "reminderEnabled")
            and _field(task, "scheduledDate")
            and _field(task, "scheduledTime")
        )

    def _schedule(self, task: Any) -> str | None:
        scheduled_time = str(_field(task, "scheduledTime"))
        return self.client.schedule_notification(
            str(_field(task, "id")),
            str(_field(task, "title") or ""),
            default_body(scheduled_time),
            str(_field(task, "scheduledDate")),
            scheduled_time,
            _field(task, "reminderMinutes", 0) or 0,
        )

    def on_task_created(self, task: Any) -> str | None:
        if not self._wants_reminder(task):
            return None
        try:
            return self._schedule(task)
        except Exception:
            logger.exception("Failed to schedule reminder for new task %s", _field(task, "id"))
            return None

    def on_task_updated(self, task: Any) -> str | None:
        """Cancel the task's reminder and schedule it again if still wanted."""

        task_id = str(_field(task, "id"))
        try:
            self.client.cancel_notification(task_id)
            if self._wants_reminder(task):
                return self._schedule(task)
        except Exception:
            logger.exception("Failed to update reminder for task %s", task_id)
        return None

    def on_task_deleted(self, task_id: str) -> None:
        try:
            self.client.cancel_notification(str(task_id))
        except Exception:
            logger.exception("Failed to cancel reminder for deleted task %s", task_id)


__all__ = ["TaskReminders"]
