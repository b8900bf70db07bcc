"""Background executor with restore-on-wake timers.

The executor keeps one APScheduler date job per task id and a small cache of
pending reminders on disk so a freshly started worker can re-arm its timers
without the foreground process. When a dispatcher is attached it also runs
the periodic sweep over the shared schedule store.
"""

from __future__ import annotations

import functools
import logging
import os
import threading
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Mapping, Optional
from uuid import uuid4
from zoneinfo import ZoneInfo

import yaml
from apscheduler.job import Job
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.date import DateTrigger
from filelock import FileLock, Timeout

from .config import load_config
from .errors import ValidationError
from .events import show_notification
from .timing import Decision, from_iso, parse_event_time, plan, to_iso, utcnow

if TYPE_CHECKING:  # pragma: no cover - type hints only
    from .dispatcher import NotificationDispatcher  # noqa: F401

logger = logging.getLogger(__name__)

Notifier = Callable[[str, str, Optional[str]], None]

SCHEDULE_NOTIFICATION = "SCHEDULE_NOTIFICATION"
CANCEL_NOTIFICATION = "CANCEL_NOTIFICATION"
CANCEL_ALL_NOTIFICATIONS = "CANCEL_ALL_NOTIFICATIONS"
GET_SCHEDULED_NOTIFICATIONS = "GET_SCHEDULED_NOTIFICATIONS"
IMMEDIATE_NOTIFICATION = "IMMEDIATE_NOTIFICATION"
TEST_NOTIFICATION = "TEST_NOTIFICATION"
CHECK_TIMERS = "CHECK_TIMERS"


class ExecutorState(str, Enum):
    UNINITIALIZED = "uninitialized"
    RESTORING = "restoring"
    ACTIVE = "active"
    STOPPED = "stopped"


class PendingCache:
    """Per-executor cache of armed reminders keyed by task id."""

    def __init__(self, path: str | Path | None = None) -> None:
        if path is None:
            path = os.getenv("NOTIFY_PENDING_PATH")
        if path is None:
            path = Path(load_config()["data_dir"]) / "executor" / "pending.yml"
        self.path = Path(path)
        self._lock = FileLock(str(self.path) + ".lock", timeout=10)

    def _load(self) -> Dict[str, Dict[str, Any]]:
        if self.path.exists():
            with open(self.path, "r") as fh:
                data = yaml.safe_load(fh) or {}
                if isinstance(data, dict):
                    return {str(k): v for k, v in data.items() if isinstance(v, dict)}
        return {}

    def _save(self, data: Dict[str, Dict[str, Any]]) -> None:
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp, "w") as fh:
            yaml.safe_dump(data, fh, sort_keys=False, allow_unicode=True)
        os.replace(tmp, self.path)

    def _mutate(self, func: Callable[[Dict[str, Dict[str, Any]]], None], action: str) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self._lock:
                data = self._load()
                func(data)
                self._save(data)
        except (OSError, Timeout, yaml.YAMLError):
            logger.exception("Pending cache %s failed", action)

    def put(self, entry: Mapping[str, Any]) -> None:
        task_id = str(entry["taskId"])
        self._mutate(lambda data: data.__setitem__(task_id, dict(entry)), f"save of {task_id}")

    def delete(self, task_id: str) -> None:
        self._mutate(lambda data: data.pop(task_id, None), f"delete of {task_id}")

    def clear(self) -> None:
        self._mutate(lambda data: data.clear(), "clear")

    def all(self) -> List[Dict[str, Any]]:
        try:
            with self._lock:
                return list(self._load().values())
        except (OSError, Timeout, yaml.YAMLError):
            logger.exception("Pending cache read failed")
            return []


class BackgroundExecutor:
    """Long-lived worker that owns per-task reminder timers.

    State moves ``UNINITIALIZED -> RESTORING -> ACTIVE`` on :meth:`activate`.
    Timers are restored from the :class:`PendingCache` once per activation;
    later wake events skip restoration. After :meth:`shutdown` the executor
    is ``STOPPED`` and refuses messages until :meth:`activate` is called again.
    """

    def __init__(
        self,
        cache: PendingCache | None = None,
        dispatcher: "NotificationDispatcher | None" = None,
        *,
        notifier: Notifier | None = None,
        timezone: str | ZoneInfo = "UTC",
        sweep_interval: float = 60.0,
        clock: Callable[[], Any] = utcnow,
        scheduler: BackgroundScheduler | None = None,
    ) -> None:
        tz = ZoneInfo(timezone) if isinstance(timezone, str) else timezone
        self.timezone = tz
        self.cache = cache or PendingCache()
        self.dispatcher = dispatcher
        self.notifier: Notifier = notifier or functools.partial(
            show_notification, source="executor"
        )
        self.sweep_interval = sweep_interval
        self.clock = clock
        self.scheduler = scheduler or BackgroundScheduler(timezone=tz)
        self.state = ExecutorState.UNINITIALIZED
        self._timers: Dict[str, Job] = {}
        self._restored = False
        self._lock = threading.RLock()

    @property
    def alive(self) -> bool:
        return self.state in (ExecutorState.RESTORING, ExecutorState.ACTIVE)

    def active_timers(self) -> List[str]:
        with self._lock:
            return list(self._timers)

    # ------------------------------------------------------------------
    # Lifecycle
    def activate(self) -> None:
        """Start the timer service, restore timers and arm the sweep job."""

        if self.state is ExecutorState.ACTIVE:
            return
        logger.info("Executor activating")
        if not self.scheduler.running:
            self.scheduler.start()
        if self.dispatcher is not None and self.sweep_interval > 0:
            self.scheduler.add_job(
                self.sweep,
                "interval",
                seconds=self.sweep_interval,
                id="sweep",
                replace_existing=True,
            )
        with self._lock:
            self._restored = False
            if self.state is ExecutorState.STOPPED:
                self.state = ExecutorState.UNINITIALIZED
        self.restore()

    def shutdown(self, wait: bool = False) -> None:
        with self._lock:
            self._timers.clear()
            self._restored = False
            self.state = ExecutorState.STOPPED
        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)

    def ensure_restored(self) -> None:
        """Restore timers unless that already happened in this lifetime."""

        if self.state is ExecutorState.UNINITIALIZED:
            self.activate()
            return
        if self.state is ExecutorState.STOPPED:
            logger.warning("Executor is stopped, call activate() to restart it")
            return
        with self._lock:
            restored = self._restored
        if not restored:
            self.restore()

    def wake(self) -> None:
        """Handle a generic wake-up trigger."""

        self.ensure_restored()

    def periodic_sync(self) -> int:
        """Re-read the cache, arming entries written since the last restore."""

        return self.restore(force=True)

    def restore(self, force: bool = False) -> int:
        """Arm timers for cached reminders; deliver those already due.

        Returns the number of timers armed by this call.
        """

        with self._lock:
            if self.state is ExecutorState.STOPPED:
                logger.debug("Executor is stopped, not restoring timers")
                return 0
            if self._restored and not force:
                logger.debug("Timers already restored, skipping")
                return 0
            self._restored = True
            self.state = ExecutorState.RESTORING

        entries = self.cache.all()
        now = self.clock()
        armed = 0
        logger.info("Restoring timers from %s cached notifications", len(entries))
        for entry in entries:
            try:
                task_id = str(entry["taskId"])
                fire_time = from_iso(entry["scheduledTime"])
            except (KeyError, TypeError, ValueError):
                logger.warning("Skipping malformed pending entry: %r", entry)
                continue
            with self._lock:
                job = self._timers.get(task_id)
                if job is not None:
                    if self.scheduler.get_job(job.id) is not None:
                        continue
                    logger.info("Timer for %s was lost, re-arming", task_id)
                    self._timers.pop(task_id, None)
            title = str(entry.get("title") or "")
            body = str(entry.get("body") or "")
            if fire_time <= now:
                logger.info("Notification time passed, showing now: %s", task_id)
                self._deliver(title, body, task_id)
                self.cache.delete(task_id)
            else:
                self._arm(task_id, title, body, fire_time)
                armed += 1

        with self._lock:
            if self.state is ExecutorState.RESTORING:
                self.state = ExecutorState.ACTIVE
            active = len(self._timers)
        logger.info("Restored %s active timers", active)
        return armed

    # ------------------------------------------------------------------
    # Timers
    def _arm(self, task_id: str, title: str, body: str, fire_time) -> None:
        with self._lock:
            self._clear_timer(task_id)
            job = self.scheduler.add_job(
                self._fire,
                trigger=DateTrigger(run_date=fire_time),
                args=[task_id, title, body, uuid4().hex],
                id=f"notify:{task_id}",
                replace_existing=True,
                misfire_grace_time=None,
                coalesce=True,
            )
            self._timers[task_id] = job
        delay = (fire_time - self.clock()).total_seconds()
        logger.info("Timer armed for %s in %s seconds", task_id, round(delay))

    def _clear_timer(self, task_id: str) -> None:
        job = self._timers.pop(task_id, None)
        if job is None:
            return
        try:
            job.remove()
        except JobLookupError:
            pass

    def _is_current(self, task_id: str, token: str) -> bool:
        job = self._timers.get(task_id)
        return job is not None and job.args[-1] == token

    def _fire(self, task_id: str, title: str, body: str, token: str) -> None:
        with self._lock:
            if not self._is_current(task_id, token):
                logger.debug("Ignoring superseded timer for %s", task_id)
                return
        logger.info("Timer fired for %s", task_id)
        self._deliver(title, body, task_id)
        with self._lock:
            # the task may have been rescheduled while the notification showed
            if self._is_current(task_id, token):
                self.cache.delete(task_id)
                self._timers.pop(task_id, None)

    def _deliver(self, title: str, body: str, tag: str | None) -> None:
        try:
            self.notifier(title, body, tag)
        except Exception:
            logger.exception("Failed to show notification for %s", tag)

    # ------------------------------------------------------------------
    # Operations
    def schedule(self, payload: Mapping[str, Any]) -> bool:
        """Arm a reminder from a scheduling request.

        Returns ``False`` when the event has already passed. A reminder
        whose window is already open is shown immediately.
        """

        task_id = str(payload.get("taskId") or "")
        if not task_id:
            raise ValidationError("taskId is required")
        title = str(payload.get("title") or "")
        body = str(payload.get("body") or "")
        event_time = parse_event_time(
            str(payload.get("scheduledDate") or ""),
            str(payload.get("scheduledTime") or ""),
            self.timezone,
        )
        schedule_plan = plan(event_time, payload.get("reminderMinutes"), self.clock())
        if schedule_plan.decision is Decision.REJECT:
            logger.info("Event time has already passed, not scheduling %s", task_id)
            return False

        self.cancel(task_id)

        if schedule_plan.decision is Decision.IMMEDIATE:
            logger.info("Notification time passed but event is future: %s", task_id)
            self._deliver(title, body, task_id)
            return True

        self.cache.put(
            {
                "taskId": task_id,
                "title": title,
                "body": body,
                "scheduledTime": to_iso(schedule_plan.fire_time),
            }
        )
        self._arm(task_id, title, body, schedule_plan.fire_time)
        return True

    def cancel(self, task_id: str) -> None:
        """Clear the timer and cached entry for ``task_id`` if any."""

        with self._lock:
            self._clear_timer(task_id)
        self.cache.delete(task_id)
        logger.debug("Notification cancelled for task %s", task_id)

    def cancel_all(self) -> None:
        with self._lock:
            for task_id in list(self._timers):
                self._clear_timer(task_id)
        self.cache.clear()
        logger.info("All executor notifications cancelled")

    def sweep(self) -> int:
        """Run one sweep of the shared schedule store."""

        if self.dispatcher is None:
            return 0
        try:
            return self.dispatcher.check_and_send_due_notifications()
        except Exception:
            logger.exception("Sweep failed")
            return 0

    def handle_message(self, message_type: str, payload: Mapping[str, Any] | None = None) -> Any:
        """Handle a control message, restoring timers first if needed."""

        payload = payload or {}
        logger.debug("Message received: %s", message_type)
        self.ensure_restored()
        if self.state is ExecutorState.STOPPED:
            logger.warning("Executor is stopped, dropping %s message", message_type)
            return False
        try:
            if message_type == SCHEDULE_NOTIFICATION:
                return self.schedule(payload)
            if message_type == CANCEL_NOTIFICATION:
                self.cancel(str(payload.get("taskId") or ""))
                return True
            if message_type == CANCEL_ALL_NOTIFICATIONS:
                self.cancel_all()
                return True
            if message_type == GET_SCHEDULED_NOTIFICATIONS:
                return self.cache.all()
            if message_type == IMMEDIATE_NOTIFICATION:
                self._deliver(
                    str(payload.get("title") or ""),
                    str(payload.get("body") or ""),
                    payload.get("taskId"),
                )
                return True
            if message_type == TEST_NOTIFICATION:
                self._deliver("Test notification", "Sent from the background executor.", "test")
                return True
            if message_type == CHECK_TIMERS:
                pending = self.cache.all()
                logger.info(
                    "Active timers: %s, cached notifications: %s",
                    len(self.active_timers()),
                    len(pending),
                )
                return {"activeTimers": self.active_timers(), "pending": pending}
        except ValidationError:
            logger.warning("Rejected %s message: %r", message_type, payload)
            return False
        logger.warning("Unknown executor message: %s", message_type)
        return None


__all__ = [
    "BackgroundExecutor",
    "ExecutorState",
    "PendingCache",
    "SCHEDULE_NOTIFICATION",
    "CANCEL_NOTIFICATION",
    "CANCEL_ALL_NOTIFICATIONS",
    "GET_SCHEDULED_NOTIFICATIONS",
    "IMMEDIATE_NOTIFICATION",
    "TEST_NOTIFICATION",
    "CHECK_TIMERS",
]
