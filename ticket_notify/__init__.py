"""ticket_notify package root.

Schedules task reminders and delivers them as Web Push notifications, with
a background executor and in-process timers as fallbacks.
"""

import logging

from .config import load_config
from .dispatcher import (
    NotificationDispatcher,
    create_dispatcher,
    get_default_dispatcher,
    set_default_dispatcher,
)
from .client import ReminderClient
from .reminders import TaskReminders
from .executor import BackgroundExecutor
from .events import NotificationBus, NotificationEvent, get_default_bus
from . import metrics  # noqa: F401


def initialize() -> NotificationDispatcher:
    """Configure logging and install the default dispatcher from config."""

    cfg = load_config()
    logging.basicConfig(
        level=str(cfg.get("log_level", "INFO")).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    dispatcher = create_dispatcher(cfg)
    set_default_dispatcher(dispatcher)
    return dispatcher


from . import cli  # noqa: F401,E402
from . import api  # noqa: F401,E402


__all__ = [
    "api",
    "cli",
    "metrics",
    "initialize",
    "load_config",
    "NotificationDispatcher",
    "create_dispatcher",
    "get_default_dispatcher",
    "set_default_dispatcher",
    "ReminderClient",
    "TaskReminders",
    "BackgroundExecutor",
    "NotificationBus",
    "NotificationEvent",
    "get_default_bus",
]
