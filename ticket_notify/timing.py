"""Fire-time arithmetic for reminders."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from zoneinfo import ZoneInfo

from .errors import ValidationError


class Decision(str, Enum):
    REJECT = "reject"
    IMMEDIATE = "immediate"
    DEFERRED = "deferred"


@dataclass(frozen=True)
class SchedulePlan:
    """Outcome of comparing an event and its reminder offset with ``now``."""

    event_time: datetime
    fire_time: datetime
    decision: Decision


def _zone(tz: str | ZoneInfo | None) -> ZoneInfo:
    if tz is None:
        return ZoneInfo("UTC")
    return ZoneInfo(tz) if isinstance(tz, str) else tz


def parse_event_time(
    scheduled_date: str, scheduled_time: str, tz: str | ZoneInfo | None = None
) -> datetime:
    """Return the aware instant for ``scheduled_date`` at ``scheduled_time``.

    ``scheduled_date`` is ``YYYY-MM-DD`` and ``scheduled_time`` is ``HH:MM``
    (``HH:MM:SS`` is accepted too). Both are interpreted in ``tz``.
    """

    if not scheduled_date or not scheduled_time:
        raise ValidationError("scheduledDate and scheduledTime are required")
    fmt = "%Y-%m-%d %H:%M:%S" if scheduled_time.count(":") == 2 else "%Y-%m-%d %H:%M"
    try:
        naive = datetime.strptime(f"{scheduled_date.strip()} {scheduled_time.strip()}", fmt)
    except ValueError as exc:
        raise ValidationError(
            f"invalid date or time: {scheduled_date} {scheduled_time}"
        ) from exc
    return naive.replace(tzinfo=_zone(tz))


def reminder_offset(reminder_minutes: int | float | None) -> timedelta:
    """Return the reminder offset; missing or negative minutes count as zero."""

    try:
        minutes = float(reminder_minutes or 0)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"invalid reminderMinutes: {reminder_minutes!r}") from exc
    return timedelta(minutes=max(0.0, minutes))


def compute_fire_time(event_time: datetime, reminder_minutes: int | float | None) -> datetime:
    """``fire_time = event_time - reminder_minutes``."""

    return event_time - reminder_offset(reminder_minutes)


def plan(
    event_time: datetime,
    reminder_minutes: int | float | None,
    now: datetime,
) -> SchedulePlan:
    """Decide whether a reminder is rejected, delivered now or deferred."""

    fire_time = compute_fire_time(event_time, reminder_minutes)
    if event_time <= now:
        decision = Decision.REJECT
    elif fire_time <= now:
        decision = Decision.IMMEDIATE
    else:
        decision = Decision.DEFERRED
    return SchedulePlan(event_time=event_time, fire_time=fire_time, decision=decision)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    """Serialise ``value`` as a UTC ISO-8601 string."""

    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def from_iso(value: str | datetime) -> datetime:
    """Parse an ISO-8601 string (a trailing ``Z`` is accepted) as UTC."""

    if isinstance(value, datetime):
        parsed = value
    else:
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


__all__ = [
    "Decision",
    "SchedulePlan",
    "parse_event_time",
    "reminder_offset",
    "compute_fire_time",
    "plan",
    "utcnow",
    "to_iso",
    "from_iso",
]
