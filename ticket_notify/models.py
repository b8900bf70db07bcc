"""Record shapes shared by the stores, the dispatcher and the executor."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Mapping
from uuid import uuid4

from .timing import from_iso, to_iso, utcnow


def new_notification_id(task_id: str) -> str:
    return f"{task_id}-{uuid4().hex[:12]}"


@dataclass(frozen=True)
class ScheduledNotification:
    """A pending reminder persisted in the schedule store.

    ``scheduled_time`` is the absolute fire time, already adjusted for the
    reminder offset. An empty ``subscription_endpoint`` means the schedule is
    not bound to a delivery target and is broadcast to every subscription.
    """

    id: str
    task_id: str
    title: str
    body: str
    scheduled_time: datetime
    subscription_endpoint: str = ""
    created_at: datetime = field(default_factory=utcnow)

    def is_due(self, now: datetime) -> bool:
        return self.scheduled_time <= now

    def payload(self) -> Dict[str, str]:
        """Return the push payload, tagged with the task id for grouping."""

        return {"title": self.title, "body": self.body, "tag": self.task_id}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "taskId": self.task_id,
            "title": self.title,
            "body": self.body,
            "scheduledTime": to_iso(self.scheduled_time),
            "subscriptionEndpoint": self.subscription_endpoint,
            "createdAt": to_iso(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ScheduledNotification":
        created = data.get("createdAt")
        return cls(
            id=str(data["id"]),
            task_id=str(data["taskId"]),
            title=str(data.get("title") or ""),
            body=str(data.get("body") or ""),
            scheduled_time=from_iso(data["scheduledTime"]),
            subscription_endpoint=str(data.get("subscriptionEndpoint") or ""),
            created_at=from_iso(created) if created else utcnow(),
        )


@dataclass(frozen=True)
class PushSubscription:
    """A delivery channel issued by the push provider."""

    endpoint: str
    keys: Dict[str, str] = field(default_factory=dict)

    def subscription_info(self) -> Dict[str, Any]:
        return {"endpoint": self.endpoint, "keys": dict(self.keys)}

    def to_dict(self) -> Dict[str, Any]:
        return self.subscription_info()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PushSubscription":
        keys = data.get("keys") or {}
        return cls(
            endpoint=str(data["endpoint"]),
            keys={str(k): str(v) for k, v in dict(keys).items()},
        )


__all__ = ["ScheduledNotification", "PushSubscription", "new_notification_id"]
