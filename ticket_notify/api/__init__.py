"""HTTP endpoints for push subscriptions and reminder schedules."""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from fastapi import FastAPI, Header
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..dispatcher import get_default_dispatcher
from ..errors import EventAlreadyPassed, ValidationError
from ..models import PushSubscription

logger = logging.getLogger(__name__)

app = FastAPI(title="ticket-notify")


class SubscriptionPayload(BaseModel):
    """Push subscription as issued by the browser push service."""

    endpoint: str | None = None
    keys: Dict[str, str] | None = None


class UnsubscribePayload(BaseModel):
    endpoint: str | None = None


class SchedulePayload(BaseModel):
    """Schema for reminder scheduling requests."""

    taskId: str | None = None
    title: str | None = None
    body: str | None = None
    scheduledDate: str | None = None
    scheduledTime: str | None = None
    reminderMinutes: float | None = 0
    subscriptionEndpoint: str | None = None


class CancelPayload(BaseModel):
    taskId: str | None = None


class TestPushPayload(BaseModel):
    title: str = "Test notification"
    body: str = "Push notifications are working."


class ScheduleList(BaseModel):
    schedules: List[Dict[str, Any]] = Field(default_factory=list)


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


@app.get("/api/push/subscribe")
def get_public_key():
    """Return the VAPID public key clients subscribe with."""

    return {"publicKey": get_default_dispatcher().public_key}


@app.post("/api/push/subscribe")
def subscribe(payload: SubscriptionPayload):
    if not payload.endpoint or not payload.keys:
        return _error("Invalid subscription", 400)
    try:
        get_default_dispatcher().registry.upsert(
            PushSubscription(endpoint=payload.endpoint, keys=payload.keys)
        )
    except Exception:
        logger.exception("Error saving subscription")
        return _error("Failed to save subscription", 500)
    logger.info("Subscription saved: %s", payload.endpoint)
    return {"success": True}


@app.delete("/api/push/subscribe")
def unsubscribe(payload: UnsubscribePayload | None = None):
    if payload is None or not payload.endpoint:
        return _error("Endpoint required", 400)
    try:
        get_default_dispatcher().registry.remove(payload.endpoint)
    except Exception:
        logger.exception("Error removing subscription")
        return _error("Failed to remove subscription", 500)
    return {"success": True}


@app.post("/api/push/schedule")
def schedule(payload: SchedulePayload):
    """Schedule a reminder, or deliver it now when its window is open."""

    if (
        not payload.taskId
        or not payload.title
        or not payload.scheduledDate
        or not payload.scheduledTime
    ):
        return _error("Missing required fields", 400)
    try:
        result = get_default_dispatcher().schedule(
            payload.taskId,
            payload.title,
            payload.body,
            payload.scheduledDate,
            payload.scheduledTime,
            payload.reminderMinutes,
            payload.subscriptionEndpoint,
        )
    except EventAlreadyPassed as exc:
        return _error(str(exc), 400)
    except ValidationError:
        return _error("Invalid date or time", 400)
    except Exception:
        logger.exception("Error scheduling notification")
        return _error("Failed to schedule notification", 500)
    return {
        "success": True,
        "scheduledTime": result.notification.to_dict()["scheduledTime"],
        "immediate": result.immediate,
    }


@app.delete("/api/push/schedule")
def cancel(payload: CancelPayload | None = None):
    if payload is None or not payload.taskId:
        return _error("Task ID required", 400)
    try:
        get_default_dispatcher().cancel(payload.taskId)
    except Exception:
        logger.exception("Error cancelling notification")
        return _error("Failed to cancel notification", 500)
    return {"success": True}


def _sweep():
    try:
        sent = get_default_dispatcher().check_and_send_due_notifications()
    except Exception:
        logger.exception("Error checking notifications")
        return _error("Failed to check notifications", 500)
    return {"success": True, "sentCount": sent}


@app.get("/api/push/schedule")
def sweep(
    debug: str | None = None,
    x_vercel_cron: str | None = Header(default=None),
):
    """Deliver due reminders.

    ``?debug=1`` lists the stored schedules instead, unless the request
    comes from the cron trigger (``x-vercel-cron: 1``).
    """

    if debug == "1" and x_vercel_cron != "1":
        schedules = [s.to_dict() for s in get_default_dispatcher().list_schedules()]
        return ScheduleList(schedules=schedules)
    return _sweep()


@app.patch("/api/push/schedule")
def sweep_patch():
    return _sweep()


@app.post("/api/push/test")
def test_push(payload: TestPushPayload | None = None):
    """Broadcast a test notification to every subscription."""

    payload = payload or TestPushPayload()
    try:
        sent = get_default_dispatcher().send_test(payload.title, payload.body)
    except Exception:
        logger.exception("Error sending test notification")
        return _error("Failed to send test notification", 500)
    return {"sentCount": sent}


__all__ = ["app"]
