from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from ticket_notify.api import app
from ticket_notify.dispatcher import set_default_dispatcher


UTC = timezone.utc

SUBSCRIPTION = {"endpoint": "https://push/a", "keys": {"p256dh": "k", "auth": "a"}}


@pytest.fixture
def client(dispatcher):
    set_default_dispatcher(dispatcher)
    return TestClient(app)


def _schedule_body(**overrides):
    body = {
        "taskId": "T1",
        "title": "Standup",
        "body": "Starting soon: 10:00",
        "scheduledDate": "2025-01-10",
        "scheduledTime": "10:00",
        "reminderMinutes": 30,
    }
    body.update(overrides)
    return body


def test_public_key(client):
    resp = client.get("/api/push/subscribe")
    assert resp.status_code == 200
    assert resp.json() == {"publicKey": "test-public-key"}


def test_subscribe_and_unsubscribe(client, dispatcher):
    assert client.post("/api/push/subscribe", json=SUBSCRIPTION).json() == {"success": True}
    assert client.post("/api/push/subscribe", json=SUBSCRIPTION).status_code == 200
    assert len(dispatcher.registry.list()) == 1

    resp = client.request("DELETE", "/api/push/subscribe", json={"endpoint": "https://push/a"})
    assert resp.json() == {"success": True}
    assert dispatcher.registry.list() == []


def test_subscribe_validation(client):
    resp = client.post("/api/push/subscribe", json={"endpoint": "https://push/a"})
    assert resp.status_code == 400
    assert resp.json() == {"error": "Invalid subscription"}

    resp = client.request("DELETE", "/api/push/subscribe", json={})
    assert resp.status_code == 400
    assert resp.json() == {"error": "Endpoint required"}


def test_schedule_deferred(client, dispatcher):
    resp = client.post("/api/push/schedule", json=_schedule_body())

    assert resp.status_code == 200
    assert resp.json() == {
        "success": True,
        "scheduledTime": "2025-01-10T09:30:00+00:00",
        "immediate": False,
    }
    assert [r.task_id for r in dispatcher.list_schedules()] == ["T1"]


def test_schedule_immediate(client, dispatcher, provider):
    client.post("/api/push/subscribe", json=SUBSCRIPTION)

    resp = client.post("/api/push/schedule", json=_schedule_body(reminderMinutes=90))

    assert resp.json()["immediate"] is True
    assert len(provider.sent) == 1
    assert dispatcher.list_schedules() == []


@pytest.mark.parametrize(
    "overrides,message",
    [
        ({"taskId": None}, "Missing required fields"),
        ({"title": ""}, "Missing required fields"),
        ({"scheduledTime": "later"}, "Invalid date or time"),
        ({"scheduledTime": "08:00"}, "Event time has already passed"),
    ],
)
def test_schedule_validation(client, dispatcher, overrides, message):
    resp = client.post("/api/push/schedule", json=_schedule_body(**overrides))
    assert resp.status_code == 400
    assert resp.json() == {"error": message}
    assert dispatcher.list_schedules() == []


def test_cancel_schedule(client, dispatcher):
    client.post("/api/push/schedule", json=_schedule_body())

    resp = client.request("DELETE", "/api/push/schedule", json={"taskId": "T1"})
    assert resp.json() == {"success": True}
    assert dispatcher.list_schedules() == []

    resp = client.request("DELETE", "/api/push/schedule", json={})
    assert resp.status_code == 400
    assert resp.json() == {"error": "Task ID required"}


def test_sweep_endpoints(client, clock, provider):
    client.post("/api/push/subscribe", json=SUBSCRIPTION)
    client.post("/api/push/schedule", json=_schedule_body())

    assert client.get("/api/push/schedule").json() == {"success": True, "sentCount": 0}

    clock.now = datetime(2025, 1, 10, 9, 31, tzinfo=UTC)
    assert client.patch("/api/push/schedule").json() == {"success": True, "sentCount": 1}
    assert client.get("/api/push/schedule").json() == {"success": True, "sentCount": 0}
    assert len(provider.sent) == 1


def test_debug_listing(client):
    client.post("/api/push/schedule", json=_schedule_body())

    resp = client.get("/api/push/schedule", params={"debug": "1"})
    [record] = resp.json()["schedules"]
    assert record["taskId"] == "T1"
    assert record["scheduledTime"] == "2025-01-10T09:30:00+00:00"

    resp = client.get(
        "/api/push/schedule", params={"debug": "1"}, headers={"x-vercel-cron": "1"}
    )
    assert resp.json() == {"success": True, "sentCount": 0}


def test_test_push(client, provider):
    client.post("/api/push/subscribe", json=SUBSCRIPTION)

    resp = client.post("/api/push/test")
    assert resp.json() == {"sentCount": 1}
    assert provider.sent[0][1]["tag"] == "test"


def test_unexpected_errors_return_500(client, dispatcher, monkeypatch):
    def boom(*args, **kwargs):
        raise RuntimeError("disk on fire")

    monkeypatch.setattr(dispatcher, "check_and_send_due_notifications", boom)
    resp = client.get("/api/push/schedule")
    assert resp.status_code == 500
    assert resp.json() == {"error": "Failed to check notifications"}
