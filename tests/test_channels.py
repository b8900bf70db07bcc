import threading
import time
from datetime import datetime, timedelta, timezone

import pytest
import requests

from ticket_notify.channels import (
    AttemptResult,
    ExecutorChannel,
    ReminderRequest,
    RemoteScheduleChannel,
    StoreScheduleChannel,
    TimerChannel,
)


UTC = timezone.utc


def _request(task_id="T1", fire=datetime(2025, 1, 10, 9, 30, tzinfo=UTC), immediate=False):
    return ReminderRequest(
        notification_id=f"{task_id}-abc",
        task_id=task_id,
        title="Standup",
        body="Starting soon: 10:00",
        scheduled_date="2025-01-10",
        scheduled_time="10:00",
        reminder_minutes=30,
        fire_time=fire,
        immediate=immediate,
    )


class DummyResponse:
    def __init__(self, status_code=200, data=None):
        self.status_code = status_code
        self._data = data or {}

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError("bad", response=self)

    def json(self):
        return self._data


class FakeSession:
    def __init__(self, responses=None, error=None):
        self.calls = []
        self.responses = list(responses or [])
        self.error = error

    def request(self, method, url, timeout=0, **kwargs):
        self.calls.append((method, url, kwargs.get("json")))
        if self.error is not None:
            raise self.error
        if self.responses:
            return self.responses.pop(0)
        return DummyResponse(data={"success": True, "scheduledTime": "x"})


def test_remote_channel_posts_schedule():
    session = FakeSession()
    channel = RemoteScheduleChannel("http://notify.local/", session=session)

    assert channel.attempt(_request()) is AttemptResult.DELIVERED
    method, url, body = session.calls[0]
    assert (method, url) == ("POST", "http://notify.local/api/push/schedule")
    assert body["taskId"] == "T1"
    assert body["reminderMinutes"] == 30


def test_remote_channel_unavailable_without_url_or_when_due():
    session = FakeSession()
    assert RemoteScheduleChannel(None).attempt(_request()) is AttemptResult.UNAVAILABLE
    channel = RemoteScheduleChannel("http://notify.local", session=session)
    assert channel.attempt(_request(immediate=True)) is AttemptResult.UNAVAILABLE
    assert session.calls == []


def test_remote_channel_failure(monkeypatch):
    monkeypatch.setattr(time, "sleep", lambda s: None)
    session = FakeSession(error=requests.ConnectionError("down"))
    channel = RemoteScheduleChannel("http://notify.local", session=session, retries=2)

    assert channel.attempt(_request()) is AttemptResult.FAILED
    assert len(session.calls) == 2

    rejected = FakeSession(responses=[DummyResponse(400)])
    channel = RemoteScheduleChannel("http://notify.local", session=rejected)
    assert channel.attempt(_request()) is AttemptResult.FAILED
    assert len(rejected.calls) == 1


def test_remote_channel_cancel_sends_delete():
    session = FakeSession()
    RemoteScheduleChannel("http://notify.local", session=session).cancel("T1")
    assert session.calls == [("DELETE", "http://notify.local/api/push/schedule", {"taskId": "T1"})]


def test_store_channel_persists_through_dispatcher(dispatcher):
    channel = StoreScheduleChannel(dispatcher)

    assert channel.attempt(_request()) is AttemptResult.DELIVERED
    assert [r.task_id for r in dispatcher.list_schedules()] == ["T1"]
    assert channel.attempt(_request(immediate=True)) is AttemptResult.UNAVAILABLE

    channel.cancel("T1")
    assert dispatcher.list_schedules() == []


class FakeExecutor:
    def __init__(self, alive=True, result=True):
        self.alive = alive
        self.result = result
        self.messages = []

    def handle_message(self, message_type, payload=None):
        self.messages.append((message_type, payload))
        return self.result


def test_executor_channel_posts_messages():
    executor = FakeExecutor()
    channel = ExecutorChannel(executor)

    assert channel.attempt(_request()) is AttemptResult.DELIVERED
    assert channel.attempt(_request(immediate=True)) is AttemptResult.DELIVERED
    channel.cancel("T1")
    channel.cancel_all()

    assert [m for m, _ in executor.messages] == [
        "SCHEDULE_NOTIFICATION",
        "IMMEDIATE_NOTIFICATION",
        "CANCEL_NOTIFICATION",
        "CANCEL_ALL_NOTIFICATIONS",
    ]


def test_executor_channel_availability():
    assert ExecutorChannel(None).attempt(_request()) is AttemptResult.UNAVAILABLE
    stopped = FakeExecutor(alive=False)
    assert ExecutorChannel(stopped).attempt(_request()) is AttemptResult.UNAVAILABLE
    assert stopped.messages == []
    assert ExecutorChannel(FakeExecutor(result=False)).attempt(_request()) is AttemptResult.FAILED


def test_timer_channel_replaces_and_cancels(clock):
    channel = TimerChannel(lambda *args: None, clock=clock)
    try:
        channel.attempt(_request())
        channel.attempt(_request(fire=datetime(2025, 1, 10, 9, 45, tzinfo=UTC)))
        channel.attempt(_request("T2"))

        scheduled = {r.task_id: r.fire_time for r in channel.scheduled()}
        assert scheduled == {
            "T1": datetime(2025, 1, 10, 9, 45, tzinfo=UTC),
            "T2": datetime(2025, 1, 10, 9, 30, tzinfo=UTC),
        }

        channel.cancel("T1")
        channel.cancel("T1")
        assert [r.task_id for r in channel.scheduled()] == ["T2"]
    finally:
        channel.cancel_all()
    assert channel.scheduled() == []


def test_timer_channel_fires(clock):
    fired = threading.Event()
    shown = []

    def notifier(title, body, tag):
        shown.append(tag)
        fired.set()

    channel = TimerChannel(notifier, clock=clock)
    channel.attempt(_request(fire=clock.now + timedelta(milliseconds=10)))

    assert fired.wait(2)
    assert shown == ["T1"]
    assert channel.scheduled() == []


def test_timer_channel_shows_due_immediately(clock):
    shown = []
    channel = TimerChannel(lambda title, body, tag: shown.append(tag), clock=clock)

    assert channel.attempt(_request(immediate=True)) is AttemptResult.DELIVERED
    assert shown == ["T1"]
    assert channel.scheduled() == []


@pytest.mark.parametrize("channel", [ExecutorChannel(None), RemoteScheduleChannel(None)])
def test_cancel_without_backing_service_is_noop(channel):
    channel.cancel("T1")
    channel.cancel_all()


def test_superseded_timer_leaves_replacement_armed(clock):
    shown = []
    channel = TimerChannel(lambda title, body, tag: shown.append(tag), clock=clock)
    first = _request()
    second = _request(fire=datetime(2025, 1, 10, 9, 45, tzinfo=UTC))
    try:
        channel.attempt(first)
        channel.attempt(second)

        channel._fire(first)

        assert shown == []
        assert channel.scheduled() == [second]
    finally:
        channel.cancel_all()
