from datetime import datetime, timedelta, timezone

import pytest

from ticket_notify import metrics
from ticket_notify.dispatcher import (
    create_dispatcher,
    get_default_dispatcher,
    set_default_dispatcher,
)
from ticket_notify.errors import EventAlreadyPassed, ValidationError
from ticket_notify.models import ScheduledNotification
from tests.utils.fakes import make_subscription


UTC = timezone.utc


def test_deferred_schedule_is_persisted(dispatcher, clock):
    result = dispatcher.schedule("T1", "Standup", None, "2025-01-10", "10:00", 30)

    assert result.immediate is False
    records = dispatcher.list_schedules()
    assert len(records) == 1
    assert records[0].task_id == "T1"
    assert records[0].scheduled_time == datetime(2025, 1, 10, 9, 30, tzinfo=UTC)
    assert records[0].body == "Starting soon: 10:00"


def test_rescheduling_replaces_previous(dispatcher):
    dispatcher.schedule("T1", "Standup", "b", "2025-01-10", "10:00", 30)
    dispatcher.schedule("T1", "Standup", "b", "2025-01-10", "11:00", 15)

    records = dispatcher.list_schedules()
    assert len(records) == 1
    assert records[0].scheduled_time == datetime(2025, 1, 10, 10, 45, tzinfo=UTC)


def test_past_event_is_rejected(dispatcher):
    dispatcher.schedule("T1", "Old", "b", "2025-01-10", "10:00", 30)
    with pytest.raises(EventAlreadyPassed):
        dispatcher.schedule("T2", "Old", "b", "2025-01-10", "08:00", 0)
    with pytest.raises(EventAlreadyPassed):
        dispatcher.schedule("T3", "Now", "b", "2025-01-10", "09:00", 0)
    assert [r.task_id for r in dispatcher.list_schedules()] == ["T1"]


def test_missing_fields_are_rejected(dispatcher):
    with pytest.raises(ValidationError):
        dispatcher.schedule("", "Title", "b", "2025-01-10", "10:00", 0)
    with pytest.raises(ValidationError):
        dispatcher.schedule("T1", "Title", "b", "2025-01-10", "not-a-time", 0)
    assert dispatcher.list_schedules() == []


def test_open_window_delivers_immediately(dispatcher, provider):
    dispatcher.registry.upsert(make_subscription("https://push/a"))
    dispatcher.schedule("T1", "Standup", "early", "2025-01-10", "10:00", 15)

    result = dispatcher.schedule("T1", "Standup", "now", "2025-01-10", "09:30", 60)

    assert result.immediate is True
    assert result.sent_count == 1
    assert provider.sent == [("https://push/a", {"title": "Standup", "body": "now", "tag": "T1"})]
    assert dispatcher.list_schedules() == []


def test_sweep_delivers_due_once(dispatcher, provider, clock):
    dispatcher.registry.upsert(make_subscription("https://push/a"))
    dispatcher.schedule("T1", "Standup", None, "2025-01-10", "10:00", 30)

    clock.now = datetime(2025, 1, 10, 9, 29, tzinfo=UTC)
    assert dispatcher.check_and_send_due_notifications() == 0

    clock.now = datetime(2025, 1, 10, 9, 31, tzinfo=UTC)
    assert dispatcher.check_and_send_due_notifications() == 1
    assert dispatcher.list_schedules() == []

    clock.now = datetime(2025, 1, 10, 9, 32, tzinfo=UTC)
    assert dispatcher.check_and_send_due_notifications() == 0
    assert len(provider.sent) == 1


def test_sweep_keeps_records_that_are_not_due(dispatcher, clock):
    dispatcher.registry.upsert(make_subscription("https://push/a"))
    dispatcher.schedule("T1", "First", None, "2025-01-10", "10:00", 30)
    dispatcher.schedule("T2", "Later", None, "2025-01-10", "12:00", 30)

    clock.now = datetime(2025, 1, 10, 9, 45, tzinfo=UTC)
    assert dispatcher.check_and_send_due_notifications() == 1
    assert [r.task_id for r in dispatcher.list_schedules()] == ["T2"]


def test_failed_delivery_is_still_purged(dispatcher, provider, clock):
    dispatcher.registry.upsert(make_subscription("https://push/a"))
    provider.failing.add("https://push/a")
    dispatcher.schedule("T1", "Standup", None, "2025-01-10", "10:00", 30)

    clock.now = datetime(2025, 1, 10, 9, 31, tzinfo=UTC)
    assert dispatcher.check_and_send_due_notifications() == 0
    assert dispatcher.list_schedules() == []
    assert dispatcher.registry.get("https://push/a") is not None


def test_gone_subscription_is_pruned(dispatcher, provider):
    dispatcher.registry.upsert(make_subscription("https://push/gone"))
    dispatcher.registry.upsert(make_subscription("https://push/ok"))
    provider.gone.add("https://push/gone")
    pruned = metrics.SUBSCRIPTIONS_PRUNED._value.get()

    assert dispatcher.send_test() == 1

    assert [s.endpoint for s in dispatcher.registry.list()] == ["https://push/ok"]
    assert metrics.SUBSCRIPTIONS_PRUNED._value.get() == pruned + 1


def test_bound_subscription_receives_only_its_record(dispatcher, provider, clock):
    dispatcher.registry.upsert(make_subscription("https://push/a"))
    dispatcher.registry.upsert(make_subscription("https://push/b"))
    dispatcher.schedule(
        "T1", "Mine", None, "2025-01-10", "10:00", 30, "https://push/b"
    )

    clock.now = datetime(2025, 1, 10, 9, 30, tzinfo=UTC)
    assert dispatcher.check_and_send_due_notifications() == 1
    assert [endpoint for endpoint, _ in provider.sent] == ["https://push/b"]


def test_unknown_bound_subscription_falls_back_to_broadcast(dispatcher, provider):
    dispatcher.registry.upsert(make_subscription("https://push/a"))
    dispatcher.registry.upsert(make_subscription("https://push/b"))
    record = ScheduledNotification(
        id="r1",
        task_id="T1",
        title="t",
        body="b",
        scheduled_time=datetime(2025, 1, 10, 8, 0, tzinfo=UTC),
        subscription_endpoint="https://push/unknown",
    )

    assert dispatcher.deliver(record) == 2


def test_sweep_counts_only_successful_sends(dispatcher, provider, clock):
    dispatcher.registry.upsert(make_subscription("https://push/a"))
    dispatcher.registry.upsert(make_subscription("https://push/b"))
    provider.failing.add("https://push/b")
    dispatcher.schedule("T1", "Standup", None, "2025-01-10", "10:00", 30)

    clock.now = datetime(2025, 1, 10, 9, 30, tzinfo=UTC)
    assert dispatcher.check_and_send_due_notifications() == 1


def test_sweep_without_subscriptions_purges(dispatcher, clock):
    dispatcher.schedule("T1", "Standup", None, "2025-01-10", "10:00", 30)
    clock.now = clock.now + timedelta(hours=2)

    assert dispatcher.check_and_send_due_notifications() == 0
    assert dispatcher.list_schedules() == []


def test_cancel_and_cancel_all(dispatcher):
    dispatcher.schedule("T1", "a", None, "2025-01-10", "10:00", 0)
    dispatcher.schedule("T2", "b", None, "2025-01-10", "11:00", 0)

    dispatcher.cancel("T1")
    dispatcher.cancel("T1")
    assert [r.task_id for r in dispatcher.list_schedules()] == ["T2"]

    dispatcher.cancel_all()
    assert dispatcher.describe() == {"schedules": [], "subscriptions": 0}


def test_default_dispatcher_is_created_from_config(tmp_data_dir, monkeypatch):
    monkeypatch.setenv("VAPID_PUBLIC_KEY", "pub")
    set_default_dispatcher(None)

    first = get_default_dispatcher()
    assert first is get_default_dispatcher()
    assert first.public_key == "pub"

    other = create_dispatcher({"data_dir": str(tmp_data_dir / "other")})
    set_default_dispatcher(other)
    assert get_default_dispatcher() is other


def test_sweep_prunes_gone_bound_subscription(dispatcher, provider, clock):
    dispatcher.registry.upsert(make_subscription("https://push/gone"))
    provider.gone.add("https://push/gone")
    dispatcher.schedule(
        "T1", "Standup", None, "2025-01-10", "10:00", 30, "https://push/gone"
    )
    pruned = metrics.SUBSCRIPTIONS_PRUNED._value.get()

    clock.now = datetime(2025, 1, 10, 9, 31, tzinfo=UTC)
    assert dispatcher.check_and_send_due_notifications() == 0

    assert dispatcher.registry.get("https://push/gone") is None
    assert dispatcher.list_schedules() == []
    assert metrics.SUBSCRIPTIONS_PRUNED._value.get() == pruned + 1
