import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

# Ensure package root is on sys.path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from ticket_notify import events  # noqa: E402
from ticket_notify.backends import MemoryBackend  # noqa: E402
from ticket_notify.dispatcher import NotificationDispatcher, set_default_dispatcher  # noqa: E402
from ticket_notify.schedule_store import ScheduleStore  # noqa: E402
from ticket_notify.subscription_registry import SubscriptionRegistry  # noqa: E402

from tests.utils.fakes import FakeClock, FakeProvider  # noqa: E402


@pytest.fixture(autouse=True)
def tmp_data_dir(monkeypatch, tmp_path):
    monkeypatch.setenv("NOTIFY_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("NOTIFY_PENDING_PATH", str(tmp_path / "pending.yml"))
    for name in (
        "NOTIFY_CONFIG",
        "NOTIFY_SERVER_URL",
        "NOTIFY_TIMEZONE",
        "VAPID_PUBLIC_KEY",
        "VAPID_PRIVATE_KEY",
        "VAPID_SUBJECT",
    ):
        monkeypatch.delenv(name, raising=False)
    yield tmp_path


@pytest.fixture(autouse=True)
def reset_defaults():
    yield
    set_default_dispatcher(None)
    events._default_bus = None


@pytest.fixture
def clock():
    return FakeClock(datetime(2025, 1, 10, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def dispatcher(clock, provider):
    return NotificationDispatcher(
        ScheduleStore(MemoryBackend()),
        SubscriptionRegistry(MemoryBackend()),
        provider,
        clock=clock,
    )
