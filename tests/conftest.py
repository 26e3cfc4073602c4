import sys
from pathlib import Path
from typing import List

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from notifier import Notifier
from schemas import NotificationEvent


class RecordingNotifier(Notifier):
    """Collects events instead of calling the webhook."""

    enabled = True

    def __init__(self):
        self.events: List[NotificationEvent] = []

    def notify(self, event: NotificationEvent) -> None:
        self.events.append(event)


@pytest.fixture
def memory_store():
    from store import MemoryRecordStore

    return MemoryRecordStore()


@pytest.fixture
def sqlite_store(tmp_path):
    from db import SqliteRecordStore

    store = SqliteRecordStore(str(tmp_path / "test.db"))
    yield store
    store.close()


@pytest.fixture(params=["memory", "sqlite"])
def store(request):
    """Runs the test once per backend."""
    return request.getfixturevalue(f"{request.param}_store")


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def lifecycle(store, notifier):
    from engines.intervention_lifecycle import InterventionLifecycleManager

    return InterventionLifecycleManager(store, notifier)


@pytest.fixture
def api(monkeypatch, store, notifier):
    """App wired to a fresh store; runs once per backend."""
    import app
    from engines.intervention_lifecycle import InterventionLifecycleManager

    manager = InterventionLifecycleManager(store, notifier)
    monkeypatch.setattr(app, "LIFECYCLE", manager)
    return manager
