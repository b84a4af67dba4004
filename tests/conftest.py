"""Shared test fixtures and configuration.

Sets up fake environment variables so studyfit.config doesn't sys.exit(),
and provides common fixtures: temp SQLite stores, an in-memory document
store and a fake reminder capability.
"""

import os

# Patch env vars BEFORE any studyfit imports
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "fake-token-for-tests")
os.environ.setdefault("ALLOWED_USER_IDS", "12345")
os.environ.setdefault("DATABASE_PATH", ":memory:")
os.environ.setdefault("REMOTE_STORE_URL", "")
os.environ.setdefault("TIMEZONE", "Asia/Seoul")

import pytest

from studyfit.core.weekdays import to_platform_weekday
from studyfit.ports.document_store_port import RemoteUnavailable


# ---------------------------------------------------------------------------
# Fakes for the external ports
# ---------------------------------------------------------------------------


class FakeDocumentStore:
    """In-memory DocumentStorePort. Set `available = False` to simulate outages."""

    def __init__(self):
        self.docs: dict[str, dict] = {}
        self.available = True
        self.writes: list[tuple[str, dict, bool]] = []
        self.callbacks: dict[str, list] = {}

    async def get(self, path):
        if not self.available:
            raise RemoteUnavailable("offline")
        doc = self.docs.get(path)
        return dict(doc) if doc is not None else None

    async def set(self, path, document, merge=False):
        if not self.available:
            raise RemoteUnavailable("offline")
        self.writes.append((path, document, merge))
        if merge and path in self.docs:
            self.docs[path] = {**self.docs[path], **document}
        else:
            self.docs[path] = dict(document)

    def on_change(self, path, callback):
        self.callbacks.setdefault(path, []).append(callback)

        def _unsubscribe():
            self.callbacks[path].remove(callback)

        return _unsubscribe

    async def emit(self, path, document):
        """Simulate a change made by another device."""
        self.docs[path] = document
        for callback in list(self.callbacks.get(path, [])):
            await callback(document)


class FakeReminders:
    """ReminderPort that records what a platform would have been asked to do."""

    def __init__(self, permitted=True):
        self.permitted = permitted
        self.live: dict[str, dict] = {}
        self.cancelled: list[str] = []
        self.fail_titles: set[str] = set()
        self._counter = 0

    async def request_permission(self):
        return self.permitted

    async def schedule_recurring(self, weekday, hour, minute, content):
        if content.title in self.fail_titles:
            raise RuntimeError("quota exceeded")
        self._counter += 1
        handle = f"h{self._counter}"
        self.live[handle] = {
            "weekday": weekday,
            "platform_weekday": to_platform_weekday(weekday),
            "hour": hour,
            "minute": minute,
            "title": content.title,
            "body": content.body,
        }
        return handle

    async def cancel(self, handle):
        # Unknown handles are a no-op, like a real platform.
        if self.live.pop(handle, None) is not None:
            self.cancelled.append(handle)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_studyfit.db")


@pytest.fixture
def cache(tmp_db_path):
    """Return a CacheDB instance backed by a temp file."""
    from studyfit.data.db import CacheDB
    return CacheDB(db_path=tmp_db_path)


@pytest.fixture
def record_db(tmp_db_path):
    """Return a RecordDB instance backed by a temp file."""
    from studyfit.data.db import RecordDB
    return RecordDB(db_path=tmp_db_path)


@pytest.fixture
def remote():
    return FakeDocumentStore()


@pytest.fixture
def reminders():
    return FakeReminders()


@pytest.fixture
def library():
    from studyfit.core.library import RoutineLibrary
    return RoutineLibrary()


@pytest.fixture
def plan_store(cache, remote):
    from studyfit.core.plan_store import PlanStore
    return PlanStore(cache, remote)
