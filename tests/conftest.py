"""Shared test fixtures."""

import asyncio

import pytest

from automate_pos.database.store import LocalStore
from automate_pos.sync.connectivity import ConnectivityMonitor
from automate_pos.sync.engine import SyncEngine
from automate_pos.sync.remote import RemoteClient
from automate_pos.sync.retry import RetryPolicy


@pytest.fixture(autouse=True)
def isolate_settings(tmp_path, monkeypatch):
    """Redirect settings I/O to a temp file so tests don't touch real config."""
    import automate_pos.config as config_mod
    monkeypatch.setattr(config_mod, "_SETTINGS_FILE", tmp_path / "settings.json")
    monkeypatch.setattr(config_mod.Config, "LAST_SYNC_TIMESTAMP", "")
    monkeypatch.setattr(config_mod.Config, "BUSINESS_ID", "")


@pytest.fixture
def db_path(tmp_path):
    """Provide a temporary database path."""
    return tmp_path / "store.db"


@pytest.fixture
def store(db_path):
    """Provide an opened local store."""
    return LocalStore(db_path).open()


class SleepRecorder:
    """Stands in for asyncio.sleep; records requested delays in seconds."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float):
        self.delays.append(seconds)


@pytest.fixture
def sleeps():
    return SleepRecorder()


@pytest.fixture
def retry_policy(sleeps):
    """Default retry budget without real waiting."""
    return RetryPolicy(max_retries=3, base_delay_ms=1200,
                       backoff_factor=2.5, sleep=sleeps)


class FakeRemote(RemoteClient):
    """In-memory remote system of record.

    ``fail_always[record_id]`` raises that error on every call for the
    record; ``fail_times[record_id]`` is a list of errors raised one per
    call before calls start succeeding. Every call is recorded, failed or
    not, as ``(operation, collection, record_id, mutation_id, payload)``.
    """

    def __init__(self):
        self.calls: list[tuple] = []
        self.fetch_calls: list[tuple] = []
        self.data: dict[str, dict[str, dict]] = {}
        self.rows: dict[str, list[dict]] = {}
        self.fail_always: dict[str, Exception] = {}
        self.fail_times: dict[str, list[Exception]] = {}
        self.fetch_error: Exception | None = None
        self.gate: asyncio.Event | None = None
        self.closed = False

    def _maybe_fail(self, record_id: str):
        if record_id in self.fail_always:
            raise self.fail_always[record_id]
        pending = self.fail_times.get(record_id)
        if pending:
            raise pending.pop(0)

    async def _call(self, operation, collection, record_id, mutation_id,
                    payload):
        self.calls.append(
            (operation, collection, record_id, mutation_id, payload)
        )
        if self.gate is not None:
            await self.gate.wait()
        self._maybe_fail(record_id)

    async def insert(self, collection, record, mutation_id):
        await self._call("insert", collection, record["id"], mutation_id, record)
        self.data.setdefault(collection, {})[record["id"]] = dict(record)

    async def update(self, collection, record_id, record, mutation_id):
        await self._call("update", collection, record_id, mutation_id, record)
        self.data.setdefault(collection, {})[record_id] = dict(record)

    async def delete(self, collection, record_id, mutation_id):
        await self._call("delete", collection, record_id, mutation_id, None)
        self.data.get(collection, {}).pop(record_id, None)

    async def fetch_since(self, collection, since, business_id=None):
        self.fetch_calls.append((collection, since, business_id))
        if self.fetch_error is not None:
            raise self.fetch_error
        rows = self.rows.get(collection, [])
        return [
            dict(r) for r in rows
            if (since is None or r.get("updated_at", "") >= since)
            and (business_id is None or r.get("business_id") == business_id)
        ]

    async def aclose(self):
        self.closed = True

    def calls_for(self, record_id):
        return [c for c in self.calls if c[2] == record_id]


@pytest.fixture
def remote():
    return FakeRemote()


@pytest.fixture
def connectivity():
    return ConnectivityMonitor(online=True)


@pytest.fixture
def engine(store, remote, connectivity, retry_policy):
    """Engine wired to the fake remote with no real backoff waits."""
    return SyncEngine(store, remote, connectivity, retry_policy,
                      interval_seconds=60)
