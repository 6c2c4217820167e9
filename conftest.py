"""
Shared pytest fixtures for the alert store tests.
"""

import bisect
import sqlite3

import pytest

from alertboard.memory import MemoryAlertStore
from alertboard.storage import SqliteAlertStore


@pytest.fixture
def sqlite_store(tmp_path):
    """A SQLite-backed store in a fresh temporary directory."""
    store = SqliteAlertStore(str(tmp_path / "alertboard.db"), timeout=2.0, chunk_size=1024)
    yield store
    store.close()


@pytest.fixture
def memory_store():
    store = MemoryAlertStore(chunk_size=1024)
    yield store
    store.close()


@pytest.fixture(params=["sqlite", "memory"])
def store(request):
    """Each store implementation in turn."""
    return request.getfixturevalue(f"{request.param}_store")


def _write_raw(store, key: str, value: bytes) -> None:
    """Write a value under ``key`` bypassing alert serialization."""
    if isinstance(store, SqliteAlertStore):
        conn = sqlite3.connect(store.db_path)
        try:
            conn.execute(
                "INSERT OR REPLACE INTO alerts (key, value) VALUES (?, ?)",
                (key.encode("utf-8"), value),
            )
            conn.commit()
        finally:
            conn.close()
    else:
        raw_key = key.encode("utf-8")
        if raw_key not in store._records:
            bisect.insort(store._keys, raw_key)
        store._records[raw_key] = value


@pytest.fixture
def write_raw():
    return _write_raw


class RecordingSink:
    """Backup sink that keeps every header and chunk it is given."""

    def __init__(self):
        self.headers = {}
        self.chunks = []
        self.status_code = 200
        self.error = None

    def set_header(self, name, value):
        self.headers[name] = value

    def write(self, chunk):
        self.chunks.append(chunk)

    def fail(self, status_code, message):
        self.status_code = status_code
        self.error = message

    @property
    def body(self):
        return b"".join(self.chunks)


@pytest.fixture
def sink_class():
    return RecordingSink
