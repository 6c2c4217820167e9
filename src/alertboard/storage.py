"""
Alert storage backed by an embedded SQLite database.

All alerts live in one namespace table, ``alerts``, mapping the UTF-8 bytes of
an alert ID to its serialized JSON document. Keys are BLOBs, which SQLite
compares with memcmp, so ordered iteration is byte-lexicographic and prefix
scans are a forward range read starting at the prefix.

The database runs in WAL mode: write transactions are serialized against each
other while any number of readers proceed concurrently, each on a stable
snapshot taken when its transaction starts.
"""

import os
import sqlite3
import tempfile
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Iterable, Iterator, List, Optional, Protocol, Set, Tuple

import structlog
from pydantic import ValidationError
from pydantic_core import PydanticSerializationError

from .exceptions import (
    AlertSerializationError,
    StoreClosedError,
    StoreError,
    StoreInitError,
    TransactionError,
)
from .models import Alert, ScanResult, encode_alerts


logger = structlog.get_logger(__name__)

BUCKET = "alerts"
BACKUP_FILENAME = "alertboard.db"
DEFAULT_CHUNK_SIZE = 64 * 1024
DEFAULT_POOL_SIZE = 8


def _key(value: str) -> bytes:
    return value.encode("utf-8")


class BackupSink(Protocol):
    """HTTP-like response a backup is streamed into."""

    def set_header(self, name: str, value: str) -> None: ...

    def write(self, chunk: bytes) -> None: ...

    def fail(self, status_code: int, message: str) -> None: ...


class AlertStore(ABC):
    """Capability set every alert store provides.

    Each operation runs as exactly one transaction against the backing
    engine. Lookups of absent keys return None and deleting an absent key is
    a no-op; neither is an error.
    """

    @abstractmethod
    def put_alert(self, alert: Alert) -> None:
        """Store an alert under its ID, overwriting any existing document.

        Fills in Time and Status defaults on ``alert`` before serializing it.

        Raises:
            AlertSerializationError: If the alert cannot be encoded
            TransactionError: If the write transaction fails
        """

    @abstractmethod
    def get_alert(self, alert_id: str) -> Optional[bytes]:
        """Return the raw stored document for ``alert_id``, or None if absent."""

    @abstractmethod
    def delete_alert(self, alert_id: str) -> None:
        """Delete ``alert_id``. Absent keys are ignored."""

    @abstractmethod
    def get_alerts_by_prefix(self, prefix: str) -> ScanResult:
        """Collect every alert whose ID starts with ``prefix``, in key order.

        An empty prefix matches everything. If a stored document fails to
        decode the scan stops there and the result carries both the alerts
        collected so far and the error.
        """

    @abstractmethod
    def backup(self, sink: BackupSink) -> None:
        """Stream a consistent point-in-time image of the store into ``sink``.

        Failures are reported through ``sink.fail`` since headers and part of
        the body may already have been written.
        """

    @abstractmethod
    def close(self) -> None:
        """Release the store. Further operations raise StoreClosedError."""

    def __enter__(self) -> "AlertStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @staticmethod
    def _encode(alert: Alert) -> bytes:
        alert.fill_defaults()
        try:
            return alert.to_json_bytes()
        except PydanticSerializationError as e:
            raise AlertSerializationError(f"encode alert {alert.ID!r}: {e}", key=alert.ID) from e

    @staticmethod
    def _collect(rows: Iterable[Tuple[bytes, bytes]], prefix: str) -> ScanResult:
        """Decode rows in key order until the first key outside ``prefix``."""
        wanted = _key(prefix)
        alerts: List[Alert] = []
        error: Optional[StoreError] = None

        for key, value in rows:
            if not key.startswith(wanted):
                break
            try:
                alerts.append(Alert.from_json_bytes(value))
            except ValidationError as e:
                decoded_key = key.decode("utf-8", errors="replace")
                error = AlertSerializationError(f"decode alert {decoded_key!r}: {e}", key=decoded_key)
                break

        return ScanResult(data=encode_alerts(alerts), count=len(alerts), error=error)

    @staticmethod
    def _set_backup_headers(sink: BackupSink, size: int) -> None:
        sink.set_header("Content-Type", "application/octet-stream")
        sink.set_header("Content-Disposition", f'attachment; filename="{BACKUP_FILENAME}"')
        sink.set_header("Content-Length", str(size))

    @staticmethod
    def _stream(sink: BackupSink, image: bytes, chunk_size: int) -> None:
        view = memoryview(image)
        for offset in range(0, len(view), chunk_size):
            sink.write(bytes(view[offset:offset + chunk_size]))


class SqliteAlertStore(AlertStore):
    """Alert store persisted in a single SQLite database file."""

    def __init__(
        self,
        db_path: str = BACKUP_FILENAME,
        timeout: float = 5.0,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        pool_size: int = DEFAULT_POOL_SIZE,
    ):
        """
        Open (or create) the database file and the alerts namespace.

        Args:
            db_path: Path to the database file
            timeout: Seconds to wait for the engine's write lock
            chunk_size: Size of the chunks a backup is streamed in
            pool_size: Number of idle connections kept for reuse

        Raises:
            StoreInitError: If the file or the namespace cannot be opened or created
        """
        self.db_path = os.path.expanduser(db_path)
        self.timeout = timeout
        self.chunk_size = chunk_size
        self.pool_size = pool_size

        self._idle: List[sqlite3.Connection] = []
        self._connections: Set[sqlite3.Connection] = set()
        self._lock = threading.Lock()
        self._closed = False

        try:
            db_dir = os.path.dirname(self.db_path)
            if db_dir:
                os.makedirs(db_dir, exist_ok=True)

            conn = self._acquire()
            try:
                conn.execute("PRAGMA journal_mode=WAL")
            finally:
                self._release(conn)

            with self._transaction(write=True) as conn:
                conn.execute(
                    f"CREATE TABLE IF NOT EXISTS {BUCKET} ("
                    "key BLOB PRIMARY KEY, value BLOB NOT NULL"
                    ") WITHOUT ROWID"
                )
        except (OSError, sqlite3.Error, TransactionError) as e:
            self.close()
            raise StoreInitError(f"open {self.db_path}: {e}") from e

        logger.info("Alert store opened", db_path=self.db_path, bucket=BUCKET)

    def _acquire(self) -> sqlite3.Connection:
        """Take an idle connection from the pool, or open a new one."""
        with self._lock:
            if self._closed:
                raise StoreClosedError(f"alert store {self.db_path} is closed")
            if self._idle:
                return self._idle.pop()

        conn = sqlite3.connect(
            self.db_path,
            timeout=self.timeout,
            isolation_level=None,
            check_same_thread=False,
        )
        with self._lock:
            if self._closed:
                conn.close()
                raise StoreClosedError(f"alert store {self.db_path} is closed")
            self._connections.add(conn)
        return conn

    def _release(self, conn: sqlite3.Connection) -> None:
        """Return a connection to the pool, closing it when the pool is full."""
        with self._lock:
            if not self._closed and not conn.in_transaction and len(self._idle) < self.pool_size:
                self._idle.append(conn)
                return
            self._connections.discard(conn)
        conn.close()

    @property
    def open_connections(self) -> int:
        """Number of connections currently open, idle or in use."""
        with self._lock:
            return len(self._connections)

    @contextmanager
    def _transaction(self, write: bool = False) -> Iterator[sqlite3.Connection]:
        """Run the enclosed block as one read or write transaction."""
        try:
            conn = self._acquire()
        except sqlite3.Error as e:
            raise TransactionError(f"open connection: {e}") from e

        try:
            try:
                # IMMEDIATE takes the write lock up front so writers serialize
                conn.execute("BEGIN IMMEDIATE" if write else "BEGIN")
            except sqlite3.Error as e:
                raise TransactionError(f"begin transaction: {e}") from e

            try:
                yield conn
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                self._rollback(conn)
                raise TransactionError(str(e)) from e
            except BaseException:
                self._rollback(conn)
                raise
        finally:
            self._release(conn)

    def _rollback(self, conn: sqlite3.Connection) -> None:
        if not conn.in_transaction:
            return
        try:
            conn.execute("ROLLBACK")
        except sqlite3.Error as e:
            logger.warning("Rollback failed", db_path=self.db_path, error=str(e))

    def put_alert(self, alert: Alert) -> None:
        data = self._encode(alert)
        with self._transaction(write=True) as conn:
            conn.execute(
                f"INSERT OR REPLACE INTO {BUCKET} (key, value) VALUES (?, ?)",
                (_key(alert.ID), data),
            )

    def get_alert(self, alert_id: str) -> Optional[bytes]:
        with self._transaction() as conn:
            row = conn.execute(
                f"SELECT value FROM {BUCKET} WHERE key = ?", (_key(alert_id),)
            ).fetchone()
        return bytes(row[0]) if row is not None else None

    def delete_alert(self, alert_id: str) -> None:
        with self._transaction(write=True) as conn:
            conn.execute(f"DELETE FROM {BUCKET} WHERE key = ?", (_key(alert_id),))

    def get_alerts_by_prefix(self, prefix: str) -> ScanResult:
        try:
            with self._transaction() as conn:
                rows = conn.execute(
                    f"SELECT key, value FROM {BUCKET} WHERE key >= ? ORDER BY key",
                    (_key(prefix),),
                )
                return self._collect(rows, prefix)
        except TransactionError as e:
            return ScanResult(data=encode_alerts([]), count=0, error=e)

    def backup(self, sink: BackupSink) -> None:
        """Copy the snapshot page by page into a scratch file, then stream that file.

        The copy is taken through the read transaction, so writes committed
        after it began are not part of the image.
        """
        try:
            with self._transaction() as conn, tempfile.TemporaryDirectory() as scratch:
                # Reading page_count starts the snapshot the image is taken from
                page_count = conn.execute("PRAGMA page_count").fetchone()[0]
                page_size = conn.execute("PRAGMA page_size").fetchone()[0]
                self._set_backup_headers(sink, page_count * page_size)

                image_path = os.path.join(scratch, BACKUP_FILENAME)
                target = sqlite3.connect(image_path)
                try:
                    conn.backup(target)
                finally:
                    target.close()

                with open(image_path, "rb") as image:
                    for chunk in iter(lambda: image.read(self.chunk_size), b""):
                        sink.write(chunk)
        except Exception as e:
            logger.error(
                "Backup failed",
                db_path=self.db_path,
                error=str(e),
                error_type=type(e).__name__,
            )
            sink.fail(500, str(e))

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            idle, self._idle = self._idle, []
            for conn in idle:
                self._connections.discard(conn)

        # Connections still checked out are closed when they are released
        for conn in idle:
            conn.close()

        logger.info("Alert store closed", db_path=self.db_path)
