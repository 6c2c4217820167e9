"""
In-memory alert store.

Keeps the same contract as SqliteAlertStore without touching disk, so it can
stand in for the real engine in tests and short-lived tools. A single lock
plays the role of the engine's transactions.
"""

import bisect
import threading
from typing import Dict, Iterator, List, Optional, Tuple

from .exceptions import StoreClosedError
from .models import Alert, ScanResult
from .storage import DEFAULT_CHUNK_SIZE, AlertStore, BackupSink, _key


class MemoryAlertStore(AlertStore):
    """Alert store held in a sorted in-memory map."""

    def __init__(self, chunk_size: int = DEFAULT_CHUNK_SIZE):
        self.chunk_size = chunk_size
        self._records: Dict[bytes, bytes] = {}
        self._keys: List[bytes] = []  # sorted
        self._lock = threading.RLock()
        self._closed = False

    def _check_open(self) -> None:
        if self._closed:
            raise StoreClosedError("in-memory alert store is closed")

    def _items_from(self, start: bytes) -> Iterator[Tuple[bytes, bytes]]:
        for key in self._keys[bisect.bisect_left(self._keys, start):]:
            yield key, self._records[key]

    def put_alert(self, alert: Alert) -> None:
        data = self._encode(alert)
        key = _key(alert.ID)
        with self._lock:
            self._check_open()
            if key not in self._records:
                bisect.insort(self._keys, key)
            self._records[key] = data

    def get_alert(self, alert_id: str) -> Optional[bytes]:
        with self._lock:
            self._check_open()
            return self._records.get(_key(alert_id))

    def delete_alert(self, alert_id: str) -> None:
        key = _key(alert_id)
        with self._lock:
            self._check_open()
            if self._records.pop(key, None) is not None:
                del self._keys[bisect.bisect_left(self._keys, key)]

    def get_alerts_by_prefix(self, prefix: str) -> ScanResult:
        with self._lock:
            self._check_open()
            return self._collect(self._items_from(_key(prefix)), prefix)

    def backup(self, sink: BackupSink) -> None:
        """Stream every stored document, in key order, as one JSON array."""
        try:
            with self._lock:
                self._check_open()
                image = b"[" + b",".join(self._records[key] for key in self._keys) + b"]"
            self._set_backup_headers(sink, len(image))
            self._stream(sink, image, self.chunk_size)
        except Exception as e:
            sink.fail(500, str(e))

    def close(self) -> None:
        with self._lock:
            self._closed = True
            self._records.clear()
            self._keys.clear()
