"""
Alertboard - embedded alert storage

Persists alert documents in a single embedded SQLite database file and exposes
put/get/delete, prefix scans and full snapshot backups over a small HTTP API.
"""

from .exceptions import (
    AlertSerializationError,
    StoreClosedError,
    StoreError,
    StoreInitError,
    TransactionError,
)
from .memory import MemoryAlertStore
from .models import Alert, ScanResult
from .storage import AlertStore, BackupSink, SqliteAlertStore

__version__ = "0.1.0"
__author__ = "Alertboard Team"
__description__ = "Embedded alert store with prefix scans and snapshot backups"

__all__ = [
    "Alert",
    "ScanResult",
    "AlertStore",
    "BackupSink",
    "SqliteAlertStore",
    "MemoryAlertStore",
    "StoreError",
    "StoreInitError",
    "StoreClosedError",
    "AlertSerializationError",
    "TransactionError",
]
