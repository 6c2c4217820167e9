"""
Exceptions raised by alert stores.

Not-found is not an error: lookups return None and deletes of absent keys
succeed.
"""

from typing import Optional


class StoreError(Exception):
    """Base class for all alert store failures."""


class StoreInitError(StoreError):
    """The database file or the alerts namespace could not be opened or created."""


class StoreClosedError(StoreError):
    """The store was used after close()."""


class AlertSerializationError(StoreError):
    """An alert could not be encoded for writing or a stored value could not be decoded."""

    def __init__(self, message: str, key: Optional[str] = None):
        super().__init__(message)
        self.key = key


class TransactionError(StoreError):
    """The underlying engine failed a read or write transaction."""
