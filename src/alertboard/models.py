"""
Pydantic models for alert documents and scan results.

The store treats an alert as an opaque JSON document keyed by its ID; only
Status and Time get defaults filled in at write time. Any extra fields the
caller sends are kept and round-tripped unchanged.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from .exceptions import StoreError


DEFAULT_STATUS = "Open"

# Zero time emitted by other producers ("0001-01-01T00:00:00Z")
ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)


def _utcnow() -> datetime:
    """Get current UTC time."""
    return datetime.now(timezone.utc)


class Alert(BaseModel):
    """An alert document as stored under its ID."""

    model_config = ConfigDict(extra="allow")

    ID: str = Field(..., description="Alert identifier, used verbatim as the storage key")
    Status: str = Field(default="", description="Alert status, 'Open' when written empty")
    Time: Optional[datetime] = Field(default=None, description="Alert time, set to now when written zero")

    @property
    def has_zero_time(self) -> bool:
        if self.Time is None:
            return True
        when = self.Time if self.Time.tzinfo is not None else self.Time.replace(tzinfo=timezone.utc)
        return when == ZERO_TIME

    def fill_defaults(self, now: Optional[datetime] = None) -> "Alert":
        """Set Time and Status to their write-time defaults when unset."""
        if self.has_zero_time:
            self.Time = now or _utcnow()
        if not self.Status:
            self.Status = DEFAULT_STATUS
        return self

    def to_json_bytes(self) -> bytes:
        """Serialize to the stored document format."""
        return self.model_dump_json().encode("utf-8")

    @classmethod
    def from_json_bytes(cls, data: bytes) -> "Alert":
        """Deserialize a stored document."""
        return cls.model_validate_json(data)


_ALERT_LIST = TypeAdapter(List[Alert])


def encode_alerts(alerts: List[Alert]) -> bytes:
    """Encode a list of alerts as one JSON array."""
    return _ALERT_LIST.dump_json(alerts)


def decode_alerts(data: bytes) -> List[Alert]:
    """Decode a JSON array produced by encode_alerts."""
    return _ALERT_LIST.validate_json(data)


@dataclass
class ScanResult:
    """Result of a prefix scan.

    When ``error`` is set the scan stopped early; ``data`` and ``count`` still
    hold every alert collected before the failure.
    """

    data: bytes
    count: int
    error: Optional[StoreError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def alerts(self) -> List[Alert]:
        return decode_alerts(self.data)
