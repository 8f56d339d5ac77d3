"""
Driver client data types.

`LocationSample` doubles as the wire payload of a location push and as the
stored form of a pending entry, so it serialises with the server's camelCase
field names.
"""

import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_sample_id() -> str:
    return uuid.uuid4().hex


class LocationSample(BaseModel):
    """One position fix for an order. Immutable once created."""
    order_id: str
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    accuracy: Optional[float] = None
    speed: Optional[float] = None
    timestamp: datetime = Field(default_factory=utc_now)
    sample_id: str = Field(default_factory=new_sample_id)

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        frozen = True

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "LocationSample":
        return cls.model_validate(payload)


@dataclass
class ValidationResult:
    valid: bool
    order_id: str
    message: str
    status: Optional[str] = None
    details: Optional[Dict[str, Any]] = None


@dataclass
class StatusUpdateResult:
    order_id: str
    new_status: str
    timestamp: Optional[str] = None
    audit_recorded: bool = True


@dataclass
class LocationAck:
    timestamp: Optional[str] = None
    duplicate: bool = False
    point_id: Optional[int] = None


@dataclass
class HealthStatus:
    ok: bool
    database: Optional[str] = None
    detail: Optional[str] = None


@dataclass
class TrackingSession:
    """
    State of the delivery currently being tracked.

    `samples` is the display buffer, most recent first and capped; it is not
    the trajectory of record, which lives on the server.
    """
    order_id: str
    active: bool = True
    paused: bool = False
    order_status: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    started_at: datetime = field(default_factory=utc_now)
    buffer_size: int = 50
    samples: Deque[LocationSample] = field(default_factory=deque)

    def __post_init__(self):
        self.samples = deque(self.samples, maxlen=self.buffer_size)

    def record(self, sample: LocationSample) -> None:
        self.samples.appendleft(sample)

    @property
    def last_sample(self) -> Optional[LocationSample]:
        return self.samples[0] if self.samples else None

    def to_record(self) -> Dict[str, Any]:
        return {
            "isTracking": self.active,
            "isPaused": self.paused,
            "currentOrderId": self.order_id,
            "orderStatus": self.order_status,
            "details": self.details,
            "startedAt": self.started_at.isoformat(),
            "locationHistory": [sample.to_payload() for sample in self.samples],
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any], buffer_size: int = 50) -> "TrackingSession":
        history: List[LocationSample] = [
            LocationSample.from_payload(item) for item in record.get("locationHistory") or []
        ]
        started_at = record.get("startedAt")
        return cls(
            order_id=record["currentOrderId"],
            active=bool(record.get("isTracking")),
            paused=bool(record.get("isPaused")),
            order_status=record.get("orderStatus"),
            details=record.get("details"),
            started_at=datetime.fromisoformat(started_at) if started_at else utc_now(),
            buffer_size=buffer_size,
            samples=deque(history),
        )
