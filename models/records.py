"""Domain models shared across services."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Dict, FrozenSet, Optional, Tuple, Union


class AlertLevel(str, Enum):
    """Direction of a threshold crossing."""

    low = "low"
    high = "high"
    warning = "warning"


@dataclass(frozen=True, slots=True)
class EnvironmentReading:
    """Ambient sensor reading from a monitoring station."""

    kind: ClassVar[str] = "environment"

    reading_id: str
    device_id: str
    timestamp: datetime
    temperature: Optional[float] = None
    humidity: Optional[float] = None
    air_quality: Optional[float] = None
    pressure: Optional[float] = None
    light_level: Optional[float] = None
    location: str = "Main Room"


@dataclass(frozen=True, slots=True)
class SystemReading:
    """Host metrics pushed by a laptop or desktop agent."""

    kind: ClassVar[str] = "system"

    reading_id: str
    device_id: str
    timestamp: datetime
    device_manufacturer: Optional[str] = None
    device_model: Optional[str] = None
    battery_percent: Optional[float] = None
    is_charging: bool = False
    cpu_load_percent: Optional[float] = None
    uptime_seconds: Optional[float] = None
    memory_used_percent: Optional[float] = None
    memory_total_mb: Optional[float] = None
    memory_free_mb: Optional[float] = None
    brightness_percent: Optional[float] = None
    volume_percent: Optional[float] = None
    is_online: bool = True
    network_type: Optional[str] = None


Reading = Union[EnvironmentReading, SystemReading]


@dataclass(frozen=True, slots=True)
class AlertCandidate:
    """A detected threshold crossing, prior to deduplication."""

    key: str
    metric: str
    level: AlertLevel
    value: float
    threshold: Union[float, str]
    device_id: Optional[str]
    message: str

    def to_payload(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "metric": self.metric,
            "level": self.level.value,
            "value": self.value,
            "threshold": self.threshold,
            "deviceId": self.device_id,
            "message": self.message,
        }


@dataclass(frozen=True, slots=True)
class Attachment:
    filename: str
    content: bytes
    content_type: str = "application/octet-stream"


@dataclass(frozen=True, slots=True)
class NotificationJob:
    """Everything needed to notify recipients about one reading's alerts."""

    recipients: FrozenSet[str]
    subject: str
    body: str
    summary: Tuple[Tuple[str, str], ...]
    broadcast_payload: Tuple[Dict[str, Any], ...]
    attachment: Optional[Attachment] = None


@dataclass(frozen=True, slots=True)
class RecipientOutcome:
    recipient: str
    delivered: bool
    error: Optional[str] = None


@dataclass(frozen=True)
class DispatchReport:
    """Result of fanning one notification job out to its recipients."""

    job: NotificationJob
    outcomes: Tuple[RecipientOutcome, ...] = ()

    @property
    def delivered(self) -> Tuple[str, ...]:
        return tuple(outcome.recipient for outcome in self.outcomes if outcome.delivered)

    @property
    def failed(self) -> Tuple[str, ...]:
        return tuple(outcome.recipient for outcome in self.outcomes if not outcome.delivered)


@dataclass(frozen=True)
class IngestionOutcome:
    """What the detached alert job did for one persisted reading."""

    reading_id: str
    admitted: Tuple[AlertCandidate, ...] = field(default_factory=tuple)
    dispatch: Optional[DispatchReport] = None
