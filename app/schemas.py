"""Pydantic schemas for the HTTP API layer."""

from __future__ import annotations

from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from models.records import EnvironmentReading, Reading, SystemReading


def as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ReadingIn(CamelModel):
    device_id: str = Field(..., min_length=1, description="Identifier of the reporting device.")
    timestamp: Optional[datetime] = Field(
        default=None, description="Measurement time; defaults to the time of receipt."
    )

    @field_validator("device_id")
    @classmethod
    def _strip_device_id(cls, value: str) -> str:
        candidate = value.strip()
        if not candidate:
            raise ValueError("deviceId must not be blank")
        return candidate

    def _resolve_timestamp(self, received_at: datetime) -> datetime:
        return as_utc(self.timestamp or received_at)


class EnvironmentReadingIn(ReadingIn):
    """Ambient reading as posted by a monitoring station."""

    temperature: Optional[float] = Field(default=None, ge=-50, le=100)
    humidity: Optional[float] = Field(default=None, ge=0, le=100)
    air_quality: Optional[float] = Field(default=None, ge=0, le=500)
    pressure: Optional[float] = Field(default=None, ge=800, le=1200)
    light_level: Optional[float] = Field(default=None, ge=0, le=1000)
    location: str = "Main Room"

    def to_reading(self, reading_id: str, received_at: datetime) -> EnvironmentReading:
        fields = self.model_dump(exclude={"timestamp"})
        return EnvironmentReading(
            reading_id=reading_id,
            timestamp=self._resolve_timestamp(received_at),
            **fields,
        )


class SystemReadingIn(ReadingIn):
    """Host metrics as posted by a device agent."""

    device_manufacturer: Optional[str] = None
    device_model: Optional[str] = None
    battery_percent: Optional[float] = Field(default=None, ge=0, le=100)
    is_charging: bool = False
    cpu_load_percent: Optional[float] = Field(default=None, ge=0, le=100)
    uptime_seconds: Optional[float] = Field(default=None, ge=0)
    memory_used_percent: Optional[float] = Field(default=None, ge=0, le=100)
    memory_total_mb: Optional[float] = Field(default=None, ge=0, alias="memoryTotalMB")
    memory_free_mb: Optional[float] = Field(default=None, ge=0, alias="memoryFreeMB")
    brightness_percent: Optional[float] = Field(default=None, ge=0, le=100)
    volume_percent: Optional[float] = Field(default=None, ge=0, le=100)
    is_online: bool = True
    network_type: Optional[str] = None

    def to_reading(self, reading_id: str, received_at: datetime) -> SystemReading:
        fields = self.model_dump(exclude={"timestamp"})
        return SystemReading(
            reading_id=reading_id,
            timestamp=self._resolve_timestamp(received_at),
            **fields,
        )


class EnvironmentReadingOut(EnvironmentReadingIn):
    reading_id: str
    timestamp: datetime


class SystemReadingOut(SystemReadingIn):
    reading_id: str
    timestamp: datetime


ReadingOut = Union[EnvironmentReadingOut, SystemReadingOut]

_OUT_MODELS = {
    EnvironmentReading.kind: EnvironmentReadingOut,
    SystemReading.kind: SystemReadingOut,
}


def reading_out(reading: Reading) -> ReadingOut:
    return _OUT_MODELS[reading.kind](**asdict(reading))


def serialize_reading(reading: Reading) -> Dict[str, Any]:
    """Wire (camelCase, JSON-safe) representation of a stored reading."""
    return reading_out(reading).model_dump(mode="json", by_alias=True)


def deserialize_reading(kind: str, payload: Dict[str, Any]) -> Reading:
    model = _OUT_MODELS[kind].model_validate(payload)
    if kind == SystemReading.kind:
        return SystemReading(**model.model_dump())
    return EnvironmentReading(**model.model_dump())


class ThresholdsResponse(BaseModel):
    environment: Dict[str, float]
    system: Dict[str, float]


class RecipientIn(BaseModel):
    address: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+$", description="Notification e-mail address.")


class RecipientsResponse(BaseModel):
    recipients: List[str] = Field(default_factory=list)


class BroadcastEventOut(CamelModel):
    topic: str
    payload: Any
    published_at: datetime


class PaginationOut(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class EnvironmentPageOut(BaseModel):
    data: List[EnvironmentReadingOut]
    pagination: PaginationOut


class EnvironmentStatsOut(CamelModel):
    avg_temperature: float = 0.0
    avg_humidity: float = 0.0
    avg_air_quality: float = 0.0
    avg_pressure: float = 0.0
    avg_light_level: float = 0.0
    data_points: int = 0
    min_temperature: Optional[float] = None
    max_temperature: Optional[float] = None
    min_humidity: Optional[float] = None
    max_humidity: Optional[float] = None
