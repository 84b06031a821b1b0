"""Threshold configuration snapshots for the alert rule sets."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import timedelta
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Protocol

ENVIRONMENT = "environment"
SYSTEM = "system"

_COOLDOWN_ENV = "ALERT_COOLDOWN_MINUTES"
_SYSTEM_COOLDOWN_ENV = "SYSTEM_ALERT_COOLDOWN_MINUTES"
DEFAULT_COOLDOWN_MINUTES = 15.0

# bound name -> (environment variable, default)
ENVIRONMENT_BOUNDS: Dict[str, tuple[str, float]] = {
    "temperatureHigh": ("ALERT_TEMP_HIGH", 35.0),
    "temperatureLow": ("ALERT_TEMP_LOW", 0.0),
    "humidityHigh": ("ALERT_HUMIDITY_HIGH", 85.0),
    "humidityLow": ("ALERT_HUMIDITY_LOW", 20.0),
    "airQualityHigh": ("ALERT_AQI_HIGH", 150.0),
    "pressureHigh": ("ALERT_PRESSURE_HIGH", 1100.0),
    "pressureLow": ("ALERT_PRESSURE_LOW", 900.0),
    "lightLevelHigh": ("ALERT_LIGHT_HIGH", 900.0),
}

SYSTEM_BOUNDS: Dict[str, tuple[str, float]] = {
    "batteryLow": ("ALERT_BATTERY_LOW", 85.0),
    "cpuLoadHigh": ("ALERT_CPU_HIGH", 90.0),
    "cpuSustainedSeconds": ("ALERT_CPU_SUSTAINED_SECONDS", 7200.0),
    "volumeHigh": ("ALERT_VOLUME_HIGH", 90.0),
    "memoryHigh": ("ALERT_MEMORY_HIGH", 90.0),
}

_BOUNDS_BY_RULE_SET = {ENVIRONMENT: ENVIRONMENT_BOUNDS, SYSTEM: SYSTEM_BOUNDS}


@dataclass(frozen=True)
class ThresholdConfig:
    """One consistent view of the bounds and cooldown for a rule set."""

    bounds: Mapping[str, float]
    cooldown: timedelta = timedelta(minutes=DEFAULT_COOLDOWN_MINUTES)

    def __post_init__(self) -> None:
        object.__setattr__(self, "bounds", MappingProxyType(dict(self.bounds)))

    def bound(self, name: str) -> float:
        return self.bounds[name]

    def as_dict(self) -> Dict[str, float]:
        payload = dict(self.bounds)
        payload["cooldownMinutes"] = self.cooldown.total_seconds() / 60
        return payload


class ThresholdProvider(Protocol):
    def snapshot(self, rule_set: str) -> ThresholdConfig:
        ...


def default_config(rule_set: str) -> ThresholdConfig:
    bounds = _BOUNDS_BY_RULE_SET[rule_set]
    return ThresholdConfig(bounds={name: default for name, (_, default) in bounds.items()})


def _read_float(value: Optional[str], default: float) -> float:
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        return float(candidate)
    except ValueError:
        return default


class EnvThresholdProvider:
    """Reads thresholds from the process environment on every call.

    Nothing is cached, so operators can adjust bounds without a restart; a
    single ``snapshot`` call is the unit of consistency.
    """

    def snapshot(self, rule_set: str) -> ThresholdConfig:
        try:
            declared = _BOUNDS_BY_RULE_SET[rule_set]
        except KeyError as exc:
            raise KeyError(f"Unknown rule set {rule_set!r}.") from exc

        bounds = {
            name: _read_float(os.getenv(env_name), default)
            for name, (env_name, default) in declared.items()
        }
        return ThresholdConfig(bounds=bounds, cooldown=self._cooldown(rule_set))

    @staticmethod
    def _cooldown(rule_set: str) -> timedelta:
        minutes = _read_float(os.getenv(_COOLDOWN_ENV), DEFAULT_COOLDOWN_MINUTES)
        if rule_set == SYSTEM:
            minutes = _read_float(os.getenv(_SYSTEM_COOLDOWN_ENV), minutes)
        return timedelta(minutes=max(minutes, 0.0))


@dataclass
class StaticThresholdProvider:
    """Fixed snapshots, mainly for tests and embedding."""

    configs: Dict[str, ThresholdConfig] = field(default_factory=dict)

    def snapshot(self, rule_set: str) -> ThresholdConfig:
        config = self.configs.get(rule_set)
        if config is None:
            return default_config(rule_set)
        return config
