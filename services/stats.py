"""Summary statistics for environment readings over a recent period."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

from models.records import EnvironmentReading

PERIODS: Dict[str, timedelta] = {
    "1h": timedelta(hours=1),
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
}
DEFAULT_PERIOD = "24h"

_AVERAGED = ("temperature", "humidity", "air_quality", "pressure", "light_level")


def period_start(period: Optional[str], now: datetime) -> datetime:
    """Start of the window ending at ``now``; unknown periods fall back to 24h."""
    return now - PERIODS.get(period or DEFAULT_PERIOD, PERIODS[DEFAULT_PERIOD])


@dataclass
class EnvironmentSummary:
    """Averages and extremes for a batch of environment readings."""

    data_points: int = 0
    avg_temperature: float = 0.0
    avg_humidity: float = 0.0
    avg_air_quality: float = 0.0
    avg_pressure: float = 0.0
    avg_light_level: float = 0.0
    min_temperature: float | None = None
    max_temperature: float | None = None
    min_humidity: float | None = None
    max_humidity: float | None = None


@dataclass
class _Running:
    values: List[float] = field(default_factory=list)

    def mean(self) -> float:
        return sum(self.values) / len(self.values) if self.values else 0.0


class EnvironmentAggregator:
    """Pure aggregation component; metrics a reading lacks are left out of that metric."""

    def aggregate(self, readings: Iterable[EnvironmentReading]) -> EnvironmentSummary:
        summary = EnvironmentSummary()
        running = {name: _Running() for name in _AVERAGED}

        for reading in readings:
            summary.data_points += 1
            for name in _AVERAGED:
                value = getattr(reading, name)
                if value is not None:
                    running[name].values.append(value)

        for name in _AVERAGED:
            setattr(summary, f"avg_{name}", running[name].mean())

        temperatures = running["temperature"].values
        if temperatures:
            summary.min_temperature = min(temperatures)
            summary.max_temperature = max(temperatures)
        humidities = running["humidity"].values
        if humidities:
            summary.min_humidity = min(humidities)
            summary.max_humidity = max(humidities)

        return summary
