"""Threshold evaluation for environment and system readings.

Rule sets are plain data: an ordered tuple of rule declarations plus the
channel metadata used when their alerts are dispatched. ``evaluate`` walks
the declarations in order, so the output order and the alert keys are stable
across calls, which the cooldown gate relies on.
"""

from __future__ import annotations

import math
import operator
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from models.records import AlertCandidate, AlertLevel, Reading
from services.thresholds import ENVIRONMENT, SYSTEM, ThresholdConfig

Comparison = Callable[[float, float], bool]


def as_number(value: Any) -> Optional[float]:
    """Return ``value`` as a float, or ``None`` when it is not a usable number."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if isinstance(value, int):
        try:
            return float(value)
        except OverflowError:
            return None
    if not math.isfinite(value):
        return None
    return value


@dataclass(frozen=True)
class Check:
    key: str
    level: AlertLevel
    bound: str
    compare: Comparison
    template: str


@dataclass(frozen=True)
class MetricRule:
    """One metric compared against one or more bounds; first match wins."""

    metric: str
    attribute: str
    checks: Tuple[Check, ...]

    def evaluate(self, reading: Reading, config: ThresholdConfig) -> Optional[AlertCandidate]:
        value = as_number(getattr(reading, self.attribute, None))
        if value is None:
            return None
        for check in self.checks:
            threshold = config.bounds.get(check.bound)
            if threshold is None or not check.compare(value, threshold):
                continue
            return AlertCandidate(
                key=check.key,
                metric=self.metric,
                level=check.level,
                value=value,
                threshold=threshold,
                device_id=reading.device_id,
                message=check.template.format(value=value, threshold=threshold),
            )
        return None


@dataclass(frozen=True)
class SustainedRule:
    """A metric above its bound AND a duration field above its own bound.

    The duration field is taken literally; for system readings that is the
    host uptime, not the time spent under load.
    """

    key: str
    metric: str
    attribute: str
    bound: str
    duration_attribute: str
    duration_bound: str
    level: AlertLevel
    template: str

    def evaluate(self, reading: Reading, config: ThresholdConfig) -> Optional[AlertCandidate]:
        value = as_number(getattr(reading, self.attribute, None))
        duration = as_number(getattr(reading, self.duration_attribute, None))
        if value is None or duration is None:
            return None
        threshold = config.bounds.get(self.bound)
        min_duration = config.bounds.get(self.duration_bound)
        if threshold is None or min_duration is None:
            return None
        if not (value >= threshold and duration >= min_duration):
            return None
        return AlertCandidate(
            key=self.key,
            metric=self.metric,
            level=self.level,
            value=value,
            threshold=f">= {threshold:g}% for >= {min_duration:g}s uptime",
            device_id=reading.device_id,
            message=self.template.format(
                value=value,
                threshold=threshold,
                hours=duration / 3600,
                min_hours=min_duration / 3600,
            ),
        )


Rule = Union[MetricRule, SustainedRule]


@dataclass(frozen=True)
class RuleSet:
    name: str
    rules: Tuple[Rule, ...]
    reading_topic: str
    alert_topic: str
    subject_prefix: str
    attach_report: bool = False


def _high(key: str, bound: str, template: str) -> Check:
    return Check(key=key, level=AlertLevel.high, bound=bound, compare=operator.ge, template=template)


def _low(key: str, bound: str, template: str) -> Check:
    return Check(key=key, level=AlertLevel.low, bound=bound, compare=operator.le, template=template)


ENVIRONMENT_RULES = RuleSet(
    name=ENVIRONMENT,
    rules=(
        MetricRule(
            metric="temperature",
            attribute="temperature",
            checks=(
                _high(
                    "temperatureHigh",
                    "temperatureHigh",
                    "High temperature detected: {value:.1f}°C (≥ {threshold:g}°C)",
                ),
                _low(
                    "temperatureLow",
                    "temperatureLow",
                    "Low temperature detected: {value:.1f}°C (≤ {threshold:g}°C)",
                ),
            ),
        ),
        MetricRule(
            metric="humidity",
            attribute="humidity",
            checks=(
                _high("humidityHigh", "humidityHigh", "High humidity: {value:.1f}% (≥ {threshold:g}%)"),
                _low("humidityLow", "humidityLow", "Low humidity: {value:.1f}% (≤ {threshold:g}%)"),
            ),
        ),
        MetricRule(
            metric="airQuality",
            attribute="air_quality",
            checks=(
                _high(
                    "airQualityHigh",
                    "airQualityHigh",
                    "Poor air quality detected: AQI {value:g} (≥ {threshold:g})",
                ),
            ),
        ),
        MetricRule(
            metric="pressure",
            attribute="pressure",
            checks=(
                _high("pressureHigh", "pressureHigh", "High pressure: {value:.0f} hPa (≥ {threshold:g})"),
                _low("pressureLow", "pressureLow", "Low pressure: {value:.0f} hPa (≤ {threshold:g})"),
            ),
        ),
        MetricRule(
            metric="lightLevel",
            attribute="light_level",
            checks=(
                _high("lightHigh", "lightLevelHigh", "High light level: {value:.0f} (≥ {threshold:g})"),
            ),
        ),
    ),
    reading_topic="newEnvironmentData",
    alert_topic="alerts",
    subject_prefix="Environment Alert",
)

SYSTEM_RULES = RuleSet(
    name=SYSTEM,
    rules=(
        MetricRule(
            metric="batteryPercent",
            attribute="battery_percent",
            checks=(
                Check(
                    key="batteryLow85",
                    level=AlertLevel.warning,
                    bound="batteryLow",
                    compare=operator.le,
                    template="Battery is low: {value:.0f}% (≤ {threshold:g}%)",
                ),
            ),
        ),
        SustainedRule(
            key="cpuHighSustained",
            metric="cpuLoadPercent",
            attribute="cpu_load_percent",
            bound="cpuLoadHigh",
            duration_attribute="uptime_seconds",
            duration_bound="cpuSustainedSeconds",
            level=AlertLevel.warning,
            template=(
                "Sustained high CPU load: {value:.0f}% (≥ {threshold:g}%) "
                "with uptime {hours:.1f}h (≥ {min_hours:g}h)"
            ),
        ),
        MetricRule(
            metric="volumePercent",
            attribute="volume_percent",
            checks=(
                _high("volumeHigh", "volumeHigh", "High volume level: {value:.0f}% (≥ {threshold:g}%)"),
            ),
        ),
        MetricRule(
            metric="memoryUsedPercent",
            attribute="memory_used_percent",
            checks=(
                _high("memoryHigh", "memoryHigh", "High memory usage: {value:.0f}% (≥ {threshold:g}%)"),
            ),
        ),
    ),
    reading_topic="systemMetrics",
    alert_topic="systemAlerts",
    subject_prefix="System Alert",
    attach_report=True,
)

RULE_SETS: Dict[str, RuleSet] = {
    ENVIRONMENT_RULES.name: ENVIRONMENT_RULES,
    SYSTEM_RULES.name: SYSTEM_RULES,
}


def rule_set_for(reading: Reading) -> RuleSet:
    return RULE_SETS[reading.kind]


def evaluate(
    reading: Reading,
    config: ThresholdConfig,
    rule_set: Optional[RuleSet] = None,
) -> List[AlertCandidate]:
    """Map a reading to its alert candidates in rule declaration order."""
    rules: Sequence[Rule] = (rule_set or rule_set_for(reading)).rules
    candidates: List[AlertCandidate] = []
    for rule in rules:
        candidate = rule.evaluate(reading, config)
        if candidate is not None:
            candidates.append(candidate)
    return candidates
