"""Unit tests for the threshold evaluator."""

from __future__ import annotations

from datetime import datetime, timezone

from models.records import AlertLevel, EnvironmentReading, SystemReading
from services.evaluator import ENVIRONMENT_RULES, SYSTEM_RULES, evaluate
from services.thresholds import ENVIRONMENT, SYSTEM, ThresholdConfig, default_config


def _environment(device_id: str = "d1", **fields) -> EnvironmentReading:
    return EnvironmentReading(
        reading_id="reading-1",
        device_id=device_id,
        timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
        **fields,
    )


def _system(device_id: str = "laptop1", **fields) -> SystemReading:
    return SystemReading(
        reading_id="reading-2",
        device_id=device_id,
        timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
        **fields,
    )


def test_high_temperature_yields_single_candidate() -> None:
    candidates = evaluate(_environment(temperature=36, humidity=50), default_config(ENVIRONMENT))

    assert len(candidates) == 1
    candidate = candidates[0]
    assert candidate.key == "temperatureHigh"
    assert candidate.metric == "temperature"
    assert candidate.level is AlertLevel.high
    assert candidate.value == 36
    assert candidate.threshold == 35
    assert candidate.device_id == "d1"
    assert candidate.message == "High temperature detected: 36.0°C (≥ 35°C)"


def test_low_bounds_fire_when_high_does_not() -> None:
    candidates = evaluate(
        _environment(temperature=-5, humidity=10, pressure=850),
        default_config(ENVIRONMENT),
    )

    assert [c.key for c in candidates] == ["temperatureLow", "humidityLow", "pressureLow"]
    assert all(c.level is AlertLevel.low for c in candidates)


def test_environment_candidates_follow_declaration_order() -> None:
    reading = _environment(
        light_level=950,
        pressure=1150,
        air_quality=200,
        humidity=90,
        temperature=40,
    )

    candidates = evaluate(reading, default_config(ENVIRONMENT))

    assert [c.key for c in candidates] == [
        "temperatureHigh",
        "humidityHigh",
        "airQualityHigh",
        "pressureHigh",
        "lightHigh",
    ]
    assert [c.metric for c in candidates] == [
        "temperature",
        "humidity",
        "airQuality",
        "pressure",
        "lightLevel",
    ]


def test_absent_and_malformed_values_are_skipped() -> None:
    reading = _environment(
        temperature=None,
        humidity="95",
        air_quality=True,
        pressure=float("nan"),
        light_level=float("inf"),
    )

    assert evaluate(reading, default_config(ENVIRONMENT)) == []


def test_oversized_integers_are_skipped() -> None:
    reading = _environment(temperature=10**400, pressure=1200)

    candidates = evaluate(reading, default_config(ENVIRONMENT))

    assert [c.key for c in candidates] == ["pressureHigh"]
    assert candidates[0].value == 1200.0


def test_high_wins_when_bounds_overlap() -> None:
    config = ThresholdConfig(bounds={"temperatureHigh": 10.0, "temperatureLow": 20.0})

    candidates = evaluate(_environment(temperature=15), config)

    assert [c.key for c in candidates] == ["temperatureHigh"]


def test_no_metric_yields_both_high_and_low() -> None:
    config = ThresholdConfig(
        bounds={
            "temperatureHigh": 0.0,
            "temperatureLow": 100.0,
            "humidityHigh": 0.0,
            "humidityLow": 100.0,
            "pressureHigh": 0.0,
            "pressureLow": 2000.0,
        }
    )

    candidates = evaluate(_environment(temperature=20, humidity=50, pressure=1000), config)

    metrics = [c.metric for c in candidates]
    assert len(metrics) == len(set(metrics))
    assert all(c.level is AlertLevel.high for c in candidates)


def test_missing_bound_in_config_is_skipped() -> None:
    config = ThresholdConfig(bounds={"humidityHigh": 85.0})

    candidates = evaluate(_environment(temperature=60, humidity=90), config)

    assert [c.key for c in candidates] == ["humidityHigh"]


def test_evaluation_is_repeatable() -> None:
    reading = _environment(temperature=45, air_quality=300, light_level=990)
    config = default_config(ENVIRONMENT)

    assert evaluate(reading, config) == evaluate(reading, config)


def test_battery_below_floor_yields_warning() -> None:
    candidates = evaluate(_system(battery_percent=80), default_config(SYSTEM))

    assert len(candidates) == 1
    assert candidates[0].key == "batteryLow85"
    assert candidates[0].level is AlertLevel.warning
    assert candidates[0].metric == "batteryPercent"
    assert candidates[0].threshold == 85


def test_battery_above_floor_is_quiet() -> None:
    assert evaluate(_system(battery_percent=90), default_config(SYSTEM)) == []


def test_sustained_load_requires_both_fields() -> None:
    config = default_config(SYSTEM)

    sustained = evaluate(_system(cpu_load_percent=95, uptime_seconds=8000), config)
    short_uptime = evaluate(_system(cpu_load_percent=95, uptime_seconds=100), config)
    low_load = evaluate(_system(cpu_load_percent=50, uptime_seconds=9000), config)
    no_uptime = evaluate(_system(cpu_load_percent=99), config)

    assert [c.key for c in sustained] == ["cpuHighSustained"]
    assert sustained[0].value == 95
    assert sustained[0].threshold == ">= 90% for >= 7200s uptime"
    assert short_uptime == []
    assert low_load == []
    assert no_uptime == []


def test_system_candidates_follow_declaration_order() -> None:
    reading = _system(
        memory_used_percent=97,
        volume_percent=95,
        cpu_load_percent=92,
        uptime_seconds=10_000,
        battery_percent=20,
    )

    candidates = evaluate(reading, default_config(SYSTEM))

    assert [c.key for c in candidates] == [
        "batteryLow85",
        "cpuHighSustained",
        "volumeHigh",
        "memoryHigh",
    ]


def test_explicit_rule_set_overrides_reading_kind() -> None:
    reading = _environment(temperature=50)

    assert evaluate(reading, default_config(SYSTEM), SYSTEM_RULES) == []
    assert len(evaluate(reading, default_config(ENVIRONMENT), ENVIRONMENT_RULES)) == 1


def test_candidate_payload_uses_wire_names() -> None:
    candidate = evaluate(_environment(temperature=36), default_config(ENVIRONMENT))[0]

    payload = candidate.to_payload()

    assert payload["deviceId"] == "d1"
    assert payload["level"] == "high"
    assert payload["key"] == "temperatureHigh"
