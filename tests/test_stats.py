from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from models.records import EnvironmentReading
from services.stats import EnvironmentAggregator, EnvironmentSummary, period_start

NOW = datetime(2024, 1, 2, tzinfo=timezone.utc)


def _reading(reading_id: str, **fields) -> EnvironmentReading:
    return EnvironmentReading(reading_id=reading_id, device_id="d1", timestamp=NOW, **fields)


def test_empty_batch_reports_zero_averages() -> None:
    assert EnvironmentAggregator().aggregate([]) == EnvironmentSummary()


def test_averages_skip_missing_metrics() -> None:
    summary = EnvironmentAggregator().aggregate(
        [
            _reading("r1", temperature=18.0, humidity=30.0, light_level=400.0),
            _reading("r2", temperature=24.0),
            _reading("r3", humidity=50.0, air_quality=60.0),
        ]
    )

    assert summary.data_points == 3
    assert summary.avg_temperature == pytest.approx(21.0)
    assert summary.avg_humidity == pytest.approx(40.0)
    assert summary.avg_air_quality == pytest.approx(60.0)
    assert summary.avg_light_level == pytest.approx(400.0)
    assert summary.avg_pressure == 0.0
    assert (summary.min_temperature, summary.max_temperature) == (18.0, 24.0)
    assert (summary.min_humidity, summary.max_humidity) == (30.0, 50.0)


@pytest.mark.parametrize(
    ("period", "expected"),
    [
        ("1h", timedelta(hours=1)),
        ("7d", timedelta(days=7)),
        ("30d", timedelta(days=30)),
        (None, timedelta(hours=24)),
        ("fortnight", timedelta(hours=24)),
    ],
)
def test_period_start(period, expected) -> None:
    assert period_start(period, NOW) == NOW - expected
