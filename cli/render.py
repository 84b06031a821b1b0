from __future__ import annotations

from typing import Any, Dict, Iterable

import typer

_READING_HEADER_KEYS = ("readingId", "deviceId", "timestamp")


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def render_reading(payload: Dict[str, Any], title: str = "Reading") -> None:
    echo_heading(title)
    echo_key_values((key, payload.get(key)) for key in _READING_HEADER_KEYS)

    metrics = [
        (key, value)
        for key, value in payload.items()
        if key not in _READING_HEADER_KEYS and value is not None
    ]
    typer.echo()
    echo_heading("Metrics")
    if metrics:
        echo_key_values(metrics)
    else:
        typer.echo("No metrics reported.")


def render_thresholds(payload: Dict[str, Any]) -> None:
    for index, rule_set in enumerate(("environment", "system")):
        if index:
            typer.echo()
        echo_heading(f"{rule_set.capitalize()} thresholds")
        bounds = payload.get(rule_set) or {}
        for name, value in bounds.items():
            typer.echo(f"  - {name}: {value:g}" if isinstance(value, (int, float)) else f"  - {name}: {value}")
