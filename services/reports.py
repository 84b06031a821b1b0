"""Rendering of system metrics snapshots into report attachments."""

from __future__ import annotations

from typing import Any, List, Mapping, Protocol, Tuple

from services.evaluator import as_number
from services.templating import get_environment

MISSING = "n/a"

Row = Tuple[str, str]


class ReportGenerator(Protocol):
    content_type: str
    extension: str

    def render(self, snapshot: Mapping[str, Any]) -> bytes:
        ...


def _percent(value: Any) -> str:
    number = as_number(value)
    return f"{number:g}%" if number is not None else MISSING


def _megabytes(value: Any) -> str:
    number = as_number(value)
    return f"{number:g} MB" if number is not None else MISSING


def _uptime(value: Any) -> str:
    seconds = as_number(value)
    if not seconds:
        return MISSING
    hours, remainder = divmod(int(seconds), 3600)
    return f"{hours}h {remainder // 60}m"


def device_rows(snapshot: Mapping[str, Any]) -> List[Row]:
    return [
        ("Device ID", str(snapshot.get("deviceId") or MISSING)),
        ("Manufacturer", str(snapshot.get("deviceManufacturer") or MISSING)),
        ("Model", str(snapshot.get("deviceModel") or MISSING)),
        ("Timestamp", str(snapshot.get("timestamp") or MISSING)),
    ]


def metric_rows(snapshot: Mapping[str, Any]) -> List[Row]:
    battery = _percent(snapshot.get("batteryPercent"))
    if snapshot.get("isCharging"):
        battery = f"{battery} (Charging)"
    network = "Online" if snapshot.get("isOnline", True) else "Offline"
    if snapshot.get("networkType"):
        network = f"{network} ({snapshot['networkType']})"
    return [
        ("Battery", battery),
        ("CPU Load", _percent(snapshot.get("cpuLoadPercent"))),
        ("Uptime", _uptime(snapshot.get("uptimeSeconds"))),
        ("Memory Used", _percent(snapshot.get("memoryUsedPercent"))),
        ("Memory Total", _megabytes(snapshot.get("memoryTotalMB"))),
        ("Memory Free", _megabytes(snapshot.get("memoryFreeMB"))),
        ("Brightness", _percent(snapshot.get("brightnessPercent"))),
        ("Volume", _percent(snapshot.get("volumePercent"))),
        ("Network", network),
    ]


class TextReportGenerator:
    """Plain-text system metrics report built from a Jinja2 template."""

    content_type = "text/plain"
    extension = "txt"

    def __init__(self, company_name: str = "Smart Environment Monitor") -> None:
        self.company_name = company_name

    def render(self, snapshot: Mapping[str, Any]) -> bytes:
        template = get_environment().get_template("system_report.txt")
        text = template.render(
            company_name=self.company_name,
            device_rows=device_rows(snapshot),
            metric_rows=metric_rows(snapshot),
        )
        return text.encode("utf-8")
