from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict

import httpx
import typer

from cli.config import CLIConfig

_INGEST_PATHS = {
    "environment": "/environment",
    "system": "/system/metrics",
}


class ApiClient:
    """Minimal HTTP client for the alert service."""

    def __init__(self, config: CLIConfig) -> None:
        self._config = config
        self._client = httpx.Client(base_url=config.base_url, timeout=config.timeout)

    def close(self) -> None:
        self._client.close()

    def post_reading(self, kind: str, path: Path) -> Dict[str, Any]:
        try:
            payload = json.loads(path.read_text())
        except json.JSONDecodeError as exc:
            raise typer.BadParameter(f"File {path} is not valid JSON: {exc}") from exc
        if not isinstance(payload, dict):
            raise typer.BadParameter(f"File {path} must contain a JSON object.")

        try:
            response = self._client.post(_INGEST_PATHS[kind], json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        return response.json()

    def get_latest(self, kind: str) -> Dict[str, Any]:
        try:
            response = self._client.get(f"/{kind}/latest")
            if response.status_code == 404:
                raise typer.BadParameter(f"No {kind} readings have been stored yet.")
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        return response.json()

    def get_thresholds(self) -> Dict[str, Any]:
        try:
            response = self._client.get("/thresholds")
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        return response.json()

    @staticmethod
    def _handle_http_error(exc: httpx.HTTPStatusError) -> None:
        detail: Any = None
        try:
            data = exc.response.json()
            detail = data.get("detail")
        except Exception:  # noqa: BLE001 - best effort parsing
            detail = exc.response.text.strip()
        message = (
            f"Request failed with status {exc.response.status_code}: {detail or 'no detail provided.'}"
        )
        typer.secho(message, fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
