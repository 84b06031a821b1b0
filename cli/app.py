from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

import typer

from cli.client import ApiClient
from cli.config import CLIConfig, load_config
from cli.render import render_reading, render_thresholds


class ReadingKind(str, Enum):
    environment = "environment"
    system = "system"


@dataclass
class CLIState:
    config: CLIConfig
    client: ApiClient


app = typer.Typer(
    help="Utilities for interacting with the telemetry alert service.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        typer.secho("CLI state is uninitialized.", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    return state


@app.callback()
def main(
    ctx: typer.Context,
    base_url: Optional[str] = typer.Option(
        None,
        "--base-url",
        "-b",
        help="Service base URL (defaults to API_BASE_URL env or http://localhost:8000).",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="Seconds to wait for each HTTP request.",
    ),
) -> None:
    """Entry point for the CLI."""
    config = load_config(base_url=base_url, timeout=timeout)
    client = ApiClient(config)
    ctx.obj = CLIState(config=config, client=client)
    ctx.call_on_close(client.close)


def _ingest(ctx: typer.Context, kind: ReadingKind, file: Path) -> None:
    state = _get_state(ctx)
    typer.echo(f"Posting {kind.value} reading from {file} to {state.config.base_url} ...")
    stored = state.client.post_reading(kind.value, file)
    typer.secho(f"Reading stored. readingId={stored.get('readingId')}", fg=typer.colors.GREEN)
    typer.echo()
    render_reading(stored)


@app.command("ingest-environment")
def ingest_environment_command(
    ctx: typer.Context,
    file: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True, help="JSON reading file."),
) -> None:
    """Post an environment reading."""
    _ingest(ctx, ReadingKind.environment, file)


@app.command("ingest-system")
def ingest_system_command(
    ctx: typer.Context,
    file: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True, help="JSON metrics file."),
) -> None:
    """Post system metrics for a device."""
    _ingest(ctx, ReadingKind.system, file)


@app.command("latest")
def latest_command(
    ctx: typer.Context,
    kind: ReadingKind = typer.Argument(..., help="Which reading stream to show."),
) -> None:
    """Show the most recent reading of a stream."""
    state = _get_state(ctx)
    payload = state.client.get_latest(kind.value)
    render_reading(payload, title=f"Latest {kind.value} reading")


@app.command("thresholds")
def thresholds_command(ctx: typer.Context) -> None:
    """Show the alert thresholds currently in effect."""
    state = _get_state(ctx)
    render_thresholds(state.client.get_thresholds())
