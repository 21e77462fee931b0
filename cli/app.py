from __future__ import annotations

import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import typer

from cli.client import ApiClient
from cli.config import CLIConfig, load_config
from cli.render import render_history, render_report, render_similarity, render_trends


@dataclass
class CLIState:
    config: CLIConfig
    client: ApiClient


app = typer.Typer(
    help="Utilities for interacting with the crowd monitor service.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        raise typer.Exit(code=1)
    return state


def _read_identifier_file(path: Path) -> List[str]:
    lines = path.read_text(encoding="utf-8").splitlines()
    return [line.strip() for line in lines if line.strip()]


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
        help="HTTP timeout in seconds.",
    ),
) -> None:
    """Entry point for the CLI."""
    config = load_config(base_url=base_url, timeout=timeout)
    client = ApiClient(config)
    ctx.obj = CLIState(config=config, client=client)
    ctx.call_on_close(client.close)


@app.command("ingest")
def ingest_command(
    ctx: typer.Context,
    sensor_id: int = typer.Argument(..., help="Sensor (device) id."),
    identifiers: Optional[List[str]] = typer.Argument(None, help="Raw identifiers seen by the sensor."),
    file: Optional[Path] = typer.Option(
        None,
        "--file",
        "-f",
        exists=True,
        dir_okay=False,
        readable=True,
        help="File with one identifier per line.",
    ),
    at: Optional[str] = typer.Option(None, "--at", help="ISO-8601 observation instant."),
) -> None:
    """Report a batch of identifiers for a sensor."""
    state = _get_state(ctx)
    batch = list(identifiers or [])
    if file is not None:
        batch.extend(_read_identifier_file(file))
    if not batch:
        raise typer.BadParameter("Provide identifiers as arguments or with --file.")
    typer.echo(f"Sending {len(batch)} identifier(s) for sensor {sensor_id} ...")
    render_report(state.client.ingest(sensor_id, batch, at=at))


@app.command("latest")
def latest_command(
    ctx: typer.Context,
    sensor_id: int = typer.Argument(..., help="Sensor (device) id."),
) -> None:
    """Show the current crowd state for a sensor."""
    state = _get_state(ctx)
    render_report(state.client.latest(sensor_id))


@app.command("watch")
def watch_command(
    ctx: typer.Context,
    sensor_id: int = typer.Argument(..., help="Sensor (device) id."),
    interval: Optional[float] = typer.Option(
        None,
        "--interval",
        help="Seconds between refreshes (defaults to CLI_POLL_INTERVAL or 5).",
    ),
    count: int = typer.Option(0, "--count", min=0, help="Stop after this many refreshes; 0 runs forever."),
) -> None:
    """Poll the current crowd state for a sensor."""
    state = _get_state(ctx)
    delay = interval if interval is not None else state.config.poll_interval
    shown = 0
    while True:
        render_report(state.client.latest(sensor_id))
        shown += 1
        if count and shown >= count:
            return
        typer.echo()
        time.sleep(delay)


@app.command("history")
def history_command(
    ctx: typer.Context,
    sensor_id: int = typer.Argument(..., help="Sensor (device) id."),
    limit: int = typer.Option(50, "--limit", min=1, max=200, help="Number of snapshots."),
) -> None:
    """Show recorded headcounts for a sensor."""
    state = _get_state(ctx)
    render_history(state.client.history(sensor_id, limit))


@app.command("trends")
def trends_command(
    ctx: typer.Context,
    sensor_id: Optional[int] = typer.Option(None, "--sensor-id", "-s", help="Only this sensor."),
    limit: int = typer.Option(100, "--limit", min=1, max=1000, help="Snapshots to analyse."),
) -> None:
    """Show mobility between consecutive snapshots."""
    state = _get_state(ctx)
    render_trends(state.client.trends(sensor_id, limit))


@app.command("compare")
def compare_command(
    ctx: typer.Context,
    sensor_a: int = typer.Argument(..., help="First sensor id."),
    sensor_b: int = typer.Argument(..., help="Second sensor id."),
    window_seconds: Optional[int] = typer.Option(
        None, "--window", "-w", min=1, help="Look-back window in seconds."
    ),
) -> None:
    """Compare the latest snapshots of two sensors."""
    state = _get_state(ctx)
    render_similarity(state.client.compare(sensor_a, sensor_b, window_seconds))
