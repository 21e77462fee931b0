from __future__ import annotations

from typing import Any, Dict, Iterable

import typer

_SEVERITY_COLORS = {
    "safe": typer.colors.GREEN,
    "normal": typer.colors.BLUE,
    "warning": typer.colors.YELLOW,
    "danger": typer.colors.RED,
}


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def render_report(payload: Dict[str, Any]) -> None:
    echo_heading("Crowd Report")
    echo_key_values(
        [
            ("sensor_id", payload.get("sensor_id")),
            ("device_name", payload.get("device_name")),
            ("location", payload.get("location")),
            ("current_count", payload.get("current_count")),
            ("window_length_seconds", payload.get("window_length_seconds")),
            ("evaluated_at", payload.get("evaluated_at")),
        ]
    )
    severity = payload.get("severity")
    typer.echo("severity: ", nl=False)
    typer.secho(str(severity), fg=_SEVERITY_COLORS.get(str(severity)))
    if payload.get("alert_triggered"):
        typer.secho("Alert triggered.", fg=typer.colors.RED, bold=True)

    neighbors = payload.get("neighbors") or []
    typer.echo()
    echo_heading("Forecast")
    if not neighbors:
        typer.echo("No participants.")
    for entry in neighbors:
        typer.echo(
            f"  - {entry.get('participant_id')} ({entry.get('device_name') or 'unknown'}): "
            f"current={entry.get('current')} previous={entry.get('previous')} "
            f"predicted={entry.get('predicted')}"
        )


def render_history(payload: Dict[str, Any]) -> None:
    echo_heading(f"Headcount History (sensor {payload.get('sensor_id')})")
    entries = payload.get("entries") or []
    if not entries:
        typer.echo("No snapshots recorded.")
    for entry in entries:
        typer.echo(
            f"  - {entry.get('created_at')}: {entry.get('headcount')} ({entry.get('severity')})"
        )


def render_trends(payload: Dict[str, Any]) -> None:
    echo_heading("Mobility Trends")
    trends = payload.get("trends") or {}
    if not trends:
        typer.echo("No snapshots available.")
    for sensor_id, steps in trends.items():
        typer.echo(f"sensor {sensor_id}:")
        if not steps:
            typer.echo("  (single snapshot, no trend)")
        for step in steps:
            typer.echo(f"  - {step.get('from')} -> {step.get('to')}: {step.get('mobility')}")


def render_similarity(payload: Dict[str, Any]) -> None:
    echo_heading("Cross-Sensor Mobility")
    echo_key_values(
        [
            ("sensor_a", payload.get("sensor_a")),
            ("sensor_b", payload.get("sensor_b")),
            ("window_seconds", payload.get("window_seconds")),
            ("common_count", payload.get("common_count")),
            ("total_unique_count", payload.get("total_unique_count")),
            ("jaccard", payload.get("jaccard")),
            ("mobility", payload.get("mobility")),
        ]
    )
