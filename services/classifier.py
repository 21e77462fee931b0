"""Severity classification and the alert decision."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from uuid import uuid4

from app.schemas import Alert, AlertPayload, CrowdSnapshot, Device, Severity, Thresholds

ALERT_LEVELS = frozenset({Severity.warning, Severity.danger})


def classify(count: int, thresholds: Thresholds) -> Severity:
    """Map ``count`` to the highest band whose breakpoint it reaches.

    Bands are tested from danger downwards with inclusive comparisons, so a
    count equal to a breakpoint lands in the higher band and an inconsistent
    configuration still resolves to the most severe matching label.
    """
    if count >= thresholds.danger:
        return Severity.danger
    if count >= thresholds.warning:
        return Severity.warning
    if count >= thresholds.normal:
        return Severity.normal
    return Severity.safe


def should_alert(severity: Severity) -> bool:
    # Every qualifying event alerts; there is no suppression across windows.
    return severity in ALERT_LEVELS


@dataclass(frozen=True)
class AlertDecision:
    should_alert: bool
    alert: Optional[Alert] = None
    payload: Optional[AlertPayload] = None


def alert_message(device: Device, severity: Severity, headcount: int) -> str:
    return (
        f"Device {device.device_name} ({device.location}) detected a {severity.value} "
        f"event with headcount {headcount}."
    )


def decide_alert(device: Device, snapshot: CrowdSnapshot, now: datetime) -> AlertDecision:
    """Build the alert record and webhook payload when ``snapshot`` qualifies."""
    if not should_alert(snapshot.severity):
        return AlertDecision(should_alert=False)

    message = alert_message(device, snapshot.severity, snapshot.headcount)
    alert = Alert(
        alert_id=str(uuid4()),
        sensor_id=device.device_id,
        snapshot_id=snapshot.snapshot_id,
        level=snapshot.severity,
        message=message,
        created_at=now,
    )
    payload = AlertPayload(
        device_id=device.device_id,
        device_name=device.device_name,
        location=device.location,
        snapshot_id=snapshot.snapshot_id,
        headcount=snapshot.headcount,
        severity=snapshot.severity,
        message=message,
        timestamp=now,
    )
    return AlertDecision(should_alert=True, alert=alert, payload=payload)
