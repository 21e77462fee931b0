"""Unit tests for severity classification and the alert decision."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from app.schemas import CrowdSnapshot, Device, Severity, Thresholds
from services.classifier import classify, decide_alert, should_alert

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
DEFAULTS = Thresholds()


@pytest.mark.parametrize(
    ("count", "expected"),
    [
        (0, Severity.safe),
        (49, Severity.safe),
        (50, Severity.normal),
        (79, Severity.normal),
        (80, Severity.warning),
        (119, Severity.warning),
        (120, Severity.danger),
        (10_000, Severity.danger),
    ],
)
def test_classify_bands_are_inclusive_at_breakpoints(count: int, expected: Severity) -> None:
    assert classify(count, DEFAULTS) is expected


def test_classify_danger_dominates_malformed_breakpoints() -> None:
    # Bypass validation to mimic a corrupted configuration.
    malformed = Thresholds.model_construct(safe=500, normal=400, warning=300, danger=100)

    for count in (100, 150, 350, 1000):
        assert classify(count, malformed) is Severity.danger


def test_classify_out_of_order_prefers_more_severe_band() -> None:
    malformed = Thresholds.model_construct(safe=10, normal=90, warning=60, danger=200)

    assert classify(95, malformed) is Severity.warning
    assert classify(70, malformed) is Severity.warning
    assert classify(59, malformed) is Severity.safe


def test_should_alert_only_for_warning_and_danger() -> None:
    assert should_alert(Severity.warning)
    assert should_alert(Severity.danger)
    assert not should_alert(Severity.normal)
    assert not should_alert(Severity.safe)


def _device() -> Device:
    return Device(
        device_id=7,
        device_name="Gate",
        location="North",
        created_at=T0,
        thresholds=DEFAULTS,
    )


def _snapshot(severity: Severity, headcount: int) -> CrowdSnapshot:
    return CrowdSnapshot(
        snapshot_id="snap-1",
        sensor_id=7,
        headcount=headcount,
        severity=severity,
        tokens=[],
        created_at=T0,
    )


def test_decide_alert_builds_alert_and_payload() -> None:
    decision = decide_alert(_device(), _snapshot(Severity.warning, 85), T0)

    assert decision.should_alert is True
    assert decision.alert is not None
    assert decision.alert.level is Severity.warning
    assert decision.alert.snapshot_id == "snap-1"
    assert decision.alert.alert_type == "density"
    assert decision.payload is not None
    assert decision.payload.headcount == 85
    assert decision.payload.message == (
        "Device Gate (North) detected a warning event with headcount 85."
    )


def test_decide_alert_is_stateless_across_repeated_windows() -> None:
    first = decide_alert(_device(), _snapshot(Severity.danger, 130), T0)
    second = decide_alert(_device(), _snapshot(Severity.danger, 131), T0)

    assert first.should_alert and second.should_alert


def test_decide_alert_skips_safe_snapshot() -> None:
    decision = decide_alert(_device(), _snapshot(Severity.normal, 55), T0)

    assert decision.should_alert is False
    assert decision.alert is None
    assert decision.payload is None


def test_severity_rank_is_a_total_order_that_classify_respects() -> None:
    assert sorted(Severity, key=lambda severity: severity.rank) == [
        Severity.safe,
        Severity.normal,
        Severity.warning,
        Severity.danger,
    ]

    ranks = [classify(count, DEFAULTS).rank for count in range(0, 200)]
    assert ranks == sorted(ranks)
    assert [severity for severity in Severity if should_alert(severity)] == [
        severity for severity in Severity if severity.rank >= Severity.warning.rank
    ]
