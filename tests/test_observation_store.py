"""Unit tests for the observation store."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from app.schemas import Alert, CrowdSnapshot, Severity
from services.aggregator import window
from services.errors import StorageUnavailable
from storage.observation_store import ObservationStore

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
MINUTE = timedelta(seconds=60)


def _snapshot(snapshot_id: str, sensor_id: int, offset_seconds: int) -> CrowdSnapshot:
    return CrowdSnapshot(
        snapshot_id=snapshot_id,
        sensor_id=sensor_id,
        headcount=1,
        severity=Severity.safe,
        tokens=["t"],
        created_at=T0 + timedelta(seconds=offset_seconds),
    )


def test_record_dedupes_within_batch() -> None:
    store = ObservationStore()

    added = store.record(1, ["a", "a", "b"], T0)

    assert added == 2
    assert store.distinct_count([1], window(T0, MINUTE)) == {1: 2}


def test_record_is_idempotent_for_same_instant() -> None:
    store = ObservationStore()
    store.record(1, ["a"], T0)

    assert store.record(1, ["a"], T0) == 0
    assert store.record(1, ["a"], T0 + timedelta(seconds=1)) == 1
    assert store.distinct_count([1], window(T0 + timedelta(seconds=1), MINUTE)) == {1: 1}


def test_distinct_count_is_batched_and_per_sensor() -> None:
    store = ObservationStore()
    store.record(1, ["a", "b"], T0)
    store.record(2, ["a"], T0)

    counts = store.distinct_count([1, 2, 3], window(T0, MINUTE))

    assert counts == {1: 2, 2: 1, 3: 0}


def test_out_of_order_sightings_are_counted_in_the_right_window() -> None:
    store = ObservationStore()
    store.record(1, ["late"], T0)
    store.record(1, ["early"], T0 - timedelta(seconds=90))

    assert store.distinct_count([1], window(T0, MINUTE, 0)) == {1: 1}
    assert store.distinct_count([1], window(T0, MINUTE, 1)) == {1: 1}


def test_transaction_reads_see_staged_sightings() -> None:
    store = ObservationStore()
    store.record(1, ["a"], T0 - timedelta(seconds=1))

    with store.transaction() as txn:
        txn.record(1, ["a", "b"], T0)
        assert txn.distinct_count([1], window(T0, MINUTE)) == {1: 2}

    assert store.distinct_count([1], window(T0, MINUTE)) == {1: 2}


def test_transaction_discards_writes_on_error() -> None:
    store = ObservationStore()

    with pytest.raises(RuntimeError):
        with store.transaction() as txn:
            txn.record(1, ["a"], T0)
            txn.add_snapshot(_snapshot("s1", 1, 0))
            raise RuntimeError("boom")

    assert store.distinct_count([1], window(T0, MINUTE)) == {1: 0}
    assert store.snapshots() == []


def test_lock_timeout_surfaces_storage_unavailable() -> None:
    store = ObservationStore(lock_timeout=0.01)
    store._lock.acquire()
    try:
        with pytest.raises(StorageUnavailable):
            store.distinct_count([1], window(T0, MINUTE))
        with pytest.raises(StorageUnavailable):
            store.record(1, ["a"], T0)
    finally:
        store._lock.release()

    assert store.distinct_count([1], window(T0, MINUTE)) == {1: 0}


def test_failed_persist_leaves_memory_untouched(tmp_path: Path) -> None:
    path = tmp_path / "store.json"
    store = ObservationStore(persistence_path=path)
    path.mkdir()

    with pytest.raises(StorageUnavailable):
        store.record(1, ["a"], T0)

    assert store.distinct_count([1], window(T0, MINUTE)) == {1: 0}


def test_persists_and_reloads(tmp_path: Path) -> None:
    path = tmp_path / "store.json"
    store = ObservationStore(persistence_path=path)
    store.record(1, ["a", "b"], T0, rssi=-60)
    store.add_snapshot(_snapshot("s1", 1, 0))
    store.add_alert(
        Alert(
            alert_id="a1",
            sensor_id=1,
            snapshot_id="s1",
            level=Severity.danger,
            message="crowded",
            created_at=T0,
        )
    )

    payload = json.loads(path.read_text())
    assert len(payload["sightings"]) == 2
    assert payload["snapshots"][0]["snapshot_id"] == "s1"

    reloaded = ObservationStore(persistence_path=path)
    assert reloaded.distinct_count([1], window(T0, MINUTE)) == {1: 2}
    assert reloaded.record(1, ["a"], T0) == 0
    assert [item.snapshot_id for item in reloaded.snapshots()] == ["s1"]
    assert [item.alert_id for item in reloaded.alerts(sensor_id=1)] == ["a1"]


def test_corrupt_file_loads_empty(tmp_path: Path) -> None:
    path = tmp_path / "store.json"
    path.write_text("{not json")

    store = ObservationStore(persistence_path=path)

    assert store.snapshots() == []


def test_snapshots_are_newest_first_and_filtered() -> None:
    store = ObservationStore()
    store.add_snapshot(_snapshot("old", 1, 0))
    store.add_snapshot(_snapshot("new", 1, 30))
    store.add_snapshot(_snapshot("other", 2, 10))

    assert [item.snapshot_id for item in store.snapshots()] == ["new", "other", "old"]
    assert [item.snapshot_id for item in store.snapshots(sensor_id=1)] == ["new", "old"]
    assert [item.snapshot_id for item in store.snapshots(limit=1)] == ["new"]


def test_snapshots_are_deep_copies() -> None:
    store = ObservationStore()
    store.add_snapshot(_snapshot("s1", 1, 0))

    fetched = store.snapshots()[0]
    fetched.tokens.append("mutated")

    assert store.snapshots()[0].tokens == ["t"]


def test_latest_snapshot_respects_cutoff() -> None:
    store = ObservationStore()
    store.add_snapshot(_snapshot("old", 1, 0))
    store.add_snapshot(_snapshot("new", 1, 30))

    latest = store.latest_snapshot(1, since=T0)
    assert latest is not None and latest.snapshot_id == "new"
    assert store.latest_snapshot(1, since=T0 + timedelta(seconds=31)) is None
    assert store.latest_snapshot(2, since=T0) is None


def test_distinct_count_accepts_a_single_sensor_id() -> None:
    store = ObservationStore()
    store.record(1, ["a", "b"], T0)

    assert store.distinct_count(1, window(T0, MINUTE)) == {1: 2}
    with store.transaction() as txn:
        txn.record(1, ["c"], T0)
        assert txn.distinct_count(1, window(T0, MINUTE)) == {1: 3}


def test_retention_evicts_old_sightings_from_memory_and_disk(tmp_path: Path) -> None:
    path = tmp_path / "store.json"
    store = ObservationStore(persistence_path=path, retention=2 * MINUTE)
    store.record(1, ["stale-a", "stale-b"], T0 - timedelta(days=1))
    store.record(2, ["stale-c"], T0 - 2 * MINUTE)
    store.record(1, ["previous"], T0 - timedelta(seconds=90))
    store.add_snapshot(_snapshot("old", 1, -86_400))

    store.record(1, ["fresh"], T0)

    wide = window(T0, timedelta(days=2))
    assert store.distinct_count([1, 2], wide) == {1: 2, 2: 0}
    assert store.distinct_count(1, window(T0, MINUTE, 1)) == {1: 1}
    assert len(store._keys) == 2
    payload = json.loads(path.read_text())
    assert sorted(item["token"] for item in payload["sightings"]) == ["fresh", "previous"]
    assert [item.snapshot_id for item in store.snapshots()] == ["old"]

    reloaded = ObservationStore(persistence_path=path, retention=2 * MINUTE)
    assert reloaded.distinct_count([1], wide) == {1: 2}


def test_retention_cutoff_follows_newest_sighting_not_wall_clock() -> None:
    store = ObservationStore(retention=2 * MINUTE)
    store.record(1, ["a"], T0 - timedelta(seconds=100))
    store.record(1, ["b"], T0)

    assert store.distinct_count([1], window(T0, timedelta(hours=1))) == {1: 2}


def test_store_without_retention_keeps_everything() -> None:
    store = ObservationStore()
    store.record(1, ["ancient"], T0 - timedelta(days=365))
    store.record(1, ["now"], T0)

    assert store.distinct_count([1], window(T0, timedelta(days=400))) == {1: 2}
