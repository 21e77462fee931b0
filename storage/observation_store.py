from __future__ import annotations

import json
import logging
from bisect import bisect_right
from contextlib import contextmanager
from datetime import datetime, timedelta
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Iterable, Iterator, List, Optional, Set, Tuple, Union

from app.schemas import Alert, CrowdSnapshot
from models.records import Sighting, Window, as_utc
from services.errors import StorageUnavailable
from settings import get_settings

logger = logging.getLogger(__name__)

_SightingKey = Tuple[int, str, datetime]
SensorIds = Union[int, Iterable[int]]


def _as_ids(sensor_ids: SensorIds) -> Iterable[int]:
    if isinstance(sensor_ids, int):
        return (sensor_ids,)
    return sensor_ids


class StoreTransaction:
    """Writes staged against an :class:`ObservationStore` until commit.

    Reads through the transaction see committed data plus everything staged
    so far, so a headcount computed inside the transaction includes the
    sightings it just recorded.
    """

    def __init__(self, store: "ObservationStore") -> None:
        self._store = store
        self.sightings: List[Sighting] = []
        self.snapshots: List[CrowdSnapshot] = []
        self.alerts: List[Alert] = []
        self._keys: Set[_SightingKey] = set()

    def record(
        self,
        sensor_id: int,
        tokens: Iterable[str],
        at: datetime,
        rssi: Optional[int] = None,
    ) -> int:
        """Stage one sighting per distinct token; return how many were new."""
        instant = as_utc(at)
        added = 0
        for token in tokens:
            key = (sensor_id, token, instant)
            if key in self._keys or self._store._has_key(key):
                continue
            self._keys.add(key)
            self.sightings.append(
                Sighting(token=token, sensor_id=sensor_id, observed_at=instant, rssi=rssi)
            )
            added += 1
        return added

    def distinct_count(self, sensor_ids: SensorIds, window: Window) -> Dict[int, int]:
        counts: Dict[int, int] = {}
        for sensor_id in _as_ids(sensor_ids):
            tokens = self._store._distinct_tokens(sensor_id, window)
            tokens.update(
                sighting.token
                for sighting in self.sightings
                if sighting.sensor_id == sensor_id and window.contains(sighting.observed_at)
            )
            counts[sensor_id] = len(tokens)
        return counts

    def add_snapshot(self, snapshot: CrowdSnapshot) -> None:
        self.snapshots.append(snapshot.model_copy(deep=True))

    def add_alert(self, alert: Alert) -> None:
        self.alerts.append(alert.model_copy(deep=True))


class ObservationStore:
    """Append-only sighting log with crowd snapshots and alerts.

    Sightings are kept per sensor in observation-time order so window counts
    are two bisections and a slice. Every public operation takes the store
    lock with a bounded wait and raises :class:`StorageUnavailable` when the
    wait expires or the persistence file cannot be written.

    With a ``retention`` set, sightings older than that span before the newest
    sighting are evicted on every commit and are not written to disk.
    Snapshots and alerts are kept.
    """

    def __init__(
        self,
        persistence_path: Optional[Path] = None,
        lock_timeout: float = 5.0,
        retention: Optional[timedelta] = None,
    ) -> None:
        self.persistence_path = persistence_path
        self.lock_timeout = lock_timeout
        self.retention = retention
        self._lock = Lock()
        self._times: Dict[int, List[datetime]] = {}
        self._sightings: Dict[int, List[Sighting]] = {}
        self._keys: Set[_SightingKey] = set()
        self._snapshots: List[CrowdSnapshot] = []
        self._alerts: List[Alert] = []
        if persistence_path:
            persistence_path.parent.mkdir(parents=True, exist_ok=True)
            self._load_from_disk()
            cutoff = self._retention_cutoff()
            if cutoff is not None:
                self._prune(cutoff)

    @contextmanager
    def transaction(self) -> Iterator[StoreTransaction]:
        """Stage writes and commit them atomically when the block exits cleanly."""
        with self._locked():
            txn = StoreTransaction(self)
            yield txn
            self._commit(txn)

    def record(
        self,
        sensor_id: int,
        tokens: Iterable[str],
        at: datetime,
        rssi: Optional[int] = None,
    ) -> int:
        with self.transaction() as txn:
            return txn.record(sensor_id, tokens, at, rssi=rssi)

    def distinct_count(self, sensor_ids: SensorIds, window: Window) -> Dict[int, int]:
        """Distinct tokens per sensor inside ``window``; one id or many."""
        with self._locked():
            return {
                sensor_id: len(self._distinct_tokens(sensor_id, window))
                for sensor_id in _as_ids(sensor_ids)
            }

    def add_snapshot(self, snapshot: CrowdSnapshot) -> None:
        with self.transaction() as txn:
            txn.add_snapshot(snapshot)

    def snapshots(
        self, sensor_id: Optional[int] = None, limit: Optional[int] = None
    ) -> List[CrowdSnapshot]:
        """Return stored snapshots newest first, optionally for one sensor."""
        with self._locked():
            items = [
                item
                for item in self._snapshots
                if sensor_id is None or item.sensor_id == sensor_id
            ]
            items.sort(key=lambda item: item.created_at, reverse=True)
            if limit is not None:
                items = items[:limit]
            return [item.model_copy(deep=True) for item in items]

    def latest_snapshot(self, sensor_id: int, since: datetime) -> Optional[CrowdSnapshot]:
        """Most recent snapshot of ``sensor_id`` created at or after ``since``."""
        cutoff = as_utc(since)
        with self._locked():
            latest: Optional[CrowdSnapshot] = None
            for item in self._snapshots:
                if item.sensor_id != sensor_id or item.created_at < cutoff:
                    continue
                if latest is None or item.created_at >= latest.created_at:
                    latest = item
            return latest.model_copy(deep=True) if latest is not None else None

    def add_alert(self, alert: Alert) -> None:
        with self.transaction() as txn:
            txn.add_alert(alert)

    def alerts(self, sensor_id: Optional[int] = None) -> List[Alert]:
        with self._locked():
            items = [
                item for item in self._alerts if sensor_id is None or item.sensor_id == sensor_id
            ]
            items.sort(key=lambda item: item.created_at, reverse=True)
            return [item.model_copy(deep=True) for item in items]

    @contextmanager
    def _locked(self) -> Iterator[None]:
        if not self._lock.acquire(timeout=self.lock_timeout):
            raise StorageUnavailable(
                f"Observation store did not respond within {self.lock_timeout:g}s."
            )
        try:
            yield
        finally:
            self._lock.release()

    def _has_key(self, key: _SightingKey) -> bool:
        return key in self._keys

    def _distinct_tokens(self, sensor_id: int, window: Window) -> Set[str]:
        times = self._times.get(sensor_id)
        if not times:
            return set()
        lo = bisect_right(times, window.start)
        hi = bisect_right(times, window.end)
        return {sighting.token for sighting in self._sightings[sensor_id][lo:hi]}

    def _insert_sighting(self, sighting: Sighting) -> None:
        times = self._times.setdefault(sighting.sensor_id, [])
        sightings = self._sightings.setdefault(sighting.sensor_id, [])
        index = bisect_right(times, sighting.observed_at)
        times.insert(index, sighting.observed_at)
        sightings.insert(index, sighting)
        self._keys.add((sighting.sensor_id, sighting.token, sighting.observed_at))

    def _commit(self, txn: StoreTransaction) -> None:
        if not (txn.sightings or txn.snapshots or txn.alerts):
            return
        cutoff = self._retention_cutoff(txn.sightings)
        # Disk first so a failed write leaves memory untouched.
        self._persist(txn, cutoff)
        for sighting in txn.sightings:
            self._insert_sighting(sighting)
        self._snapshots.extend(txn.snapshots)
        self._alerts.extend(txn.alerts)
        if cutoff is not None:
            self._prune(cutoff)

    def _retention_cutoff(self, staged: Iterable[Sighting] = ()) -> Optional[datetime]:
        """Instant at or before which sightings are evicted, or None to keep all."""
        if self.retention is None:
            return None
        newest = [times[-1] for times in self._times.values() if times]
        newest.extend(sighting.observed_at for sighting in staged)
        if not newest:
            return None
        return max(newest) - self.retention

    def _prune(self, cutoff: datetime) -> None:
        for sensor_id, times in self._times.items():
            index = bisect_right(times, cutoff)
            if not index:
                continue
            sightings = self._sightings[sensor_id]
            for sighting in sightings[:index]:
                self._keys.discard((sensor_id, sighting.token, sighting.observed_at))
            del times[:index]
            del sightings[:index]

    def _persist(self, txn: StoreTransaction, cutoff: Optional[datetime] = None) -> None:
        if not self.persistence_path:
            return
        sightings = [
            sighting
            for per_sensor in (*self._sightings.values(), txn.sightings)
            for sighting in per_sensor
            if cutoff is None or sighting.observed_at > cutoff
        ]
        payload: Dict[str, Any] = {
            "sightings": [_dump_sighting(sighting) for sighting in sightings],
            "snapshots": [
                item.model_dump(mode="json") for item in [*self._snapshots, *txn.snapshots]
            ],
            "alerts": [item.model_dump(mode="json") for item in [*self._alerts, *txn.alerts]],
        }
        try:
            self.persistence_path.write_text(json.dumps(payload, sort_keys=True))
        except OSError as exc:
            logger.error(
                "Failed to persist observation store",
                extra={"reason": str(exc)},
            )
            raise StorageUnavailable("Observation store could not be written.") from exc

    def _load_from_disk(self) -> None:
        if not self.persistence_path or not self.persistence_path.exists():
            return

        try:
            raw = self.persistence_path.read_text() or "{}"
            data = json.loads(raw)
        except (OSError, json.JSONDecodeError):
            data = {}

        for item in data.get("sightings", []):
            self._insert_sighting(
                Sighting(
                    token=item["token"],
                    sensor_id=int(item["sensor_id"]),
                    observed_at=as_utc(datetime.fromisoformat(item["observed_at"])),
                    rssi=item.get("rssi"),
                )
            )
        self._snapshots = [
            CrowdSnapshot.model_validate(item) for item in data.get("snapshots", [])
        ]
        self._alerts = [Alert.model_validate(item) for item in data.get("alerts", [])]


def _dump_sighting(sighting: Sighting) -> Dict[str, Any]:
    return {
        "token": sighting.token,
        "sensor_id": sighting.sensor_id,
        "observed_at": sighting.observed_at.isoformat(),
        "rssi": sighting.rssi,
    }


@lru_cache
def build_default_store(
    path: Optional[str] = None,
    lock_timeout: Optional[float] = None,
) -> ObservationStore:
    """Store wired from settings; retention never drops below two windows."""
    settings = get_settings()
    store_path = settings.store_path if path is None else path
    timeout = settings.store_timeout_seconds if lock_timeout is None else lock_timeout
    persistence = Path(store_path) if store_path else None
    retention = timedelta(
        seconds=max(settings.retention_seconds, 2 * settings.window_seconds)
    )
    return ObservationStore(
        persistence_path=persistence, lock_timeout=timeout, retention=retention
    )
