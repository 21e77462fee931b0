"""Ingestion, presence reporting and mobility analysis for registered sensors."""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Callable, Dict, List, Optional, Sequence
from uuid import uuid4

from app.schemas import (
    Alert,
    AlertPayload,
    CrossSensorSimilarity,
    CrowdReport,
    CrowdSnapshot,
    Device,
    HeadcountEntry,
    HeadcountHistory,
    MobilityTrends,
    NeighborPrediction,
    Severity,
    SnapshotRef,
    Thresholds,
)
from datastore.registry import DeviceRegistry, build_default_registry
from models.records import as_utc
from services.aggregator import Aggregator
from services.alerts import AlertDispatcher
from services.classifier import classify, decide_alert
from services.errors import InvalidInput, NoRecentData, NotFound, ThresholdsNotConfigured
from services.mobility import mobility_trend, similarity
from services.predictor import NeighborTrendPredictor, TrendForecast
from services.redactor import redact_all
from settings import get_settings
from storage.observation_store import ObservationStore, build_default_store

logger = logging.getLogger(__name__)

HISTORY_DEFAULT_LIMIT = 50
HISTORY_MAX_LIMIT = 200
TRENDS_DEFAULT_LIMIT = 100
TRENDS_MAX_LIMIT = 1000


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _clamp_limit(limit: Optional[int], default: int, maximum: int) -> int:
    if limit is None or limit <= 0:
        return default
    return min(limit, maximum)


class CrowdService:
    """Coordinates the registry, the observation store and alert delivery."""

    def __init__(
        self,
        registry: DeviceRegistry,
        store: ObservationStore,
        dispatcher: AlertDispatcher,
        window_seconds: int = 60,
        similarity_window_seconds: int = 120,
        token_salt: str = "",
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.registry = registry
        self.store = store
        self.dispatcher = dispatcher
        self.window_seconds = window_seconds
        self.similarity_window_seconds = similarity_window_seconds
        self.token_salt = token_salt
        self.aggregator = Aggregator(timedelta(seconds=window_seconds))
        self.predictor = NeighborTrendPredictor(self.aggregator)
        self._clock = clock

    def ingest(
        self,
        sensor_id: int,
        identifiers: Sequence[str],
        at: Optional[datetime] = None,
    ) -> CrowdReport:
        """Record one batch of sightings and report the resulting crowd state.

        The write, the read-back counts, the snapshot and any alert commit
        together. Webhook delivery is scheduled only after the commit and is
        never awaited.
        """
        if not identifiers:
            raise InvalidInput("At least one identifier is required.")
        tokens = redact_all(identifiers, self.token_salt)

        device = self.registry.get(sensor_id)
        thresholds = self._require_thresholds(device)
        instant = as_utc(at) if at is not None else self._clock()

        with self.store.transaction() as txn:
            txn.record(sensor_id, tokens, instant)
            forecasts = self.predictor.predict(txn, sensor_id, device.neighbors, instant)
            headcount = forecasts[sensor_id].current
            severity = classify(headcount, thresholds)
            snapshot = CrowdSnapshot(
                snapshot_id=str(uuid4()),
                sensor_id=sensor_id,
                headcount=headcount,
                severity=severity,
                tokens=tokens,
                created_at=instant,
            )
            txn.add_snapshot(snapshot)
            decision = decide_alert(device, snapshot, instant)
            if decision.alert is not None:
                txn.add_alert(decision.alert)

        logger.info(
            "Recorded crowd snapshot",
            extra={
                "sensor_id": sensor_id,
                "token_count": len(tokens),
                "headcount": headcount,
                "severity": severity.value,
                "snapshot_id": snapshot.snapshot_id,
            },
        )
        if decision.payload is not None:
            self._dispatch(decision.payload)

        return self._report(
            device,
            severity,
            forecasts,
            instant,
            alert_triggered=decision.should_alert,
            snapshot_id=snapshot.snapshot_id,
        )

    def latest(self, sensor_id: int) -> CrowdReport:
        """Current crowd state for ``sensor_id`` without recording anything."""
        device = self.registry.get(sensor_id)
        thresholds = self._require_thresholds(device)
        now = self._clock()
        forecasts = self.predictor.predict(self.store, sensor_id, device.neighbors, now)
        severity = classify(forecasts[sensor_id].current, thresholds)
        return self._report(device, severity, forecasts, now)

    def headcount_history(
        self, sensor_id: int, limit: Optional[int] = HISTORY_DEFAULT_LIMIT
    ) -> HeadcountHistory:
        self.registry.get(sensor_id)
        count = _clamp_limit(limit, HISTORY_DEFAULT_LIMIT, HISTORY_MAX_LIMIT)
        entries = [
            HeadcountEntry(
                snapshot_id=snapshot.snapshot_id,
                headcount=snapshot.headcount,
                severity=snapshot.severity,
                created_at=snapshot.created_at,
            )
            for snapshot in self.store.snapshots(sensor_id=sensor_id, limit=count)
        ]
        return HeadcountHistory(sensor_id=sensor_id, entries=entries)

    def mobility_trends(
        self, sensor_id: Optional[int] = None, limit: Optional[int] = TRENDS_DEFAULT_LIMIT
    ) -> MobilityTrends:
        """Mobility between consecutive snapshots, per sensor, oldest step first.

        ``limit`` bounds how many of the most recent snapshots are considered
        in total, not per sensor.
        """
        if sensor_id is not None:
            self.registry.get(sensor_id)
        count = _clamp_limit(limit, TRENDS_DEFAULT_LIMIT, TRENDS_MAX_LIMIT)
        grouped: Dict[int, List[CrowdSnapshot]] = defaultdict(list)
        for snapshot in self.store.snapshots(sensor_id=sensor_id, limit=count):
            grouped[snapshot.sensor_id].append(snapshot)
        return MobilityTrends(
            trends={
                grouped_id: mobility_trend(snapshots)
                for grouped_id, snapshots in sorted(grouped.items())
            }
        )

    def cross_sensor_similarity(
        self,
        sensor_a: int,
        sensor_b: int,
        window_seconds: Optional[int] = None,
    ) -> CrossSensorSimilarity:
        """Compare the most recent snapshot of two sensors inside one window."""
        if sensor_a == sensor_b:
            raise InvalidInput("Two different device ids are required.")
        seconds = self.similarity_window_seconds if window_seconds is None else window_seconds
        if seconds <= 0:
            raise InvalidInput("window_seconds must be positive.")
        self.registry.get(sensor_a)
        self.registry.get(sensor_b)

        since = self._clock() - timedelta(seconds=seconds)
        first = self.store.latest_snapshot(sensor_a, since)
        second = self.store.latest_snapshot(sensor_b, since)
        if first is None or second is None:
            missing = [
                str(device_id)
                for device_id, snapshot in ((sensor_a, first), (sensor_b, second))
                if snapshot is None
            ]
            raise NoRecentData(
                f"No snapshot within the last {seconds}s for device(s) {', '.join(missing)}."
            )

        result = similarity(first.tokens, second.tokens)
        return CrossSensorSimilarity(
            sensor_a=sensor_a,
            sensor_b=sensor_b,
            window_seconds=seconds,
            common_count=result.intersection_size,
            total_unique_count=result.union_size,
            jaccard=result.jaccard,
            mobility=result.mobility,
            from_snapshot=_snapshot_ref(first),
            to_snapshot=_snapshot_ref(second),
        )

    def alerts(self, sensor_id: int) -> List[Alert]:
        self.registry.get(sensor_id)
        return self.store.alerts(sensor_id=sensor_id)

    def shutdown(self) -> None:
        """Release the delivery worker pool during application shutdown."""
        self.dispatcher.shutdown()

    def _require_thresholds(self, device: Device) -> Thresholds:
        if device.thresholds is None:
            logger.error(
                "Device has no threshold configuration",
                extra={"sensor_id": device.device_id},
            )
            raise ThresholdsNotConfigured(device.device_id)
        return device.thresholds

    def _dispatch(self, payload: AlertPayload) -> None:
        urls = [webhook.url for webhook in self.registry.webhooks_for(payload.device_id)]
        logger.warning(
            payload.message,
            extra={
                "sensor_id": payload.device_id,
                "headcount": payload.headcount,
                "severity": payload.severity.value,
                "snapshot_id": payload.snapshot_id,
            },
        )
        if urls:
            self.dispatcher.dispatch(urls, payload)

    def _report(
        self,
        device: Device,
        severity: Severity,
        forecasts: Dict[int, TrendForecast],
        evaluated_at: datetime,
        alert_triggered: bool = False,
        snapshot_id: Optional[str] = None,
    ) -> CrowdReport:
        neighbors = []
        for participant_id, forecast in forecasts.items():
            name, location = self._describe(participant_id, device)
            neighbors.append(
                NeighborPrediction(
                    participant_id=participant_id,
                    device_name=name,
                    location=location,
                    current=forecast.current,
                    previous=forecast.previous,
                    predicted=forecast.predicted,
                )
            )
        return CrowdReport(
            sensor_id=device.device_id,
            device_name=device.device_name,
            location=device.location,
            current_count=forecasts[device.device_id].current,
            severity=severity,
            window_length_seconds=self.window_seconds,
            evaluated_at=evaluated_at,
            alert_triggered=alert_triggered,
            snapshot_id=snapshot_id,
            neighbors=neighbors,
        )

    def _describe(self, participant_id: int, device: Device) -> tuple[Optional[str], Optional[str]]:
        if participant_id == device.device_id:
            return device.device_name, device.location
        try:
            neighbor = self.registry.get(participant_id)
        except NotFound:
            return None, None
        return neighbor.device_name, neighbor.location


def _snapshot_ref(snapshot: CrowdSnapshot) -> SnapshotRef:
    return SnapshotRef(
        snapshot_id=snapshot.snapshot_id,
        token_count=len(snapshot.tokens),
        created_at=snapshot.created_at,
    )


@lru_cache
def build_default_service() -> CrowdService:
    """Factory that wires the service with the configured stores."""
    settings = get_settings()
    dispatcher = AlertDispatcher(
        workers=settings.delivery_workers,
        timeout=settings.delivery_timeout_seconds,
    )
    return CrowdService(
        registry=build_default_registry(),
        store=build_default_store(),
        dispatcher=dispatcher,
        window_seconds=settings.window_seconds,
        similarity_window_seconds=settings.similarity_window_seconds,
        token_salt=settings.token_salt,
    )
