"""Pydantic schemas shared by the HTTP layer, the stores and the services."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class Severity(str, Enum):
    """Ordered crowd severity levels, least severe first."""

    safe = "safe"
    normal = "normal"
    warning = "warning"
    danger = "danger"

    @property
    def rank(self) -> int:
        return _SEVERITY_ORDER.index(self)


_SEVERITY_ORDER = (Severity.safe, Severity.normal, Severity.warning, Severity.danger)


DEFAULT_SAFE = 30
DEFAULT_NORMAL = 50
DEFAULT_WARNING = 80
DEFAULT_DANGER = 120


class Thresholds(BaseModel):
    """Four ascending headcount breakpoints for one sensor."""

    safe: int = Field(DEFAULT_SAFE, ge=0)
    normal: int = Field(DEFAULT_NORMAL, ge=0)
    warning: int = Field(DEFAULT_WARNING, ge=0)
    danger: int = Field(DEFAULT_DANGER, ge=0)

    @model_validator(mode="after")
    def _check_ascending(self) -> "Thresholds":
        if not self.safe < self.normal < self.warning < self.danger:
            raise ValueError(
                "Thresholds must be strictly increasing: safe < normal < warning < danger."
            )
        return self


class ThresholdUpdate(BaseModel):
    """Partial threshold change merged over the stored configuration."""

    safe: Optional[int] = Field(default=None, ge=0)
    normal: Optional[int] = Field(default=None, ge=0)
    warning: Optional[int] = Field(default=None, ge=0)
    danger: Optional[int] = Field(default=None, ge=0)


class DeviceCreate(BaseModel):
    device_name: str = Field(..., min_length=1, max_length=255)
    location: str = Field(..., min_length=1, max_length=255)
    thresholds: Optional[Thresholds] = Field(
        default_factory=Thresholds,
        description="Breakpoints; omitted fields take the named defaults, null stores none.",
    )


class DeviceUpdate(BaseModel):
    device_name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    location: Optional[str] = Field(default=None, min_length=1, max_length=255)
    thresholds: Optional[ThresholdUpdate] = None


class Device(BaseModel):
    """A registered sensing point."""

    device_id: int
    device_name: str
    location: str
    created_at: datetime
    thresholds: Optional[Thresholds] = None
    neighbors: List[int] = Field(default_factory=list)


class NeighborCreate(BaseModel):
    neighbor_id: int


class WebhookCreate(BaseModel):
    device_id: int
    url: str = Field(..., min_length=1, max_length=2048)

    @field_validator("url")
    @classmethod
    def _require_http_url(cls, value: str) -> str:
        candidate = value.strip()
        if not candidate.startswith(("http://", "https://")):
            raise ValueError("Webhook url must start with http:// or https://.")
        return candidate


class Webhook(BaseModel):
    webhook_id: int
    device_id: int
    url: str
    created_at: datetime


class CrowdSnapshot(BaseModel):
    """Redacted token list reported by one ingestion event."""

    snapshot_id: str
    sensor_id: int
    headcount: int = Field(..., ge=0)
    severity: Severity
    tokens: List[str] = Field(default_factory=list)
    created_at: datetime


class Alert(BaseModel):
    alert_id: str
    sensor_id: int
    snapshot_id: Optional[str] = None
    alert_type: str = "density"
    level: Severity
    message: str
    created_at: datetime


class AlertPayload(BaseModel):
    """Body posted to every webhook registered for the alerting device."""

    device_id: int
    device_name: str
    location: str
    snapshot_id: Optional[str] = None
    headcount: int
    severity: Severity
    message: str
    timestamp: datetime


class IngestRequest(BaseModel):
    identifiers: List[str] = Field(
        ..., description="Raw wireless identifiers reported by the sensor."
    )
    at: Optional[datetime] = Field(
        default=None, description="Observation instant; defaults to the server clock."
    )

    @model_validator(mode="before")
    @classmethod
    def _accept_bare_body(cls, data: object) -> object:
        # A body that is just a list or a single string is the identifier batch.
        if isinstance(data, (list, str)):
            return {"identifiers": data}
        return data

    @field_validator("identifiers", mode="before")
    @classmethod
    def _wrap_single_identifier(cls, value: object) -> object:
        if isinstance(value, str):
            return [value]
        return value


class NeighborPrediction(BaseModel):
    participant_id: int
    device_name: Optional[str] = None
    location: Optional[str] = None
    current: int
    previous: int
    predicted: int


class CrowdReport(BaseModel):
    """Current headcount, severity and neighbor forecast for one sensor."""

    sensor_id: int
    device_name: str
    location: str
    current_count: int
    severity: Severity
    window_length_seconds: int
    evaluated_at: datetime
    alert_triggered: bool = False
    snapshot_id: Optional[str] = None
    neighbors: List[NeighborPrediction] = Field(default_factory=list)


class HeadcountEntry(BaseModel):
    snapshot_id: str
    headcount: int
    severity: Severity
    created_at: datetime


class HeadcountHistory(BaseModel):
    sensor_id: int
    entries: List[HeadcountEntry] = Field(default_factory=list)


class MobilityStep(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_: datetime = Field(..., alias="from")
    to: datetime
    mobility: float = Field(..., ge=0.0, le=1.0)


class MobilityTrends(BaseModel):
    trends: Dict[int, List[MobilityStep]] = Field(default_factory=dict)


class SnapshotRef(BaseModel):
    snapshot_id: str
    token_count: int
    created_at: datetime


class CrossSensorSimilarity(BaseModel):
    sensor_a: int
    sensor_b: int
    window_seconds: int
    common_count: int
    total_unique_count: int
    jaccard: float
    mobility: float
    from_snapshot: SnapshotRef
    to_snapshot: SnapshotRef
