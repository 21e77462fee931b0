"""HTTP route definitions for crowd presence and mobility."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.schemas import (
    CrossSensorSimilarity,
    CrowdReport,
    HeadcountHistory,
    IngestRequest,
    MobilityTrends,
)
from services.crowd_service import (
    HISTORY_DEFAULT_LIMIT,
    HISTORY_MAX_LIMIT,
    TRENDS_DEFAULT_LIMIT,
    TRENDS_MAX_LIMIT,
    CrowdService,
    build_default_service,
)
from services.errors import (
    InvalidInput,
    Misconfigured,
    NotFound,
    StorageUnavailable,
)

logger = logging.getLogger(__name__)

router = APIRouter()

STORAGE_UNAVAILABLE_DETAIL = "Storage is temporarily unavailable."
MISCONFIGURED_DETAIL = "Threshold not set for this device."


def get_service() -> CrowdService:
    return build_default_service()


def _server_error(exc: Exception) -> HTTPException:
    if isinstance(exc, StorageUnavailable):
        logger.error("Storage unavailable", extra={"reason": str(exc)})
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=STORAGE_UNAVAILABLE_DETAIL,
        )
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=MISCONFIGURED_DETAIL,
    )


@router.post(
    "/crowd_data/{sensor_id}",
    response_model=CrowdReport,
    summary="Record identifiers seen by a sensor and return its crowd state.",
)
async def ingest(
    sensor_id: int,
    request: IngestRequest,
    service: CrowdService = Depends(get_service),
) -> CrowdReport:
    try:
        return service.ingest(sensor_id, request.identifiers, at=request.at)
    except InvalidInput as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except NotFound as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except (Misconfigured, StorageUnavailable) as exc:
        raise _server_error(exc) from exc


@router.get(
    "/crowd_data/analysis",
    response_model=MobilityTrends,
    summary="Mobility between consecutive snapshots, per sensor.",
)
async def mobility_trends(
    sensor_id: Optional[int] = Query(None, description="Restrict analysis to one sensor."),
    limit: int = Query(TRENDS_DEFAULT_LIMIT, ge=1, le=TRENDS_MAX_LIMIT),
    service: CrowdService = Depends(get_service),
) -> MobilityTrends:
    try:
        return service.mobility_trends(sensor_id=sensor_id, limit=limit)
    except NotFound as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except StorageUnavailable as exc:
        raise _server_error(exc) from exc


@router.get(
    "/crowd_data/{sensor_id}/latest",
    response_model=CrowdReport,
    summary="Current crowd state for a sensor without recording anything.",
)
async def latest(
    sensor_id: int,
    service: CrowdService = Depends(get_service),
) -> CrowdReport:
    try:
        return service.latest(sensor_id)
    except NotFound as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except (Misconfigured, StorageUnavailable) as exc:
        raise _server_error(exc) from exc


@router.get(
    "/crowd_data/{sensor_id}/history",
    response_model=HeadcountHistory,
    summary="Recorded headcounts for a sensor, newest first.",
)
async def headcount_history(
    sensor_id: int,
    limit: int = Query(HISTORY_DEFAULT_LIMIT, ge=1, le=HISTORY_MAX_LIMIT),
    service: CrowdService = Depends(get_service),
) -> HeadcountHistory:
    try:
        return service.headcount_history(sensor_id, limit=limit)
    except NotFound as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except StorageUnavailable as exc:
        raise _server_error(exc) from exc


@router.get(
    "/mobility/analysis",
    response_model=CrossSensorSimilarity,
    summary="Overlap and mobility between the latest snapshots of two sensors.",
)
async def cross_sensor_similarity(
    sensor_a: int = Query(..., description="First sensor id."),
    sensor_b: int = Query(..., description="Second sensor id."),
    window_seconds: Optional[int] = Query(None, ge=1, description="Look-back window."),
    service: CrowdService = Depends(get_service),
) -> CrossSensorSimilarity:
    try:
        return service.cross_sensor_similarity(sensor_a, sensor_b, window_seconds=window_seconds)
    except InvalidInput as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except NotFound as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except StorageUnavailable as exc:
        raise _server_error(exc) from exc


@router.get(
    "/health",
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.get(
    "/",
    summary="Root endpoint mirrors health information.",
    status_code=status.HTTP_200_OK,
)
async def root() -> dict[str, str]:
    return {"status": "ok", "detail": "See /health for service status."}
