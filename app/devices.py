from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Response, status

from app.api import STORAGE_UNAVAILABLE_DETAIL
from app.schemas import (
    Alert,
    Device,
    DeviceCreate,
    DeviceUpdate,
    NeighborCreate,
    Webhook,
    WebhookCreate,
)
from datastore.registry import DeviceRegistry
from services.crowd_service import CrowdService, build_default_service
from services.errors import Conflict, InvalidInput, NotFound, StorageUnavailable

logger = logging.getLogger(__name__)

router = APIRouter()


def get_service() -> CrowdService:
    return build_default_service()


def get_registry() -> DeviceRegistry:
    return build_default_service().registry


def _not_found(exc: NotFound) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


def _unavailable(exc: StorageUnavailable) -> HTTPException:
    logger.error("Storage unavailable", extra={"reason": str(exc)})
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=STORAGE_UNAVAILABLE_DETAIL,
    )


@router.get("/devices", response_model=List[Device], summary="List registered devices.")
async def list_devices(registry: DeviceRegistry = Depends(get_registry)) -> List[Device]:
    return registry.list_devices()


@router.post(
    "/devices",
    status_code=status.HTTP_201_CREATED,
    response_model=Device,
    summary="Register a device; omitted thresholds take the named defaults.",
)
async def register_device(
    request: DeviceCreate,
    registry: DeviceRegistry = Depends(get_registry),
) -> Device:
    try:
        return registry.register(request)
    except StorageUnavailable as exc:
        raise _unavailable(exc) from exc


@router.get("/devices/{device_id}", response_model=Device, summary="Fetch one device.")
async def get_device(
    device_id: int,
    registry: DeviceRegistry = Depends(get_registry),
) -> Device:
    try:
        return registry.get(device_id)
    except NotFound as exc:
        raise _not_found(exc) from exc


@router.put(
    "/devices/{device_id}",
    response_model=Device,
    summary="Update a device's name, location and/or thresholds.",
)
async def update_device(
    device_id: int,
    request: DeviceUpdate,
    registry: DeviceRegistry = Depends(get_registry),
) -> Device:
    try:
        return registry.update(device_id, request)
    except NotFound as exc:
        raise _not_found(exc) from exc
    except StorageUnavailable as exc:
        raise _unavailable(exc) from exc
    except InvalidInput as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc


@router.post(
    "/devices/{device_id}/neighbors",
    status_code=status.HTTP_201_CREATED,
    response_model=Device,
    summary="Declare a directed neighbor used for trend prediction.",
)
async def add_neighbor(
    device_id: int,
    request: NeighborCreate,
    registry: DeviceRegistry = Depends(get_registry),
) -> Device:
    try:
        return registry.add_neighbor(device_id, request.neighbor_id)
    except NotFound as exc:
        raise _not_found(exc) from exc
    except InvalidInput as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except Conflict as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(exc),
        ) from exc
    except StorageUnavailable as exc:
        raise _unavailable(exc) from exc


@router.delete(
    "/devices/{device_id}/neighbors/{neighbor_id}",
    response_model=Device,
    summary="Remove a neighbor edge.",
)
async def remove_neighbor(
    device_id: int,
    neighbor_id: int,
    registry: DeviceRegistry = Depends(get_registry),
) -> Device:
    try:
        return registry.remove_neighbor(device_id, neighbor_id)
    except NotFound as exc:
        raise _not_found(exc) from exc
    except StorageUnavailable as exc:
        raise _unavailable(exc) from exc


@router.get(
    "/devices/{device_id}/alerts",
    response_model=List[Alert],
    summary="Alerts raised for a device, newest first.",
)
async def list_alerts(
    device_id: int,
    service: CrowdService = Depends(get_service),
) -> List[Alert]:
    try:
        return service.alerts(device_id)
    except NotFound as exc:
        raise _not_found(exc) from exc
    except StorageUnavailable as exc:
        raise _unavailable(exc) from exc


@router.post(
    "/webhooks",
    status_code=status.HTTP_201_CREATED,
    response_model=Webhook,
    summary="Register a webhook URL for a device.",
)
async def register_webhook(
    request: WebhookCreate,
    registry: DeviceRegistry = Depends(get_registry),
) -> Webhook:
    try:
        return registry.add_webhook(request)
    except NotFound as exc:
        raise _not_found(exc) from exc
    except Conflict as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(exc),
        ) from exc
    except StorageUnavailable as exc:
        raise _unavailable(exc) from exc


@router.get(
    "/webhooks/{device_id}",
    response_model=List[Webhook],
    summary="List the webhooks registered for a device.",
)
async def list_webhooks(
    device_id: int,
    registry: DeviceRegistry = Depends(get_registry),
) -> List[Webhook]:
    try:
        registry.get(device_id)
    except NotFound as exc:
        raise _not_found(exc) from exc
    return registry.webhooks_for(device_id)


@router.delete(
    "/webhooks/{webhook_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    summary="Delete a webhook.",
)
async def delete_webhook(
    webhook_id: int,
    registry: DeviceRegistry = Depends(get_registry),
) -> Response:
    try:
        registry.delete_webhook(webhook_id)
    except NotFound as exc:
        raise _not_found(exc) from exc
    except StorageUnavailable as exc:
        raise _unavailable(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)
