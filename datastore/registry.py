from __future__ import annotations
import json
import logging
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Dict, List, Optional

from pydantic import ValidationError

from app.schemas import (
    Device,
    DeviceCreate,
    DeviceUpdate,
    Thresholds,
    Webhook,
    WebhookCreate,
)
from services.errors import (
    Conflict,
    DeviceNotFound,
    InvalidInput,
    NotFound,
    StorageUnavailable,
    WebhookNotFound,
)
from settings import get_settings

logger = logging.getLogger(__name__)


class DeviceRegistry:
    """Devices with their thresholds, neighbor edges and webhook subscriptions."""

    def __init__(self, persistence_path: Optional[Path] = None) -> None:
        self._devices: Dict[int, Device] = {}
        self._webhooks: Dict[int, Webhook] = {}
        self._next_device_id = 1
        self._next_webhook_id = 1
        self.persistence_path = persistence_path
        self._lock = Lock()
        if persistence_path:
            persistence_path.parent.mkdir(parents=True, exist_ok=True)
            self._load_from_disk()

    def register(self, request: DeviceCreate) -> Device:
        with self._lock:
            device = Device(
                device_id=self._next_device_id,
                device_name=request.device_name,
                location=request.location,
                created_at=datetime.now(timezone.utc),
                thresholds=request.thresholds,
            )
            self._commit(devices={**self._devices, device.device_id: device})
            self._next_device_id += 1
            return device.model_copy(deep=True)

    def get(self, device_id: int) -> Device:
        with self._lock:
            return self._require(device_id).model_copy(deep=True)

    def list_devices(self) -> List[Device]:
        with self._lock:
            return [
                device.model_copy(deep=True)
                for _, device in sorted(self._devices.items())
            ]

    def update(self, device_id: int, request: DeviceUpdate) -> Device:
        """Apply name, location and partial threshold changes in one step."""
        with self._lock:
            device = self._require(device_id)
            changes: Dict[str, object] = {}
            if request.device_name is not None:
                changes["device_name"] = request.device_name
            if request.location is not None:
                changes["location"] = request.location
            if request.thresholds is not None:
                patch = request.thresholds.model_dump(exclude_none=True)
                if patch:
                    base = device.thresholds or Thresholds()
                    merged = {**base.model_dump(), **patch}
                    try:
                        changes["thresholds"] = Thresholds(**merged)
                    except ValidationError as exc:
                        raise InvalidInput(
                            "Thresholds must be strictly increasing: "
                            "safe < normal < warning < danger."
                        ) from exc
            updated = device.model_copy(update=changes, deep=True)
            self._commit(devices={**self._devices, device_id: updated})
            return updated.model_copy(deep=True)

    def add_neighbor(self, device_id: int, neighbor_id: int) -> Device:
        with self._lock:
            device = self._require(device_id)
            self._require(neighbor_id)
            if device_id == neighbor_id:
                raise InvalidInput("A device cannot be declared as its own neighbor.")
            if neighbor_id in device.neighbors:
                raise Conflict(
                    f"Device {neighbor_id} is already a neighbor of device {device_id}."
                )
            updated = device.model_copy(update={"neighbors": [*device.neighbors, neighbor_id]})
            self._commit(devices={**self._devices, device_id: updated})
            return updated.model_copy(deep=True)

    def remove_neighbor(self, device_id: int, neighbor_id: int) -> Device:
        with self._lock:
            device = self._require(device_id)
            if neighbor_id not in device.neighbors:
                raise NotFound(
                    f"Device {neighbor_id} is not a neighbor of device {device_id}."
                )
            neighbors = [existing for existing in device.neighbors if existing != neighbor_id]
            updated = device.model_copy(update={"neighbors": neighbors})
            self._commit(devices={**self._devices, device_id: updated})
            return updated.model_copy(deep=True)

    def add_webhook(self, request: WebhookCreate) -> Webhook:
        with self._lock:
            self._require(request.device_id)
            for existing in self._webhooks.values():
                if existing.device_id == request.device_id and existing.url == request.url:
                    raise Conflict("This webhook URL is already registered for this device.")
            webhook = Webhook(
                webhook_id=self._next_webhook_id,
                device_id=request.device_id,
                url=request.url,
                created_at=datetime.now(timezone.utc),
            )
            self._commit(webhooks={**self._webhooks, webhook.webhook_id: webhook})
            self._next_webhook_id += 1
            return webhook.model_copy(deep=True)

    def webhooks_for(self, device_id: int) -> List[Webhook]:
        with self._lock:
            return [
                webhook.model_copy(deep=True)
                for _, webhook in sorted(self._webhooks.items())
                if webhook.device_id == device_id
            ]

    def delete_webhook(self, webhook_id: int) -> None:
        with self._lock:
            if webhook_id not in self._webhooks:
                raise WebhookNotFound(webhook_id)
            remaining = {
                existing_id: webhook
                for existing_id, webhook in self._webhooks.items()
                if existing_id != webhook_id
            }
            self._commit(webhooks=remaining)

    def _require(self, device_id: int) -> Device:
        device = self._devices.get(device_id)
        if device is None:
            raise DeviceNotFound(device_id)
        return device

    def _commit(
        self,
        devices: Optional[Dict[int, Device]] = None,
        webhooks: Optional[Dict[int, Webhook]] = None,
    ) -> None:
        devices = self._devices if devices is None else devices
        webhooks = self._webhooks if webhooks is None else webhooks
        # Disk first so a failed write leaves memory and id counters untouched.
        self._persist(devices, webhooks)
        self._devices = devices
        self._webhooks = webhooks

    def _persist(self, devices: Dict[int, Device], webhooks: Dict[int, Webhook]) -> None:
        if not self.persistence_path:
            return
        payload = {
            "devices": {
                str(device_id): device.model_dump(mode="json")
                for device_id, device in devices.items()
            },
            "webhooks": {
                str(webhook_id): webhook.model_dump(mode="json")
                for webhook_id, webhook in webhooks.items()
            },
        }
        try:
            self.persistence_path.write_text(json.dumps(payload, indent=2, sort_keys=True))
        except OSError as exc:
            logger.error("Failed to persist device registry", extra={"reason": str(exc)})
            raise StorageUnavailable("Device registry could not be written.") from exc

    def _load_from_disk(self) -> None:
        if not self.persistence_path or not self.persistence_path.exists():
            return

        try:
            raw = self.persistence_path.read_text() or "{}"
            data = json.loads(raw)
        except (OSError, json.JSONDecodeError):
            data = {}

        for payload in data.get("devices", {}).values():
            device = Device.model_validate(payload)
            self._devices[device.device_id] = device
        for payload in data.get("webhooks", {}).values():
            webhook = Webhook.model_validate(payload)
            self._webhooks[webhook.webhook_id] = webhook
        self._next_device_id = max(self._devices, default=0) + 1
        self._next_webhook_id = max(self._webhooks, default=0) + 1


@lru_cache
def build_default_registry(path: Optional[str] = None) -> DeviceRegistry:
    settings = get_settings()
    registry_path = settings.registry_path if path is None else path
    persistence = Path(registry_path) if registry_path else None
    return DeviceRegistry(persistence_path=persistence)
