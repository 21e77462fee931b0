"""Unit tests for the device registry."""

from __future__ import annotations

import json

import pytest

from app.schemas import DeviceCreate, DeviceUpdate, Thresholds, ThresholdUpdate, WebhookCreate
from datastore.registry import DeviceRegistry, build_default_registry
from services.errors import (
    Conflict,
    DeviceNotFound,
    InvalidInput,
    NotFound,
    StorageUnavailable,
    WebhookNotFound,
)
from settings import get_settings


def _create(name: str = "Main Entrance", **kwargs) -> DeviceCreate:
    return DeviceCreate(device_name=name, location="1st Floor", **kwargs)


def test_register_applies_named_threshold_defaults() -> None:
    registry = DeviceRegistry()

    device = registry.register(_create())

    assert device.device_id == 1
    assert device.thresholds == Thresholds(safe=30, normal=50, warning=80, danger=120)
    assert device.neighbors == []


def test_register_allows_explicitly_missing_thresholds() -> None:
    registry = DeviceRegistry()

    device = registry.register(_create(thresholds=None))

    assert device.thresholds is None


def test_thresholds_must_be_strictly_increasing() -> None:
    with pytest.raises(ValueError):
        Thresholds(safe=30, normal=30, warning=80, danger=120)


def test_get_returns_deep_copy() -> None:
    registry = DeviceRegistry()
    device = registry.register(_create())

    fetched = registry.get(device.device_id)
    fetched.neighbors.append(99)

    assert registry.get(device.device_id).neighbors == []


def test_get_missing_device_raises() -> None:
    registry = DeviceRegistry()

    with pytest.raises(DeviceNotFound) as excinfo:
        registry.get(42)
    assert "42" in str(excinfo.value)


def test_update_merges_partial_thresholds() -> None:
    registry = DeviceRegistry()
    device = registry.register(_create())

    updated = registry.update(
        device.device_id,
        DeviceUpdate(location="Lobby", thresholds=ThresholdUpdate(danger=200)),
    )

    assert updated.location == "Lobby"
    assert updated.device_name == "Main Entrance"
    assert updated.thresholds == Thresholds(safe=30, normal=50, warning=80, danger=200)


def test_update_fills_defaults_when_no_thresholds_stored() -> None:
    registry = DeviceRegistry()
    device = registry.register(_create(thresholds=None))

    updated = registry.update(device.device_id, DeviceUpdate(thresholds=ThresholdUpdate(safe=10)))

    assert updated.thresholds == Thresholds(safe=10, normal=50, warning=80, danger=120)


def test_update_rejects_non_increasing_merge() -> None:
    registry = DeviceRegistry()
    device = registry.register(_create())

    with pytest.raises(InvalidInput):
        registry.update(device.device_id, DeviceUpdate(thresholds=ThresholdUpdate(warning=20)))

    assert registry.get(device.device_id).thresholds == Thresholds()


def test_neighbors_are_directed_and_unique() -> None:
    registry = DeviceRegistry()
    a = registry.register(_create("A"))
    b = registry.register(_create("B"))

    registry.add_neighbor(a.device_id, b.device_id)

    assert registry.get(a.device_id).neighbors == [b.device_id]
    assert registry.get(b.device_id).neighbors == []
    with pytest.raises(Conflict):
        registry.add_neighbor(a.device_id, b.device_id)
    with pytest.raises(InvalidInput):
        registry.add_neighbor(a.device_id, a.device_id)
    with pytest.raises(DeviceNotFound):
        registry.add_neighbor(a.device_id, 99)


def test_remove_neighbor() -> None:
    registry = DeviceRegistry()
    a = registry.register(_create("A"))
    b = registry.register(_create("B"))
    registry.add_neighbor(a.device_id, b.device_id)

    assert registry.remove_neighbor(a.device_id, b.device_id).neighbors == []
    with pytest.raises(NotFound):
        registry.remove_neighbor(a.device_id, b.device_id)


def test_webhooks_unique_per_device_and_deletable() -> None:
    registry = DeviceRegistry()
    device = registry.register(_create())
    request = WebhookCreate(device_id=device.device_id, url="https://example.com/hook")

    webhook = registry.add_webhook(request)

    assert registry.webhooks_for(device.device_id) == [webhook]
    with pytest.raises(Conflict):
        registry.add_webhook(request)
    with pytest.raises(DeviceNotFound):
        registry.add_webhook(WebhookCreate(device_id=99, url="https://example.com/hook"))

    registry.delete_webhook(webhook.webhook_id)
    assert registry.webhooks_for(device.device_id) == []
    with pytest.raises(WebhookNotFound):
        registry.delete_webhook(webhook.webhook_id)


def test_webhook_url_requires_http_scheme() -> None:
    with pytest.raises(ValueError):
        WebhookCreate(device_id=1, url="ftp://example.com/hook")


def test_persists_to_disk_and_reloads(tmp_path) -> None:
    path = tmp_path / "registry.json"
    registry = DeviceRegistry(persistence_path=path)
    a = registry.register(_create("A"))
    b = registry.register(_create("B"))
    registry.add_neighbor(a.device_id, b.device_id)
    registry.add_webhook(WebhookCreate(device_id=a.device_id, url="https://example.com/hook"))

    payload = json.loads(path.read_text())
    assert set(payload["devices"]) == {"1", "2"}

    reloaded = DeviceRegistry(persistence_path=path)
    assert reloaded.get(a.device_id).neighbors == [b.device_id]
    assert len(reloaded.webhooks_for(a.device_id)) == 1
    assert reloaded.register(_create("C")).device_id == 3


def test_failed_write_leaves_registry_unchanged(tmp_path) -> None:
    path = tmp_path / "registry.json"
    registry = DeviceRegistry(persistence_path=path)
    a = registry.register(_create("A"))
    b = registry.register(_create("B"))
    path.unlink()
    path.mkdir()

    with pytest.raises(StorageUnavailable):
        registry.register(_create("C"))
    with pytest.raises(StorageUnavailable):
        registry.add_neighbor(a.device_id, b.device_id)
    with pytest.raises(StorageUnavailable):
        registry.update(a.device_id, DeviceUpdate(location="Lobby"))
    with pytest.raises(StorageUnavailable):
        registry.add_webhook(WebhookCreate(device_id=a.device_id, url="https://example.com/hook"))

    assert [device.device_name for device in registry.list_devices()] == ["A", "B"]
    assert registry.get(a.device_id).neighbors == []
    assert registry.get(a.device_id).location == "1st Floor"
    assert registry.webhooks_for(a.device_id) == []

    path.rmdir()
    assert registry.register(_create("C")).device_id == 3
    assert registry.add_webhook(
        WebhookCreate(device_id=a.device_id, url="https://example.com/hook")
    ).webhook_id == 1


def test_default_registry_is_built_from_settings(monkeypatch, tmp_path) -> None:
    path = tmp_path / "devices.json"
    monkeypatch.setenv("CROWD_REGISTRY_PATH", str(path))
    get_settings.cache_clear()
    build_default_registry.cache_clear()

    try:
        registry = build_default_registry()
        assert registry.persistence_path == path
        assert build_default_registry(str(tmp_path / "other.json")).persistence_path == (
            tmp_path / "other.json"
        )
    finally:
        build_default_registry.cache_clear()
        get_settings.cache_clear()
