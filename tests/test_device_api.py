"""Tests for the device-facing state endpoints."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
from litestar.testing import TestClient
from redis.exceptions import RedisError

from vigil_server.plugins.memory_cache import MemorySharedCache
from tests.conftest import admin_headers, device_headers, provision_device


def _device(client: TestClient, device_id: str) -> dict[str, object]:  # type: ignore[type-arg]
    response = client.get(f"/api/admin/devices/{device_id}", headers=admin_headers())
    assert response.status_code == 200
    data: dict[str, object] = response.json()
    return data


# --- GET state (heartbeat) ---


def test_get_state_records_heartbeat(client: TestClient) -> None:  # type: ignore[type-arg]
    device = provision_device(client)
    assert _device(client, device["id"])["api_heartbeat_state"] == "unknown"

    response = client.get(
        f"/device/v3/{device['uuid']}/state", headers=device_headers(device["api_key"]),
    )

    assert response.status_code == 200
    data = response.json()
    assert data["uuid"] == device["uuid"]
    assert data["poll_interval_ms"] == 900_000  # 600 s default * 1.5
    assert data["api_heartbeat_state"] == "online"
    stored = _device(client, device["id"])
    assert stored["api_heartbeat_state"] == "online"
    assert stored["last_changed_api_heartbeat_state_on"] is not None


def test_get_state_without_auth_is_401(client: TestClient) -> None:  # type: ignore[type-arg]
    device = provision_device(client)
    response = client.get(f"/device/v3/{device['uuid']}/state")
    assert response.status_code == 401
    assert _device(client, device["id"])["api_heartbeat_state"] == "unknown"


def test_get_state_with_bad_key_is_401(client: TestClient) -> None:  # type: ignore[type-arg]
    device = provision_device(client)
    response = client.get(
        f"/device/v3/{device['uuid']}/state", headers=device_headers("vk_wrong"),
    )
    assert response.status_code == 401


def test_key_of_another_device_is_401(client: TestClient) -> None:  # type: ignore[type-arg]
    first = provision_device(client, group_name="a", device_uuid="1111111111")
    second = provision_device(client, group_name="b", device_uuid="2222222222")
    response = client.get(
        f"/device/v3/{second['uuid']}/state", headers=device_headers(first["api_key"]),
    )
    assert response.status_code == 401
    assert _device(client, second["id"])["api_heartbeat_state"] == "unknown"


def test_expired_key_is_rejected_without_heartbeat(client: TestClient) -> None:  # type: ignore[type-arg]
    device = provision_device(client)
    yesterday = datetime.now(timezone.utc) - timedelta(days=1)
    expiry = client.patch(
        f"/api/admin/api-keys/{device['id']}",
        json={"expiry_date": yesterday.isoformat()},
        headers=admin_headers(),
    )
    assert expiry.status_code == 200

    response = client.get(
        f"/device/v3/{device['uuid']}/state", headers=device_headers(device["api_key"]),
    )

    assert response.status_code == 401
    assert "expired" in response.json()["detail"]
    assert _device(client, device["id"])["api_heartbeat_state"] == "unknown"


def test_future_expiry_still_works(client: TestClient) -> None:  # type: ignore[type-arg]
    device = provision_device(client)
    tomorrow = datetime.now(timezone.utc) + timedelta(days=1)
    client.patch(
        f"/api/admin/api-keys/{device['id']}",
        json={"expiry_date": tomorrow.isoformat()},
        headers=admin_headers(),
    )
    response = client.get(
        f"/device/v3/{device['uuid']}/state", headers=device_headers(device["api_key"]),
    )
    assert response.status_code == 200


def test_cache_wins_over_manual_override(client: TestClient) -> None:  # type: ignore[type-arg]
    """A fresh cached online entry is trusted over a hand-edited store."""
    device = provision_device(client)
    headers = device_headers(device["api_key"])
    client.get(f"/device/v3/{device['uuid']}/state", headers=headers)
    override = client.patch(
        f"/api/admin/devices/{device['id']}/heartbeat-state",
        json={"state": "offline"},
        headers=admin_headers(),
    )
    assert override.status_code == 200

    client.get(f"/device/v3/{device['uuid']}/state", headers=headers)

    assert _device(client, device["id"])["api_heartbeat_state"] == "offline"


# --- Poll interval ---


def test_poll_interval_follows_config_layers(client: TestClient) -> None:  # type: ignore[type-arg]
    device = provision_device(client)
    url = f"/device/v3/{device['uuid']}/poll-interval"
    headers = device_headers(device["api_key"])
    assert client.get(url, headers=headers).json() == {"poll_interval_ms": 900_000}

    client.put(
        f"/api/admin/groups/{device['group_id']}/config/AGENT_POLL_INTERVAL",
        json={"value": "1200000"},
        headers=admin_headers(),
    )
    assert client.get(url, headers=headers).json() == {"poll_interval_ms": 1_800_000}

    client.put(
        f"/api/admin/devices/{device['id']}/config/AGENT_POLL_INTERVAL",
        json={"value": "60000"},
        headers=admin_headers(),
    )
    # below the default: ignored
    assert client.get(url, headers=headers).json() == {"poll_interval_ms": 900_000}

    client.delete(
        f"/api/admin/devices/{device['id']}/config/AGENT_POLL_INTERVAL",
        headers=admin_headers(),
    )
    assert client.get(url, headers=headers).json() == {"poll_interval_ms": 1_800_000}


# --- PATCH state (telemetry) ---


def test_patch_state_applies_fields(client: TestClient) -> None:  # type: ignore[type-arg]
    device = provision_device(client)
    response = client.patch(
        f"/device/v3/{device['uuid']}/state",
        json={"status": "Idle", "os_version": "balenaOS 5.1.0", "cpu_usage": 42},
        headers=device_headers(device["api_key"]),
    )
    assert response.status_code == 200
    assert response.json() == {
        "applied": ["cpu_usage", "os_version", "status"],
        "throttled": [],
    }
    stored = _device(client, device["id"])
    assert stored["status"] == "Idle"
    assert stored["cpu_usage"] == 42
    assert stored["metrics_updated_at"] is not None
    # reporting state is not a heartbeat
    assert stored["api_heartbeat_state"] == "unknown"


def test_patch_state_throttles_metrics_only(client: TestClient) -> None:  # type: ignore[type-arg]
    device = provision_device(client)
    url = f"/device/v3/{device['uuid']}/state"
    headers = device_headers(device["api_key"])
    client.patch(url, json={"cpu_usage": 10}, headers=headers)

    response = client.patch(
        url, json={"cpu_usage": 90, "memory_usage": 512, "status": "Updating"}, headers=headers,
    )

    assert response.json() == {
        "applied": ["status"],
        "throttled": ["cpu_usage", "memory_usage"],
    }
    stored = _device(client, device["id"])
    assert stored["cpu_usage"] == 10
    assert stored["memory_usage"] is None
    assert stored["status"] == "Updating"


def test_patch_state_truncates_long_address_lists(client: TestClient) -> None:  # type: ignore[type-arg]
    device = provision_device(client)
    ips = " ".join(["10.0.0.10"] * 30)
    client.patch(
        f"/device/v3/{device['uuid']}/state",
        json={"ip_address": ips},
        headers=device_headers(device["api_key"]),
    )
    stored = _device(client, device["id"])["ip_address"]
    assert isinstance(stored, str)
    assert len(stored) <= 255
    assert stored == " ".join(["10.0.0.10"] * 25)


def test_patch_state_rejects_bad_metrics(client: TestClient) -> None:  # type: ignore[type-arg]
    device = provision_device(client)
    response = client.patch(
        f"/device/v3/{device['uuid']}/state",
        json={"cpu_usage": 300},
        headers=device_headers(device["api_key"]),
    )
    assert response.status_code == 400


def test_patch_state_throttle_outage_is_503(
    client: TestClient, monkeypatch: pytest.MonkeyPatch,  # type: ignore[type-arg]
) -> None:
    device = provision_device(client)
    monkeypatch.setattr(MemorySharedCache, "get", AsyncMock(side_effect=RedisError("down")))

    response = client.patch(
        f"/device/v3/{device['uuid']}/state",
        json={"cpu_usage": 10, "status": "Idle"},
        headers=device_headers(device["api_key"]),
    )

    assert response.status_code == 503
    monkeypatch.undo()
    stored = _device(client, device["id"])
    assert stored["status"] is None
    assert stored["cpu_usage"] is None
