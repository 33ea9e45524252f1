"""Unit tests for health endpoints."""

import pytest

from fleetdesk.workers.manager import WorkerManager


@pytest.mark.asyncio
async def test_health_ping_rpc(test_client):
    """Test the RPC-style health ping endpoint."""
    response = await test_client.post("/v1/health/ping", json={})
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["service"] == "fleetdesk-api"
    assert "timestamp" in data
    assert "version" in data


@pytest.mark.asyncio
async def test_health_ping_needs_no_token(test_client):
    """Liveness does not depend on authentication."""
    response = await test_client.post("/v1/health/ping")
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_metrics_endpoint(test_client):
    """Test the Prometheus metrics endpoint."""
    response = await test_client.get("/metrics")
    assert response.status_code == 200
    assert "fleet_bookings_created" in response.text


def test_workers_idle_until_started():
    """A fresh manager knows both workers but runs neither."""
    manager = WorkerManager()
    assert manager.get_worker_status() == {"marketplace_expiry": False, "ledger_sweep": False}
