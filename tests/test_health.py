"""Health endpoint tests."""

import pytest

from wayzer.realtime.registry import Connection

from fakes import FakeWebSocket


@pytest.mark.asyncio
async def test_health_returns_ok(unauthenticated_client):
    """Health endpoint should return server status and version."""
    resp = await unauthenticated_client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["server"] == "ok"
    assert "version" in data
    assert data["redis"] == "disabled"


@pytest.mark.asyncio
async def test_health_reports_connections(app, unauthenticated_client):
    registry = app.state.registry
    registry.register("u1", Connection(FakeWebSocket()))
    registry.register("u1", Connection(FakeWebSocket()))
    registry.register("u2", Connection(FakeWebSocket()))

    data = (await unauthenticated_client.get("/api/v1/health")).json()

    assert data["realtime"] == {"online_users": 2, "connections": 3}
