"""
Tests for health check endpoints.
"""

from unittest.mock import AsyncMock, patch

from fastapi.testclient import TestClient

from app.main import app

client = TestClient(app)


def test_healthz_endpoint():
    """Test the basic health check endpoint."""
    response = client.get("/healthz")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert response.headers["X-Request-ID"]


def test_request_id_is_echoed():
    response = client.get("/healthz", headers={"X-Request-ID": "req-42"})

    assert response.headers["X-Request-ID"] == "req-42"


def test_readyz_endpoint_all_services_healthy():
    """Test readiness endpoint when all services are healthy."""
    with (
        patch("app.routes.health.redis_ping", new=AsyncMock(return_value=True)),
        patch(
            "app.routes.health.db_health_check",
            new=AsyncMock(
                return_value={"healthy": True, "pool_stats": {"pool_size": 2, "pool_available": 2}}
            ),
        ),
    ):
        response = client.get("/readyz")

    assert response.status_code == 200
    data = response.json()
    assert data["overall_ok"] is True
    checks = data["checks"]
    assert checks["redis"]["ok"] is True
    assert checks["database"]["ok"] is True
    assert checks["database"]["pool_size"] == 2


def test_readyz_endpoint_redis_unhealthy():
    """Test readiness endpoint when Redis is down."""
    with (
        patch("app.routes.health.redis_ping", new=AsyncMock(return_value=False)),
        patch(
            "app.routes.health.db_health_check",
            new=AsyncMock(return_value={"healthy": True}),
        ),
    ):
        response = client.get("/readyz")

    # Should still return 200, but overall_ok should be False
    assert response.status_code == 200
    data = response.json()
    assert data["overall_ok"] is False
    assert data["checks"]["redis"]["ok"] is False


def test_readyz_endpoint_database_unhealthy():
    """Test readiness endpoint when the database pool is down."""
    with (
        patch("app.routes.health.redis_ping", new=AsyncMock(return_value=True)),
        patch(
            "app.routes.health.db_health_check",
            new=AsyncMock(return_value={"healthy": False, "error": "Pool not available"}),
        ),
    ):
        response = client.get("/readyz")

    data = response.json()
    assert data["overall_ok"] is False
    assert data["checks"]["database"]["ok"] is False
    assert data["checks"]["database"]["error"] == "Pool not available"


def test_readyz_endpoint_redis_raises():
    with (
        patch("app.routes.health.redis_ping", new=AsyncMock(side_effect=ConnectionError("boom"))),
        patch(
            "app.routes.health.db_health_check",
            new=AsyncMock(return_value={"healthy": True}),
        ),
    ):
        response = client.get("/readyz")

    data = response.json()
    assert data["overall_ok"] is False
    assert "ConnectionError" in data["checks"]["redis"]["error"]
