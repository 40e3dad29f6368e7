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


def test_readyz_contact_store_healthy():
    """Readiness reports the store and the active enrichment mode."""
    app.state.enrichment_entrypoint = None
    app.state.queue_broker = None

    with patch("app.routes.health.fast_redis.ping", AsyncMock(return_value=True)):
        response = client.get("/readyz")

    assert response.status_code == 200
    data = response.json()
    assert data["overall_ok"] is True
    assert data["checks"]["contact_store"]["ok"] is True
    assert isinstance(data["checks"]["contact_store"]["latency_ms"], (int, float))
    assert "broker" not in data["checks"]["location_enrichment"]


def test_readyz_contact_store_down():
    """Test readiness endpoint when Redis is down."""
    app.state.queue_broker = None

    with patch("app.routes.health.fast_redis.ping", AsyncMock(return_value=False)):
        response = client.get("/readyz")

    # Should still return 200, but overall_ok should be False
    assert response.status_code == 200
    data = response.json()
    assert data["overall_ok"] is False
    assert data["checks"]["contact_store"]["ok"] is False


def test_readyz_reports_queue_depths(redis_factory):
    """A reachable broker adds queue statistics without affecting overall_ok."""
    broker = redis_factory()
    broker.lists["location_enrichment:queue"] = ["job-1", "job-2"]
    app.state.queue_broker = broker

    try:
        with patch("app.routes.health.fast_redis.ping", AsyncMock(return_value=True)):
            response = client.get("/readyz")
    finally:
        app.state.queue_broker = None

    enrichment = response.json()["checks"]["location_enrichment"]
    assert enrichment["broker"]["ok"] is True
    assert enrichment["queue"] == {"ready": 2, "inflight": 0, "delayed": 0}


def test_readyz_broker_down_does_not_fail_readiness(redis_factory):
    app.state.queue_broker = redis_factory(available=False)

    try:
        with patch("app.routes.health.fast_redis.ping", AsyncMock(return_value=True)):
            response = client.get("/readyz")
    finally:
        app.state.queue_broker = None

    data = response.json()
    assert data["overall_ok"] is True
    assert data["checks"]["location_enrichment"]["broker"]["ok"] is False
    assert "queue" not in data["checks"]["location_enrichment"]
