"""
Integration tests for FastAPI middleware (CORS, correlation_id), health and metrics.
"""
import uuid

import pytest


@pytest.mark.integration
def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@pytest.mark.integration
def test_cors_headers_included(client):
    response = client.get("/health", headers={"Origin": "http://localhost:3000"})

    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "http://localhost:3000"


@pytest.mark.integration
def test_cors_preflight_request(client):
    response = client.options(
        "/bookings",
        headers={
            "Origin": "http://localhost:3000",
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "content-type",
        },
    )

    assert response.status_code == 200
    assert "access-control-allow-methods" in response.headers


@pytest.mark.integration
def test_correlation_id_generated(client):
    response = client.get("/health")

    correlation_id = response.headers["X-Correlation-ID"]
    try:
        uuid.UUID(correlation_id)
    except ValueError:
        pytest.fail(f"Correlation ID is not a valid UUID: {correlation_id}")


@pytest.mark.integration
def test_correlation_id_preserved(client):
    custom = str(uuid.uuid4())

    response = client.get("/health", headers={"X-Correlation-ID": custom})

    assert response.headers["X-Correlation-ID"] == custom


@pytest.mark.integration
def test_correlation_id_on_error(client):
    custom = str(uuid.uuid4())

    response = client.get(
        "/bookings/00000000-0000-0000-0000-000000000000",
        headers={"X-Correlation-ID": custom},
    )

    assert response.status_code == 404
    assert response.json()["correlation_id"] == custom
    assert response.headers["X-Correlation-ID"] == custom


@pytest.mark.integration
def test_metrics_endpoint_is_prometheus_text(client):
    service = client.post("/services", json={"name": "Haircut", "duration_minutes": 60}).json()
    client.post(
        "/bookings",
        json={
            "service_id": service["id"],
            "client_name": "Alice",
            "client_email": "alice@example.com",
            "start_time": "2030-01-15T10:00:00",
        },
    )

    response = client.get("/metrics")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert 'bookings_created_total{source="online"} 1' in response.text
