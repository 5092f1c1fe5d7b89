from fastapi.testclient import TestClient

from credguard.main import app


client = TestClient(app)


def test_health_endpoint():
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_metrics_endpoint():
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "credguard_api_requests_total" in response.text
    assert "credguard_lifecycle_events_total" in response.text
    assert response.headers["content-type"].startswith("text/plain")


def test_request_id_is_echoed():
    response = client.get("/health", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"


def test_request_metrics_are_labelled_with_acting_admin():
    client.get("/health", headers={"X-Admin-ID": "admin-77"})

    metrics = client.get("/metrics").text
    assert 'actor="admin-77"' in metrics
