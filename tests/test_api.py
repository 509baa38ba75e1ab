"""Tests for the HTTP surface."""

import logging

from fastapi.testclient import TestClient

from backend.services.scheduling.scheduler import JobScheduler, SchedulerState
from backend.services.metrics.registry import MetricsRegistry
from main import create_app


def test_health():
    with TestClient(create_app()) as client:
        response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "OK"}
    assert response.headers["X-Content-Type-Options"] == "nosniff"


def test_security_headers_on_every_response():
    with TestClient(create_app(metrics=MetricsRegistry())) as client:
        responses = [client.get(path) for path in ("/health", "/version", "/metrics")]

    for response in responses:
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"
        assert response.headers["Referrer-Policy"] == "no-referrer"
        assert response.headers["Cache-Control"] == "no-store"


def test_debug_request_logging_redacts_credentials(caplog):
    with TestClient(create_app(debug=True)) as client:
        with caplog.at_level(logging.DEBUG, logger="api.middleware.logging"):
            client.get("/version", headers={"Authorization": "Bearer secret-token"})
            client.get("/health")

    messages = [record.getMessage() for record in caplog.records if record.name == "api.middleware.logging"]
    assert any("url=http://testserver/version" in message for message in messages)
    assert not any("secret-token" in message for message in messages)
    assert not any("/health" in message for message in messages)


def test_version_without_scheduler():
    with TestClient(create_app()) as client:
        body = client.get("/version").json()

    assert "IMAGE_TAG" in body
    assert body["scheduler"] is None


def test_metrics_exposition():
    metrics = MetricsRegistry()
    metrics.initialize(["db"])
    metrics.record_backup_failure("db")

    with TestClient(create_app(metrics=metrics)) as client:
        response = client.get("/metrics")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert 'restic_repository_backup_failures_total{name="db"} 1.0' in response.text
    assert 'restic_repository_snapshot_total{name="db"} 0.0' in response.text


def test_metrics_disabled_returns_404():
    with TestClient(create_app()) as client:
        response = client.get("/metrics")

    assert response.status_code == 404


def test_lifespan_starts_and_drains_scheduler():
    scheduler = JobScheduler()
    app = create_app(metrics=MetricsRegistry(), scheduler=scheduler)

    with TestClient(app) as client:
        assert client.get("/version").json()["scheduler"] == "idle"

    assert scheduler.state == SchedulerState.STOPPED
