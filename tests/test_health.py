"""Health endpoint tests."""

from fastapi.testclient import TestClient

from linegate.api.app import app

client = TestClient(app)


def test_health_returns_200():
    response = client.get("/health")
    assert response.status_code == 200


def test_health_returns_ok_status():
    response = client.get("/health")
    assert response.json() == {"status": "ok"}


def test_ready_when_configured(monkeypatch):
    monkeypatch.setenv("LINE_CHANNEL_SECRET", "s3cret")
    monkeypatch.setenv("LINEGATE_DRY_RUN", "true")
    monkeypatch.delenv("LINEGATE_RATE_PLAN", raising=False)

    response = client.get("/health/ready")

    assert response.status_code == 200
    assert response.json() == {"status": "ready", "mode": "dry-run", "plan": "standard"}


def test_not_ready_without_secret(monkeypatch):
    monkeypatch.delenv("LINE_CHANNEL_SECRET", raising=False)

    response = client.get("/health/ready")

    assert response.status_code == 503
    assert response.json() == {"status": "not configured"}
