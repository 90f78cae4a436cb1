"""Tests for the LINE webhook HTTP route."""

import json

import pytest
from fastapi.testclient import TestClient

from linegate.api.factory import create_app
from linegate.api.routes import webhooks_line
from linegate.bootstrap import build_gateway
from linegate.settings import GatewaySettings
from linegate.webhook.signature import SIGNATURE_HEADER

from .helpers import CHANNEL_SECRET, sign, text_event, webhook_body


@pytest.fixture
def client():
    webhooks_line._gateway = build_gateway(GatewaySettings(channel_secret=CHANNEL_SECRET, dry_run=True))
    return TestClient(create_app())


def _post(client: TestClient, body: bytes, signature: str | None):
    headers = {"Content-Type": "application/json"}
    if signature is not None:
        headers[SIGNATURE_HEADER] = signature
    return client.post("/webhooks/line", content=body, headers=headers)


def test_valid_delivery_accepted(client):
    body = webhook_body(text_event("/help"), {"type": "message"})

    response = _post(client, body, sign(body))

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "accepted": 1, "rejected": 1, "completed": True}
    assert len(webhooks_line._gateway.dispatcher.dry_run_log) == 1


def test_invalid_signature_rejected(client):
    body = webhook_body(text_event("/help"))

    response = _post(client, body, sign(body, "other-secret"))

    assert response.status_code == 401
    assert response.json()["status"] == "invalid signature"
    assert webhooks_line._gateway.dispatcher.dry_run_log == []


def test_missing_signature_rejected(client):
    response = _post(client, webhook_body(), None)
    assert response.status_code == 401


def test_invalid_body_rejected(client):
    body = json.dumps({"no": "events"}).encode()

    response = _post(client, body, sign(body))

    assert response.status_code == 400
    assert response.json()["status"] == "invalid body"


def test_signature_checked_on_raw_bytes(client):
    # Whitespace differences must not be normalized away before verification
    body = b'{"events": [],   "destination": "Ubot"}'
    assert _post(client, body, sign(body)).status_code == 200
    assert _post(client, body.replace(b"   ", b" "), sign(body)).status_code == 401


def test_gateway_built_from_environment(monkeypatch):
    monkeypatch.setenv("LINE_CHANNEL_SECRET", CHANNEL_SECRET)
    monkeypatch.setenv("LINEGATE_DRY_RUN", "true")
    client = TestClient(create_app())
    body = webhook_body(text_event("hi"))

    response = _post(client, body, sign(body))

    assert response.status_code == 200
    assert webhooks_line._gateway.dispatcher.dry_run
