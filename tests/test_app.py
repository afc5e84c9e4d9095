import base64
import hashlib
import hmac
import json
from unittest.mock import AsyncMock

from fastapi.testclient import TestClient

from stockbot.app import create_app


def _sign(body: bytes, secret: str = "secret") -> str:
    return base64.b64encode(hmac.new(secret.encode(), body, hashlib.sha256).digest()).decode()


def test_health(settings):
    agent = AsyncMock()
    with TestClient(create_app(settings=settings, agent=agent)) as client:
        response = client.get("/health")
    assert response.status_code == 200
    assert response.text == "ok"


def test_signed_webhook_is_acknowledged_and_scheduled(settings):
    agent = AsyncMock()
    events = [{"type": "message", "message": {"type": "text", "text": "db"}, "source": {"type": "user", "userId": "U1"}}]
    body = json.dumps({"destination": "D", "events": events}).encode()
    with TestClient(create_app(settings=settings, agent=agent)) as client:
        response = client.post("/webhook", content=body, headers={"x-line-signature": _sign(body)})
    assert response.status_code == 200
    assert response.text == "OK"
    agent.handle_events.assert_awaited_once_with(events)


def test_bad_signature_rejected(settings):
    agent = AsyncMock()
    body = b'{"events": []}'
    with TestClient(create_app(settings=settings, agent=agent)) as client:
        response = client.post("/webhook", content=body, headers={"x-line-signature": "nope"})
    assert response.status_code == 400
    agent.handle_events.assert_not_called()


def test_invalid_body_rejected(settings):
    agent = AsyncMock()
    body = b"not json"
    with TestClient(create_app(settings=settings, agent=agent)) as client:
        response = client.post("/webhook", content=body, headers={"x-line-signature": _sign(body)})
    assert response.status_code == 400


def test_build_agent_wires_real_clients(settings):
    from stockbot.app import build_agent
    from stockbot.conversation import InventoryAgent

    agent, closers = build_agent(settings)
    assert isinstance(agent, InventoryAgent)
    assert len(closers) == 2
