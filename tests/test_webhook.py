# tests/test_webhook.py

import pytest

from helpdesk_app import create_app
from helpdesk_app.config import cfg

from conftest import BOT, TECH, TECH_GROUP, USER


@pytest.fixture
def client(services, staff):
    app = create_app(services=services)
    return app.test_client()


def test_webhook_blueprint_registered(services):
    app = create_app(services=services)
    endpoints = {rule.endpoint for rule in app.url_map.iter_rules()}

    assert {"webhook.whatsapp_webhook", "webhook.test_webhook", "webhook.health"} <= endpoints
    assert app.extensions["helpdesk"] is services
    assert "helpdesk_scheduler" not in app.extensions


def test_health(client):
    assert client.get("/webhook/health").get_json() == {"status": "ok"}


def test_test_endpoint_returns_the_reply(client):
    resp = client.post("/webhook/test", json={"sender": f"{USER}@s.whatsapp.net", "text": "!ajuda"})

    assert resp.status_code == 200
    body = resp.get_json()
    assert body["conversation"]["user_message"] == "!ajuda"
    assert "COMANDOS DISPONÍVEIS" in body["conversation"]["bot_responses"][0]


def test_whatsapp_endpoint_sends_reply_through_gateway(client, gateway):
    resp = client.post("/webhook/whatsapp", json={"sender": USER, "text": "!status 1"})

    assert resp.get_json() == {"status": "ok", "replied": True}
    assert gateway.to(USER) == ["❌ OS #1 não encontrada."]


def test_group_message_needs_bot_mention(client, gateway):
    ignored = client.post(
        "/webhook/whatsapp",
        json={"sender": TECH, "text": "!list", "is_group": True, "group_id": TECH_GROUP},
    )
    assert ignored.get_json()["replied"] is False

    client.post(
        "/webhook/whatsapp",
        json={"sender": TECH, "text": f"@{BOT} !list", "is_group": True, "group_id": TECH_GROUP},
    )
    assert gateway.to(TECH_GROUP) == ["✅ Não há OS abertas no momento."]


def test_invalid_payloads(client):
    assert client.post("/webhook/whatsapp", json={"text": "oi"}).status_code == 400
    resp = client.post("/webhook/whatsapp", json={"sender": USER, "text": "oi", "is_group": True})
    assert resp.status_code == 400
    assert "group_id" in resp.get_json()["error"]


def test_bearer_token_is_checked(client, monkeypatch):
    monkeypatch.setattr(cfg, "WEBHOOK_TOKEN", "segredo")
    payload = {"sender": USER, "text": "!ajuda"}

    assert client.post("/webhook/test", json=payload).status_code == 401
    wrong = client.post("/webhook/test", json=payload, headers={"Authorization": "Bearer outro"})
    assert wrong.status_code == 401
    ok = client.post("/webhook/test", json=payload, headers={"Authorization": "Bearer segredo"})
    assert ok.status_code == 200
