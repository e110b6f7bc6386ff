# tests/test_message_handler.py

import pytest
import requests

from helpdesk_app.core.message_handler import handle_message, process_message, strip_bot_mention
from helpdesk_app.core.models import InboundMessage
from helpdesk_app.services.mailer import new_order, order_completed
from helpdesk_app.services.whatsapp_api import BridgeGateway, WhatsAppAPIError

from conftest import BOT, TECH_GROUP, USER


class _Response:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self.ok = 200 <= status_code < 300
        self.text = "error body"
        self._payload = payload

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class _Session:
    def __init__(self, response=None, exc=None):
        self.response = response or _Response(payload={"status": "sent"})
        self.exc = exc
        self.calls = []

    def post(self, url, **kwargs):
        self.calls.append((url, kwargs))
        if self.exc is not None:
            raise self.exc
        return self.response


def test_strip_bot_mention():
    assert strip_bot_mention(f"@{BOT} !list", BOT) == "!list"
    assert strip_bot_mention(f"@+{BOT} oi", BOT) == "oi"
    assert strip_bot_mention("!list", BOT) is None


def test_group_message_processed_when_bot_number_unset(services, monkeypatch):
    from helpdesk_app.config import cfg

    monkeypatch.setattr(cfg, "BOT_NUMBER", "")
    msg = InboundMessage(sender=USER, text="!ajuda", is_group=True, group_id="123@g.us")

    assert "COMANDOS DISPONÍVEIS" in process_message(services, msg)
    assert msg.reply_target == "123@g.us"


def test_delivery_failure_is_logged_not_raised(services, monkeypatch):
    def fail(target, text):
        raise WhatsAppAPIError("bridge down")

    monkeypatch.setattr(services.gateway, "send", fail)
    reply = handle_message(services, InboundMessage(sender=USER, text="!ajuda"))

    assert "COMANDOS DISPONÍVEIS" in reply


def test_bridge_gateway_posts_jid_and_token():
    session = _Session()
    gateway = BridgeGateway("http://bridge:3000/", "tok", session=session)

    assert gateway.send(USER, "olá") == {"status": "sent"}
    url, kwargs = session.calls[0]
    assert url == "http://bridge:3000/send"
    assert kwargs["json"] == {"to": f"{USER}@s.whatsapp.net", "text": "olá"}
    assert kwargs["headers"]["Authorization"] == "Bearer tok"

    gateway.send(TECH_GROUP, "grupo")
    assert session.calls[1][1]["json"]["to"] == TECH_GROUP


def test_bridge_gateway_errors():
    with pytest.raises(WhatsAppAPIError):
        BridgeGateway("http://bridge", session=_Session(response=_Response(status_code=502))).send(USER, "x")
    with pytest.raises(WhatsAppAPIError):
        BridgeGateway("http://bridge", session=_Session(exc=requests.ConnectionError("refused"))).send(USER, "x")
    with pytest.raises(WhatsAppAPIError):
        BridgeGateway("", session=_Session()).send(USER, "x")


def test_mail_templates():
    ticket = {
        "id": 9,
        "requester_name": "Ulisses <RH>",
        "requester_identity": USER,
        "problem_text": "Sem rede",
        "assigned_technician": None,
        "created_at": "2025-11-26T14:30:00+00:00",
        "closed_at": None,
    }
    created = new_order(ticket)
    assert created["subject"] == "Nova OS #9 - Ulisses <RH>"
    assert "26/11/2025 14:30" in created["text"]
    assert "&lt;RH&gt;" in created["html"]

    closed = order_completed(ticket)
    assert "Não atribuído" in closed["text"]
