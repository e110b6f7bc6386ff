# helpdesk_app/services/whatsapp_api.py
"""
Outbound WhatsApp messaging.

The WhatsApp session itself (pairing, encryption, reconnects) lives in a
separate WhatsApp Web bridge process. This module only talks to that
bridge's small HTTP API:

    POST {WHATSAPP_BRIDGE_URL}/send
    Authorization: Bearer {WHATSAPP_BRIDGE_TOKEN}
    {"to": "5569981248816@s.whatsapp.net", "text": "..."}

Anything that needs to send a message depends on the MessagingGateway
protocol, so tests can pass a recording fake instead of BridgeGateway.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Protocol

import requests

from helpdesk_app.config import cfg
from helpdesk_app.core.roles import to_jid

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15


class WhatsAppAPIError(RuntimeError):
    """The bridge rejected the message or could not be reached."""


class MessagingGateway(Protocol):
    def send(self, target: str, text: str) -> Dict[str, Any]:
        ...


class BridgeGateway:
    """requests-based client for the WhatsApp Web bridge."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        *,
        timeout: int = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = (base_url if base_url is not None else cfg.WHATSAPP_BRIDGE_URL).rstrip("/")
        self.token = token if token is not None else cfg.WHATSAPP_BRIDGE_TOKEN
        self.timeout = timeout
        self.http = session or requests.Session()

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def send(self, target: str, text: str) -> Dict[str, Any]:
        """
        Send a text message to a user identity or a group JID.

        Raises WhatsAppAPIError on transport errors and non-2xx answers.
        """
        if not self.base_url:
            logger.error("WHATSAPP_BRIDGE_URL is not configured.")
            raise WhatsAppAPIError("WHATSAPP_BRIDGE_URL is missing.")

        payload = {"to": to_jid(target), "text": text}
        logger.info("[WA] Sending message", extra={"to": payload["to"], "length": len(text)})

        try:
            resp = self.http.post(
                f"{self.base_url}/send",
                headers=self._headers(),
                json=payload,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.error("[WA] Bridge unreachable: %s", exc)
            raise WhatsAppAPIError(f"WhatsApp bridge request failed: {exc}") from exc

        if not resp.ok:
            logger.error("[WA] Bridge error %s: %s", resp.status_code, resp.text[:500])
            raise WhatsAppAPIError(f"WhatsApp bridge error {resp.status_code}")

        try:
            return resp.json()
        except ValueError:
            return {"status": "ok"}


class LoggingGateway:
    """Gateway used when no bridge is configured: messages are only logged."""

    def send(self, target: str, text: str) -> Dict[str, Any]:
        logger.info("[WA] (no bridge configured) %s <- %s", target, text[:200])
        return {"status": "logged"}


def build_gateway() -> MessagingGateway:
    if cfg.WHATSAPP_BRIDGE_URL:
        return BridgeGateway()
    logger.warning("WHATSAPP_BRIDGE_URL not set; outbound messages will only be logged.")
    return LoggingGateway()
