# helpdesk_app/blueprints/webhook/routes.py
from __future__ import annotations

import hmac
import logging
from typing import Any, Dict

from flask import current_app, jsonify, request

from . import bp  # blueprint: url_prefix="/webhook"

from helpdesk_app.config import cfg
from helpdesk_app.core import message_handler
from helpdesk_app.core.errors import WebhookError
from helpdesk_app.core.models import InboundMessage
from helpdesk_app.core.roles import normalize_identity

logger = logging.getLogger(__name__)


def _services() -> message_handler.HelpdeskServices:
    return current_app.extensions["helpdesk"]


def _check_token() -> None:
    expected = (cfg.WEBHOOK_TOKEN or "").strip()
    if not expected:
        return
    header = request.headers.get("Authorization", "")
    token = header[7:].strip() if header.lower().startswith("bearer ") else ""
    if not hmac.compare_digest(token, expected):
        logger.warning("[WEBHOOK] Rejected request with invalid token", extra={"remote": request.remote_addr})
        raise WebhookError("unauthorized", status_code=401)


def _parse_inbound(payload: Dict[str, Any]) -> InboundMessage:
    """
    Build an InboundMessage from the bridge payload:

    {"sender": "5511999999999@s.whatsapp.net", "text": "!status 12",
     "is_group": false, "group_id": null, "sender_name": "Ana"}
    """
    sender = normalize_identity(str(payload.get("sender") or ""))
    if not sender:
        raise WebhookError("sender is required")

    is_group = bool(payload.get("is_group"))
    group_id = payload.get("group_id") or None
    if is_group and not group_id:
        raise WebhookError("group_id is required for group messages")

    return InboundMessage(
        sender=sender,
        text=str(payload.get("text") or ""),
        is_group=is_group,
        group_id=group_id,
        sender_name=payload.get("sender_name") or None,
        raw=payload,
    )


@bp.route("/whatsapp", methods=["POST"])
def whatsapp_webhook():
    """
    Inbound messages pushed by the WhatsApp bridge.

    The reply (if any) is sent back through the gateway; the HTTP response
    is only an acknowledgement.
    """
    _check_token()
    data = request.get_json(force=True, silent=True) or {}
    msg = _parse_inbound(data)

    logger.info(
        "[WEBHOOK] Parsed inbound",
        extra={"sender": msg.sender, "is_group": msg.is_group, "group_id": msg.group_id},
    )

    reply = message_handler.handle_message(_services(), msg)
    return jsonify({"status": "ok", "replied": bool(reply)}), 200


@bp.route("/test", methods=["POST"])
def test_webhook():
    """
    Same pipeline as /whatsapp, but the reply comes back in the response
    instead of being sent. Notifications to other people still go out.

    Expected JSON payload: same shape as /whatsapp.
    """
    _check_token()
    data = request.get_json(force=True, silent=True) or {}
    msg = _parse_inbound(data)

    logger.info("[TEST WEBHOOK] Simulated message", extra={"sender": msg.sender, "text": msg.text[:100]})

    reply = message_handler.process_message(_services(), msg)
    return jsonify({
        "status": "ok",
        "conversation": {
            "user_message": msg.text,
            "bot_responses": [reply] if reply else [],
        },
    }), 200


@bp.route("/health", methods=["GET"])
def health():
    return jsonify({"status": "ok"}), 200
