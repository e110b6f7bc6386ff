# helpdesk_app/core/message_handler.py
"""
Channel-independent message processing.

build_services() wires every collaborator once per app; process_message()
runs one inbound message through the dispatcher and returns the reply
WITHOUT sending it (used by /webhook/test), handle_message() also sends the
reply through the messaging gateway (used by /webhook/whatsapp).
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Optional

from helpdesk_app.config import cfg
from helpdesk_app.core.commands import CommandRegistry, build_registry
from helpdesk_app.core.conversation.dialogue import DialogueEngine, DialogueStore
from helpdesk_app.core.conversation.dispatcher import Dispatcher
from helpdesk_app.core.conversation.freetext import FreeTextHandler, SessionCounter
from helpdesk_app.core.models import InboundMessage
from helpdesk_app.core.roles import RoleResolver, normalize_identity
from helpdesk_app.core.tickets import TicketService
from helpdesk_app.services.intent_llm import IntentClassifier
from helpdesk_app.services.mailer import Mailer
from helpdesk_app.services.notify import Notifier
from helpdesk_app.services.repository import Repository
from helpdesk_app.services.whatsapp_api import WhatsAppAPIError, build_gateway

logger = logging.getLogger(__name__)


@dataclass
class HelpdeskServices:
    repo: Repository
    gateway: Any
    notifier: Notifier
    classifier: IntentClassifier
    tickets: TicketService
    dialogues: DialogueEngine
    freetext: FreeTextHandler
    resolver: RoleResolver
    registry: CommandRegistry
    dispatcher: Dispatcher

    def shutdown(self) -> None:
        self.notifier.shutdown()


def build_services(
    *,
    repo: Optional[Repository] = None,
    gateway=None,
    classifier=None,
    mailer=None,
    notify_async: Optional[bool] = None,
) -> HelpdeskServices:
    repo = repo or Repository()
    gateway = gateway or build_gateway()
    classifier = classifier or IntentClassifier(repo)
    notifier = Notifier(gateway, repo, mailer or Mailer(), async_mode=notify_async)
    tickets = TicketService(repo, notifier, classifier)
    dialogues = DialogueEngine(DialogueStore(), repo, tickets, notifier)
    freetext = FreeTextHandler(SessionCounter(), classifier, tickets, repo)
    resolver = RoleResolver(repo, cfg.root_numbers())
    registry = build_registry()
    dispatcher = Dispatcher(
        repo=repo,
        resolver=resolver,
        dialogues=dialogues,
        registry=registry,
        freetext=freetext,
        tickets=tickets,
        notifier=notifier,
        classifier=classifier,
    )
    return HelpdeskServices(
        repo=repo,
        gateway=gateway,
        notifier=notifier,
        classifier=classifier,
        tickets=tickets,
        dialogues=dialogues,
        freetext=freetext,
        resolver=resolver,
        registry=registry,
        dispatcher=dispatcher,
    )


def strip_bot_mention(text: str, bot_number: str) -> Optional[str]:
    """
    Group messages are for the bot only when they mention it.

    '@5569999999999 !list' -> '!list'; None when the mention is absent.
    """
    pattern = re.compile(rf"@\+?{re.escape(bot_number)}\b")
    if not pattern.search(text or ""):
        return None
    return pattern.sub("", text).strip()


def process_message(services: HelpdeskServices, msg: InboundMessage) -> Optional[str]:
    """Dispatch one inbound message and return the reply (nothing is sent)."""
    identity = normalize_identity(msg.sender)
    if not identity:
        logger.warning("[HANDLER] Message without a usable sender ignored", extra={"sender": msg.sender})
        return None

    text = msg.text or ""
    if msg.is_group:
        bot_number = normalize_identity(cfg.BOT_NUMBER)
        if bot_number:
            stripped = strip_bot_mention(text, bot_number)
            if stripped is None:
                logger.debug("[HANDLER] Group message without bot mention ignored", extra={"group_id": msg.group_id})
                return None
            text = stripped
        else:
            logger.warning("[HANDLER] BOT_NUMBER not set; processing group message without mention check")

    logger.info(
        "[HANDLER] Inbound message",
        extra={"identity": identity, "is_group": msg.is_group, "group_id": msg.group_id, "length": len(text)},
    )
    return services.dispatcher.handle(
        identity,
        text,
        display_name=msg.sender_name,
        is_group=msg.is_group,
        group_id=msg.group_id,
    )


def handle_message(services: HelpdeskServices, msg: InboundMessage) -> Optional[str]:
    """process_message() plus delivery of the reply through the gateway."""
    reply = process_message(services, msg)
    if not reply:
        return reply
    try:
        services.gateway.send(msg.reply_target, reply)
    except WhatsAppAPIError:
        logger.exception("[HANDLER] Failed to deliver reply", extra={"target": msg.reply_target})
    return reply
