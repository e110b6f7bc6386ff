# helpdesk_app/core/conversation/freetext.py
"""
Free-text path: messages that are neither a dialogue answer nor a command.

The very first free-text message from an identity only gets the welcome
message, whatever it says. From the second one on, the text is classified
and a "problem" opens a ticket; everything else gets a fixed reply.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from helpdesk_app.core.timefmt import utcnow
from helpdesk_app.services.intent_llm import (
    INTENT_GREETING,
    INTENT_PROBLEM,
    INTENT_QUESTION,
)

logger = logging.getLogger(__name__)

GREETING_REPLY = (
    "👋 Olá! Como posso ajudá-lo hoje?\n\n"
    "🔧 Descreva seu problema técnico para abrir um chamado\n"
    "📋 Use !ajuda para ver todos os comandos disponíveis"
)

QUESTION_REPLY = (
    "❓ Entendi que você tem uma dúvida sobre o sistema.\n\n"
    "📋 Use !ajuda para ver todos os comandos disponíveis\n"
    "🔧 Para abrir um chamado, descreva seu problema técnico\n"
    "💬 Posso ajudar com questões de TI, impressoras, computadores, rede, etc."
)

OTHER_REPLY = (
    "💬 Entendi sua mensagem.\n\n"
    "🔧 Se você tem um problema técnico, descreva-o detalhadamente\n"
    "📋 Use !ajuda para ver todos os comandos disponíveis\n"
    "💡 Posso ajudar com: computadores, impressoras, rede, sistemas, etc."
)


@dataclass
class SessionStats:
    first_contact: datetime = field(default_factory=utcnow)
    message_count: int = 0


class SessionCounter:
    """
    In-memory record of who already talked to the bot in this process.

    Lost on restart, so after a deploy everybody gets one welcome again.
    """

    def __init__(self) -> None:
        self._sessions: Dict[str, SessionStats] = {}
        self._lock = threading.Lock()

    def register(self, identity: str) -> bool:
        """Count one message; returns True if it is the first one ever seen."""
        with self._lock:
            stats = self._sessions.get(identity)
            first = stats is None
            if first:
                stats = self._sessions[identity] = SessionStats()
            stats.message_count += 1
            return first

    def get(self, identity: str) -> Optional[SessionStats]:
        with self._lock:
            return self._sessions.get(identity)

    def __len__(self) -> int:
        return len(self._sessions)


class FreeTextHandler:
    def __init__(self, counter: SessionCounter, classifier, tickets, repo) -> None:
        self.counter = counter
        self.classifier = classifier
        self.tickets = tickets
        self.repo = repo

    def welcome(self, user: Mapping[str, Any]) -> str:
        custom = self.repo.get_config("greeting_message")
        if custom:
            return custom
        return self.classifier.welcome_message(user.get("display_name"))

    def handle(self, identity: str, text: str, user: Mapping[str, Any]) -> str:
        if self.counter.register(identity):
            logger.info("[FREETEXT] First contact, sending welcome", extra={"identity": identity})
            return self.welcome(user)

        intent = self.classifier.classify_message(text)
        logger.info("[FREETEXT] Message classified", extra={"identity": identity, "intent": intent})

        if intent == INTENT_PROBLEM:
            return self.tickets.open_from_problem(identity, user, text)
        if intent == INTENT_GREETING:
            return GREETING_REPLY
        if intent == INTENT_QUESTION:
            return QUESTION_REPLY
        return OTHER_REPLY
