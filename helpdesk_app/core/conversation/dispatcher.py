# helpdesk_app/core/conversation/dispatcher.py
"""
Inbound message dispatcher.

Order of precedence for one message:

1. An open dialogue for the sender gets the text verbatim.
2. "!keyword ..." goes through the command table (capability check first).
3. Text starting with a trigger word ("chamado ...", "ticket ...") opens a
   ticket from the remainder.
4. Anything else goes to the free-text path, except inside the technical
   group where plain chatter is ignored.

Messages from one identity are handled one at a time, in arrival order;
different identities run concurrently.
"""
from __future__ import annotations

import logging
import re
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Mapping, Optional, Sequence

from helpdesk_app.config import settings_value
from helpdesk_app.core.commands.base import CommandContext, CommandRegistry, is_command, parse_command
from helpdesk_app.core.errors import (
    INTERNAL_ERROR_REPLY,
    CommandError,
    CommandUsageError,
    PermissionDeniedError,
)
from helpdesk_app.core.roles import Role, denial_message, has_capability

logger = logging.getLogger(__name__)

UNKNOWN_COMMAND_REPLY = "❓ Comando não reconhecido. Digite !ajuda para ver os comandos disponíveis."

DEFAULT_TRIGGER_WORDS = ("chamado", "ticket")


class KeyedLocks:
    """
    One lock per key, created on demand and dropped once nobody holds or
    waits for it.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, threading.Lock] = {}
        self._users: Dict[str, int] = {}
        self._guard = threading.Lock()

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
            self._users[key] = self._users.get(key, 0) + 1
        try:
            with lock:
                yield
        finally:
            with self._guard:
                self._users[key] -= 1
                if not self._users[key]:
                    del self._users[key]
                    del self._locks[key]


class Dispatcher:
    def __init__(
        self,
        *,
        repo,
        resolver,
        dialogues,
        registry: CommandRegistry,
        freetext,
        tickets,
        notifier,
        classifier=None,
        trigger_words: Sequence[str] = DEFAULT_TRIGGER_WORDS,
    ) -> None:
        self.repo = repo
        self.resolver = resolver
        self.dialogues = dialogues
        self.registry = registry
        self.freetext = freetext
        self.tickets = tickets
        self.notifier = notifier
        self.classifier = classifier
        self.trigger_words = tuple(w.casefold() for w in trigger_words)
        self._trigger_re = re.compile(
            r"(?:%s)\b[\s:,.\-]*" % "|".join(re.escape(w) for w in self.trigger_words),
            re.IGNORECASE,
        )
        self._locks = KeyedLocks()

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def handle(
        self,
        identity: str,
        text: str,
        *,
        display_name: Optional[str] = None,
        is_group: bool = False,
        group_id: Optional[str] = None,
    ) -> Optional[str]:
        """
        Resolve the sender and dispatch one message. Returns the direct reply,
        or None when the message gets no reply.
        """
        with self._locks.hold(identity):
            try:
                user = self.resolver.resolve(identity, display_name)
                in_tech_group = bool(is_group and group_id and group_id == self.tech_group_id())
                return self.dispatch(
                    identity,
                    text,
                    user,
                    in_tech_group=in_tech_group,
                    is_group=is_group,
                    group_id=group_id,
                )
            except Exception:
                logger.exception("[DISPATCH] Message handling failed", extra={"identity": identity})
                return INTERNAL_ERROR_REPLY

    def tech_group_id(self) -> Optional[str]:
        return settings_value(self.repo, "tech_group_id") or None

    def dispatch(
        self,
        identity: str,
        raw_text: str,
        user: Mapping[str, Any],
        *,
        in_tech_group: bool = False,
        is_group: bool = False,
        group_id: Optional[str] = None,
    ) -> Optional[str]:
        text = (raw_text or "").strip()

        if self.dialogues.has_open(identity):
            logger.info("[DISPATCH] Routed to open dialogue", extra={"identity": identity})
            return self._guarded(identity, "dialogue", lambda: self.dialogues.advance(identity, text))

        if is_command(text):
            return self._run_command(identity, text, user, in_tech_group, is_group, group_id)

        remainder = self._strip_trigger(text)
        if remainder is not None:
            logger.info("[DISPATCH] Trigger word, opening ticket", extra={"identity": identity})
            return self._guarded(
                identity, "trigger", lambda: self.tickets.open_from_problem(identity, user, remainder)
            )

        if in_tech_group:
            logger.debug("[DISPATCH] Chatter in technical group ignored", extra={"identity": identity})
            return None

        return self._guarded(identity, "freetext", lambda: self.freetext.handle(identity, text, user))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _strip_trigger(self, text: str) -> Optional[str]:
        """'Chamado: impressora parada' -> 'impressora parada'; None if no trigger word."""
        if not text or not self.trigger_words:
            return None
        match = self._trigger_re.match(text)
        if match is None:
            return None
        return text[match.end():].strip()

    def _run_command(
        self,
        identity: str,
        text: str,
        user: Mapping[str, Any],
        in_tech_group: bool,
        is_group: bool,
        group_id: Optional[str],
    ) -> str:
        parsed = parse_command(text)
        command = self.registry.lookup(parsed.keyword) if parsed else None
        if command is None:
            logger.info("[DISPATCH] Unknown command", extra={"identity": identity, "text": text[:50]})
            return UNKNOWN_COMMAND_REPLY

        role = Role.parse(user.get("role"))
        if not has_capability(role, command.capability):
            logger.info(
                "[DISPATCH] Permission denied",
                extra={"identity": identity, "command": command.keyword, "role": role.value},
            )
            return denial_message(command.capability)

        if command.requires_args and not command.has_arguments(parsed):
            return command.usage or UNKNOWN_COMMAND_REPLY

        ctx = CommandContext(
            identity=identity,
            user=dict(user),
            role=role,
            repo=self.repo,
            notifier=self.notifier,
            tickets=self.tickets,
            dialogues=self.dialogues,
            classifier=self.classifier,
            registry=self.registry,
            in_group=is_group,
            group_id=group_id,
            in_tech_group=in_tech_group,
        )
        logger.info(
            "[DISPATCH] Command",
            extra={"identity": identity, "command": command.keyword, "convention": command.convention},
        )
        return self._guarded(identity, command.keyword, lambda: command.handler(ctx, parsed))

    def _guarded(self, identity: str, stage: str, call) -> Optional[str]:
        """
        Run a handler; CommandError becomes its own message as reply, any
        other exception the generic internal-error reply.
        """
        try:
            return call()
        except CommandUsageError as exc:
            logger.debug("[DISPATCH] Usage error", extra={"identity": identity, "stage": stage})
            return str(exc)
        except PermissionDeniedError as exc:
            logger.info("[DISPATCH] Denied by handler", extra={"identity": identity, "stage": stage})
            return str(exc)
        except CommandError as exc:
            logger.info(
                "[DISPATCH] Command rejected",
                extra={"identity": identity, "stage": stage, "error_type": type(exc).__name__},
            )
            return str(exc)
        except Exception:
            logger.exception("[DISPATCH] Handler failed", extra={"identity": identity, "stage": stage})
            return INTERNAL_ERROR_REPLY
