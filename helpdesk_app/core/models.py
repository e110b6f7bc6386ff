# helpdesk_app/core/models.py
"""
Domain constants and lightweight dataclasses for the helpdesk bot.

Persistent rows (users, tickets, parts requests, history) travel as plain
dicts straight from services.db; the dataclasses here cover the in-memory
objects: inbound messages, dialogues, parsed commands and the LLM analysis.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from helpdesk_app.core.timefmt import utcnow


# ---- Ticket (OS) ------------------------------------------------------------

TICKET_OPEN = "open"
TICKET_IN_PROGRESS = "in_progress"
TICKET_CLOSED = "closed"
TICKET_CANCELLED = "cancelled"

TICKET_ACTIVE = (TICKET_OPEN, TICKET_IN_PROGRESS)

TICKET_STATUS_LABEL = {
    TICKET_OPEN: "ABERTA",
    TICKET_IN_PROGRESS: "EM ANDAMENTO",
    TICKET_CLOSED: "FINALIZADA",
    TICKET_CANCELLED: "CANCELADA",
}

TICKET_STATUS_EMOJI = {
    TICKET_OPEN: "🔴",
    TICKET_IN_PROGRESS: "🟡",
    TICKET_CLOSED: "🟢",
    TICKET_CANCELLED: "⚫",
}

DEFAULT_DEPARTMENT = "TI"


# ---- Parts requests ---------------------------------------------------------

PARTS_PENDING = "pending"
PARTS_PICKING = "picking"
PARTS_FULFILLED = "fulfilled"
PARTS_CANCELLED = "cancelled"

PARTS_OPEN = (PARTS_PENDING, PARTS_PICKING)

PARTS_STATUS_EMOJI = {
    PARTS_PENDING: "🟡",
    PARTS_PICKING: "🔵",
    PARTS_FULFILLED: "🟢",
    PARTS_CANCELLED: "🔴",
}


# ---- History ----------------------------------------------------------------

HISTORY_USER = "user"
HISTORY_TECHNICIAN = "technician"
HISTORY_SYSTEM = "system"


# ---- Inbound message --------------------------------------------------------


@dataclass
class InboundMessage:
    """
    One message as delivered by the WhatsApp bridge.

    `sender` is already normalized (digits only). For group messages
    `group_id` is the group JID and replies go there instead of the sender.
    """

    sender: str
    text: str
    is_group: bool = False
    group_id: Optional[str] = None
    sender_name: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def reply_target(self) -> str:
        if self.is_group and self.group_id:
            return self.group_id
        return self.sender


# ---- Dialogue ---------------------------------------------------------------


@dataclass
class Dialogue:
    """
    An in-progress multi-step data collection for one identity.

    `fields` only ever holds values for the steps of this dialogue's kind;
    starting a new dialogue replaces the whole object.
    """

    identity: str
    kind: str
    step: str
    fields: Dict[str, Any] = field(default_factory=dict)
    ticket_id: Optional[int] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def touch(self) -> None:
        self.updated_at = utcnow()


# ---- Commands ---------------------------------------------------------------


@dataclass
class ParsedCommand:
    """
    Structured result of parsing a `!command ...` line.

    keyword:    command keyword without the prefix, case-folded.
    positional: whitespace-separated args (space convention).
    keyed:      {"value": ...} for `!cmd=value`, {"<id>": "<text>"} for `!cmd <id>=<text>`.
    mentions:   phone numbers from `@5511999999999` tokens, in order.
    raw_args:   everything after the keyword, verbatim (stripped).
    """

    keyword: str
    positional: List[str] = field(default_factory=list)
    keyed: Dict[str, str] = field(default_factory=dict)
    mentions: List[str] = field(default_factory=list)
    raw_args: str = ""

    @property
    def first_mention(self) -> Optional[str]:
        return self.mentions[0] if self.mentions else None


# ---- LLM analysis -----------------------------------------------------------


@dataclass
class ProblemAnalysis:
    """Automatic triage attached to tickets created from free text."""

    category: str = "Sistema"
    priority: str = "Normal"
    analysis: str = "Problema reportado pelo usuário"
    source: str = "fallback"  # llm | fallback

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ProblemAnalysis":
        fallback = cls()
        return cls(
            category=str(data.get("category") or fallback.category).strip()[:40],
            priority=str(data.get("priority") or fallback.priority).strip()[:20],
            analysis=str(data.get("analysis") or fallback.analysis).strip()[:200],
            source="llm",
        )
