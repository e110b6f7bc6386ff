# helpdesk_app/core/commands/base.py
"""
Command table plumbing: the `!command` parser, the Command record and the
registry the dispatcher looks keywords up in.

Argument conventions (declared per command):

    space   !status 12                 -> positional = ["12"]
    equals  !promote_tech=5511999...   -> keyed = {"value": "5511999..."}
    keyed   !department 12=Financeiro  -> keyed = {"12": "Financeiro"}
    raw     !create_web_user ana s3nh@ -> raw_args = "ana s3nh@"

Every form is parsed for every command; the convention tells the
dispatcher which part must be present before the handler runs.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from helpdesk_app.core.errors import CommandUsageError, NotFoundError, PermissionDeniedError
from helpdesk_app.core.models import ParsedCommand
from helpdesk_app.core.roles import TICKET_VIEW_ALL, Role, has_capability, normalize_identity
from helpdesk_app.services.repository import as_id

COMMAND_PREFIX = "!"

CONV_SPACE = "space"
CONV_EQUALS = "equals"
CONV_KEYED = "keyed"
CONV_RAW = "raw"

_COMMAND_RE = re.compile(r"^!([^\s=]+)(.*)$", re.DOTALL)
_KEYED_RE = re.compile(r"^(\d+)\s*=\s*(.+)$", re.DOTALL)
_MENTION_RE = re.compile(r"@(\d{10,15})")


def is_command(text: str) -> bool:
    return (text or "").lstrip().startswith(COMMAND_PREFIX)


def parse_command(text: str) -> Optional[ParsedCommand]:
    """
    '!Setor 12=Financeiro' -> ParsedCommand(keyword='setor', keyed={'12': 'Financeiro'}, ...)

    Returns None when the text is not a command at all ("!" alone included).
    """
    match = _COMMAND_RE.match((text or "").strip())
    if not match:
        return None

    keyword = match.group(1).casefold()
    rest = match.group(2)
    parsed = ParsedCommand(keyword=keyword)

    if rest.startswith("="):
        value = rest[1:].strip()
        parsed.raw_args = value
        if value:
            parsed.keyed["value"] = value
    else:
        parsed.raw_args = rest.strip()
        keyed = _KEYED_RE.match(parsed.raw_args)
        if keyed:
            parsed.keyed[keyed.group(1)] = keyed.group(2).strip()

    parsed.positional = parsed.raw_args.split()
    parsed.mentions = _MENTION_RE.findall(parsed.raw_args)
    return parsed


@dataclass
class CommandContext:
    """Who is asking, from where, and the collaborators a handler may use."""

    identity: str
    user: Dict[str, Any]
    role: Role
    repo: Any
    notifier: Any
    tickets: Any
    dialogues: Any
    classifier: Any = None
    registry: Optional["CommandRegistry"] = None
    in_group: bool = False
    group_id: Optional[str] = None
    in_tech_group: bool = False

    @property
    def display_name(self) -> str:
        return self.user.get("display_name") or self.identity

    def can(self, capability: str) -> bool:
        return has_capability(self.role, capability)


Handler = Callable[[CommandContext, ParsedCommand], str]


@dataclass(frozen=True)
class Command:
    keyword: str
    handler: Handler
    capability: Optional[str] = None
    convention: str = CONV_SPACE
    aliases: Tuple[str, ...] = ()
    usage: Optional[str] = None
    # When set, the dispatcher answers `usage` if the convention's argument is missing.
    requires_args: bool = False

    def has_arguments(self, parsed: ParsedCommand) -> bool:
        if self.convention == CONV_SPACE:
            return bool(parsed.positional)
        if self.convention == CONV_EQUALS:
            return bool(parsed.keyed.get("value") or parsed.mentions)
        if self.convention == CONV_KEYED:
            return any(key.isdigit() for key in parsed.keyed)
        return bool(parsed.raw_args)


class CommandRegistry:
    def __init__(self, commands: Iterable[Command] = ()) -> None:
        self._by_keyword: Dict[str, Command] = {}
        self._commands: List[Command] = []
        for command in commands:
            self.register(command)

    def register(self, command: Command) -> None:
        for name in (command.keyword, *command.aliases):
            key = name.casefold()
            if key in self._by_keyword:
                raise ValueError(f"Duplicate command keyword: {key}")
            self._by_keyword[key] = command
        self._commands.append(command)

    def lookup(self, keyword: str) -> Optional[Command]:
        return self._by_keyword.get((keyword or "").casefold())

    def commands(self) -> List[Command]:
        return list(self._commands)

    def __contains__(self, keyword: str) -> bool:
        return self.lookup(keyword) is not None

    def __len__(self) -> int:
        return len(self._commands)


# ---- Helpers shared by handlers ----------------------------------------------


def ticket_not_found(raw_id: Any) -> NotFoundError:
    return NotFoundError(f"❌ OS #{raw_id} não encontrada.")


def require_ticket(ctx: CommandContext, raw_id: Optional[str], usage: str) -> Dict[str, Any]:
    """Resolve a ticket id argument or raise the matching CommandError."""
    if raw_id is None or raw_id == "":
        raise CommandUsageError(usage)
    if as_id(raw_id) is None:
        raise ticket_not_found(raw_id)
    ticket = ctx.repo.get_ticket(raw_id)
    if ticket is None:
        raise ticket_not_found(as_id(raw_id))
    return ticket


def first_positional(parsed: ParsedCommand) -> Optional[str]:
    return parsed.positional[0] if parsed.positional else None


def keyed_pair(parsed: ParsedCommand, usage: str) -> Tuple[str, str]:
    """`!cmd <id>=<text>` -> (id, text)."""
    for key, value in parsed.keyed.items():
        if key.isdigit() and value:
            return key, value
    raise CommandUsageError(usage)


def equals_value(parsed: ParsedCommand, usage: str) -> str:
    value = parsed.keyed.get("value") or parsed.raw_args
    if not value:
        raise CommandUsageError(usage)
    return value


def target_identity(parsed: ParsedCommand, usage: str) -> Tuple[str, bool]:
    """
    Identity a promotion command points at, and whether it came from a mention.

    An @mention always wins over the legacy `=number` / positional forms.
    """
    if parsed.first_mention:
        return parsed.first_mention, True
    raw = parsed.keyed.get("value") or first_positional(parsed)
    identity = normalize_identity(raw)
    if not identity:
        raise CommandUsageError(usage)
    return identity, False


def ensure_can_view(ctx: CommandContext, ticket: Dict[str, Any], message: str) -> None:
    if ticket["requester_identity"] != ctx.identity and not ctx.can(TICKET_VIEW_ALL):
        raise PermissionDeniedError(message)
