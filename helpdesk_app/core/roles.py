# helpdesk_app/core/roles.py
"""
Roles, capabilities and the role resolver.

Commands declare the capability they need; each role maps to a set of
capability codes (root holds "*"). Storekeepers see tickets like technicians
but are the only non-admin role that can fulfil parts requests, which is why
this is a capability table and not a plain rank comparison.
"""

from __future__ import annotations

import logging
import re
from enum import Enum
from typing import Any, Dict, Iterable, Optional

logger = logging.getLogger(__name__)


class Role(str, Enum):
    USER = "user"
    TECHNICIAN = "technician"
    STOREKEEPER = "storekeeper"
    ADMIN = "admin"
    ROOT = "root"

    @classmethod
    def parse(cls, value: Optional[str]) -> "Role":
        """Parse a stored role string. Legacy Portuguese names are accepted."""
        raw = (value or "").strip().lower()
        raw = _LEGACY_ROLE_NAMES.get(raw, raw)
        try:
            return cls(raw)
        except ValueError:
            logger.warning("[ROLE] Unknown role %r, treating as user", value)
            return cls.USER


_LEGACY_ROLE_NAMES = {
    "tecnico": "technician",
    "técnico": "technician",
    "almoxarifado": "storekeeper",
    "administrador": "admin",
}

ROLE_LABEL = {
    Role.USER: "usuário",
    Role.TECHNICIAN: "técnico",
    Role.STOREKEEPER: "almoxarifado",
    Role.ADMIN: "administrador",
    Role.ROOT: "root",
}

# ---- Capabilities -----------------------------------------------------------

TICKET_OPEN = "ticket.open"
TICKET_VIEW_ALL = "ticket.view.all"
TICKET_MANAGE = "ticket.manage"
PARTS_REQUEST = "parts.request"
PARTS_FULFILL = "parts.fulfill"
STATS_VIEW = "stats.view"
ADMIN_CONFIG = "admin.config"
ADMIN_USERS = "admin.users"
ROOT_USERS = "root.users"

_ADMIN_CAPS = {
    TICKET_OPEN, TICKET_VIEW_ALL, TICKET_MANAGE, PARTS_REQUEST, PARTS_FULFILL,
    STATS_VIEW, ADMIN_CONFIG, ADMIN_USERS,
}

DEFAULT_CAPS: Dict[Role, set] = {
    Role.USER: {TICKET_OPEN},
    Role.TECHNICIAN: {TICKET_OPEN, TICKET_VIEW_ALL, TICKET_MANAGE, PARTS_REQUEST, STATS_VIEW},
    Role.STOREKEEPER: {TICKET_OPEN, TICKET_VIEW_ALL, PARTS_FULFILL},
    Role.ADMIN: _ADMIN_CAPS,
    Role.ROOT: {"*"},
}

# Fixed denial text per required capability.
DENIAL_MESSAGES = {
    TICKET_VIEW_ALL: "❌ Comando disponível apenas para técnicos.",
    TICKET_MANAGE: "❌ Comando disponível apenas para técnicos.",
    PARTS_REQUEST: "❌ Comando disponível apenas para técnicos.",
    PARTS_FULFILL: "❌ Comando disponível apenas para almoxarifado.",
    STATS_VIEW: "❌ Comando disponível apenas para técnicos e administradores.",
    ADMIN_CONFIG: "❌ Comando disponível apenas para administradores.",
    ADMIN_USERS: "❌ Comando disponível apenas para administradores.",
    ROOT_USERS: "❌ Comando disponível apenas para usuários root.",
}
DEFAULT_DENIAL = "❌ Você não tem permissão para usar este comando."


def has_capability(role: Role, code: Optional[str]) -> bool:
    if code is None:
        return True
    caps = DEFAULT_CAPS.get(role, set())
    return "*" in caps or code in caps


def denial_message(code: Optional[str]) -> str:
    return DENIAL_MESSAGES.get(code or "", DEFAULT_DENIAL)


# ---- Identity ---------------------------------------------------------------

_JID_SUFFIX_RE = re.compile(r"@(s\.whatsapp\.net|c\.us|lid)$", re.IGNORECASE)


def normalize_identity(raw: Optional[str]) -> str:
    """
    '+55 69 98124-8816@s.whatsapp.net' -> '5569981248816'.

    Group JIDs (ending in @g.us) are returned untouched.
    """
    value = (raw or "").strip()
    if value.lower().endswith("@g.us"):
        return value
    value = _JID_SUFFIX_RE.sub("", value)
    return re.sub(r"\D", "", value)


def to_jid(identity: str) -> str:
    if "@" in identity:
        return identity
    return f"{identity}@s.whatsapp.net"


# ---- Resolver ---------------------------------------------------------------


class RoleResolver:
    """
    Maps an identity to its user record, healing it on the way.

    1. Missing user -> default `user` record is created.
    2. Identity in the root allow-list but stored role is not root -> persist root.

    Once a record exists with the right role, resolve() performs no write.
    """

    def __init__(self, repo, root_numbers: Iterable[str]) -> None:
        self.repo = repo
        self.root_numbers = {normalize_identity(n) for n in root_numbers if n}

    def is_root_listed(self, identity: str) -> bool:
        return identity in self.root_numbers

    def resolve(self, identity: str, display_name: Optional[str] = None) -> Dict[str, Any]:
        user = self.repo.get_user(identity)
        if user is None:
            logger.info("[ROLE] First contact, creating user", extra={"identity": identity})
            user = self.repo.upsert_user(identity, display_name=display_name)

        if self.is_root_listed(identity) and Role.parse(user.get("role")) is not Role.ROOT:
            logger.info(
                "[ROLE] Identity in root allow-list, promoting to root",
                extra={"identity": identity, "previous_role": user.get("role")},
            )
            self.repo.set_user_role(identity, Role.ROOT.value)
            user = dict(user, role=Role.ROOT.value)

        return user

    def resolve_role(self, identity: str) -> Role:
        return Role.parse(self.resolve(identity).get("role"))
