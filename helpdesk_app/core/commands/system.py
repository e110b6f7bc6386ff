# helpdesk_app/core/commands/system.py
"""Root-level commands and the root contact / web-login entry points."""

from __future__ import annotations

import logging

from helpdesk_app.core.commands.admin import promote
from helpdesk_app.core.commands.base import (
    CONV_EQUALS,
    CONV_RAW,
    Command,
    CommandContext,
)
from helpdesk_app.core.conversation.dialogue import KIND_LOGIN
from helpdesk_app.core.errors import CommandError, CommandUsageError
from helpdesk_app.core.models import ParsedCommand
from helpdesk_app.core.roles import ROOT_USERS, TICKET_OPEN, Role
from helpdesk_app.core.timefmt import human_date_br
from helpdesk_app.services.repository import DuplicateUsernameError

logger = logging.getLogger(__name__)

USAGE_CREATE_WEB_USER = "❌ Use: !user [username] [password]"
USAGE_PROMOTE_ADMIN = "❌ Use: !admin @usuario ou !admin=[número do telefone]"


def cmd_root(ctx: CommandContext, parsed: ParsedCommand) -> str:
    root = ctx.repo.primary_root_user()
    if root is None:
        return "❌ Nenhum usuário root encontrado no sistema."
    return (
        "👑 *ROOT DO SISTEMA*\n\n"
        f"📞 @{root['identity']}\n"
        f"👤 {root.get('display_name') or 'Root User'}\n"
        f"📅 Cadastrado em: {human_date_br(root.get('created_at'))}\n\n"
        "Para contato direto com o administrador principal do sistema."
    )


def cmd_promote_root(ctx: CommandContext, parsed: ParsedCommand) -> str:
    return ctx.dialogues.start(ctx.identity, KIND_LOGIN)


def cmd_create_web_user(ctx: CommandContext, parsed: ParsedCommand) -> str:
    parts = parsed.raw_args.split()
    if len(parts) != 2:
        raise CommandUsageError(USAGE_CREATE_WEB_USER)
    username, password = parts
    try:
        ctx.repo.create_system_user(
            username=username,
            password=password,
            identity=ctx.identity,
            role=Role.ADMIN.value,
            created_by=ctx.identity,
        )
    except DuplicateUsernameError:
        raise CommandError("❌ Nome de usuário já existe. Escolha outro nome.")

    logger.info("[COMMAND] Web user created", extra={"username": username, "by": ctx.identity})
    return (
        "✅ Usuário de sistema criado com sucesso!\n\n"
        f"👤 Username: {username}\n"
        "🌐 Acesso: Interface web de configurações\n\n"
        "O usuário pode acessar as configurações do sistema através da interface web."
    )


def cmd_promote_admin(ctx: CommandContext, parsed: ParsedCommand) -> str:
    return promote(ctx, parsed, Role.ADMIN, USAGE_PROMOTE_ADMIN)


COMMANDS = [
    Command("root", cmd_root, TICKET_OPEN),
    Command("promote_root", cmd_promote_root, TICKET_OPEN, aliases=("loginroot",)),
    Command(
        "create_web_user", cmd_create_web_user, ROOT_USERS,
        convention=CONV_RAW, aliases=("user",), usage=USAGE_CREATE_WEB_USER, requires_args=True,
    ),
    Command(
        "promote_admin", cmd_promote_admin, ROOT_USERS,
        convention=CONV_EQUALS, aliases=("admin",), usage=USAGE_PROMOTE_ADMIN, requires_args=True,
    ),
]
