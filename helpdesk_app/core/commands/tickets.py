# helpdesk_app/core/commands/tickets.py
"""Ticket (OS) commands for requesters and technicians."""

from __future__ import annotations

import logging

from helpdesk_app.core.commands.base import (
    CONV_KEYED,
    CONV_SPACE,
    Command,
    CommandContext,
    ensure_can_view,
    first_positional,
    keyed_pair,
    require_ticket,
)
from helpdesk_app.core.conversation.dialogue import KIND_ADDITIONAL_DATA, KIND_TICKET_INTAKE
from helpdesk_app.core.errors import InvalidTransitionError, PermissionDeniedError
from helpdesk_app.core.models import (
    HISTORY_SYSTEM,
    HISTORY_TECHNICIAN,
    PARTS_STATUS_EMOJI,
    TICKET_ACTIVE,
    TICKET_CANCELLED,
    TICKET_CLOSED,
    ParsedCommand,
)
from helpdesk_app.core.roles import (
    STATS_VIEW,
    TICKET_MANAGE,
    TICKET_OPEN,
    TICKET_VIEW_ALL,
    Role,
)
from helpdesk_app.core.tickets import format_list, format_status

logger = logging.getLogger(__name__)

HELP_USER = (
    "🤖 *COMANDOS DISPONÍVEIS*\n\n"
    "*USUÁRIOS:*\n"
    "• !ajuda - Lista de comandos\n"
    "• !status [id] - Ver status da OS\n"
    "• !cancelar [id] - Cancelar OS\n"
    "• !abrir - Abrir um novo chamado\n\n"
    'Para abrir um chamado, use !abrir, digite "chamado [descrição]" ou apenas descreva seu problema!'
)

HELP_FULL = (
    "🤖 *COMANDOS DISPONÍVEIS*\n\n"
    "*USUÁRIOS:*\n"
    "• !ajuda - Lista de comandos\n"
    "• !status [id] - Ver status da OS\n"
    "• !cancelar [id] - Cancelar OS\n"
    "• !abrir - Abrir um novo chamado\n\n"
    "*TÉCNICOS:*\n"
    "• !menu - Exibir comandos técnicos\n"
    "• !atendendo [id] - Assumir OS\n"
    "• !prioridade [id] - Marcar como prioritário\n"
    "• !setor [id]=[setor] - Alterar setor\n"
    "• !mensagem [id]=[texto] - Enviar mensagem ao solicitante\n"
    "• !list - Listar OS abertas\n"
    "• !finalizado [id] - Marcar como finalizado\n"
    "• !adm - Chamar administrador\n"
    "• !grafico - Estatísticas\n\n"
    "*ADMINISTRADORES:*\n"
    "• !config - Menu de configurações\n"
    "• !listtc - Listar técnicos\n"
    "• !listadm - Listar administradores\n"
    "• !menss=[texto] - Alterar saudação\n"
    "• !msfinal=[texto] - Alterar mensagem final\n"
    "• !ping - Tempo de resposta\n"
    "• !tecnico=[num] - Tornar técnico\n"
    "• !almoxarifado=[num] - Tornar almoxarifado\n"
    "• !historico - Ver histórico de OS\n\n"
    "*PEÇAS:*\n"
    "• !listpeças [id_os] - Solicitar peças para OS\n"
    "• !pecas - Ver solicitações de peças (almoxarifado)\n"
    "• !atender [id_solicitacao] - Atender solicitação (almoxarifado)"
)

TECH_MENU = (
    "🔧 *MENU TÉCNICO*\n\n"
    "• !atendendo [id] - Assumir OS\n"
    "• !prioridade [id] - Marcar como prioritário\n"
    "• !setor [id]=[setor] - Alterar setor\n"
    "• !mensagem [id]=[texto] - Enviar mensagem\n"
    "• !list - Listar OS abertas\n"
    "• !finalizado [id] - Finalizar OS\n"
    "• !listpeças [id] - Solicitar peças para OS\n"
    "• !adm - Chamar administrador"
)

USAGE_STATUS = "❌ Use: !status [id da OS]"
USAGE_CANCEL = "❌ Use: !cancelar [id da OS]"
USAGE_OPEN = "❌ Use: !abrir [id da OS]"
USAGE_CLAIM = "❌ Use: !atendendo [id da OS]"
USAGE_PRIORITY = "❌ Use: !prioridade [id da OS]"
USAGE_DEPARTMENT = "❌ Use: !setor [id]=[setor]"
USAGE_MESSAGE = "❌ Use: !mensagem [id]=[texto]"
USAGE_CLOSE = "❌ Use: !finalizado [id da OS]"

_MONTHS_PT = (
    "janeiro", "fevereiro", "março", "abril", "maio", "junho",
    "julho", "agosto", "setembro", "outubro", "novembro", "dezembro",
)


# ---- Requester commands -------------------------------------------------------


def cmd_help(ctx: CommandContext, parsed: ParsedCommand) -> str:
    if ctx.role is Role.USER:
        return HELP_USER
    return ctx.repo.get_config("help_message") or HELP_FULL


def cmd_status(ctx: CommandContext, parsed: ParsedCommand) -> str:
    ticket = require_ticket(ctx, first_positional(parsed), USAGE_STATUS)
    ensure_can_view(ctx, ticket, "❌ Você só pode consultar suas próprias OS.")
    return format_status(ticket)


def cmd_cancel(ctx: CommandContext, parsed: ParsedCommand) -> str:
    ticket = require_ticket(ctx, first_positional(parsed), USAGE_CANCEL)
    tid = ticket["id"]
    if ticket["requester_identity"] != ctx.identity:
        raise PermissionDeniedError("❌ Você só pode cancelar suas próprias OS.")
    if ticket["status"] == TICKET_CLOSED:
        raise InvalidTransitionError("❌ Não é possível cancelar uma OS já finalizada.")
    if ticket["status"] == TICKET_CANCELLED:
        raise InvalidTransitionError(f"❌ OS #{tid} já está cancelada.")

    if not ctx.repo.transition_ticket(tid, TICKET_CANCELLED, TICKET_ACTIVE):
        raise InvalidTransitionError("❌ Não é possível cancelar uma OS já finalizada.")
    ctx.repo.append_history(tid, ctx.identity, "OS cancelada pelo usuário", HISTORY_SYSTEM)
    return f"✅ OS #{tid} cancelada com sucesso."


def cmd_open(ctx: CommandContext, parsed: ParsedCommand) -> str:
    raw_id = first_positional(parsed)
    if raw_id is None:
        return ctx.dialogues.start(ctx.identity, KIND_TICKET_INTAKE)

    ticket = require_ticket(ctx, raw_id, USAGE_OPEN)
    ensure_can_view(ctx, ticket, "❌ Você não tem permissão para adicionar dados a esta OS.")
    return ctx.dialogues.start(ctx.identity, KIND_ADDITIONAL_DATA, ticket_id=ticket["id"])


# ---- Technician commands ------------------------------------------------------


def cmd_menu(ctx: CommandContext, parsed: ParsedCommand) -> str:
    return TECH_MENU


def cmd_claim(ctx: CommandContext, parsed: ParsedCommand) -> str:
    ticket = require_ticket(ctx, first_positional(parsed), USAGE_CLAIM)
    tid = ticket["id"]
    # Conditional update: of two concurrent claims only one moves the row.
    if not ctx.repo.claim_ticket(tid, ctx.display_name, ctx.identity):
        raise InvalidTransitionError(f"❌ OS #{tid} não está disponível para atendimento.")
    ctx.repo.append_history(tid, ctx.identity, "Técnico assumiu o atendimento", HISTORY_TECHNICIAN)
    logger.info("[COMMAND] Ticket claimed", extra={"ticket_id": tid, "technician": ctx.identity})
    return f"✅ Você assumiu a OS #{tid}. Status alterado para EM ANDAMENTO."


def cmd_priority(ctx: CommandContext, parsed: ParsedCommand) -> str:
    ticket = require_ticket(ctx, first_positional(parsed), USAGE_PRIORITY)
    tid = ticket["id"]
    if not ctx.repo.set_ticket_priority(tid, True):
        raise InvalidTransitionError(
            f"❌ OS #{tid} já foi encerrada e não pode ter a prioridade alterada."
        )
    return f"⚡ OS #{tid} marcada como ALTA PRIORIDADE!"


def cmd_department(ctx: CommandContext, parsed: ParsedCommand) -> str:
    raw_id, department = keyed_pair(parsed, USAGE_DEPARTMENT)
    ticket = require_ticket(ctx, raw_id, USAGE_DEPARTMENT)
    ctx.repo.set_ticket_department(ticket["id"], department)
    return f"✅ Setor da OS #{ticket['id']} alterado para: {department}"


def cmd_message(ctx: CommandContext, parsed: ParsedCommand) -> str:
    raw_id, text = keyed_pair(parsed, USAGE_MESSAGE)
    ticket = require_ticket(ctx, raw_id, USAGE_MESSAGE)
    ctx.repo.append_history(ticket["id"], ctx.identity, text, HISTORY_TECHNICIAN)
    ctx.notifier.tech_message(ticket, text)
    return f"✅ Mensagem enviada para o usuário da OS #{ticket['id']}"


def cmd_list(ctx: CommandContext, parsed: ParsedCommand) -> str:
    return format_list(ctx.repo.list_open_tickets())


def cmd_close(ctx: CommandContext, parsed: ParsedCommand) -> str:
    ticket = require_ticket(ctx, first_positional(parsed), USAGE_CLOSE)
    tid = ticket["id"]
    if ticket["status"] == TICKET_CLOSED:
        return f"✅ OS #{tid} já está finalizada."
    if ticket["status"] == TICKET_CANCELLED:
        raise InvalidTransitionError(f"❌ OS #{tid} foi cancelada e não pode ser finalizada.")

    fields = {}
    if not ticket.get("assigned_technician"):
        fields = {"assigned_technician": ctx.display_name, "assigned_technician_identity": ctx.identity}
    if not ctx.repo.transition_ticket(tid, TICKET_CLOSED, TICKET_ACTIVE, **fields):
        # Lost a race against a cancel or another close.
        current = ctx.repo.get_ticket(tid) or ticket
        if current["status"] == TICKET_CLOSED:
            return f"✅ OS #{tid} já está finalizada."
        raise InvalidTransitionError(f"❌ OS #{tid} foi cancelada e não pode ser finalizada.")

    ctx.repo.append_history(tid, ctx.identity, "OS finalizada pelo técnico", HISTORY_SYSTEM)
    ctx.notifier.ticket_closed(ctx.repo.get_ticket(tid))
    return f"✅ OS #{tid} finalizada com sucesso!"


def cmd_call_admin(ctx: CommandContext, parsed: ParsedCommand) -> str:
    targeted = ctx.notifier.admin_call(ctx.identity, ctx.display_name)
    if not targeted:
        return "⚠️ Nenhum administrador cadastrado para notificar."
    return "✅ Administradores notificados!"


def _month_label(month: str) -> str:
    year, mm = month.split("-")
    return f"{_MONTHS_PT[int(mm) - 1]} de {year}"


def cmd_stats(ctx: CommandContext, parsed: ParsedCommand) -> str:
    stats = ctx.repo.chart_stats()
    response = "📊 *ESTATÍSTICAS DO SISTEMA*\n\n"

    if stats["per_month"]:
        response += "📈 *OS por Mês (Últimos 12 meses):*\n"
        for month, total, closed in stats["per_month"]:
            response += f"• {_month_label(month)}: {total} ({closed} finalizadas)\n"
        response += "\n"

    if stats["per_technician"]:
        response += "👨‍🔧 *OS por Técnico (Últimos 30 dias):*\n"
        for name, total, closed in stats["per_technician"]:
            efficiency = round(closed / total * 100) if total else 0
            response += f"• {name}: {total} OS ({efficiency}% finalizadas)\n"
        response += "\n"

    if stats["parts_by_status"]:
        response += "📦 *Solicitações de Peças (Últimos 30 dias):*\n"
        for status, total in stats["parts_by_status"].items():
            response += f"{PARTS_STATUS_EMOJI.get(status, '⚪')} {status}: {total}\n"
        response += "\n"

    mean = stats["mean_resolution_hours"]
    if mean > 0:
        hours = int(mean)
        minutes = round((mean - hours) * 60)
        response += f"⏱️ *Tempo Médio de Resolução:* {hours}h {minutes}min\n\n"

    if not (stats["per_month"] or stats["per_technician"] or stats["parts_by_status"]):
        response += "Nenhum dado registrado ainda."
    return response.rstrip()


COMMANDS = [
    Command("help", cmd_help, TICKET_OPEN, aliases=("ajuda",)),
    Command("status", cmd_status, TICKET_OPEN, usage=USAGE_STATUS, requires_args=True),
    Command("cancel", cmd_cancel, TICKET_OPEN, aliases=("cancelar",), usage=USAGE_CANCEL, requires_args=True),
    Command("open", cmd_open, TICKET_OPEN, aliases=("abrir",)),
    Command("menu", cmd_menu, TICKET_MANAGE),
    Command("claim", cmd_claim, TICKET_MANAGE, aliases=("atendendo",), usage=USAGE_CLAIM, requires_args=True),
    Command("priority", cmd_priority, TICKET_MANAGE, aliases=("prioridade",), usage=USAGE_PRIORITY, requires_args=True),
    Command(
        "department", cmd_department, TICKET_MANAGE,
        convention=CONV_KEYED, aliases=("setor",), usage=USAGE_DEPARTMENT, requires_args=True,
    ),
    Command(
        "message", cmd_message, TICKET_MANAGE,
        convention=CONV_KEYED, aliases=("mensagem",), usage=USAGE_MESSAGE, requires_args=True,
    ),
    Command("list", cmd_list, TICKET_VIEW_ALL, aliases=("listar",)),
    Command("close", cmd_close, TICKET_MANAGE, aliases=("finalizado",), usage=USAGE_CLOSE, requires_args=True),
    Command("call_admin", cmd_call_admin, TICKET_MANAGE, aliases=("adm",)),
    Command("stats", cmd_stats, STATS_VIEW, aliases=("grafico", "gráfico")),
]
