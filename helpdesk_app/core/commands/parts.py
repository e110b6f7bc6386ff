# helpdesk_app/core/commands/parts.py
"""Parts request commands: technicians ask, the storekeeper fulfils."""

from __future__ import annotations

import logging

from helpdesk_app.core.commands.base import (
    Command,
    CommandContext,
    first_positional,
    require_ticket,
)
from helpdesk_app.core.conversation.dialogue import KIND_PARTS_INTAKE
from helpdesk_app.core.errors import CommandUsageError, InvalidTransitionError, NotFoundError
from helpdesk_app.core.models import (
    PARTS_CANCELLED,
    PARTS_FULFILLED,
    PARTS_PENDING,
    ParsedCommand,
)
from helpdesk_app.core.roles import PARTS_FULFILL, PARTS_REQUEST
from helpdesk_app.core.timefmt import human_br
from helpdesk_app.services.repository import as_id

logger = logging.getLogger(__name__)

USAGE_REQUEST_PARTS = "❌ Use: !listpeças [id da OS]"
USAGE_FULFILL = "❌ Use: !atender [id da solicitação]"


def cmd_request_parts(ctx: CommandContext, parsed: ParsedCommand) -> str:
    ticket = require_ticket(ctx, first_positional(parsed), USAGE_REQUEST_PARTS)
    return ctx.dialogues.start(ctx.identity, KIND_PARTS_INTAKE, ticket_id=ticket["id"])


def cmd_parts(ctx: CommandContext, parsed: ParsedCommand) -> str:
    requests = ctx.repo.list_parts_requests(PARTS_PENDING)
    if not requests:
        return "✅ Não há solicitações de peças pendentes."

    response = "📦 *SOLICITAÇÕES DE PEÇAS PENDENTES*\n\n"
    for req in requests:
        response += f"🎫 *Solicitação #{req['id']}*\n"
        response += f"📋 OS #{req['ticket_id']} - {req['requester_name']}\n"
        response += f"👨‍🔧 Técnico: {req['technician_name']}\n"
        response += f"📍 Local: {req.get('location') or 'N/I'}\n"
        response += f"💻 Equipamento: {req.get('equipment') or 'N/I'}\n"
        response += f"📦 Peças:\n{req['requested_parts']}\n"
        if req.get("notes"):
            response += f"📝 Obs: {req['notes']}\n"
        response += f"📅 Solicitado em: {human_br(req.get('created_at'))}\n\n"
    return response + "Para atender uma solicitação, use: !atender [id]"


def cmd_fulfill(ctx: CommandContext, parsed: ParsedCommand) -> str:
    raw_id = first_positional(parsed)
    if not raw_id:
        raise CommandUsageError(USAGE_FULFILL)
    request = ctx.repo.get_parts_request(raw_id)
    if request is None:
        raise NotFoundError(f"❌ Solicitação #{as_id(raw_id) or raw_id} não encontrada.")

    rid = request["id"]
    if request["status"] == PARTS_FULFILLED:
        raise InvalidTransitionError(f"❌ Solicitação #{rid} já foi atendida.")
    if request["status"] == PARTS_CANCELLED:
        raise InvalidTransitionError(f"❌ Solicitação #{rid} foi cancelada.")

    fulfilled_by = ctx.display_name
    if not ctx.repo.update_parts_status(rid, PARTS_FULFILLED, fulfilled_by):
        raise InvalidTransitionError(f"❌ Solicitação #{rid} já foi atendida.")
    ctx.notifier.parts_fulfilled(request, fulfilled_by)
    logger.info("[COMMAND] Parts request fulfilled", extra={"request_id": rid, "by": ctx.identity})
    return f"✅ Solicitação #{rid} marcada como atendida!"


COMMANDS = [
    Command(
        "request_parts", cmd_request_parts, PARTS_REQUEST,
        aliases=("listpeças", "listpecas"), usage=USAGE_REQUEST_PARTS, requires_args=True,
    ),
    Command("parts", cmd_parts, PARTS_FULFILL, aliases=("pecas", "peças")),
    Command("fulfill", cmd_fulfill, PARTS_FULFILL, aliases=("atender",), usage=USAGE_FULFILL, requires_args=True),
]
