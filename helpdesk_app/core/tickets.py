# helpdesk_app/core/tickets.py
"""
Ticket (OS) creation shared by the intake dialogue, the "chamado ..." trigger
word and the free-text problem path, plus the reply formatting for tickets.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Mapping, Optional

from helpdesk_app.core.models import (
    HISTORY_USER,
    TICKET_OPEN,
    TICKET_STATUS_EMOJI,
    TICKET_STATUS_LABEL,
    ProblemAnalysis,
)
from helpdesk_app.core.timefmt import human_br

logger = logging.getLogger(__name__)

DEFAULT_REQUESTER_NAME = "Usuário"
AUTO_PROBLEM_TEXT = "Chamado aberto automaticamente"


class TicketService:
    def __init__(self, repo, notifier, classifier=None) -> None:
        self.repo = repo
        self.notifier = notifier
        self.classifier = classifier

    def commit(
        self,
        identity: str,
        *,
        requester_name: str,
        problem_text: str,
        location: Optional[str] = None,
        equipment: Optional[str] = None,
        remote_access_id: Optional[str] = None,
        analysis: Optional[ProblemAnalysis] = None,
    ) -> Dict[str, Any]:
        """
        Persist a new open ticket, record the problem as the first history
        entry and fan out the creation notifications. Returns the stored row.
        """
        ticket_id = self.repo.create_ticket(
            requester_identity=identity,
            requester_name=requester_name,
            problem_text=problem_text,
            location=location,
            equipment=equipment,
            remote_access_id=remote_access_id,
        )
        self.repo.append_history(ticket_id, identity, problem_text, HISTORY_USER)
        ticket = self.repo.get_ticket(ticket_id)

        logger.info(
            "[TICKET] ✅ Ticket created",
            extra={"ticket_id": ticket_id, "identity": identity, "structured": location is not None},
        )
        self.notifier.ticket_created(ticket, analysis)
        return ticket

    def open_from_problem(self, identity: str, user: Mapping[str, Any], text: str) -> str:
        """Create a ticket from a bare problem description and return the reply."""
        problem = (text or "").strip() or AUTO_PROBLEM_TEXT
        if self.classifier is not None:
            analysis = self.classifier.analyze_problem(problem)
        else:
            analysis = ProblemAnalysis()
        ticket = self.commit(
            identity,
            requester_name=user.get("display_name") or DEFAULT_REQUESTER_NAME,
            problem_text=problem,
            analysis=analysis,
        )
        return problem_confirmation(ticket, analysis)


# ---- Reply formatting -------------------------------------------------------


def intake_confirmation(ticket: Mapping[str, Any]) -> str:
    lines = [
        "✅ *CHAMADO CRIADO COM SUCESSO*",
        "",
        f"🎫 *OS #{ticket['id']}*",
        f"👤 Usuário: {ticket['requester_name']}",
        f"📍 Local: {ticket.get('location') or 'Não informado'}",
        f"💻 Equipamento: {ticket.get('equipment') or 'Não informado'}",
    ]
    if ticket.get("remote_access_id"):
        lines.append(f"🖥️ AnyDesk: {ticket['remote_access_id']}")
    lines += [
        f"📝 Problema: {ticket['problem_text']}",
        f"📅 Criado em: {human_br(ticket.get('created_at'))}",
        "",
        "Seu chamado foi registrado e será atendido em breve!",
    ]
    return "\n".join(lines)


def problem_confirmation(ticket: Mapping[str, Any], analysis: ProblemAnalysis) -> str:
    return (
        "✅ *CHAMADO CRIADO COM SUCESSO*\n\n"
        f"🎫 OS #{ticket['id']}\n"
        f"📝 Problema: {ticket['problem_text']}\n"
        f"📅 Criado em: {human_br(ticket.get('created_at'))}\n\n"
        "🤖 *Análise Automática:*\n"
        f"📂 Categoria: {analysis.category}\n"
        f"⚡ Prioridade: {analysis.priority}\n"
        f"🔍 Análise: {analysis.analysis}\n\n"
        "💡 *Próximos passos:*\n"
        f"• Use !abrir {ticket['id']} para adicionar mais informações\n"
        f"• Use !status {ticket['id']} para consultar o andamento\n"
        "• Nossa equipe técnica foi notificada"
    )


def format_status(ticket: Mapping[str, Any]) -> str:
    status = ticket["status"]
    return (
        f"📋 *OS #{ticket['id']}*\n"
        f"{TICKET_STATUS_EMOJI.get(status, '⚪')} Status: {TICKET_STATUS_LABEL.get(status, status.upper())}\n"
        f"👤 Usuário: {ticket['requester_name']}\n"
        f"📍 Local: {ticket.get('location') or 'Não informado'}\n"
        f"💻 Equipamento: {ticket.get('equipment') or 'Não informado'}\n"
        f"🔧 Técnico: {ticket.get('assigned_technician') or 'Não atribuído'}\n"
        f"⚡ Prioridade: {'ALTA' if ticket.get('priority') else 'Normal'}\n"
        f"🏢 Setor: {ticket.get('department')}\n"
        f"📅 Criada: {human_br(ticket.get('created_at'))}"
    )


def format_list(tickets: Iterable[Mapping[str, Any]]) -> str:
    tickets = list(tickets)
    if not tickets:
        return "✅ Não há OS abertas no momento."

    blocks = ["📋 *ORDENS DE SERVIÇO ABERTAS*"]
    for t in tickets:
        marker = TICKET_STATUS_EMOJI[TICKET_OPEN] if t["status"] == TICKET_OPEN else TICKET_STATUS_EMOJI["in_progress"]
        if t.get("priority"):
            marker += "⚡"
        blocks.append(
            f"{marker} *OS #{t['id']}*\n"
            f"👤 {t['requester_name']}\n"
            f"📍 {t.get('location') or 'N/I'}\n"
            f"💻 {t.get('equipment') or 'N/I'}\n"
            f"🔧 {t.get('assigned_technician') or 'Não atribuído'}\n"
            f"📅 {human_br(t.get('created_at'))}"
        )
    return "\n\n".join(blocks)
