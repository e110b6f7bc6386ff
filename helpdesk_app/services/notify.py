# helpdesk_app/services/notify.py
"""
Notification fan-out.

Every event is turned into a list of deliveries (technical group message,
direct messages, admin e-mail). Each delivery is attempted on its own: a
failure is logged and swallowed, the other targets still get theirs, and
the mutation that triggered the event is never rolled back.

With NOTIFY_ASYNC the deliveries run on a small thread pool so the sender's
reply is not held up by slow targets; tests build the Notifier with
async_mode=False and inspect the fake gateway right away.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, List, Mapping, Optional, Tuple

from helpdesk_app.config import cfg, settings_value
from helpdesk_app.core.roles import Role
from helpdesk_app.core.timefmt import human_br, now_iso
from helpdesk_app.services import mailer as mail_templates

logger = logging.getLogger(__name__)

Delivery = Tuple[str, Callable[[], Any]]


class Notifier:
    def __init__(
        self,
        gateway,
        repo,
        mailer=None,
        *,
        async_mode: Optional[bool] = None,
        max_workers: int = 4,
    ) -> None:
        self.gateway = gateway
        self.repo = repo
        self.mailer = mailer
        self.async_mode = cfg.NOTIFY_ASYNC if async_mode is None else async_mode
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="notify") if self.async_mode else None

    # ------------------------------------------------------------------
    # Delivery plumbing
    # ------------------------------------------------------------------

    def tech_group_id(self) -> Optional[str]:
        return settings_value(self.repo, "tech_group_id") or None

    def _to_group(self, text: str) -> List[Delivery]:
        group_id = self.tech_group_id()
        if not group_id:
            logger.warning("[NOTIFY] No technical group configured; group message skipped")
            return []
        return [(f"group:{group_id}", lambda: self.gateway.send(group_id, text))]

    def _to_user(self, identity: Optional[str], text: str) -> List[Delivery]:
        if not identity:
            return []
        return [(f"dm:{identity}", lambda: self.gateway.send(identity, text))]

    def _to_admin_email(self, rendered: Mapping[str, str]) -> List[Delivery]:
        if self.mailer is None or not self.mailer.enabled:
            return []
        return [("email:admins", lambda: self.mailer.send_template(rendered))]

    def _fan_out(self, event: str, deliveries: List[Delivery]) -> None:
        for target, deliver in deliveries:
            try:
                deliver()
                logger.info("[NOTIFY] Delivered", extra={"event": event, "target": target})
            except Exception:
                logger.exception("[NOTIFY] Delivery failed", extra={"event": event, "target": target})

    def dispatch(self, event: str, deliveries: List[Delivery]) -> None:
        if not deliveries:
            return
        if self._pool is not None:
            self._pool.submit(self._fan_out, event, deliveries)
        else:
            self._fan_out(event, deliveries)

    def shutdown(self) -> None:
        if self._pool is not None:
            self._pool.shutdown(wait=True)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def ticket_created(self, ticket: Mapping[str, Any], analysis=None) -> None:
        lines = [
            "🆕 *NOVA OS CRIADA*",
            "",
            f"🎫 OS #{ticket['id']}",
            f"👤 Usuário: {ticket['requester_name']}",
            f"📞 Telefone: {ticket['requester_identity']}",
        ]
        if ticket.get("location"):
            lines.append(f"📍 Local: {ticket['location']}")
        if ticket.get("equipment"):
            lines.append(f"💻 Equipamento: {ticket['equipment']}")
        if ticket.get("remote_access_id"):
            lines.append(f"🖥️ AnyDesk: {ticket['remote_access_id']}")
        lines.append(f"📝 Problema: {ticket['problem_text']}")
        if analysis is not None:
            lines += [
                "",
                "🤖 *Análise IA:*",
                f"📂 {analysis.category} | ⚡ {analysis.priority}",
                f"🔍 {analysis.analysis}",
            ]
        lines += ["", f"📅 Criado em: {human_br(ticket.get('created_at'))}"]

        self.dispatch(
            "ticket_created",
            self._to_group("\n".join(lines)) + self._to_admin_email(mail_templates.new_order(ticket)),
        )

    def ticket_closed(self, ticket: Mapping[str, Any]) -> None:
        text = (
            "✅ *OS FINALIZADA*\n\n"
            f"🎫 OS #{ticket['id']}\n"
            f"👤 Cliente: {ticket['requester_name']}\n"
            f"📝 Problema: {ticket['problem_text']}\n"
            f"🔧 Finalizada por: {ticket.get('assigned_technician') or 'técnico'}"
        )
        closing = self.repo.get_config("closing_message")
        deliveries = self._to_group(text)
        if closing:
            deliveries += self._to_user(ticket["requester_identity"], f"✅ OS #{ticket['id']} finalizada.\n\n{closing}")
        deliveries += self._to_admin_email(mail_templates.order_completed(ticket))
        self.dispatch("ticket_closed", deliveries)

    def parts_requested(self, request: Mapping[str, Any]) -> None:
        text = (
            "📦 *NOVA SOLICITAÇÃO DE PEÇAS*\n\n"
            f"📦 Solicitação #{request['id']}\n"
            f"📋 OS #{request['ticket_id']}\n"
            f"👨‍🔧 Técnico: {request['technician_name']}\n"
            f"📦 Peças: {request['requested_parts']}"
        )
        if request.get("notes"):
            text += f"\n📝 Obs: {request['notes']}"
        self.dispatch("parts_requested", self._to_group(text))

    def parts_fulfilled(self, request: Mapping[str, Any], fulfilled_by: str) -> None:
        dm = (
            "✅ *PEÇAS DISPONIBILIZADAS*\n\n"
            f"📦 Solicitação #{request['id']}\n"
            f"📋 OS #{request['ticket_id']}\n"
            f"📦 Peças: {request['requested_parts']}\n"
            f"👤 Atendido por: {fulfilled_by}\n\n"
            "As peças estão disponíveis para retirada no almoxarifado."
        )
        group = (
            "✅ *PEÇAS DISPONIBILIZADAS*\n\n"
            f"📦 Solicitação #{request['id']} - OS #{request['ticket_id']}\n"
            f"👨‍🔧 Técnico: {request['technician_name']}\n"
            f"👤 Atendido por: {fulfilled_by}\n"
            "📦 Peças disponíveis para retirada"
        )
        self.dispatch(
            "parts_fulfilled",
            self._to_user(request["technician_identity"], dm) + self._to_group(group),
        )

    def admin_call(self, caller_identity: str, caller_name: str) -> int:
        """DM every admin and root; returns how many were targeted."""
        text = (
            "🚨 *CHAMADA DE ADMINISTRADOR*\n\n"
            "Um técnico está solicitando ajuda administrativa.\n"
            f"👤 {caller_name}\n"
            f"📞 {caller_identity}\n"
            f"🕐 {human_br(now_iso())}"
        )
        admins = self.repo.list_users_by_role(Role.ADMIN.value) + self.repo.list_users_by_role(Role.ROOT.value)
        deliveries: List[Delivery] = []
        for admin in admins:
            if admin["identity"] != caller_identity:
                deliveries += self._to_user(admin["identity"], text)
        self.dispatch("admin_call", deliveries)
        return len(deliveries)

    def tech_message(self, ticket: Mapping[str, Any], text: str) -> None:
        body = (
            f"📨 *MENSAGEM DO TÉCNICO - OS #{ticket['id']}*\n\n"
            f"{text}\n\n"
            f"Para acompanhar, use !status {ticket['id']}"
        )
        self.dispatch("tech_message", self._to_user(ticket["requester_identity"], body))

    def additional_data(self, ticket: Mapping[str, Any], text: str) -> None:
        technician = ticket.get("assigned_technician_identity")
        if not technician:
            return
        body = f"📝 *NOVAS INFORMAÇÕES - OS #{ticket['id']}*\n\n{text}"
        self.dispatch("additional_data", self._to_user(technician, body))

    def tech_group_changed(self, group_id: str, changed_by: str) -> None:
        text = (
            "🔄 *GRUPO TÉCNICO ALTERADO*\n\n"
            f"O grupo técnico foi redefinido por {changed_by}.\n"
            f"Novo grupo: {group_id}\n"
            f"Data: {human_br(now_iso())}"
        )
        deliveries: List[Delivery] = []
        for root in self.repo.list_users_by_role(Role.ROOT.value):
            if root["identity"] != changed_by:
                deliveries += self._to_user(root["identity"], text)
        self.dispatch("tech_group_changed", deliveries)
