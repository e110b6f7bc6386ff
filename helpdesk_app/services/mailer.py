# helpdesk_app/services/mailer.py
"""
Admin e-mail notifications over SMTP.

Sending is skipped (returns False) unless EMAIL_ENABLED, SMTP_HOST and
ADMIN_EMAILS are all set. SMTP errors propagate; the notifier decides what
to do with them.
"""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from html import escape
from typing import Any, Dict, List, Mapping, Optional

from helpdesk_app.config import cfg
from helpdesk_app.core.timefmt import human_br

logger = logging.getLogger(__name__)


def new_order(ticket: Mapping[str, Any]) -> Dict[str, str]:
    rows = [
        ("ID", ticket["id"]),
        ("Usuário", ticket.get("requester_name")),
        ("Telefone", ticket.get("requester_identity")),
        ("Local", ticket.get("location") or "Não informado"),
        ("Equipamento", ticket.get("equipment") or "Não informado"),
        ("Problema", ticket.get("problem_text")),
        ("Data", human_br(ticket.get("created_at"))),
    ]
    return _render(
        f"Nova OS #{ticket['id']} - {ticket.get('requester_name')}",
        "Nova Ordem de Serviço criada",
        rows,
    )


def order_completed(ticket: Mapping[str, Any]) -> Dict[str, str]:
    rows = [
        ("ID", ticket["id"]),
        ("Usuário", ticket.get("requester_name")),
        ("Técnico", ticket.get("assigned_technician") or "Não atribuído"),
        ("Problema", ticket.get("problem_text")),
        ("Status", "Finalizada"),
        ("Data", human_br(ticket.get("closed_at"))),
    ]
    return _render(
        f"OS #{ticket['id']} Finalizada - {ticket.get('requester_name')}",
        "Ordem de Serviço finalizada",
        rows,
    )


def _render(subject: str, title: str, rows) -> Dict[str, str]:
    text = f"{title}:\n\n" + "\n".join(f"{label}: {value}" for label, value in rows)
    html = f"<h2>{escape(title)}</h2>\n" + "\n".join(
        f"<p><strong>{escape(str(label))}:</strong> {escape(str(value))}</p>" for label, value in rows
    )
    return {"subject": subject, "text": text, "html": html}


class Mailer:
    def __init__(self, recipients: Optional[List[str]] = None) -> None:
        self.recipients = recipients if recipients is not None else cfg.admin_emails()

    @property
    def enabled(self) -> bool:
        return bool(cfg.EMAIL_ENABLED and cfg.SMTP_HOST and self.recipients)

    def send_admin(self, subject: str, text: str, html: Optional[str] = None) -> bool:
        if not self.enabled:
            logger.debug("[MAIL] Skipped (e-mail not configured)", extra={"subject": subject})
            return False

        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = cfg.EMAIL_FROM
        msg["To"] = ", ".join(self.recipients)
        msg.set_content(text)
        if html:
            msg.add_alternative(html, subtype="html")

        smtp_cls = smtplib.SMTP_SSL if cfg.SMTP_SECURE else smtplib.SMTP
        with smtp_cls(cfg.SMTP_HOST, cfg.SMTP_PORT, timeout=15) as smtp:
            if not cfg.SMTP_SECURE:
                smtp.starttls()
            if cfg.SMTP_USER and cfg.SMTP_PASS:
                smtp.login(cfg.SMTP_USER, cfg.SMTP_PASS)
            smtp.send_message(msg)

        logger.info("[MAIL] Sent", extra={"subject": subject, "to": self.recipients})
        return True

    def send_template(self, rendered: Mapping[str, str]) -> bool:
        return self.send_admin(rendered["subject"], rendered["text"], rendered.get("html"))
