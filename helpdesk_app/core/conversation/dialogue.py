# helpdesk_app/core/conversation/dialogue.py
"""
Multi-step data collection dialogues.

A dialogue is a strictly linear list of named steps. While one is open for
an identity, every message from that identity is stored as the current
step's value (even "!status 5"), the next step's prompt is returned, and
the last step commits the result:

    ticket_intake:    name -> location -> equipment -> remote_access_id -> problem_description
    parts_intake:     parts_list -> notes
    login:            username -> password -> target_identity
    additional_data:  additional_data

Dialogues live in memory only (DialogueStore) and are lost on restart. An
idle dialogue older than DIALOGUE_TTL_SECONDS is dropped on the next lookup;
0 disables the expiry.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, FrozenSet, Optional, Tuple

from helpdesk_app.config import cfg
from helpdesk_app.core.errors import NoOpenDialogueError
from helpdesk_app.core.models import HISTORY_USER, Dialogue
from helpdesk_app.core.roles import Role, normalize_identity
from helpdesk_app.core.tickets import intake_confirmation
from helpdesk_app.core.timefmt import human_br, utcnow

logger = logging.getLogger(__name__)

KIND_TICKET_INTAKE = "ticket_intake"
KIND_PARTS_INTAKE = "parts_intake"
KIND_LOGIN = "login"
KIND_ADDITIONAL_DATA = "additional_data"

# Inputs that mean "leave this optional field empty".
DEFAULT_SKIP_TOKENS: FrozenSet[str] = frozenset({"não", "nao", "no", "none", "-"})

INVALID_CREDENTIALS_REPLY = "❌ Credenciais inválidas. Comando cancelado."


@dataclass(frozen=True)
class Step:
    name: str
    prompt: str
    skip_tokens: FrozenSet[str] = frozenset()

    def normalize(self, text: str) -> Optional[str]:
        value = (text or "").strip()
        if self.skip_tokens and value.casefold() in self.skip_tokens:
            return None
        return value


FLOWS: Dict[str, Tuple[Step, ...]] = {
    KIND_TICKET_INTAKE: (
        Step(
            "name",
            "📝 *COLETA DE DADOS PARA CHAMADO*\n\n"
            "Por favor, forneça as seguintes informações:\n\n"
            "1️⃣ Seu nome completo:",
        ),
        Step("location", "2️⃣ Local do atendimento (ex: Recepção, Sala 101):"),
        Step("equipment", "3️⃣ Equipamento com problema (ex: Impressora HP, Computador Dell):"),
        Step(
            "remote_access_id",
            '4️⃣ ID do AnyDesk (se aplicável, ou digite "não"):',
            skip_tokens=DEFAULT_SKIP_TOKENS,
        ),
        Step("problem_description", "5️⃣ Descreva detalhadamente o problema:"),
    ),
    KIND_PARTS_INTAKE: (
        Step(
            "parts_list",
            "📦 *SOLICITAÇÃO DE PEÇAS - OS #{ticket_id}*\n\n"
            "Liste as peças necessárias (uma por linha):\n"
            "Exemplo:\n"
            "- Mouse óptico USB\n"
            "- Cabo de rede CAT5e 2m\n"
            "- Toner HP CF217A\n\n"
            "Digite as peças necessárias:",
        ),
        Step(
            "notes",
            '📝 Observações adicionais (ou digite "não" se não houver):',
            skip_tokens=DEFAULT_SKIP_TOKENS,
        ),
    ),
    KIND_LOGIN: (
        Step("username", "🔐 *AUTENTICAÇÃO REQUERIDA*\n\nInforme o usuário de acesso à interface web:"),
        Step("password", "🔐 Informe a senha de acesso à interface web:"),
        Step(
            "target_identity",
            "✅ Autenticado com sucesso!\n\n"
            "Agora informe o número do telefone do usuário que deseja promover a root:",
        ),
    ),
    KIND_ADDITIONAL_DATA: (
        Step(
            "additional_data",
            "📝 *ADICIONAR DADOS À OS #{ticket_id}*\n\n"
            "Por favor, forneça as informações adicionais:",
        ),
    ),
}


class DialogueStore:
    """
    Per-process map identity -> Dialogue.

    Map operations are guarded by one lock; per-identity ordering is the
    dispatcher's job.
    """

    def __init__(self, ttl_seconds: Optional[int] = None) -> None:
        self.ttl_seconds = cfg.DIALOGUE_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self._items: Dict[str, Dialogue] = {}
        self._lock = threading.Lock()

    def get(self, identity: str) -> Optional[Dialogue]:
        with self._lock:
            dialogue = self._items.get(identity)
            if dialogue is None:
                return None
            if self.ttl_seconds > 0:
                elapsed = (utcnow() - dialogue.updated_at).total_seconds()
                if elapsed > self.ttl_seconds:
                    self._items.pop(identity, None)
                    logger.info(
                        "[DIALOGUE] Expired due to TTL",
                        extra={
                            "identity": identity,
                            "kind": dialogue.kind,
                            "step": dialogue.step,
                            "elapsed_seconds": int(elapsed),
                        },
                    )
                    return None
            return dialogue

    def put(self, dialogue: Dialogue) -> None:
        with self._lock:
            self._items[dialogue.identity] = dialogue

    def clear(self, identity: str) -> None:
        with self._lock:
            self._items.pop(identity, None)

    def __len__(self) -> int:
        return len(self._items)


class DialogueEngine:
    def __init__(self, store: DialogueStore, repo, tickets, notifier) -> None:
        self.store = store
        self.repo = repo
        self.tickets = tickets
        self.notifier = notifier
        self._validators: Dict[Tuple[str, str], Callable[[Dialogue], Optional[str]]] = {
            (KIND_LOGIN, "password"): self._check_credentials,
        }
        self._finishers: Dict[str, Callable[[Dialogue], str]] = {
            KIND_TICKET_INTAKE: self._finish_ticket_intake,
            KIND_PARTS_INTAKE: self._finish_parts_intake,
            KIND_LOGIN: self._finish_login,
            KIND_ADDITIONAL_DATA: self._finish_additional_data,
        }

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def has_open(self, identity: str) -> bool:
        return self.store.get(identity) is not None

    def current(self, identity: str) -> Optional[Dialogue]:
        return self.store.get(identity)

    def start(self, identity: str, kind: str, ticket_id: Optional[int] = None) -> str:
        """
        Open a dialogue of `kind`, replacing any dialogue already open for
        this identity, and return the first prompt.
        """
        first = FLOWS[kind][0]
        previous = self.store.get(identity)
        if previous is not None:
            logger.info(
                "[DIALOGUE] Replacing open dialogue",
                extra={"identity": identity, "old_kind": previous.kind, "new_kind": kind},
            )
        self.store.put(Dialogue(identity=identity, kind=kind, step=first.name, ticket_id=ticket_id))
        logger.info("[DIALOGUE] Started", extra={"identity": identity, "kind": kind, "ticket_id": ticket_id})
        return first.prompt.format(ticket_id=ticket_id)

    def cancel(self, identity: str) -> None:
        self.store.clear(identity)

    def advance(self, identity: str, text: str) -> str:
        dialogue = self.store.get(identity)
        if dialogue is None:
            raise NoOpenDialogueError(identity)

        steps = FLOWS[dialogue.kind]
        index = next(i for i, s in enumerate(steps) if s.name == dialogue.step)
        step = steps[index]
        dialogue.fields[step.name] = step.normalize(text)

        logger.info(
            "[DIALOGUE] Step collected",
            extra={
                "identity": identity,
                "kind": dialogue.kind,
                "step": step.name,
                "skipped": dialogue.fields[step.name] is None,
            },
        )

        validator = self._validators.get((dialogue.kind, step.name))
        if validator is not None:
            abort_reply = validator(dialogue)
            if abort_reply is not None:
                self.store.clear(identity)
                return abort_reply

        if index + 1 < len(steps):
            nxt = steps[index + 1]
            dialogue.step = nxt.name
            dialogue.touch()
            self.store.put(dialogue)
            return nxt.prompt.format(ticket_id=dialogue.ticket_id)

        # Final step: the dialogue is gone even if the commit below raises.
        self.store.clear(identity)
        return self._finishers[dialogue.kind](dialogue)

    # ------------------------------------------------------------------
    # Step validation
    # ------------------------------------------------------------------

    def _check_credentials(self, dialogue: Dialogue) -> Optional[str]:
        username = dialogue.fields.get("username") or ""
        password = dialogue.fields.get("password") or ""
        # never keep the plain password in memory
        dialogue.fields["password"] = None
        user = self.repo.verify_system_user(username, password)
        if user is None:
            logger.info("[DIALOGUE] Login rejected", extra={"identity": dialogue.identity, "username": username})
            return INVALID_CREDENTIALS_REPLY
        dialogue.fields["system_user_id"] = user["id"]
        return None

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    def _finish_ticket_intake(self, dialogue: Dialogue) -> str:
        f = dialogue.fields
        ticket = self.tickets.commit(
            dialogue.identity,
            requester_name=f["name"],
            problem_text=f["problem_description"],
            location=f["location"],
            equipment=f["equipment"],
            remote_access_id=f["remote_access_id"],
        )
        self.repo.upsert_user(dialogue.identity, display_name=f["name"])
        return intake_confirmation(ticket)

    def _finish_parts_intake(self, dialogue: Dialogue) -> str:
        f = dialogue.fields
        user = self.repo.get_user(dialogue.identity) or {}
        technician_name = user.get("display_name") or "Técnico"
        request_id = self.repo.create_parts_request(
            ticket_id=dialogue.ticket_id,
            technician_identity=dialogue.identity,
            technician_name=technician_name,
            requested_parts=f["parts_list"],
            notes=f["notes"],
        )
        request = self.repo.get_parts_request(request_id)
        self.notifier.parts_requested(request)

        reply = (
            "✅ *SOLICITAÇÃO DE PEÇAS CRIADA*\n\n"
            f"📦 Solicitação #{request_id}\n"
            f"📋 OS #{dialogue.ticket_id}\n"
            f"👨‍🔧 Técnico: {technician_name}\n"
            f"📦 Peças solicitadas:\n{f['parts_list']}\n"
        )
        if f["notes"]:
            reply += f"📝 Observações: {f['notes']}\n"
        return reply + (
            f"\n📅 Solicitado em: {human_br(request.get('created_at'))}\n\n"
            "A solicitação foi enviada para o almoxarifado."
        )

    def _finish_login(self, dialogue: Dialogue) -> str:
        target = normalize_identity(dialogue.fields["target_identity"])
        if not target:
            return "❌ Número inválido. Comando cancelado."
        self.repo.set_user_role(target, Role.ROOT.value)
        logger.info(
            "[DIALOGUE] Promoted to root via web credentials",
            extra={"by": dialogue.identity, "target": target, "system_user_id": dialogue.fields.get("system_user_id")},
        )
        return f"✅ Usuário {target} promovido a root."

    def _finish_additional_data(self, dialogue: Dialogue) -> str:
        text = dialogue.fields["additional_data"]
        self.repo.append_history(dialogue.ticket_id, dialogue.identity, text, HISTORY_USER)
        ticket = self.repo.get_ticket(dialogue.ticket_id)
        if ticket is not None:
            self.notifier.additional_data(ticket, text)
        return f"✅ Informações adicionais adicionadas à OS #{dialogue.ticket_id} com sucesso!"
