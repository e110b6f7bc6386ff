# tests/test_commands_tickets.py

from helpdesk_app.core.commands.tickets import HELP_FULL, HELP_USER

from conftest import ADMIN, OTHER_USER, ROOT, TECH, TECH_GROUP, USER


def test_help_depends_on_role(say, staff, repo):
    assert say(USER, "!ajuda") == HELP_USER
    assert say(TECH, "!help") == HELP_FULL

    repo.set_config("help_message", "Ajuda personalizada")
    assert say(TECH, "!ajuda") == "Ajuda personalizada"
    assert say(USER, "!ajuda") == HELP_USER


def test_status_own_ticket_and_visibility(say, staff, make_ticket):
    ticket = make_ticket()
    tid = ticket["id"]

    assert "Status: ABERTA" in say(USER, f"!status {tid}")
    assert say(OTHER_USER, f"!status {tid}") == "❌ Você só pode consultar suas próprias OS."
    assert f"OS #{tid}" in say(TECH, f"!status {tid}")


def test_status_not_found(say, staff):
    assert say(USER, "!status 999") == "❌ OS #999 não encontrada."
    assert say(USER, "!status abc") == "❌ OS #abc não encontrada."
    assert say(USER, "!status 99999999999999999999") == "❌ OS #99999999999999999999 não encontrada."


def test_cancel_rules(say, staff, repo, make_ticket):
    ticket = make_ticket()
    tid = ticket["id"]

    assert say(TECH, f"!cancelar {tid}") == "❌ Você só pode cancelar suas próprias OS."
    assert say(USER, f"!cancelar {tid}") == f"✅ OS #{tid} cancelada com sucesso."
    assert repo.get_ticket(tid)["status"] == "cancelled"
    assert repo.list_history(tid)[-1]["kind"] == "system"
    assert say(USER, f"!cancelar {tid}") == f"❌ OS #{tid} já está cancelada."

    closed = make_ticket()
    repo.transition_ticket(closed["id"], "closed", ("open",))
    assert say(USER, f"!cancelar {closed['id']}") == "❌ Não é possível cancelar uma OS já finalizada."


def test_claim_only_once(say, staff, repo, make_ticket):
    tid = make_ticket()["id"]
    repo.upsert_user("5569900000007", display_name="Bruno", role="technician")

    first = say(TECH, f"!atendendo {tid}")
    second = say("5569900000007", f"!atendendo {tid}")

    assert first == f"✅ Você assumiu a OS #{tid}. Status alterado para EM ANDAMENTO."
    assert second == f"❌ OS #{tid} não está disponível para atendimento."
    ticket = repo.get_ticket(tid)
    assert ticket["status"] == "in_progress"
    assert ticket["assigned_technician"] == "Tiago Técnico"
    assert ticket["assigned_technician_identity"] == TECH


def test_priority_and_department(say, staff, repo, make_ticket):
    tid = make_ticket()["id"]

    assert "ALTA PRIORIDADE" in say(TECH, f"!prioridade {tid}")
    assert say(TECH, f"!setor {tid}=Financeiro") == f"✅ Setor da OS #{tid} alterado para: Financeiro"
    ticket = repo.get_ticket(tid)
    assert ticket["priority"] == 1
    assert ticket["department"] == "Financeiro"

    repo.transition_ticket(tid, "closed", ("open",))
    before = repo.get_ticket(tid)["updated_at"]
    assert "não pode ter a prioridade alterada" in say(TECH, f"!prioridade {tid}")
    assert repo.get_ticket(tid)["updated_at"] == before


def test_message_reaches_requester(say, staff, repo, gateway, make_ticket):
    tid = make_ticket()["id"]

    reply = say(TECH, f"!mensagem {tid}=Passo aí às 15h")

    assert reply == f"✅ Mensagem enviada para o usuário da OS #{tid}"
    assert any("Passo aí às 15h" in text for text in gateway.to(USER))
    entry = repo.list_history(tid)[-1]
    assert entry["kind"] == "technician"
    assert entry["author_identity"] == TECH


def test_list_orders_priority_first(say, staff, repo, make_ticket):
    older = make_ticket(problem="Mouse")
    urgent = make_ticket(problem="Servidor fora")
    repo.set_ticket_priority(urgent["id"], True)

    listing = say(TECH, "!list")

    assert listing.index(f"OS #{urgent['id']}") < listing.index(f"OS #{older['id']}")


def test_close_notifies_and_is_idempotent(say, staff, repo, gateway, make_ticket):
    tid = make_ticket()["id"]
    repo.set_config("closing_message", "Obrigado por usar o suporte!")

    assert say(TECH, f"!finalizado {tid}") == f"✅ OS #{tid} finalizada com sucesso!"
    ticket = repo.get_ticket(tid)
    assert ticket["status"] == "closed"
    assert ticket["closed_at"]
    assert ticket["assigned_technician"] == "Tiago Técnico"
    assert any("OS FINALIZADA" in text for text in gateway.to(TECH_GROUP))
    assert any("Obrigado por usar o suporte!" in text for text in gateway.to(USER))

    sent_before = len(gateway.sent)
    assert say(TECH, f"!finalizado {tid}") == f"✅ OS #{tid} já está finalizada."
    assert len(gateway.sent) == sent_before
    assert repo.get_ticket(tid)["updated_at"] == ticket["updated_at"]


def test_close_cancelled_ticket_is_refused(say, staff, repo, make_ticket):
    tid = make_ticket()["id"]
    repo.transition_ticket(tid, "cancelled", ("open",))

    assert say(TECH, f"!finalizado {tid}") == f"❌ OS #{tid} foi cancelada e não pode ser finalizada."
    assert repo.get_ticket(tid)["status"] == "cancelled"


def test_call_admin_messages_admins_and_roots(say, staff, gateway):
    assert say(TECH, "!adm") == "✅ Administradores notificados!"
    assert gateway.to(ADMIN)
    assert gateway.to(ROOT)
    assert not gateway.to(TECH)


def test_call_admin_without_admins(say, repo):
    repo.upsert_user(TECH, display_name="Tiago", role="technician")
    assert say(TECH, "!adm") == "⚠️ Nenhum administrador cadastrado para notificar."


def test_stats(say, staff, repo, make_ticket):
    assert "Nenhum dado registrado ainda." in say(TECH, "!grafico")

    tid = make_ticket()["id"]
    repo.claim_ticket(tid, "Tiago Técnico", TECH)
    repo.transition_ticket(tid, "closed", ("in_progress",))
    stats = say(TECH, "!grafico")

    assert "ESTATÍSTICAS DO SISTEMA" in stats
    assert "Tiago Técnico: 1 OS (100% finalizadas)" in stats
