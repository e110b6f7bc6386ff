# tests/test_commands_parts.py

from conftest import STOREKEEPER, TECH, TECH_GROUP


def _request_parts(say, tid, parts="- Toner HP CF217A", notes="não"):
    say(TECH, f"!listpeças {tid}")
    say(TECH, parts)
    return say(TECH, notes)


def test_parts_request_dialogue(services, say, staff, repo, gateway, make_ticket):
    tid = make_ticket()["id"]

    prompt = say(TECH, f"!listpeças {tid}")
    assert f"SOLICITAÇÃO DE PEÇAS - OS #{tid}" in prompt
    assert "Observações" in say(TECH, "- Toner HP CF217A\n- Cabo USB")
    reply = say(TECH, "Não")

    assert "SOLICITAÇÃO DE PEÇAS CRIADA" in reply
    assert "Observações" not in reply
    request = repo.list_parts_requests()[0]
    assert request["ticket_id"] == tid
    assert request["status"] == "pending"
    assert request["notes"] is None
    assert request["technician_name"] == "Tiago Técnico"
    assert any("NOVA SOLICITAÇÃO DE PEÇAS" in text for text in gateway.to(TECH_GROUP))
    assert not services.dialogues.has_open(TECH)


def test_parts_request_for_missing_ticket(say, staff):
    assert say(TECH, "!listpecas 404") == "❌ OS #404 não encontrada."


def test_pending_list_and_fulfil(say, staff, repo, gateway, make_ticket):
    tid = make_ticket(location="Sala 101")["id"]
    _request_parts(say, tid, notes="Urgente")
    rid = repo.list_parts_requests()[0]["id"]

    listing = say(STOREKEEPER, "!pecas")
    assert f"Solicitação #{rid}" in listing
    assert "Sala 101" in listing
    assert "Obs: Urgente" in listing

    assert say(STOREKEEPER, f"!atender {rid}") == f"✅ Solicitação #{rid} marcada como atendida!"
    request = repo.get_parts_request(rid)
    assert request["status"] == "fulfilled"
    assert request["fulfilled_by"] == "Saulo Almox"
    assert request["fulfilled_at"]
    assert any("PEÇAS DISPONIBILIZADAS" in text for text in gateway.to(TECH))

    assert say(STOREKEEPER, f"!atender {rid}") == f"❌ Solicitação #{rid} já foi atendida."
    assert "Não há solicitações de peças pendentes" in say(STOREKEEPER, "!pecas")


def test_fulfil_unknown_request(say, staff):
    assert say(STOREKEEPER, "!atender 77") == "❌ Solicitação #77 não encontrada."
    assert say(STOREKEEPER, "!atender") == "❌ Use: !atender [id da solicitação]"


def test_concurrent_fulfil_notifies_once(say, staff, repo, gateway, make_ticket, monkeypatch):
    tid = make_ticket()["id"]
    _request_parts(say, tid)
    rid = repo.list_parts_requests()[0]["id"]
    stale = repo.get_parts_request(rid)
    monkeypatch.setattr(repo, "get_parts_request", lambda raw_id: dict(stale))

    assert say(STOREKEEPER, f"!atender {rid}") == f"✅ Solicitação #{rid} marcada como atendida!"
    assert say(STOREKEEPER, f"!atender {rid}") == f"❌ Solicitação #{rid} já foi atendida."
    delivered = [text for text in gateway.to(TECH) if "PEÇAS DISPONIBILIZADAS" in text]
    assert len(delivered) == 1
