# tests/test_repository.py

import pytest

from helpdesk_app.core.timefmt import iso_days_ago
from helpdesk_app.services import db
from helpdesk_app.services.repository import DuplicateUsernameError, as_id

from conftest import TECH, USER


def _ticket(repo, problem="Teclado falhando"):
    return repo.create_ticket(requester_identity=USER, requester_name="Ulisses", problem_text=problem)


def test_as_id():
    assert as_id("12") == 12
    assert as_id("#7") == 7
    assert as_id(3) == 3
    assert as_id("12a") is None
    assert as_id(None) is None
    assert as_id("9" * 20) is None
    assert as_id(str(2 ** 63 - 1)) == 2 ** 63 - 1
    assert as_id("²") is None


def test_upsert_user_updates_only_given_fields(repo):
    repo.upsert_user(USER, display_name="Ulisses", role="technician")
    repo.upsert_user(USER)

    user = repo.get_user(USER)
    assert user["display_name"] == "Ulisses"
    assert user["role"] == "technician"


def test_new_ticket_defaults(repo):
    ticket = repo.get_ticket(_ticket(repo))

    assert ticket["status"] == "open"
    assert ticket["priority"] == 0
    assert ticket["department"] == "TI"
    assert ticket["closed_at"] is None


def test_claim_is_conditional(repo):
    tid = _ticket(repo)

    assert repo.claim_ticket(tid, "Tiago", TECH) is True
    assert repo.claim_ticket(tid, "Bruno", "5569900000007") is False
    assert repo.get_ticket(tid)["assigned_technician"] == "Tiago"


def test_transition_sets_closed_at_and_respects_source_states(repo):
    tid = _ticket(repo)

    assert repo.transition_ticket(tid, "closed", ("open", "in_progress")) is True
    assert repo.get_ticket(tid)["closed_at"]
    assert repo.transition_ticket(tid, "cancelled", ("open", "in_progress")) is False
    assert repo.transition_ticket("abc", "closed", ("open",)) is False


def test_purge_removes_old_closed_tickets_with_children(repo):
    old = _ticket(repo, "antigo")
    recent = _ticket(repo, "recente")
    still_open = _ticket(repo, "aberto")
    for tid in (old, recent):
        repo.transition_ticket(tid, "closed", ("open",))
    repo.append_history(old, USER, "nota", "user")
    repo.create_parts_request(ticket_id=old, technician_identity=TECH, technician_name="Tiago", requested_parts="Mouse")
    db.execute("UPDATE tickets SET closed_at = ? WHERE id = ?", [iso_days_ago(400), old], commit=True)

    assert repo.purge_closed_tickets(365) == 1
    assert repo.get_ticket(old) is None
    assert repo.list_history(old) == []
    assert repo.list_parts_requests() == []
    assert repo.get_ticket(recent) is not None
    assert repo.get_ticket(still_open) is not None


def test_config_upsert(repo):
    assert repo.get_config("greeting_message") is None
    repo.set_config("greeting_message", "Olá")
    repo.set_config("greeting_message", "Oi")

    assert repo.get_config("greeting_message") == "Oi"
    assert repo.all_config() == {"greeting_message": "Oi"}


def test_system_users(repo):
    repo.create_system_user(username="suporte", password="s3nha", identity=TECH)

    assert repo.verify_system_user("suporte", "s3nha")["identity"] == TECH
    assert repo.get_system_user("suporte")["last_login_at"]
    assert repo.verify_system_user("suporte", "errada") is None
    assert repo.verify_system_user("ninguem", "x") is None
    assert "s3nha" not in repo.get_system_user("suporte")["password_hash"]
    with pytest.raises(DuplicateUsernameError):
        repo.create_system_user(username="suporte", password="x", identity=None)


def test_parts_request_carries_ticket_fields(repo):
    tid = repo.create_ticket(
        requester_identity=USER, requester_name="Ulisses", problem_text="x",
        location="Sala 3", equipment="Dell",
    )
    rid = repo.create_parts_request(
        ticket_id=tid, technician_identity=TECH, technician_name="Tiago", requested_parts="Fonte"
    )

    request = repo.get_parts_request(rid)
    assert request["requester_name"] == "Ulisses"
    assert request["location"] == "Sala 3"
    assert request["status"] == "pending"
    assert repo.update_parts_status(rid, "fulfilled", "Saulo") is True
    assert repo.list_parts_requests("pending") == []
    assert repo.update_parts_status(rid, "fulfilled", "Bruno") is False
    assert repo.get_parts_request(rid)["fulfilled_by"] == "Saulo"
