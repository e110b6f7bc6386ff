# tests/test_dispatcher.py

import threading

from helpdesk_app.core.conversation.dispatcher import UNKNOWN_COMMAND_REPLY, KeyedLocks
from helpdesk_app.core.errors import INTERNAL_ERROR_REPLY
from helpdesk_app.core.tickets import AUTO_PROBLEM_TEXT
from helpdesk_app.services.intent_llm import INTENT_PROBLEM

from conftest import ROOT, STOREKEEPER, TECH, TECH_GROUP, USER


def test_first_message_creates_user_and_gets_welcome(services, say, classifier):
    reply = say(USER, "oi", display_name="Ulisses")

    assert reply == classifier.welcome
    assert services.repo.get_user(USER)["role"] == "user"


def test_root_allow_list_applies_before_the_first_command(say, repo):
    reply = say(ROOT, "!config")

    assert "MENU DE CONFIGURAÇÕES" in reply
    assert repo.get_user(ROOT)["role"] == "root"


def test_problem_report_end_to_end(services, say, classifier, gateway):
    say(USER, "oi")
    classifier.intent = INTENT_PROBLEM

    reply = say(USER, "minha impressora não liga")

    assert "CHAMADO CRIADO COM SUCESSO" in reply
    assert "Hardware" in reply
    ticket = services.repo.list_tickets()[0]
    assert ticket["problem_text"] == "minha impressora não liga"
    assert ticket["requester_name"] == "Usuário"
    group = gateway.to(TECH_GROUP)
    assert len(group) == 1
    assert "Análise IA" in group[0]


def test_unknown_command(say):
    assert say(USER, "!foobar") == UNKNOWN_COMMAND_REPLY


def test_capability_denial_is_fixed_text(say, staff):
    assert say(USER, "!list") == "❌ Comando disponível apenas para técnicos."
    assert say(TECH, "!pecas") == "❌ Comando disponível apenas para almoxarifado."
    assert say(TECH, "!config") == "❌ Comando disponível apenas para administradores."


def test_storekeeper_and_technician_split(say, staff, make_ticket):
    ticket = make_ticket()

    assert "ORDENS DE SERVIÇO ABERTAS" in say(STOREKEEPER, "!list")
    assert say(STOREKEEPER, f"!atendendo {ticket['id']}") == "❌ Comando disponível apenas para técnicos."
    assert "Não há solicitações de peças pendentes" in say(STOREKEEPER, "!pecas")


def test_missing_argument_returns_usage(say, staff):
    assert say(TECH, "!atendendo") == "❌ Use: !atendendo [id da OS]"
    assert say(TECH, "!setor 12") == "❌ Use: !setor [id]=[setor]"


def test_trigger_word_opens_ticket(services, say):
    reply = say(USER, "Chamado impressora parada no RH")

    assert "CHAMADO CRIADO COM SUCESSO" in reply
    assert services.repo.list_tickets()[0]["problem_text"] == "impressora parada no RH"


def test_bare_trigger_word_uses_default_text(services, say):
    say(USER, "ticket")

    assert services.repo.list_tickets()[0]["problem_text"] == AUTO_PROBLEM_TEXT


def test_chatter_in_tech_group_is_ignored(services, say, classifier, staff):
    reply = say(TECH, "bom dia pessoal", is_group=True, group_id=TECH_GROUP)

    assert reply is None
    assert classifier.classified == []


def test_commands_still_work_in_tech_group(say, staff):
    reply = say(TECH, "!list", is_group=True, group_id=TECH_GROUP)
    assert reply == "✅ Não há OS abertas no momento."


def test_handler_crash_becomes_generic_reply(services, say, staff, monkeypatch):
    def boom():
        raise RuntimeError("connection reset")

    monkeypatch.setattr(services.repo, "list_open_tickets", boom)

    assert say(TECH, "!list") == INTERNAL_ERROR_REPLY


def test_keyed_locks_serialize_same_key_only():
    locks = KeyedLocks()
    other_key_done = threading.Event()
    same_key_done = threading.Event()

    def hold(key, done):
        with locks.hold(key):
            done.set()

    with locks.hold("5569900000005"):
        other = threading.Thread(target=hold, args=("5569900000006", other_key_done))
        same = threading.Thread(target=hold, args=("5569900000005", same_key_done))
        other.start()
        same.start()
        assert other_key_done.wait(timeout=2)
        assert not same_key_done.wait(timeout=0.2)

    assert same_key_done.wait(timeout=2)
    other.join()
    same.join()


def test_unreachable_repository_becomes_generic_reply(services, say, monkeypatch):
    def down(identity):
        raise RuntimeError("database unreachable")

    monkeypatch.setattr(services.repo, "get_user", down)

    assert say(USER, "!ajuda") == INTERNAL_ERROR_REPLY


def test_trigger_word_with_punctuation_or_newline(services, say):
    say(USER, "oi")
    say(USER, "Chamado: impressora parada")
    say(USER, "chamado\nmonitor piscando")
    say(USER, "TICKET - sem rede")

    problems = sorted(t["problem_text"] for t in services.repo.list_tickets())
    assert problems == ["impressora parada", "monitor piscando", "sem rede"]


def test_trigger_word_must_be_a_whole_word(services, say, classifier):
    say(USER, "oi")
    say(USER, "chamados antigos sumiram")

    assert services.repo.list_tickets() == []
    assert classifier.classified[-1] == "chamados antigos sumiram"


def test_keyed_locks_release_idle_keys():
    locks = KeyedLocks()

    with locks.hold("5569900000005"):
        assert len(locks) == 1
    assert len(locks) == 0
