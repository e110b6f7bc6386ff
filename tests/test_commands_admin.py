# tests/test_commands_admin.py

import os

from conftest import ADMIN, ROOT, STOREKEEPER, TECH, TECH_GROUP, USER

NEW_GROUP = "120363000000000777@g.us"


def test_config_menu_requires_admin(say, staff):
    assert "MENU DE CONFIGURAÇÕES" in say(ADMIN, "!config")
    assert say(TECH, "!config") == "❌ Comando disponível apenas para administradores."


def test_greeting_is_used_for_first_contact(say, staff, repo):
    reply = say(ADMIN, "!menss=Bem-vindo ao suporte da Empresa!")

    assert "Bem-vindo ao suporte da Empresa!" in reply
    assert repo.get_config("greeting_message") == "Bem-vindo ao suporte da Empresa!"
    assert say("5569911112222", "olá") == "Bem-vindo ao suporte da Empresa!"


def test_closing_message_and_usage(say, staff, repo):
    say(ADMIN, "!msfinal=Até a próxima!")
    assert repo.get_config("closing_message") == "Até a próxima!"
    assert say(ADMIN, "!msfinal") == "❌ Use: !msfinal=[nova mensagem final]"


def test_promote_with_mention_takes_precedence(say, staff, repo):
    reply = say(ADMIN, "!promote_tech=000 @5511999999999")

    assert reply == "✅ Usuário @5511999999999 promovido a técnico."
    assert repo.get_user("5511999999999")["role"] == "technician"
    assert repo.get_user("000") is None


def test_promote_with_equals_number(say, staff, repo):
    reply = say(ADMIN, f"!almoxarifado={USER}")

    assert reply == f"✅ Usuário {USER} promovido a almoxarifado."
    assert repo.get_user(USER)["role"] == "storekeeper"


def test_admin_cannot_demote_root(say, staff, repo):
    reply = say(ADMIN, f"!tecnico={ROOT}")

    assert reply == "❌ Não é possível alterar o papel de um usuário root."
    assert repo.get_user(ROOT)["role"] == "root"


def test_list_technicians_and_admins(say, staff):
    techs = say(ADMIN, "!listtc")
    assert TECH in techs
    assert STOREKEEPER not in techs

    admins = say(ADMIN, "!listadm")
    assert "*ROOT:*" in admins
    assert ROOT in admins
    assert ADMIN in admins


def test_ai_toggle(say, staff, classifier):
    assert "IA DESATIVADA" in say(ADMIN, "!iaoff")
    assert classifier.ai_enabled is False
    assert "Habilitada: ❌ Não" in say(ADMIN, "!iastatus")

    assert "IA ATIVADA COM SUCESSO" in say(ADMIN, "!iaon")
    classifier.available = False
    assert "IA ATIVADA MAS NÃO CONECTADA" in say(ADMIN, "!iaon")
    assert say(TECH, "!iastatus") == "❌ Comando disponível apenas para administradores."


def test_set_tech_group_only_inside_a_group(say, staff, repo, gateway):
    assert say(ADMIN, "!tcgrupo") == "❌ Este comando só pode ser usado em grupos."

    reply = say(ADMIN, "!tcgrupo", is_group=True, group_id=NEW_GROUP)

    assert "GRUPO TÉCNICO DEFINIDO" in reply
    assert repo.get_config("tech_group_id") == NEW_GROUP
    assert any("GRUPO TÉCNICO ALTERADO" in text for text in gateway.to(ROOT))


def test_tech_group_change_redirects_notifications(say, staff, gateway, make_ticket):
    say(ADMIN, "!tcgrupo", is_group=True, group_id=NEW_GROUP)
    make_ticket()

    assert gateway.to(NEW_GROUP)
    assert not gateway.to(TECH_GROUP)


def test_ping_and_history(say, staff, make_ticket):
    make_ticket()

    assert "PING - STATUS DO SISTEMA" in say(ADMIN, "!ping")
    history = say(ADMIN, "!historico")
    assert "HISTÓRICO E ESTATÍSTICAS" in history
    assert "• open: 1" in history


def test_system_info(say, staff):
    info = say(ADMIN, "!sistema")

    assert "INFORMAÇÕES DO SISTEMA" in info
    assert "Total OS: 0" in info
    assert "Modelo: llama3.2:3b" in info


def test_manual_backup(say, staff, repo):
    reply = say(ADMIN, "!backup")

    assert "BACKUP CRIADO COM SUCESSO" in reply
    backup = repo.list_backups()[0]
    assert backup["kind"] == "manual"
    assert os.path.exists(backup["path"])


def test_create_web_user_is_root_only(say, staff, repo):
    assert say(ADMIN, "!user suporte s3nha") == "❌ Comando disponível apenas para usuários root."

    assert "Usuário de sistema criado com sucesso" in say(ROOT, "!user suporte s3nha")
    assert repo.verify_system_user("suporte", "s3nha") is not None
    assert say(ROOT, "!user suporte outra") == "❌ Nome de usuário já existe. Escolha outro nome."
    assert say(ROOT, "!user so_um_argumento") == "❌ Use: !user [username] [password]"


def test_promote_admin_is_root_only(say, staff, repo):
    assert say(ADMIN, f"!admin={TECH}") == "❌ Comando disponível apenas para usuários root."
    assert say(ROOT, f"!admin={TECH}") == f"✅ Usuário {TECH} promovido a administrador."
    assert repo.get_user(TECH)["role"] == "admin"


def test_root_contact(say, staff):
    reply = say(USER, "!root")

    assert "ROOT DO SISTEMA" in reply
    assert f"@{ROOT}" in reply
