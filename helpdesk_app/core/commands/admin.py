# helpdesk_app/core/commands/admin.py
"""Administrative commands: settings, user roles, AI toggle, backups, system info."""

from __future__ import annotations

import logging
import os
import resource
import time

from helpdesk_app.core.commands.base import (
    CONV_EQUALS,
    Command,
    CommandContext,
    equals_value,
    target_identity,
)
from helpdesk_app.core.errors import CommandError, PermissionDeniedError
from helpdesk_app.core.models import ParsedCommand
from helpdesk_app.core.roles import ADMIN_CONFIG, ADMIN_USERS, ROLE_LABEL, Role
from helpdesk_app.core.timefmt import human_br, human_date_br, now_iso, utcnow
from helpdesk_app.services import db, maintenance

logger = logging.getLogger(__name__)

STARTED_AT = utcnow()

CONFIG_MENU = (
    "⚙️ *MENU DE CONFIGURAÇÕES*\n\n"
    "• !listtc - Listar técnicos\n"
    "• !listadm - Listar administradores\n"
    "• !menss=[texto] - Alterar saudação\n"
    "• !msfinal=[texto] - Alterar mensagem final\n"
    "• !tecnico=[num] - Promover a técnico\n"
    "• !admin=[num] - Promover a administrador\n"
    "• !almoxarifado=[num] - Promover a almoxarifado\n"
    "• !ping - Status do sistema\n"
    "• !historico - Ver histórico\n"
    "• !iaon / !iaoff / !iastatus - Controle da IA\n"
    "• !backup - Criar backup manual\n"
    "• !sistema - Informações do sistema\n"
    "• !tcgrupo - Definir grupo técnico (usar no grupo)"
)

USAGE_GREETING = "❌ Use: !menss=[nova mensagem de saudação]"
USAGE_CLOSING = "❌ Use: !msfinal=[nova mensagem final]"
USAGE_PROMOTE_TECH = "❌ Use: !tecnico @usuario ou !tecnico=[número do telefone]"
USAGE_PROMOTE_STOREKEEPER = "❌ Use: !almoxarifado @usuario ou !almoxarifado=[número do telefone]"


def _counts(mapping) -> str:
    if not mapping:
        return "• nenhum registro"
    return "\n".join(f"• {key}: {total}" for key, total in mapping.items())


# ---- Settings -----------------------------------------------------------------


def cmd_config(ctx: CommandContext, parsed: ParsedCommand) -> str:
    return CONFIG_MENU


def cmd_set_greeting(ctx: CommandContext, parsed: ParsedCommand) -> str:
    text = equals_value(parsed, USAGE_GREETING)
    ctx.repo.set_config("greeting_message", text)
    return f"✅ Mensagem de saudação alterada para:\n{text}"


def cmd_set_closing(ctx: CommandContext, parsed: ParsedCommand) -> str:
    text = equals_value(parsed, USAGE_CLOSING)
    ctx.repo.set_config("closing_message", text)
    return f"✅ Mensagem final alterada para:\n{text}"


def cmd_set_tech_group(ctx: CommandContext, parsed: ParsedCommand) -> str:
    if not ctx.in_group or not ctx.group_id:
        raise CommandError("❌ Este comando só pode ser usado em grupos.")
    ctx.repo.set_config("tech_group_id", ctx.group_id)
    ctx.notifier.tech_group_changed(ctx.group_id, ctx.identity)
    logger.info("[COMMAND] Technical group set", extra={"group_id": ctx.group_id, "by": ctx.identity})
    return (
        "✅ *GRUPO TÉCNICO DEFINIDO*\n\n"
        "🏢 Este grupo foi configurado como o grupo técnico oficial.\n\n"
        "📋 *Funcionalidades ativadas:*\n"
        "• Recebimento de notificações de novas OS\n"
        "• Comandos técnicos e administrativos\n"
        "• Solicitações de peças\n"
        "• Atualizações de status\n\n"
        "👥 *Comandos disponíveis:*\n"
        "• !admin @usuario - Promover a administrador\n"
        "• !tecnico @usuario - Promover a técnico\n"
        "• !almoxarifado @usuario - Promover a almoxarifado"
    )


# ---- Users --------------------------------------------------------------------


def cmd_list_tech(ctx: CommandContext, parsed: ParsedCommand) -> str:
    techs = ctx.repo.list_users_by_role(Role.TECHNICIAN.value)
    if not techs:
        return "📋 Nenhum técnico cadastrado."
    response = "👨‍🔧 *TÉCNICOS CADASTRADOS*\n\n"
    for tech in techs:
        response += f"📞 {tech['identity']}\n"
        response += f"👤 {tech.get('display_name') or 'Nome não informado'}\n"
        response += f"📅 Desde: {human_date_br(tech.get('created_at'))}\n\n"
    return response.rstrip()


def cmd_list_admin(ctx: CommandContext, parsed: ParsedCommand) -> str:
    roots = ctx.repo.list_users_by_role(Role.ROOT.value)
    admins = ctx.repo.list_users_by_role(Role.ADMIN.value)
    if not roots and not admins:
        return "📋 Nenhum administrador cadastrado."

    response = "👑 *ADMINISTRADORES*\n\n"
    if roots:
        response += "*ROOT:*\n"
        for user in roots:
            response += f"📞 {user['identity']} - {user.get('display_name') or 'Root User'}\n"
        response += "\n"
    if admins:
        response += "*ADMINS:*\n"
        for user in admins:
            response += f"📞 {user['identity']} - {user.get('display_name') or 'Admin'}\n"
    return response.rstrip()


def promote(ctx: CommandContext, parsed: ParsedCommand, role: Role, usage: str) -> str:
    """Shared body of the !tecnico / !almoxarifado / !admin commands."""
    identity, mentioned = target_identity(parsed, usage)
    current = ctx.repo.get_user(identity)
    if current and Role.parse(current.get("role")) is Role.ROOT and ctx.role is not Role.ROOT:
        raise PermissionDeniedError("❌ Não é possível alterar o papel de um usuário root.")

    ctx.repo.set_user_role(identity, role.value)
    logger.info(
        "[COMMAND] Role changed",
        extra={"target": identity, "role": role.value, "by": ctx.identity, "mention": mentioned},
    )
    shown = f"@{identity}" if mentioned else identity
    return f"✅ Usuário {shown} promovido a {ROLE_LABEL[role]}."


def cmd_promote_tech(ctx: CommandContext, parsed: ParsedCommand) -> str:
    return promote(ctx, parsed, Role.TECHNICIAN, USAGE_PROMOTE_TECH)


def cmd_promote_storekeeper(ctx: CommandContext, parsed: ParsedCommand) -> str:
    return promote(ctx, parsed, Role.STOREKEEPER, USAGE_PROMOTE_STOREKEEPER)


# ---- Reports ------------------------------------------------------------------


def cmd_ping(ctx: CommandContext, parsed: ParsedCommand) -> str:
    start = time.perf_counter()
    stats = ctx.repo.ticket_stats()
    elapsed_ms = int((time.perf_counter() - start) * 1000)
    return (
        "🏓 *PING - STATUS DO SISTEMA*\n\n"
        f"⏱️ Tempo de resposta: {elapsed_ms}ms\n\n"
        "📊 Estatísticas:\n"
        f"{_counts(stats['by_status'])}\n\n"
        "✅ Sistema operacional"
    )


def cmd_history(ctx: CommandContext, parsed: ParsedCommand) -> str:
    stats = ctx.repo.ticket_stats()
    return (
        "📊 *HISTÓRICO E ESTATÍSTICAS*\n\n"
        "*OS por Status:*\n"
        f"{_counts(stats['by_status'])}\n\n"
        "*OS por Técnico:*\n"
        f"{_counts(stats['by_technician'])}\n\n"
        "*Peças por Status:*\n"
        f"{_counts(stats['parts_by_status'])}"
    )


def _memory_gb():
    """(total, free) physical memory in GB, or None where sysconf lacks it."""
    try:
        page = os.sysconf("SC_PAGE_SIZE")
        total = os.sysconf("SC_PHYS_PAGES") * page
        free = os.sysconf("SC_AVPHYS_PAGES") * page
    except (ValueError, OSError, AttributeError):
        return None
    gb = 1024 ** 3
    return total / gb, free / gb


def cmd_system(ctx: CommandContext, parsed: ParsedCommand) -> str:
    lines = ["🖥️ *INFORMAÇÕES DO SISTEMA*", "", "💾 *Memória:*"]
    memory = _memory_gb()
    if memory:
        total, free = memory
        lines += [f"• Total: {total:.2f} GB", f"• Usada: {total - free:.2f} GB", f"• Livre: {free:.2f} GB"]
    # ru_maxrss is KB on Linux
    rss_mb = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss / 1024
    lines.append(f"• Bot: {rss_mb:.2f} MB")

    uptime_hours = int((utcnow() - STARTED_AT).total_seconds() // 3600)
    lines += ["", f"⏱️ *Tempo Ativo:* {uptime_hours} horas"]

    ai = ctx.classifier.status() if ctx.classifier is not None else None
    if ai:
        lines += [
            "",
            "🤖 *IA (Ollama):*",
            f"• Status: {'✅ Conectada' if ai['available'] else '❌ Desconectada'}",
            f"• URL: {ai['base_url']}",
            f"• Modelo: {ai['model']}",
        ]

    path = db.sqlite_path()
    if path and os.path.exists(path):
        db_size = f"{os.path.getsize(path) / 1024 / 1024:.2f} MB"
    else:
        db_size = "N/A"
    stats = ctx.repo.ticket_stats()
    lines += [
        "",
        "🗄️ *Banco de Dados:*",
        f"• Tamanho: {db_size}",
        f"• Total OS: {sum(stats['by_status'].values())}",
        f"• Total Peças: {sum(stats['parts_by_status'].values())}",
        "",
        "📊 *OS por Status:*",
        _counts(stats["by_status"]),
    ]
    return "\n".join(lines)


def cmd_backup(ctx: CommandContext, parsed: ParsedCommand) -> str:
    try:
        backup = maintenance.create_backup(ctx.repo, kind="manual")
    except OSError:
        logger.exception("[COMMAND] Manual backup failed")
        raise CommandError("❌ Erro ao criar backup. Verifique as permissões do sistema.")
    return (
        "✅ *BACKUP CRIADO COM SUCESSO*\n\n"
        f"📁 Nome: {backup['name']}\n"
        f"📍 Local: {backup['path']}\n"
        f"📊 Tamanho: {backup['size_bytes'] / (1024 * 1024):.2f} MB\n"
        f"📅 Data: {human_br(now_iso())}\n\n"
        "O backup foi salvo com sucesso e pode ser usado para restaurar o sistema."
    )


# ---- AI -----------------------------------------------------------------------


def cmd_toggle_ai_on(ctx: CommandContext, parsed: ParsedCommand) -> str:
    ctx.classifier.set_enabled(True)
    ctx.classifier.check_connection()
    status = ctx.classifier.status()
    if status["available"]:
        return (
            "✅ *IA ATIVADA COM SUCESSO*\n\n"
            "🤖 Status: Conectada\n"
            f"🔗 URL: {status['base_url']}\n"
            f"📦 Modelo: {status['model']}\n\n"
            "A IA agora analisará automaticamente as mensagens dos usuários."
        )
    return (
        "⚠️ *IA ATIVADA MAS NÃO CONECTADA*\n\n"
        "❌ Ollama não está disponível\n"
        f"🔗 URL: {status['base_url']}\n"
        f"📦 Modelo: {status['model']}\n\n"
        "Verifique se o Ollama está rodando: `ollama serve`"
    )


def cmd_toggle_ai_off(ctx: CommandContext, parsed: ParsedCommand) -> str:
    ctx.classifier.set_enabled(False)
    return (
        "❌ *IA DESATIVADA*\n\n"
        "🤖 Status: Desconectada\n"
        "📝 Modo: Fallback ativo\n\n"
        "O bot continuará funcionando normalmente, mas sem análise inteligente de mensagens.\n\n"
        "Para reativar, use: !iaon"
    )


def cmd_ai_status(ctx: CommandContext, parsed: ParsedCommand) -> str:
    status = ctx.classifier.status()
    response = (
        "🤖 *STATUS DA IA (OLLAMA)*\n\n"
        "⚙️ *Configuração:*\n"
        f"• Habilitada: {'✅ Sim' if status['enabled'] else '❌ Não'}\n"
        f"• URL: {status['base_url']}\n"
        f"• Modelo: {status['model']}\n\n"
        "🔗 *Conexão:*\n"
        f"• Status: {'✅ Conectada' if status['available'] else '❌ Desconectada'}\n\n"
    )
    if status["available"]:
        response += (
            "✅ *IA Funcionando Normalmente*\n"
            "• Análise automática de mensagens ativa\n"
            "• Classificação inteligente funcionando\n"
            "• Primeira interação personalizada ativa\n\n"
        )
    else:
        response += (
            "⚠️ *IA em Modo Fallback*\n"
            "• Bot funciona sem análise inteligente\n"
            "• Mensagens livres recebem respostas informativas\n"
            "• Para ativar: verifique se Ollama está rodando\n\n"
        )
    return response + (
        "🔧 *Comandos de Controle:*\n"
        "• !iaon - Ativar IA\n"
        "• !iaoff - Desativar IA\n"
        "• !iastatus - Ver este status"
    )


COMMANDS = [
    Command("config", cmd_config, ADMIN_CONFIG),
    Command("list_tech", cmd_list_tech, ADMIN_USERS, aliases=("listtc",)),
    Command("list_admin", cmd_list_admin, ADMIN_USERS, aliases=("listadm",)),
    Command(
        "set_greeting", cmd_set_greeting, ADMIN_CONFIG,
        convention=CONV_EQUALS, aliases=("menss",), usage=USAGE_GREETING, requires_args=True,
    ),
    Command(
        "set_closing", cmd_set_closing, ADMIN_CONFIG,
        convention=CONV_EQUALS, aliases=("msfinal",), usage=USAGE_CLOSING, requires_args=True,
    ),
    Command("ping", cmd_ping, ADMIN_CONFIG),
    Command(
        "promote_tech", cmd_promote_tech, ADMIN_USERS,
        convention=CONV_EQUALS, aliases=("tecnico", "técnico"), usage=USAGE_PROMOTE_TECH, requires_args=True,
    ),
    Command(
        "promote_storekeeper", cmd_promote_storekeeper, ADMIN_USERS,
        convention=CONV_EQUALS, aliases=("almoxarifado",), usage=USAGE_PROMOTE_STOREKEEPER, requires_args=True,
    ),
    Command("history", cmd_history, ADMIN_CONFIG, aliases=("historico", "histórico")),
    Command("toggle_ai_on", cmd_toggle_ai_on, ADMIN_CONFIG, aliases=("iaon",)),
    Command("toggle_ai_off", cmd_toggle_ai_off, ADMIN_CONFIG, aliases=("iaoff",)),
    Command("ai_status", cmd_ai_status, ADMIN_CONFIG, aliases=("iastatus",)),
    Command("set_tech_group", cmd_set_tech_group, ADMIN_CONFIG, aliases=("tcgrupo",)),
    Command("backup", cmd_backup, ADMIN_CONFIG),
    Command("system", cmd_system, ADMIN_CONFIG, aliases=("sistema",)),
]
