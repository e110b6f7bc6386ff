# helpdesk_app/core/commands/__init__.py
from helpdesk_app.core.commands import admin, parts, system, tickets
from helpdesk_app.core.commands.base import (
    Command,
    CommandContext,
    CommandRegistry,
    is_command,
    parse_command,
)


def build_registry() -> CommandRegistry:
    return CommandRegistry(tickets.COMMANDS + parts.COMMANDS + admin.COMMANDS + system.COMMANDS)


__all__ = [
    "Command",
    "CommandContext",
    "CommandRegistry",
    "build_registry",
    "is_command",
    "parse_command",
]
