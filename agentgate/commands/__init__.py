"""Slash commands.

Public API: CommandRegistry, CommandContext and the default registry.
"""

from agentgate.commands.builtin import create_default_registry, register_builtin_commands
from agentgate.commands.registry import COMMAND_PATTERN, Command, CommandContext, CommandRegistry

__all__ = [
    "COMMAND_PATTERN",
    "Command",
    "CommandContext",
    "CommandRegistry",
    "create_default_registry",
    "register_builtin_commands",
]
