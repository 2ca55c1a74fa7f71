"""Slash command registry and execution context."""

from __future__ import annotations

import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from agentgate.config import Settings
from agentgate.conversations.manager import ChatKey, ConversationManager
from agentgate.errors import ConversationError
from agentgate.storage.models import Conversation

if TYPE_CHECKING:
    from agentgate.api.runs import RunSupervisor

logger = logging.getLogger(__name__)

COMMAND_PATTERN = re.compile(r"^/([A-Za-z0-9_]+)(?:\s+(.+))?$", re.DOTALL)


@dataclass
class CommandContext:
    """Everything a command handler may touch."""

    chat_key: ChatKey
    conversation: Conversation
    conversations: ConversationManager
    settings: Settings
    registry: CommandRegistry
    supervisor: RunSupervisor | None = None


CommandHandler = Callable[[CommandContext, str | None], Awaitable[str]]


@dataclass
class Command:
    name: str
    handler: CommandHandler
    description: str


class CommandRegistry:
    """Maps command names to async handlers ``(ctx, args) -> str``."""

    def __init__(self) -> None:
        self._commands: dict[str, Command] = {}

    def register(self, name: str, handler: CommandHandler, description: str) -> None:
        self._commands[name] = Command(name, handler, description)

    def command(self, name: str, description: str) -> Callable[[CommandHandler], CommandHandler]:
        """Decorator form of register()."""

        def decorator(handler: CommandHandler) -> CommandHandler:
            self.register(name, handler, description)
            return handler

        return decorator

    def commands(self) -> list[Command]:
        return list(self._commands.values())

    def names(self) -> list[str]:
        return list(self._commands)

    @staticmethod
    def parse(text: str) -> tuple[str, str | None] | None:
        """Split ``/name args`` into (name, args), or None if not command-shaped."""
        match = COMMAND_PATTERN.match((text or "").strip())
        if not match:
            return None
        args = match.group(2)
        return match.group(1), args.strip() if args else None

    def is_command(self, text: str) -> bool:
        """True only for command-shaped text naming a registered command."""
        parsed = self.parse(text)
        return parsed is not None and parsed[0] in self._commands

    async def execute(self, text: str, ctx: CommandContext) -> str:
        """Run a command and return its reply text.

        Conversation errors become ``Error: ...`` replies.
        """
        parsed = self.parse(text)
        if parsed is None or parsed[0] not in self._commands:
            name = parsed[0] if parsed else "unknown"
            return f"Unknown command: /{name}. Type /help for available commands."

        name, args = parsed
        logger.info("Command /%s from %s", name, ctx.chat_key)
        try:
            return await self._commands[name].handler(ctx, args)
        except ConversationError as e:
            return f"Error: {e}"
