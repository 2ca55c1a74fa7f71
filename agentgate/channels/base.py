"""Channel contract, default hooks, channel registry and message dispatch.

A channel (surface) adapter subclasses ChannelHooks, implements the
required methods of the Channel protocol and hands every inbound message
to MessageDispatcher.dispatch(), which runs the hooks in a fixed order.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, ClassVar, Protocol, runtime_checkable

from agentgate.api.runs import Run, RunSupervisor
from agentgate.commands.registry import CommandContext, CommandRegistry
from agentgate.config import Settings
from agentgate.conversations.manager import ChatKey, ConversationManager
from agentgate.errors import ChannelConfigError
from agentgate.events import ErrorEvent, RunEvent

logger = logging.getLogger(__name__)


@runtime_checkable
class Channel(Protocol):
    """Methods every channel adapter must provide."""

    identifier: ClassVar[str]
    required_config: ClassVar[tuple[str, ...]]

    async def start(self) -> None: ...

    async def stop(self) -> None: ...

    def is_running(self) -> bool: ...

    def extract_content(self, raw: Any) -> str | None: ...

    def authorize(self, user_id: str | None) -> bool: ...

    async def deliver_message(self, source_id: str, text: str) -> None: ...


class ChannelHooks:
    """Base class for adapters: config validation plus no-op hooks.

    Adapters are constructed as ``cls(config, dispatcher)`` and raise
    ChannelConfigError when a required config key is missing or empty.
    """

    identifier: ClassVar[str] = ""
    required_config: ClassVar[tuple[str, ...]] = ()

    def __init__(self, config: dict[str, Any] | None, dispatcher: MessageDispatcher) -> None:
        self.config = dict(config or {})
        self.dispatcher = dispatcher
        missing = [key for key in self.required_config if not self.config.get(key)]
        if missing:
            raise ChannelConfigError(self.identifier, missing)

    def extract_user_id(self, source_id: str, raw: Any) -> str | None:
        return source_id

    async def before_process(self, source_id: str, user_id: str | None, content: str, raw: Any) -> None:
        pass

    async def after_process(self, source_id: str, user_id: str | None, content: str, raw: Any) -> None:
        pass

    async def start_typing(self, source_id: str) -> None:
        pass

    async def stop_typing(self, source_id: str) -> None:
        pass

    async def handle_unauthorized(self, source_id: str, user_id: str | None, raw: Any) -> None:
        logger.warning("[%s] Ignored message from unauthorized user %s", self.identifier, user_id)

    async def handle_error(self, source_id: str, user_id: str | None, error: Exception, raw: Any) -> None:
        logger.error("[%s] Error processing message: %s", self.identifier, error, exc_info=error)

    def format_message(self, content: str) -> str:
        return content

    async def send_message(self, source_id: str, text: str) -> None:
        """Format then deliver. Empty text is dropped."""
        formatted = self.format_message(text or "")
        if formatted:
            await self.deliver_message(source_id, formatted)

    async def deliver_message(self, source_id: str, text: str) -> None:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class ChannelRegistry:
    """Maps channel identifiers to adapter classes."""

    def __init__(self) -> None:
        self._classes: dict[str, type[ChannelHooks]] = {}

    def register(self, channel_cls: type[ChannelHooks]) -> type[ChannelHooks]:
        if not channel_cls.identifier:
            raise ValueError(f"{channel_cls.__name__} has no identifier")
        self._classes[channel_cls.identifier] = channel_cls
        return channel_cls

    def items(self) -> list[tuple[str, type[ChannelHooks]]]:
        return list(self._classes.items())


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


class MessageDispatcher:
    """Drives one inbound message through a channel's hooks."""

    def __init__(
        self,
        conversations: ConversationManager,
        supervisor: RunSupervisor,
        commands: CommandRegistry,
        settings: Settings,
    ) -> None:
        self.conversations = conversations
        self.supervisor = supervisor
        self.commands = commands
        self.settings = settings

    async def dispatch(self, channel: ChannelHooks, source_id: str, raw: Any) -> Run | None:
        """Handle one message. Returns the started Run, or None.

        Order: extract content, authorize, before_process, stop_typing,
        resolve the current conversation, command or run, after_process.
        Any failure goes to the channel's handle_error hook.
        """
        user_id: str | None = None
        try:
            content = channel.extract_content(raw)
            if not content or not content.strip():
                return None

            user_id = channel.extract_user_id(source_id, raw)
            if not channel.authorize(user_id):
                await channel.handle_unauthorized(source_id, user_id, raw)
                return None

            await channel.before_process(source_id, user_id, content, raw)
            await channel.stop_typing(source_id)

            key = ChatKey(channel.identifier, str(source_id))
            display_name = user_id if user_id and user_id != source_id else None
            conversation = await self.conversations.current_for(key, display_name=display_name)

            run: Run | None = None
            if self.commands.is_command(content):
                ctx = CommandContext(
                    chat_key=key,
                    conversation=conversation,
                    conversations=self.conversations,
                    settings=self.settings,
                    registry=self.commands,
                    supervisor=self.supervisor,
                )
                reply = await self.commands.execute(content, ctx)
                await channel.send_message(source_id, reply)
            else:

                async def on_event(event: RunEvent) -> None:
                    await channel.send_message(source_id, event.text)

                async def on_error(event: ErrorEvent) -> None:
                    await channel.send_message(source_id, event.text)

                async def on_complete() -> None:
                    await channel.stop_typing(source_id)

                await channel.start_typing(source_id)
                run = self.supervisor.start(conversation, content, on_event, on_error, on_complete)

            await channel.after_process(source_id, user_id, content, raw)
            return run
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await channel.handle_error(source_id, user_id, e, raw)
            return None
