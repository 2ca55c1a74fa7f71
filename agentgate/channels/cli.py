"""Interactive terminal channel.

Reads one line at a time and waits for each run to finish before the
next prompt. Never started by the ChannelsManager; ``agentgate cli``
runs it in the foreground.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from agentgate.channels.base import ChannelHooks, MessageDispatcher

logger = logging.getLogger(__name__)

EXIT_COMMANDS = frozenset({"exit", "quit", "\\q"})

SOURCE_ID = "default"


class CLIChannel(ChannelHooks):
    identifier = "cli"
    required_config = ()

    def __init__(
        self,
        config: dict[str, Any] | None,
        dispatcher: MessageDispatcher,
        *,
        input_func: Callable[[str], str] = input,
        output_func: Callable[[str], None] = print,
    ) -> None:
        super().__init__(config, dispatcher)
        self._input = input_func
        self._output = output_func
        self._running = False

    async def start(self) -> None:
        self._running = True
        self._output(f"{self.dispatcher.settings.agent_name} CLI. Type 'exit' or 'quit' to leave.")
        try:
            while self._running:
                try:
                    line = await asyncio.to_thread(self._input, "You: ")
                except EOFError:
                    break
                line = line.strip()
                if not line:
                    continue
                if line.lower() in EXIT_COMMANDS:
                    break

                run = await self.dispatcher.dispatch(self, SOURCE_ID, line)
                if run is not None:
                    await run.wait()
        finally:
            self._running = False
        self._output("Goodbye!")

    async def stop(self) -> None:
        self._running = False

    def is_running(self) -> bool:
        return self._running

    def extract_content(self, raw: Any) -> str | None:
        return raw if isinstance(raw, str) else None

    def authorize(self, user_id: str | None) -> bool:
        return True

    async def deliver_message(self, source_id: str, text: str) -> None:
        self._output(f"Agent: {text}")

    async def handle_error(self, source_id: str, user_id: str | None, error: Exception, raw: Any) -> None:
        logger.error("CLI error: %s", error, exc_info=error)
        self._output(f"Agent: Error: {error}")
