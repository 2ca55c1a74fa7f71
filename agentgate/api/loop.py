"""ReAct loop: reason with the completion service, act with tools, observe.

One ReActLoop instance serves one run. Only the user message and the
final assistant answer are persisted; tool-call and tool-result messages
live in the working history of the run.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from agentgate.api.completion import CompletionService, ToolCall
from agentgate.api.tools import ToolRegistry
from agentgate.config import Settings
from agentgate.conversations.manager import ConversationManager
from agentgate.conversations.prompt import build_system_prompt
from agentgate.errors import (
    MaxIterationsExceeded,
    RunInterrupted,
    ToolError,
    UnknownToolError,
)
from agentgate.events import EventCallback, Reasoning, RunEvent, ToolInvoked, ToolResult
from agentgate.storage.models import Conversation

logger = logging.getLogger(__name__)

MAX_TOOL_RETRIES = 3

# Roles replayed from stored history. Tool results are never stored.
_HISTORY_ROLES = ("system", "user", "assistant")


class ReActLoop:
    def __init__(
        self,
        completion: CompletionService,
        registry: ToolRegistry,
        conversations: ConversationManager,
        settings: Settings,
        cancel_token: asyncio.Event | None = None,
    ) -> None:
        self._completion = completion
        self._registry = registry
        self._conversations = conversations
        self._settings = settings
        self._cancel_token = cancel_token or asyncio.Event()
        self.max_iterations = settings.max_iterations
        self.input_tokens = 0
        self.output_tokens = 0

    async def run(
        self,
        conversation: Conversation,
        user_input: str,
        on_event: EventCallback | None = None,
    ) -> str:
        """Answer ``user_input`` within the conversation and return the text.

        Raises MaxIterationsExceeded when no final answer arrives within
        max_iterations completions, RunInterrupted when the cancellation
        token is set.
        """
        verbose = bool(conversation.verbose) and on_event is not None

        self._check_cancelled()
        await self._conversations.add_message(conversation.id, "user", user_input)
        messages = await self._build_messages(conversation)
        tools = self._registry.schemas()

        for iteration in range(self.max_iterations):
            self._check_cancelled()
            logger.debug("Conversation %s iteration %d", conversation.id, iteration + 1)

            response = await self._completion.complete(messages, tools, self._settings.model)
            self.input_tokens += response.input_tokens or 0
            self.output_tokens += response.output_tokens or 0

            if not response.has_tool_calls():
                content = response.content or ""
                await self._conversations.add_message(
                    conversation.id,
                    "assistant",
                    content,
                    input_tokens=self.input_tokens,
                    output_tokens=self.output_tokens,
                )
                return content

            messages.append(
                {
                    "role": "assistant",
                    "content": response.content or "",
                    "tool_calls": [call.to_message() for call in response.tool_calls],
                }
            )
            if verbose and response.content:
                await self._emit(on_event, Reasoning(response.content))

            for call in response.tool_calls:
                if verbose:
                    await self._emit(on_event, ToolInvoked(call.name, call.arguments))
                observation = await self.execute_tool(call)
                if verbose:
                    await self._emit(on_event, ToolResult(call.name, observation))
                messages.append({"role": "tool", "tool_call_id": call.id, "content": observation})

        raise MaxIterationsExceeded(self.max_iterations)

    async def execute_tool(self, call: ToolCall) -> str:
        """Execute one tool call and return the observation. Never raises.

        Failures are retried up to MAX_TOOL_RETRIES attempts in total;
        unknown tools are not retried.
        """
        logger.info("Executing tool %s with arguments: %s", call.name, call.arguments)

        last_error: ToolError | None = None
        for attempt in range(1, MAX_TOOL_RETRIES + 1):
            try:
                return await self._registry.execute(call.name, call.arguments)
            except UnknownToolError as e:
                logger.warning("Model requested unknown tool %s", call.name)
                return f"Error: {e}"
            except ToolError as e:
                last_error = e
                logger.warning(
                    "Tool %s failed (attempt %d/%d): %s", call.name, attempt, MAX_TOOL_RETRIES, e
                )
        return f"Error: {last_error}"

    def _check_cancelled(self) -> None:
        if self._cancel_token.is_set():
            raise RunInterrupted("Run interrupted")

    async def _build_messages(self, conversation: Conversation) -> list[dict[str, Any]]:
        system_prompt = build_system_prompt(self._settings, self._registry)
        history = await self._conversations.history(conversation.id)
        return [{"role": "system", "content": system_prompt}] + [
            {"role": m["role"], "content": m["content"]} for m in history if m["role"] in _HISTORY_ROLES
        ]

    async def _emit(self, on_event: EventCallback | None, event: RunEvent) -> None:
        if on_event is None:
            return
        try:
            await on_event(event)
        except Exception:
            logger.exception("Event callback failed for %s", type(event).__name__)
