"""Run events streamed from the ReAct loop to channels.

A run produces zero or more verbose events (Reasoning, ToolInvoked,
ToolResult), then either a Final answer or an ErrorEvent. Channels only
need ``event.text`` to render any of them.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Awaitable, Callable, Union

# Max characters of tool arguments / results shown in verbose events
DISPLAY_LIMIT = 500


def truncate(text: str, limit: int = DISPLAY_LIMIT) -> str:
    """Cut text to ``limit`` characters with an ellipsis marker."""
    if len(text) > limit:
        return text[:limit] + "..."
    return text


@dataclass
class Reasoning:
    """Assistant text that came before a batch of tool calls."""

    content: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def text(self) -> str:
        return f"\U0001f4ad {truncate(self.content)}"


@dataclass
class ToolInvoked:
    tool_name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def text(self) -> str:
        msg = f"\U0001f527 **Tool** `{self.tool_name}`"
        if self.arguments:
            args_display = truncate(json.dumps(self.arguments, indent=2, ensure_ascii=False))
            msg += f"\n```\n{args_display}\n```"
        return msg


@dataclass
class ToolResult:
    tool_name: str
    observation: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def text(self) -> str:
        if not self.observation:
            return "\U0001f4e5 **Result** (empty)"
        return f"\U0001f4e5 **Result**\n```\n{truncate(self.observation)}\n```"


@dataclass
class Final:
    content: str
    input_tokens: int = 0
    output_tokens: int = 0
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def text(self) -> str:
        return self.content


@dataclass
class ErrorEvent:
    message: str
    exception: BaseException | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def text(self) -> str:
        return f"Error: {self.message}"


RunEvent = Union[Reasoning, ToolInvoked, ToolResult, Final, ErrorEvent]

EventCallback = Callable[[RunEvent], Awaitable[None]]
ErrorCallback = Callable[[ErrorEvent], Awaitable[None]]
CompletionCallback = Callable[[], Awaitable[None]]
