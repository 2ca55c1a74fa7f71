"""Tool registry: named async handlers plus their JSON schemas.

Handlers are async callables taking keyword arguments and returning the
observation text. Schemas are JSON-schema objects whose ``description``
key doubles as the tool description.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from agentgate.errors import ToolError, ToolExecutionError, UnknownToolError

logger = logging.getLogger(__name__)

ToolHandler = Callable[..., Awaitable[Any]]


class ToolRegistry:
    """Registers tool handlers and executes tool calls by name."""

    def __init__(self) -> None:
        self._handlers: dict[str, ToolHandler] = {}
        self._schemas: dict[str, dict[str, Any]] = {}

    def register(self, name: str, handler: ToolHandler, schema: dict[str, Any]) -> None:
        """Register a tool handler with its JSON schema."""
        self._handlers[name] = handler
        self._schemas[name] = schema

    def names(self) -> list[str]:
        return list(self._handlers)

    def descriptions(self) -> dict[str, str]:
        return {name: schema.get("description", "") for name, schema in self._schemas.items()}

    def schemas(self) -> list[dict[str, Any]]:
        """Tool definitions in OpenAI function-calling format."""
        return [
            {
                "type": "function",
                "function": {
                    "name": name,
                    "description": schema.get("description", ""),
                    "parameters": {k: v for k, v in schema.items() if k != "description"},
                },
            }
            for name, schema in self._schemas.items()
        ]

    async def execute(self, name: str, args: dict[str, Any] | None = None) -> str:
        """Run a tool and return its observation text.

        Raises UnknownToolError for an unregistered name. Any other failure
        comes out as ToolExecutionError.
        """
        handler = self._handlers.get(name)
        if handler is None:
            raise UnknownToolError(name)
        try:
            result = await handler(**(args or {}))
        except ToolError:
            raise
        except Exception as e:
            raise ToolExecutionError(str(e) or type(e).__name__) from e
        return result if isinstance(result, str) else str(result)
