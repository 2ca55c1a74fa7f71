"""Completion service: OpenAI-compatible chat completions over httpx.

CompletionService is the seam the ReAct loop talks to. CompletionClient
is the concrete implementation (OpenRouter by default); tests substitute
their own object with a ``complete`` coroutine.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from agentgate.config import Settings
from agentgate.errors import CompletionError

logger = logging.getLogger(__name__)

_RETRY_STATUSES = (429, 500, 502, 503, 529)
_MAX_RETRY_AFTER = 30.0  # seconds


@dataclass
class ToolCall:
    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)

    def to_message(self) -> dict[str, Any]:
        """OpenAI ``tool_calls`` entry for the assistant message."""
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": json.dumps(self.arguments)},
        }


@dataclass
class Completion:
    content: str | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    input_tokens: int = 0
    output_tokens: int = 0

    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


class CompletionService(Protocol):
    async def complete(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        model: str | None = None,
    ) -> Completion: ...


def _parse_arguments(raw: Any) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("Unparseable tool arguments: %r", raw)
        return {}
    return parsed if isinstance(parsed, dict) else {}


def parse_completion(data: dict[str, Any]) -> Completion:
    """Build a Completion from a chat-completions response body."""
    choices = data.get("choices") or []
    if not choices:
        raise CompletionError("Completion response has no choices")
    message = choices[0].get("message") or {}

    tool_calls = [
        ToolCall(
            id=tc.get("id") or f"call_{i}",
            name=(tc.get("function") or {}).get("name", ""),
            arguments=_parse_arguments((tc.get("function") or {}).get("arguments")),
        )
        for i, tc in enumerate(message.get("tool_calls") or [])
    ]

    usage = data.get("usage") or {}
    return Completion(
        content=message.get("content"),
        tool_calls=tool_calls,
        input_tokens=usage.get("prompt_tokens") or 0,
        output_tokens=usage.get("completion_tokens") or 0,
    )


class CompletionClient:
    """Chat-completions client with bearer auth and a single retry."""

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._settings = settings
        self._transport = transport
        self._http: httpx.AsyncClient | None = None

    async def start(self) -> None:
        """Initialize the httpx client with auth and timeout settings."""
        settings = self._settings
        headers = {"content-type": "application/json"}
        if settings.api_key:
            headers["authorization"] = f"Bearer {settings.api_key}"
        else:
            logger.warning("OPENROUTER_API_KEY is not set -- completion calls will fail")

        timeout = httpx.Timeout(
            connect=settings.api_timeout_connect,
            read=settings.api_timeout_read,
            write=10.0,
            pool=10.0,
        )
        self._http = httpx.AsyncClient(
            base_url=settings.api_base_url,
            headers=headers,
            timeout=timeout,
            limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
            transport=self._transport,
        )
        logger.info("Completion client initialized (%s, model %s)", settings.api_base_url, settings.model)

    async def close(self) -> None:
        if self._http:
            await self._http.aclose()
            self._http = None

    async def complete(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        model: str | None = None,
    ) -> Completion:
        """POST /chat/completions with one retry for 429/5xx and timeouts.

        Raises CompletionError on persistent errors.
        """
        if not self._http:
            raise CompletionError("httpx client not initialized -- call start() first")

        payload: dict[str, Any] = {"model": model or self._settings.model, "messages": messages}
        if tools:
            payload["tools"] = tools

        last_error: CompletionError | None = None
        for attempt in range(2):  # initial + 1 retry
            try:
                response = await self._http.post("chat/completions", json=payload)

                if response.status_code == 200:
                    try:
                        return parse_completion(response.json())
                    except ValueError as e:
                        raise CompletionError(f"Invalid completion response: {e}") from e

                try:
                    error = response.json().get("error") or {}
                    error_msg = error.get("message", "unknown error") if isinstance(error, dict) else str(error)
                except ValueError:
                    error_msg = f"HTTP {response.status_code}: {response.text[:500]}"

                if response.status_code in _RETRY_STATUSES and attempt == 0:
                    try:
                        retry_after = float(response.headers.get("retry-after", "1"))
                    except ValueError:
                        retry_after = 1.0
                    retry_after = min(retry_after, _MAX_RETRY_AFTER)
                    logger.warning(
                        "Completion API error %d, retrying in %.1fs: %s",
                        response.status_code,
                        retry_after,
                        error_msg,
                    )
                    await asyncio.sleep(retry_after)
                    continue

                last_error = CompletionError(f"Completion API error ({response.status_code}): {error_msg}")
                break

            except httpx.TimeoutException as e:
                last_error = CompletionError(f"Completion request timed out: {e}")
                if attempt == 0:
                    logger.warning("Completion timeout, retrying: %s", e)
                    await asyncio.sleep(1)
                    continue
            except httpx.HTTPError as e:
                last_error = CompletionError(f"HTTP error: {e}")
                break  # Don't retry connection errors

        raise last_error or CompletionError("Completion call failed with unknown error")
