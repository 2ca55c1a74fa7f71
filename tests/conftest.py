"""Test fixtures: a temporary SQLite database per test plus scripted collaborators."""

from __future__ import annotations

import asyncio

import pytest
import pytest_asyncio

from agentgate.api.completion import Completion, ToolCall
from agentgate.api.runs import RunSupervisor
from agentgate.api.tools import ToolRegistry
from agentgate.commands import create_default_registry as create_command_registry
from agentgate.config import Settings
from agentgate.conversations import ChatKey, ConversationManager
from agentgate.storage.database import Database

# ---------------------------------------------------------------------------
# Scripted completion service
# ---------------------------------------------------------------------------


class ScriptedCompletion:
    """Returns queued Completions in order, then ``default``.

    Queued exceptions are raised instead of returned. Every call's
    messages are snapshotted in ``calls``.
    """

    def __init__(self, responses: list | None = None, default: Completion | None = None) -> None:
        self.responses = list(responses or [])
        self.default = default or Completion(content="done")
        self.calls: list[dict] = []

    async def complete(self, messages, tools=None, model=None) -> Completion:
        self.calls.append({"messages": [dict(m) for m in messages], "tools": tools, "model": model})
        if not self.responses:
            return self.default
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response


class BlockingCompletion:
    """Blocks every call until ``release`` is set. ``entered`` is set on the first call."""

    def __init__(self, answer: str = "late answer") -> None:
        self.entered = asyncio.Event()
        self.release = asyncio.Event()
        self.answer = answer
        self.calls = 0

    async def complete(self, messages, tools=None, model=None) -> Completion:
        self.calls += 1
        self.entered.set()
        await self.release.wait()
        return Completion(content=self.answer)


def tool_call_response(name: str, arguments: dict | None = None, content: str | None = None,
                       call_id: str = "call_1", input_tokens: int = 0, output_tokens: int = 0) -> Completion:
    return Completion(
        content=content,
        tool_calls=[ToolCall(id=call_id, name=name, arguments=arguments or {})],
        input_tokens=input_tokens,
        output_tokens=output_tokens,
    )


# ---------------------------------------------------------------------------
# Settings / database fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings pointing at a per-test SQLite file and workspace."""
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'agentgate.sqlite'}",
        workspace_dir=str(tmp_path / "workspace"),
        prompt_dir=str(tmp_path / "prompts"),
        skills_dir=str(tmp_path / "skills"),
        searxng_url="",
        channels={},
        max_iterations=20,
        shutdown_timeout=1.0,
    )


@pytest_asyncio.fixture
async def db(settings):
    database = Database(settings)
    await database.connect()
    yield database
    await database.disconnect()


@pytest.fixture
def conversations(db) -> ConversationManager:
    return ConversationManager(db)


@pytest.fixture
def chat_key() -> ChatKey:
    return ChatKey("telegram", "1001")


@pytest_asyncio.fixture
async def conversation(conversations, chat_key):
    return await conversations.current_for(chat_key)


@pytest.fixture
def registry() -> ToolRegistry:
    return ToolRegistry()


@pytest.fixture
def completion() -> ScriptedCompletion:
    return ScriptedCompletion()


@pytest.fixture
def supervisor(completion, registry, conversations, settings) -> RunSupervisor:
    return RunSupervisor(completion, registry, conversations, settings)


@pytest.fixture
def commands():
    return create_command_registry()
