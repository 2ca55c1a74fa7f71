"""Tests for slash command parsing and the built-in command handlers."""

import asyncio
from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio

from agentgate.api.completion import Completion
from agentgate.api.runs import RunSupervisor
from agentgate.commands import CommandContext, CommandRegistry
from agentgate.commands.builtin import format_time_ago
from agentgate.conversations import ChatKey
from agentgate.errors import CompletionError
from tests.conftest import BlockingCompletion

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def ctx(conversations, conversation, chat_key, settings, commands, supervisor):
    return CommandContext(
        chat_key=chat_key,
        conversation=conversation,
        conversations=conversations,
        settings=settings,
        registry=commands,
        supervisor=supervisor,
    )


async def _run(commands, ctx, text: str) -> str:
    return await commands.execute(text, ctx)


# ---------------------------------------------------------------------------
# Parsing / registry
# ---------------------------------------------------------------------------


class TestParsing:
    @pytest.mark.parametrize(
        "text, expected",
        [
            ("/help", ("help", None)),
            ("/label  work ", ("label", "work")),
            ("  /switch teal-otter-417", ("switch", "teal-otter-417")),
            ("/verbose on", ("verbose", "on")),
            ("hello /help", None),
            ("/", None),
            ("plain text", None),
            ("", None),
        ],
    )
    def test_parse(self, text, expected):
        assert CommandRegistry.parse(text) == expected

    def test_is_command_requires_registration(self, commands):
        assert commands.is_command("/help")
        assert not commands.is_command("/nonexistent")
        assert not commands.is_command("what is /help")

    def test_builtin_names(self, commands):
        assert set(commands.names()) == {
            "help", "status", "new", "switch", "archive", "label",
            "conversations", "verbose", "reset", "delete", "stop",
            "compact", "systemprompt",
        }

    async def test_decorator_registration(self, ctx):
        registry = CommandRegistry()

        @registry.command("ping", "Reply with pong")
        async def ping(ctx, args):
            return f"pong {args or ''}".strip()

        assert await registry.execute("/ping", ctx) == "pong"
        assert await registry.execute("/ping again", ctx) == "pong again"

    async def test_unknown_command(self, commands, ctx):
        reply = await _run(commands, ctx, "/frobnicate")
        assert reply == "Unknown command: /frobnicate. Type /help for available commands."

    def test_format_time_ago(self):
        now = datetime(2024, 1, 10, 12, 0, tzinfo=UTC)
        assert format_time_ago(None) == "no activity"
        assert format_time_ago(now - timedelta(seconds=30), now) == "just now"
        assert format_time_ago(now - timedelta(minutes=5), now) == "5 minutes ago"
        assert format_time_ago(now - timedelta(hours=3), now) == "3 hours ago"
        assert format_time_ago(now - timedelta(days=2), now) == "2 days ago"
        assert format_time_ago(datetime(2023, 12, 1, 8, 30), now) == "2023-12-01 08:30 UTC"


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


class TestHelpAndStatus:
    async def test_help_lists_every_command(self, commands, ctx):
        reply = await _run(commands, ctx, "/help")
        assert reply.startswith("**Available commands**")
        for name in commands.names():
            assert f"/{name} - " in reply

    async def test_status(self, commands, ctx, conversations, settings):
        await conversations.add_message(ctx.conversation.id, "assistant", "hi", input_tokens=10, output_tokens=4)

        reply = await _run(commands, ctx, "/status")

        assert f"ID: {ctx.conversation.id}" in reply
        assert "Label: (no label)" in reply
        assert f"Model: {settings.model}" in reply
        assert "Messages: 1" in reply
        assert "Verbose: off" in reply
        assert "Active runs: 0" in reply
        assert "Total:  14" in reply


class TestLifecycleCommands:
    async def test_new(self, commands, ctx, conversations, chat_key):
        old_id = ctx.conversation.id
        reply = await _run(commands, ctx, "/new")

        current = await conversations.current_id_for(chat_key)
        assert current != old_id
        assert ctx.conversation.id == current
        assert f"**New conversation started (ID: {current}).**" in reply

    async def test_switch_by_label(self, commands, ctx, conversations):
        first_id = ctx.conversation.id
        await _run(commands, ctx, "/label first")
        await _run(commands, ctx, "/new")

        reply = await _run(commands, ctx, "/switch first")

        assert reply.startswith("Switched to conversation:")
        assert f"- ID: {first_id}" in reply
        assert "- Label: first" in reply
        assert ctx.conversation.id == first_id

    async def test_switch_without_argument(self, commands, ctx):
        assert await _run(commands, ctx, "/switch") == "Error: Usage: /switch <label-or-id>"

    async def test_switch_unknown(self, commands, ctx):
        assert await _run(commands, ctx, "/switch ghost") == "Error: Conversation 'ghost' not found"

    async def test_archive_current(self, commands, ctx, conversations, chat_key):
        archived_id = ctx.conversation.id
        reply = await _run(commands, ctx, "/archive")

        assert reply.startswith("**Current conversation archived and new conversation started**")
        assert f"- ID: {archived_id}" in reply
        assert ctx.conversation.id != archived_id
        assert await conversations.current_id_for(chat_key) == ctx.conversation.id

    async def test_archive_named(self, commands, ctx, conversations):
        await _run(commands, ctx, "/label old")
        await _run(commands, ctx, "/new")

        reply = await _run(commands, ctx, "/archive old")

        assert reply.startswith("**Conversation archived successfully**")
        assert "- Label: old" in reply

    async def test_archive_current_by_name_refused(self, commands, ctx):
        reply = await _run(commands, ctx, f"/archive {ctx.conversation.id}")
        assert reply.startswith("Error: Cannot archive the current conversation.")

    async def test_delete_current(self, commands, ctx, conversations):
        deleted_id = ctx.conversation.id
        await conversations.add_message(deleted_id, "user", "bye")

        reply = await _run(commands, ctx, "/delete current")

        assert reply.startswith("**Conversation deleted permanently**")
        assert f"- ID: {deleted_id}" in reply
        assert "- Messages: 1" in reply
        assert "New conversation:" in reply
        assert await conversations.get(deleted_id) is None
        assert ctx.conversation.id != deleted_id

    async def test_delete_current_by_id_refused(self, commands, ctx):
        reply = await _run(commands, ctx, f"/delete {ctx.conversation.id}")
        assert reply.startswith("Error: Cannot delete the current conversation.")

    async def test_delete_other(self, commands, ctx, conversations):
        await _run(commands, ctx, "/label scratch")
        scratch_id = ctx.conversation.id
        await _run(commands, ctx, "/new")

        reply = await _run(commands, ctx, "/delete scratch")

        assert f"- ID: {scratch_id}" in reply
        assert "New conversation:" not in reply
        assert await conversations.get(scratch_id) is None


class TestStateCommands:
    async def test_label_show_set(self, commands, ctx):
        assert await _run(commands, ctx, "/label") == "No label set. Use /label <name> to set one."
        assert await _run(commands, ctx, "/label work_2") == "Label set to: work_2"
        assert await _run(commands, ctx, "/label") == "Current label: work_2"

    async def test_label_invalid(self, commands, ctx):
        reply = await _run(commands, ctx, "/label has space")
        assert reply.startswith("Error: Invalid label format.")

    async def test_label_duplicate(self, commands, ctx):
        await _run(commands, ctx, "/label taken")
        await _run(commands, ctx, "/new")
        reply = await _run(commands, ctx, "/label taken")
        assert reply == "Error: Label 'taken' already in use by another conversation"

    async def test_conversations_listing(self, commands, ctx):
        first = ctx.conversation.id
        await _run(commands, ctx, "/label alpha")
        await _run(commands, ctx, "/new")
        second = ctx.conversation.id

        reply = await _run(commands, ctx, "/conversations")

        lines = reply.splitlines()
        assert lines[0] == "**Conversations**"
        assert f"[current] {second}" in lines
        assert f"{first} (alpha)" in lines

    async def test_conversations_archived(self, commands, ctx):
        assert await _run(commands, ctx, "/conversations archived") == (
            "**Archived Conversations**\nNo archived conversations found."
        )
        archived_id = ctx.conversation.id
        await _run(commands, ctx, "/archive")

        reply = await _run(commands, ctx, "/conversations archived")
        assert archived_id in reply

    async def test_verbose(self, commands, ctx, conversations):
        assert await _run(commands, ctx, "/verbose") == "Verbose mode is currently off. Usage: /verbose [on|off]"
        assert await _run(commands, ctx, "/verbose on") == "Verbose mode enabled. Tool calls will be shown."
        assert (await conversations.get(ctx.conversation.id)).verbose is True
        assert await _run(commands, ctx, "/verbose OFF") == "Verbose mode disabled. Tool calls will be hidden."
        assert await _run(commands, ctx, "/verbose maybe") == "Unknown argument: maybe. Usage: /verbose [on|off]"

    async def test_reset(self, commands, ctx, conversations):
        await conversations.add_message(ctx.conversation.id, "user", "q", input_tokens=5)
        reply = await _run(commands, ctx, "/reset")

        assert reply == f"Conversation {ctx.conversation.id} history and tokens cleared."
        assert await conversations.message_count(ctx.conversation.id) == 0
        assert (await conversations.get(ctx.conversation.id)).total_tokens == 0


class TestStopCommand:
    async def test_no_runs(self, commands, ctx):
        assert await _run(commands, ctx, "/stop") == "No active runs."

    async def test_stops_runs_of_current_conversation(
        self, commands, registry, conversations, conversation, chat_key, settings
    ):
        completion = BlockingCompletion()
        supervisor = RunSupervisor(completion, registry, conversations, settings)
        ctx = CommandContext(chat_key, conversation, conversations, settings, commands, supervisor)

        run = supervisor.start(conversation, "long")
        await asyncio.wait_for(completion.entered.wait(), timeout=5)

        assert await _run(commands, ctx, "/stop") == "Stopped 1 run(s)."
        assert run.is_interrupted()
        await run.wait()

    async def test_other_chats_are_isolated(self, commands, ctx, conversations, settings, supervisor):
        other_key = ChatKey("telegram", "2002")
        other = await conversations.current_for(other_key)
        other_ctx = CommandContext(other_key, other, conversations, settings, commands, supervisor)

        await _run(commands, other_ctx, "/label mine")
        reply = await _run(commands, ctx, "/switch mine")
        assert reply == "Error: Conversation 'mine' not found"


class TestCompactCommand:
    async def _fill(self, conversations, conversation_id, count):
        for i in range(count):
            role = "user" if i % 2 == 0 else "assistant"
            await conversations.add_message(conversation_id, role, f"msg-{i:02d}")

    async def test_needs_ten_messages(self, commands, ctx, conversations, completion):
        await self._fill(conversations, ctx.conversation.id, 3)

        reply = await _run(commands, ctx, "/compact")

        assert reply == "Need at least 10 messages to compact. Current: 3"
        assert completion.calls == []

    async def test_summarizes_older_keeps_recent(self, commands, ctx, conversations, completion):
        await self._fill(conversations, ctx.conversation.id, 12)
        summary = "S" * 150
        completion.responses = [Completion(content=summary)]

        reply = await _run(commands, ctx, "/compact")

        assert reply == (
            f"Conversation {ctx.conversation.id} compacted.\n"
            "7 messages summarized, 5 recent messages kept.\n"
            f"Summary: {'S' * 100}..."
        )
        prompt = completion.calls[0]["messages"][0]["content"]
        assert prompt.startswith("Please summarize the following conversation")
        assert "user: msg-00\n\nassistant: msg-01" in prompt
        assert "msg-06" in prompt
        assert "msg-07" not in prompt

        history = await conversations.history(ctx.conversation.id)
        assert (history[0]["role"], history[0]["content"]) == ("system", summary)
        assert [m["content"] for m in history[1:]] == [f"msg-{i:02d}" for i in range(7, 12)]

    async def test_short_summary_not_elided(self, commands, ctx, conversations, completion):
        await self._fill(conversations, ctx.conversation.id, 10)
        completion.responses = [Completion(content="brief")]

        reply = await _run(commands, ctx, "/compact")

        assert reply.endswith("Summary: brief")
        assert "5 messages summarized, 5 recent messages kept." in reply

    async def test_completion_failure_keeps_history(self, commands, ctx, conversations, completion):
        await self._fill(conversations, ctx.conversation.id, 10)
        completion.responses = [CompletionError("service unavailable")]

        reply = await _run(commands, ctx, "/compact")

        assert reply == "Error: Could not summarize conversation: service unavailable"
        assert await conversations.message_count(ctx.conversation.id) == 10


class TestSystemPromptCommand:
    async def test_shows_prompt_with_tools(self, commands, ctx, registry, settings):
        async def shell() -> str:
            return ""

        registry.register("shell", shell, {"type": "object", "description": "Run a shell command", "properties": {}})

        reply = await _run(commands, ctx, "/systemprompt")

        assert reply.startswith(f"You are {settings.agent_name}, an autonomous AI agent.")
        assert "- shell: Run a shell command" in reply
        assert "IDENTITY.md" in reply
