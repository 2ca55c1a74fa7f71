"""Built-in slash commands.

Each handler receives the CommandContext and the raw argument string
(None when absent) and returns the reply text.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from agentgate.api.tools import ToolRegistry
from agentgate.commands.registry import CommandContext, CommandRegistry
from agentgate.conversations.manager import as_utc
from agentgate.conversations.prompt import build_system_prompt
from agentgate.errors import CompletionError
from agentgate.storage.models import Conversation

logger = logging.getLogger(__name__)

COMPACT_MIN_MESSAGES = 10
COMPACT_KEEP_RECENT = 5
COMPACT_PROMPT = (
    "Please summarize the following conversation, preserving key context, decisions, "
    "and facts. Be concise but comprehensive:\n\n"
)


def format_time_ago(timestamp: datetime | None, now: datetime | None = None) -> str:
    if timestamp is None:
        return "no activity"
    timestamp = as_utc(timestamp)
    now = now or datetime.now(UTC)
    diff = (now - timestamp).total_seconds()
    if diff < 60:
        return "just now"
    if diff < 3600:
        return f"{int(diff // 60)} minutes ago"
    if diff < 86_400:
        return f"{int(diff // 3600)} hours ago"
    if diff < 604_800:
        return f"{int(diff // 86_400)} days ago"
    return timestamp.strftime("%Y-%m-%d %H:%M UTC")


async def _summary(ctx: CommandContext, conversation: Conversation) -> list[str]:
    count = await ctx.conversations.message_count(conversation.id)
    last = await ctx.conversations.last_activity(conversation.id)
    label = conversation.label if conversation.has_label else "(no label)"
    return [
        f"- ID: {conversation.id}",
        f"- Label: {label}",
        f"- Messages: {count}",
        f"- Last activity: {format_time_ago(last)}",
    ]


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


async def help_command(ctx: CommandContext, args: str | None = None) -> str:
    lines = ["**Available commands**"]
    lines += [f"/{cmd.name} - {cmd.description or 'No description'}" for cmd in ctx.registry.commands()]
    return "\n".join(lines)


async def status_command(ctx: CommandContext, args: str | None = None) -> str:
    conversation = await ctx.conversations.get(ctx.conversation.id) or ctx.conversation
    count = await ctx.conversations.message_count(conversation.id)
    active = 0
    if ctx.supervisor is not None:
        active = sum(1 for run in ctx.supervisor.active() if run.conversation_id == conversation.id)

    lines = [
        "**Conversation Status**",
        f"ID: {conversation.id}",
        f"Label: {conversation.label or '(no label)'}",
        f"Model: {ctx.settings.model}",
        f"Max iterations: {ctx.settings.max_iterations}",
        f"Messages: {count}",
        f"Verbose: {'on' if conversation.verbose else 'off'}",
        f"Active runs: {active}",
        "",
        "**Token Usage:**",
        f"Input:  {conversation.input_tokens}",
        f"Output: {conversation.output_tokens}",
        f"Total:  {conversation.total_tokens}",
    ]
    return "\n".join(lines)


async def new_command(ctx: CommandContext, args: str | None = None) -> str:
    conversation = await ctx.conversations.create_new(ctx.chat_key)
    ctx.conversation = conversation
    return (
        f"**New conversation started (ID: {conversation.id}).**\n"
        f"Use `/switch {conversation.id}` to return later."
    )


async def switch_command(ctx: CommandContext, args: str | None = None) -> str:
    conversation = await ctx.conversations.switch(ctx.chat_key, args or "")
    ctx.conversation = conversation
    return "\n".join(["Switched to conversation:"] + await _summary(ctx, conversation))


async def archive_command(ctx: CommandContext, args: str | None = None) -> str:
    result = await ctx.conversations.archive(ctx.chat_key, args)
    if result.new_conversation is None:
        return "\n".join(["**Conversation archived successfully**"] + await _summary(ctx, result.archived))

    ctx.conversation = result.new_conversation
    lines = ["**Current conversation archived and new conversation started**", "", "Archived:"]
    lines += await _summary(ctx, result.archived)
    lines += ["", "New conversation:", f"- ID: {result.new_conversation.id}", "- Label: (no label)"]
    return "\n".join(lines)


async def label_command(ctx: CommandContext, args: str | None = None) -> str:
    if not args:
        conversation = await ctx.conversations.get(ctx.conversation.id) or ctx.conversation
        if conversation.has_label:
            return f"Current label: {conversation.label}"
        return "No label set. Use /label <name> to set one."

    label = await ctx.conversations.set_label(ctx.conversation.id, args)
    return f"Label set to: {label}"


async def conversations_command(ctx: CommandContext, args: str | None = None) -> str:
    show_archived = (args or "").strip().lower() == "archived"
    conversations = await ctx.conversations.list_conversations(ctx.chat_key, archived=show_archived)
    current_id = await ctx.conversations.current_id_for(ctx.chat_key)

    lines = ["**Archived Conversations**" if show_archived else "**Conversations**"]
    if not conversations:
        lines.append("No archived conversations found." if show_archived else "No conversations found.")
        return "\n".join(lines)

    for conversation in conversations:
        prefix = "[current] " if conversation.id == current_id else ""
        suffix = f" ({conversation.label})" if conversation.has_label else ""
        lines.append(f"{prefix}{conversation.id}{suffix}")
    return "\n".join(lines)


async def verbose_command(ctx: CommandContext, args: str | None = None) -> str:
    value = (args or "").strip().lower()
    if value == "on":
        await ctx.conversations.set_verbose(ctx.conversation.id, True)
        return "Verbose mode enabled. Tool calls will be shown."
    if value == "off":
        await ctx.conversations.set_verbose(ctx.conversation.id, False)
        return "Verbose mode disabled. Tool calls will be hidden."
    if not value:
        conversation = await ctx.conversations.get(ctx.conversation.id) or ctx.conversation
        status = "on" if conversation.verbose else "off"
        return f"Verbose mode is currently {status}. Usage: /verbose [on|off]"
    return f"Unknown argument: {args}. Usage: /verbose [on|off]"


async def reset_command(ctx: CommandContext, args: str | None = None) -> str:
    await ctx.conversations.reset(ctx.conversation.id)
    return f"Conversation {ctx.conversation.id} history and tokens cleared."


async def delete_command(ctx: CommandContext, args: str | None = None) -> str:
    result = await ctx.conversations.delete(ctx.chat_key, args or "")
    if ctx.supervisor is not None:
        ctx.supervisor.interrupt_conversation(result.conversation_id)

    lines = [
        "**Conversation deleted permanently**",
        f"- ID: {result.conversation_id}",
        f"- Label: {result.label or '(no label)'}",
        f"- Messages: {result.message_count}",
        f"- Last activity: {format_time_ago(result.last_activity)}",
    ]
    if result.new_conversation is not None:
        ctx.conversation = result.new_conversation
        lines += ["", "New conversation:", f"- ID: {result.new_conversation.id}", "- Label: (no label)"]
    return "\n".join(lines)


async def stop_command(ctx: CommandContext, args: str | None = None) -> str:
    if ctx.supervisor is None:
        return "No active runs."
    stopped = ctx.supervisor.interrupt_conversation(ctx.conversation.id)
    if not stopped:
        return "No active runs."
    return f"Stopped {stopped} run(s)."


async def systemprompt_command(ctx: CommandContext, args: str | None = None) -> str:
    tools = ctx.supervisor.registry if ctx.supervisor is not None else ToolRegistry()
    return build_system_prompt(ctx.settings, tools)


async def compact_command(ctx: CommandContext, args: str | None = None) -> str:
    conversation_id = ctx.conversation.id
    messages = await ctx.conversations.history(conversation_id)
    if len(messages) < COMPACT_MIN_MESSAGES:
        return f"Need at least {COMPACT_MIN_MESSAGES} messages to compact. Current: {len(messages)}"
    if ctx.supervisor is None:
        return "Error: No completion service available."

    older = messages[:-COMPACT_KEEP_RECENT]
    transcript = "\n\n".join(f"{m['role']}: {m['content']}" for m in older)
    try:
        response = await ctx.supervisor.completion.complete(
            [{"role": "user", "content": COMPACT_PROMPT + transcript}], model=ctx.settings.model
        )
    except CompletionError as e:
        logger.warning("Compaction of %s failed: %s", conversation_id, e)
        return f"Error: Could not summarize conversation: {e}"

    summary = (response.content or "").strip()
    if not summary:
        return "Error: Could not summarize conversation: empty summary"

    replaced = await ctx.conversations.compact(conversation_id, summary, len(older))
    kept = await ctx.conversations.message_count(conversation_id) - 1
    preview = summary[:100] + "..." if len(summary) > 100 else summary
    return (
        f"Conversation {conversation_id} compacted.\n"
        f"{replaced} messages summarized, {kept} recent messages kept.\n"
        f"Summary: {preview}"
    )


def register_builtin_commands(registry: CommandRegistry) -> None:
    registry.register("help", help_command, "Show available commands")
    registry.register("status", status_command, "Show current conversation status")
    registry.register("new", new_command, "Start a new conversation")
    registry.register("switch", switch_command, "Switch to a conversation by label or ID")
    registry.register("archive", archive_command, "Archive current or named conversation")
    registry.register("label", label_command, "Show or set the conversation label")
    registry.register("conversations", conversations_command, "List conversations (/conversations archived)")
    registry.register("verbose", verbose_command, "Toggle tool call display (/verbose on|off)")
    registry.register("reset", reset_command, "Clear conversation history and tokens")
    registry.register("delete", delete_command, "Delete a conversation permanently (/delete current|label|id)")
    registry.register("stop", stop_command, "Stop runs in progress for this conversation")
    registry.register("compact", compact_command, "Compress conversation by summarizing older messages")
    registry.register("systemprompt", systemprompt_command, "Display the system prompt")


def create_default_registry() -> CommandRegistry:
    registry = CommandRegistry()
    register_builtin_commands(registry)
    return registry
