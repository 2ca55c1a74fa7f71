"""Conversation state manager.

Maps a chat (channel + external chat id) to its current conversation and
owns the conversation lifecycle: create, switch, label, archive, delete,
reset, message appends.

The current conversation is a single pointer column on the chat row, so
a chat can never have two current conversations. Multi-step transitions
(create + repoint, archive + replace) commit in one transaction, and
current_for() repairs a missing, dangling or archived pointer.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from agentgate.conversations import human_id
from agentgate.errors import (
    CannotModifyCurrent,
    DuplicateLabel,
    InvalidFormat,
    NotFound,
)
from agentgate.storage.database import Database
from agentgate.storage.models import Chat, Conversation, Message

logger = logging.getLogger(__name__)

LABEL_PATTERN = re.compile(r"[A-Za-z0-9_-]+")

VALID_ROLES = frozenset({"user", "assistant", "system", "tool"})


def _utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


@dataclass(frozen=True)
class ChatKey:
    """Identifies a chat: the channel plus its external chat id."""

    channel: str
    external_id: str

    def __str__(self) -> str:
        return f"{self.channel}:{self.external_id}"


@dataclass
class ArchiveResult:
    archived: Conversation
    new_conversation: Conversation | None = None


@dataclass
class DeleteResult:
    conversation_id: str
    label: str | None
    message_count: int
    last_activity: datetime | None
    new_conversation: Conversation | None = None


class ConversationManager:
    """All conversation state transitions, backed by the Database."""

    def __init__(self, database: Database) -> None:
        self._db = database

    # ------------------------------------------------------------------
    # Chats and the current conversation
    # ------------------------------------------------------------------

    async def chat_for(self, key: ChatKey, display_name: str | None = None) -> Chat:
        """Find or create the chat row for a key."""
        async with self._db.session() as session:
            chat = await self._get_chat(session, key, display_name)
            await session.commit()
            return chat

    async def current_for(self, key: ChatKey, display_name: str | None = None) -> Conversation:
        """Return the chat's current conversation, creating one if needed."""
        async with self._db.session() as session:
            chat = await self._get_chat(session, key, display_name)
            conversation = await self._resolve_current(session, chat)
            await session.commit()
            return conversation

    async def current_id_for(self, key: ChatKey) -> str | None:
        """Current conversation id without creating anything."""
        async with self._db.session() as session:
            result = await session.execute(
                select(Chat.current_conversation_id).where(
                    Chat.channel == key.channel, Chat.external_id == key.external_id
                )
            )
            return result.scalar_one_or_none()

    async def create_new(self, key: ChatKey) -> Conversation:
        """Create a fresh conversation and make it current."""
        async with self._db.session() as session:
            chat = await self._get_chat(session, key)
            conversation = await self._create(session, chat)
            await session.commit()
            logger.info("Created conversation %s for %s", conversation.id, key)
            return conversation

    async def switch(self, key: ChatKey, identifier: str) -> Conversation:
        """Switch to a conversation by label, then by id. Un-archives it."""
        identifier = (identifier or "").strip()
        if not identifier:
            raise InvalidFormat("Usage: /switch <label-or-id>")

        async with self._db.session() as session:
            chat = await self._get_chat(session, key)
            conversation = await self._find(session, chat, identifier)
            if conversation is None:
                raise NotFound(f"Conversation '{identifier}' not found")

            if conversation.archived:
                conversation.archived = False
            chat.current_conversation_id = conversation.id
            await session.commit()
            logger.info("Switched %s to conversation %s", key, conversation.id)
            return conversation

    async def archive(self, key: ChatKey, identifier: str | None = None) -> ArchiveResult:
        """Archive the current conversation (no identifier) or a specific one.

        Archiving the current conversation creates and activates a
        replacement in the same transaction. A specific identifier must
        not name the current conversation.
        """
        identifier = (identifier or "").strip()

        async with self._db.session() as session:
            chat = await self._get_chat(session, key)

            if not identifier:
                current = await self._resolve_current(session, chat)
                current.archived = True
                replacement = await self._create(session, chat)
                await session.commit()
                logger.info("Archived %s, new current %s", current.id, replacement.id)
                return ArchiveResult(archived=current, new_conversation=replacement)

            conversation = await self._find(session, chat, identifier)
            if conversation is None:
                raise NotFound(f"Conversation '{identifier}' not found")
            if conversation.id == chat.current_conversation_id:
                raise CannotModifyCurrent(
                    "Cannot archive the current conversation. "
                    "Use /archive without arguments to archive current and start new."
                )
            conversation.archived = True
            await session.commit()
            logger.info("Archived %s", conversation.id)
            return ArchiveResult(archived=conversation)

    async def delete(self, key: ChatKey, identifier: str) -> DeleteResult:
        """Permanently delete a conversation and its messages.

        ``current`` deletes the current conversation and activates a
        replacement. Naming the current conversation by label or id raises
        CannotModifyCurrent.
        """
        identifier = (identifier or "").strip()
        if not identifier:
            raise InvalidFormat("Usage: /delete <current|label-or-id>")

        async with self._db.session() as session:
            chat = await self._get_chat(session, key)
            if identifier.lower() == "current":
                conversation = await self._resolve_current(session, chat)
            else:
                conversation = await self._find(session, chat, identifier)
                if conversation is None:
                    raise NotFound(f"Conversation '{identifier}' not found")
                if conversation.id == chat.current_conversation_id:
                    raise CannotModifyCurrent(
                        "Cannot delete the current conversation. "
                        "Use '/delete current' to delete current and start new."
                    )

            was_current = conversation.id == chat.current_conversation_id
            result = DeleteResult(
                conversation_id=conversation.id,
                label=conversation.label,
                message_count=await self._message_count(session, conversation.id),
                last_activity=await self._last_activity(session, conversation.id),
            )

            await session.execute(delete(Message).where(Message.conversation_id == conversation.id))
            await session.delete(conversation)
            if was_current:
                chat.current_conversation_id = None
                result.new_conversation = await self._create(session, chat)
            await session.commit()
            logger.info("Deleted conversation %s", result.conversation_id)
            return result

    # ------------------------------------------------------------------
    # Per-conversation state
    # ------------------------------------------------------------------

    async def get(self, conversation_id: str) -> Conversation | None:
        async with self._db.session() as session:
            return await session.get(Conversation, conversation_id)

    async def set_label(self, conversation_id: str, value: str | None) -> str | None:
        """Set or clear (empty value) a conversation's label."""
        if value and not LABEL_PATTERN.fullmatch(value):
            raise InvalidFormat("Invalid label format. Use only letters, numbers, dashes, and underscores.")

        async with self._db.session() as session:
            conversation = await session.get(Conversation, conversation_id)
            if conversation is None:
                raise NotFound(f"Conversation '{conversation_id}' not found")

            if not value:
                conversation.label = None
                await session.commit()
                return None

            if conversation.label == value:
                return value

            result = await session.execute(
                select(func.count())
                .select_from(Conversation)
                .where(
                    Conversation.chat_id == conversation.chat_id,
                    Conversation.label == value,
                    Conversation.id != conversation.id,
                )
            )
            if result.scalar():
                raise DuplicateLabel(f"Label '{value}' already in use by another conversation")

            conversation.label = value
            await session.commit()
            return value

    async def set_verbose(self, conversation_id: str, enabled: bool) -> Conversation:
        async with self._db.session() as session:
            conversation = await session.get(Conversation, conversation_id)
            if conversation is None:
                raise NotFound(f"Conversation '{conversation_id}' not found")
            conversation.verbose = enabled
            await session.commit()
            return conversation

    async def reset(self, conversation_id: str) -> None:
        """Clear all messages and token counters."""
        async with self._db.session() as session:
            await session.execute(delete(Message).where(Message.conversation_id == conversation_id))
            await session.execute(
                update(Conversation)
                .where(Conversation.id == conversation_id)
                .values(input_tokens=0, output_tokens=0, updated_at=_utcnow())
                .execution_options(synchronize_session=False)
            )
            await session.commit()

    async def compact(self, conversation_id: str, summary: str, summarized: int) -> int:
        """Replace the oldest ``summarized`` messages with one system message.

        Messages appended after the summary was requested are kept. The
        rewrite commits in one transaction and token totals are unchanged.
        Returns the number of messages replaced.
        """
        async with self._db.session() as session:
            if await session.get(Conversation, conversation_id) is None:
                raise NotFound(f"Conversation '{conversation_id}' not found")

            result = await session.execute(
                select(Message).where(Message.conversation_id == conversation_id).order_by(Message.id)
            )
            messages = list(result.scalars())
            cut = min(max(summarized, 0), len(messages))
            recent = [
                (m.role, m.content, m.input_tokens, m.output_tokens, m.timestamp) for m in messages[cut:]
            ]

            # Re-inserted so the summary sorts before the kept messages
            await session.execute(
                delete(Message)
                .where(Message.conversation_id == conversation_id)
                .execution_options(synchronize_session=False)
            )
            session.expunge_all()
            now = _utcnow()
            session.add(Message(conversation_id=conversation_id, role="system", content=summary, timestamp=now))
            for role, content, input_tokens, output_tokens, timestamp in recent:
                session.add(
                    Message(
                        conversation_id=conversation_id,
                        role=role,
                        content=content,
                        input_tokens=input_tokens,
                        output_tokens=output_tokens,
                        timestamp=timestamp,
                    )
                )
            await session.execute(
                update(Conversation)
                .where(Conversation.id == conversation_id)
                .values(updated_at=now)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return cut

    async def add_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        input_tokens: int = 0,
        output_tokens: int = 0,
    ) -> Message:
        """Append a message and add its tokens to the conversation totals."""
        if role not in VALID_ROLES:
            raise InvalidFormat(f"Invalid message role: {role}")
        input_tokens = input_tokens or 0
        output_tokens = output_tokens or 0

        async with self._db.session() as session:
            # SQL-side increment: concurrent runs on one conversation must not lose counts
            result = await session.execute(
                update(Conversation)
                .where(Conversation.id == conversation_id)
                .values(
                    input_tokens=Conversation.input_tokens + input_tokens,
                    output_tokens=Conversation.output_tokens + output_tokens,
                    updated_at=_utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                await session.rollback()
                raise NotFound(f"Conversation '{conversation_id}' not found")

            message = Message(
                conversation_id=conversation_id,
                role=role,
                content=content,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                timestamp=_utcnow(),
            )
            session.add(message)
            await session.commit()
            return message

    async def history(self, conversation_id: str) -> list[dict]:
        """Messages in insertion order as plain dicts."""
        async with self._db.session() as session:
            result = await session.execute(
                select(Message).where(Message.conversation_id == conversation_id).order_by(Message.id)
            )
            return [m.to_dict() for m in result.scalars()]

    async def message_count(self, conversation_id: str) -> int:
        async with self._db.session() as session:
            return await self._message_count(session, conversation_id)

    async def last_activity(self, conversation_id: str) -> datetime | None:
        async with self._db.session() as session:
            return await self._last_activity(session, conversation_id)

    async def list_conversations(self, key: ChatKey, archived: bool | None = False) -> list[Conversation]:
        """Conversations of a chat, most recently updated first.

        ``archived=None`` lists both archived and active conversations.
        """
        async with self._db.session() as session:
            chat = await self._get_chat(session, key)
            await session.commit()
            query = select(Conversation).where(Conversation.chat_id == chat.id)
            if archived is not None:
                query = query.where(Conversation.archived == archived)
            result = await session.execute(query.order_by(Conversation.updated_at.desc(), Conversation.id))
            return list(result.scalars())

    # ------------------------------------------------------------------
    # Internal helpers (caller owns the session and the commit)
    # ------------------------------------------------------------------

    async def _get_chat(self, session: AsyncSession, key: ChatKey, display_name: str | None = None) -> Chat:
        query = select(Chat).where(Chat.channel == key.channel, Chat.external_id == key.external_id)
        chat = (await session.execute(query)).scalar_one_or_none()
        if chat is None:
            chat = Chat(channel=key.channel, external_id=key.external_id, display_name=display_name)
            session.add(chat)
            try:
                await session.flush()
            except IntegrityError:
                # Another task created the same chat first; nothing else is pending yet
                await session.rollback()
                chat = (await session.execute(query)).scalar_one()
        elif display_name and chat.display_name != display_name:
            chat.display_name = display_name
        return chat

    async def _resolve_current(self, session: AsyncSession, chat: Chat) -> Conversation:
        conversation = None
        if chat.current_conversation_id:
            conversation = await session.get(Conversation, chat.current_conversation_id)
        if conversation is None or conversation.archived or conversation.chat_id != chat.id:
            if chat.current_conversation_id:
                logger.info(
                    "Current conversation %s for chat %s is gone or archived, creating a new one",
                    chat.current_conversation_id,
                    chat.id,
                )
            conversation = await self._create(session, chat)
        return conversation

    async def _create(self, session: AsyncSession, chat: Chat) -> Conversation:
        now = _utcnow()
        conversation = Conversation(
            id=await human_id.generate(session),
            chat_id=chat.id,
            label=None,
            archived=False,
            verbose=False,
            input_tokens=0,
            output_tokens=0,
            created_at=now,
            updated_at=now,
        )
        session.add(conversation)
        chat.current_conversation_id = conversation.id
        await session.flush()
        return conversation

    async def _find(self, session: AsyncSession, chat: Chat, identifier: str) -> Conversation | None:
        """Find one of the chat's conversations by label, then by id."""
        result = await session.execute(
            select(Conversation).where(Conversation.chat_id == chat.id, Conversation.label == identifier)
        )
        conversation = result.scalar_one_or_none()
        if conversation is not None:
            return conversation

        result = await session.execute(
            select(Conversation).where(
                Conversation.chat_id == chat.id,
                func.lower(Conversation.id) == human_id.normalize(identifier),
            )
        )
        return result.scalar_one_or_none()

    async def _message_count(self, session: AsyncSession, conversation_id: str) -> int:
        result = await session.execute(
            select(func.count()).select_from(Message).where(Message.conversation_id == conversation_id)
        )
        return result.scalar() or 0

    async def _last_activity(self, session: AsyncSession, conversation_id: str) -> datetime | None:
        result = await session.execute(
            select(func.max(Message.timestamp)).where(Message.conversation_id == conversation_id)
        )
        return as_utc(result.scalar())
