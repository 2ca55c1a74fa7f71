"""Conversations: per-chat current conversation state and lifecycle.

Public API: ConversationManager plus its key/result types.
"""

from agentgate.conversations.manager import (
    LABEL_PATTERN,
    ArchiveResult,
    ChatKey,
    ConversationManager,
    DeleteResult,
    as_utc,
)

__all__ = [
    "LABEL_PATTERN",
    "ArchiveResult",
    "ChatKey",
    "ConversationManager",
    "DeleteResult",
    "as_utc",
]
