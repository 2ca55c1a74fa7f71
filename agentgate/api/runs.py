"""Async runs: one ReActLoop per user message, each in its own task.

RunSupervisor owns the set of active runs. A run leaves the set when its
task ends or when it is interrupted, whichever comes first.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from agentgate.api.completion import CompletionService
from agentgate.api.loop import ReActLoop
from agentgate.api.tools import ToolRegistry
from agentgate.config import Settings
from agentgate.conversations.manager import ConversationManager
from agentgate.errors import MaxIterationsExceeded, RunInterrupted
from agentgate.events import (
    CompletionCallback,
    ErrorCallback,
    ErrorEvent,
    EventCallback,
    Final,
)
from agentgate.storage.models import Conversation

logger = logging.getLogger(__name__)


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    INTERRUPTED = "interrupted"


@dataclass
class Run:
    conversation_id: str
    user_input: str
    id: str = field(default_factory=lambda: uuid4().hex)
    status: RunStatus = RunStatus.RUNNING
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    finished_at: datetime | None = None
    cancel_token: asyncio.Event = field(default_factory=asyncio.Event, repr=False)
    task: asyncio.Task | None = field(default=None, repr=False)
    started: bool = field(default=False, repr=False)

    def is_running(self) -> bool:
        return self.status is RunStatus.RUNNING

    def is_interrupted(self) -> bool:
        return self.status is RunStatus.INTERRUPTED

    async def wait(self) -> None:
        """Return once the task is done. Never raises."""
        if self.task is not None:
            await asyncio.wait([self.task])

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "conversation_id": self.conversation_id,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


async def _safe_call(callback: Callable[..., Awaitable[None]] | None, *args: Any) -> None:
    """Await a callback, logging failures instead of propagating them."""
    if callback is None:
        return
    try:
        await callback(*args)
    except Exception:
        logger.exception("Run callback %s failed", getattr(callback, "__name__", callback))


class RunSupervisor:
    """Starts runs and tracks the active ones."""

    def __init__(
        self,
        completion: CompletionService,
        registry: ToolRegistry,
        conversations: ConversationManager,
        settings: Settings,
    ) -> None:
        self._completion = completion
        self._registry = registry
        self._conversations = conversations
        self._settings = settings
        self._runs: dict[str, Run] = {}
        self._lock = threading.Lock()

    @property
    def completion(self) -> CompletionService:
        return self._completion

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    def start(
        self,
        conversation: Conversation,
        user_input: str,
        on_event: EventCallback | None = None,
        on_error: ErrorCallback | None = None,
        on_complete: CompletionCallback | None = None,
    ) -> Run:
        """Spawn a run task and return immediately. Needs a running event loop."""
        run = Run(conversation_id=conversation.id, user_input=user_input)
        loop = ReActLoop(
            self._completion,
            self._registry,
            self._conversations,
            self._settings,
            cancel_token=run.cancel_token,
        )
        with self._lock:
            self._runs[run.id] = run
        run.task = asyncio.create_task(
            self._execute(run, loop, conversation, on_event, on_error, on_complete),
            name=f"run-{run.id[:8]}",
        )
        logger.info("Started run %s for conversation %s", run.id, conversation.id)
        return run

    async def _execute(
        self,
        run: Run,
        loop: ReActLoop,
        conversation: Conversation,
        on_event: EventCallback | None,
        on_error: ErrorCallback | None,
        on_complete: CompletionCallback | None,
    ) -> None:
        run.started = True
        try:
            text = await loop.run(conversation, run.user_input, on_event=on_event)
            if not run.is_interrupted():
                await _safe_call(on_event, Final(text, loop.input_tokens, loop.output_tokens))
        except RunInterrupted:
            logger.info("Run %s interrupted", run.id)
        except asyncio.CancelledError:
            logger.info("Run %s cancelled", run.id)
            raise
        except Exception as e:
            if isinstance(e, MaxIterationsExceeded):
                logger.warning("Run %s hit the iteration limit (%d)", run.id, e.max_iterations)
            else:
                logger.exception("Run %s failed", run.id)
            if not run.is_interrupted():
                await _safe_call(on_error, ErrorEvent(message=str(e), exception=e))
        finally:
            if run.status is RunStatus.RUNNING:
                run.status = RunStatus.COMPLETED
            run.finished_at = datetime.now(UTC)
            self._discard(run.id)
            await _safe_call(on_complete)

    # ------------------------------------------------------------------
    # Registry of active runs
    # ------------------------------------------------------------------

    def _discard(self, run_id: str) -> Run | None:
        with self._lock:
            return self._runs.pop(run_id, None)

    def active(self) -> list[Run]:
        with self._lock:
            return list(self._runs.values())

    def count(self) -> int:
        with self._lock:
            return len(self._runs)

    def get(self, run_id: str) -> Run | None:
        with self._lock:
            return self._runs.get(run_id)

    def interrupt(self, run_id: str) -> bool:
        """Interrupt a run without waiting for its task. False if not active."""
        run = self._discard(run_id)
        if run is None:
            return False
        run.status = RunStatus.INTERRUPTED
        run.cancel_token.set()
        # A task cancelled before its first step never enters _execute, so
        # on_complete would be skipped. Unstarted runs stop on the token instead.
        if run.task is not None and run.started and not run.task.done():
            run.task.cancel()
        logger.info("Interrupted run %s", run_id)
        return True

    def interrupt_conversation(self, conversation_id: str) -> int:
        with self._lock:
            run_ids = [r.id for r in self._runs.values() if r.conversation_id == conversation_id]
        return sum(self.interrupt(run_id) for run_id in run_ids)

    def interrupt_all(self) -> int:
        with self._lock:
            run_ids = list(self._runs)
        return sum(self.interrupt(run_id) for run_id in run_ids)
