"""Tests for RunSupervisor: callbacks, interruption, active-run bookkeeping."""

import asyncio
import os

import pytest

from agentgate.api.builtin_tools import register_builtin_tools
from agentgate.api.completion import Completion
from agentgate.api.runs import RunStatus, RunSupervisor
from agentgate.errors import CompletionError
from agentgate.events import ErrorEvent, Final
from tests.conftest import BlockingCompletion, ScriptedCompletion, tool_call_response


class Recorder:
    """Collects on_event / on_error / on_complete invocations."""

    def __init__(self) -> None:
        self.events = []
        self.errors = []
        self.completed = 0

    async def on_event(self, event) -> None:
        self.events.append(event)

    async def on_error(self, error) -> None:
        self.errors.append(error)

    async def on_complete(self) -> None:
        self.completed += 1

    def callbacks(self) -> dict:
        return {"on_event": self.on_event, "on_error": self.on_error, "on_complete": self.on_complete}


def _supervisor(completion, registry, conversations, settings) -> RunSupervisor:
    return RunSupervisor(completion, registry, conversations, settings)


async def _until_blocked(completion: BlockingCompletion, calls: int) -> None:
    """Wait until ``calls`` runs are parked inside the completion service."""
    async def _poll():
        while completion.calls < calls:
            await asyncio.sleep(0.01)

    await asyncio.wait_for(_poll(), timeout=5)


# ---------------------------------------------------------------------------
# Completion paths
# ---------------------------------------------------------------------------


class TestRunCompletion:
    async def test_final_then_complete(self, registry, conversations, conversation, settings):
        completion = ScriptedCompletion([Completion(content="4", input_tokens=3, output_tokens=1)])
        supervisor = _supervisor(completion, registry, conversations, settings)
        recorder = Recorder()

        run = supervisor.start(conversation, "2+2?", **recorder.callbacks())
        assert supervisor.count() == 1
        await run.wait()

        assert [type(e) for e in recorder.events] == [Final]
        assert recorder.events[0].text == "4"
        assert (recorder.events[0].input_tokens, recorder.events[0].output_tokens) == (3, 1)
        assert recorder.errors == []
        assert recorder.completed == 1
        assert run.status is RunStatus.COMPLETED
        assert run.finished_at is not None
        assert supervisor.count() == 0

    async def test_completion_error_reported(self, registry, conversations, conversation, settings):
        completion = ScriptedCompletion([CompletionError("service unavailable")])
        supervisor = _supervisor(completion, registry, conversations, settings)
        recorder = Recorder()

        run = supervisor.start(conversation, "hello", **recorder.callbacks())
        await run.wait()

        assert recorder.events == []
        assert len(recorder.errors) == 1
        assert isinstance(recorder.errors[0], ErrorEvent)
        assert recorder.errors[0].text == "Error: service unavailable"
        assert recorder.completed == 1
        assert run.status is RunStatus.COMPLETED

    async def test_iteration_limit_reported(self, registry, conversations, conversation, settings):
        async def _noop() -> str:
            return "ok"

        registry.register("noop", _noop, {"type": "object", "properties": {}})
        completion = ScriptedCompletion(default=tool_call_response("noop"))
        settings = settings.model_copy(update={"max_iterations": 2})
        supervisor = _supervisor(completion, registry, conversations, settings)
        recorder = Recorder()

        run = supervisor.start(conversation, "go", **recorder.callbacks())
        await run.wait()

        assert len(completion.calls) == 2
        assert "thinking limit (2 iterations)" in recorder.errors[0].text
        assert recorder.completed == 1

    async def test_failing_callbacks_isolated(self, registry, conversations, conversation, settings):
        supervisor = _supervisor(ScriptedCompletion(), registry, conversations, settings)
        completed = []

        async def _broken_event(event):
            raise RuntimeError("send failed")

        async def _complete():
            completed.append(True)

        run = supervisor.start(conversation, "hi", on_event=_broken_event, on_complete=_complete)
        await run.wait()

        assert completed == [True]
        assert run.task.exception() is None

    async def test_runs_without_callbacks(self, registry, conversations, conversation, settings):
        supervisor = _supervisor(ScriptedCompletion(), registry, conversations, settings)
        run = supervisor.start(conversation, "hi")
        await run.wait()
        assert run.status is RunStatus.COMPLETED

    async def test_to_dict(self, supervisor, conversation):
        run = supervisor.start(conversation, "hi")
        data = run.to_dict()
        assert data["id"] == run.id
        assert data["conversation_id"] == conversation.id
        assert data["status"] == "running"
        assert data["finished_at"] is None
        await run.wait()


# ---------------------------------------------------------------------------
# Interruption
# ---------------------------------------------------------------------------


class TestInterrupt:
    async def test_interrupt_running(self, registry, conversations, conversation, settings):
        completion = BlockingCompletion()
        supervisor = _supervisor(completion, registry, conversations, settings)
        recorder = Recorder()

        run = supervisor.start(conversation, "long task", **recorder.callbacks())
        await asyncio.wait_for(completion.entered.wait(), timeout=5)

        assert supervisor.interrupt(run.id) is True
        assert run.status is RunStatus.INTERRUPTED
        assert supervisor.get(run.id) is None
        assert supervisor.active() == []

        await asyncio.wait_for(run.wait(), timeout=5)
        assert recorder.events == []
        assert recorder.errors == []
        assert recorder.completed == 1
        assert run.status is RunStatus.INTERRUPTED

        history = await conversations.history(conversation.id)
        assert [m["role"] for m in history] == ["user"]

    async def test_interrupt_kills_shell_child(self, registry, conversations, conversation, settings):
        register_builtin_tools(registry, settings)
        pid_file = settings.workspace / "shell.pid"
        completion = ScriptedCompletion(
            [tool_call_response("shell", {"command": "echo $$ > shell.pid; exec sleep 30"})]
        )
        supervisor = _supervisor(completion, registry, conversations, settings)

        run = supervisor.start(conversation, "sleep")

        async def _pid() -> int:
            while not (pid_file.exists() and pid_file.read_text().endswith("\n")):
                await asyncio.sleep(0.01)
            return int(pid_file.read_text())

        pid = await asyncio.wait_for(_pid(), timeout=5)
        assert supervisor.interrupt(run.id) is True
        await asyncio.wait_for(run.wait(), timeout=5)

        with pytest.raises(ProcessLookupError):
            os.kill(pid, 0)

    async def test_interrupt_before_start(self, registry, conversations, conversation, settings):
        completion = ScriptedCompletion()
        supervisor = _supervisor(completion, registry, conversations, settings)
        recorder = Recorder()

        run = supervisor.start(conversation, "never", **recorder.callbacks())
        assert supervisor.interrupt(run.id) is True

        await asyncio.wait_for(run.wait(), timeout=5)
        assert completion.calls == []
        assert recorder.events == []
        assert recorder.completed == 1
        assert run.status is RunStatus.INTERRUPTED

    async def test_interrupt_unknown(self, supervisor):
        assert supervisor.interrupt("missing") is False

    async def test_interrupt_twice(self, registry, conversations, conversation, settings):
        completion = BlockingCompletion()
        supervisor = _supervisor(completion, registry, conversations, settings)
        run = supervisor.start(conversation, "x")
        await asyncio.wait_for(completion.entered.wait(), timeout=5)

        assert supervisor.interrupt(run.id) is True
        assert supervisor.interrupt(run.id) is False
        await run.wait()

    async def test_interrupt_conversation(self, registry, conversations, chat_key, settings):
        completion = BlockingCompletion()
        supervisor = _supervisor(completion, registry, conversations, settings)
        first = await conversations.current_for(chat_key)
        second = await conversations.create_new(chat_key)

        runs = [
            supervisor.start(first, "a"),
            supervisor.start(first, "b"),
            supervisor.start(second, "c"),
        ]
        await _until_blocked(completion, 3)

        assert supervisor.interrupt_conversation(first.id) == 2
        assert [r.conversation_id for r in supervisor.active()] == [second.id]

        assert supervisor.interrupt_all() == 1
        assert supervisor.count() == 0
        await asyncio.wait_for(asyncio.gather(*(r.wait() for r in runs)), timeout=5)

    async def test_concurrent_runs_tracked(self, registry, conversations, conversation, settings):
        completion = BlockingCompletion()
        supervisor = _supervisor(completion, registry, conversations, settings)

        runs = [supervisor.start(conversation, f"msg {i}") for i in range(3)]
        assert supervisor.count() == 3
        assert {r.id for r in supervisor.active()} == {r.id for r in runs}

        completion.release.set()
        await asyncio.wait_for(asyncio.gather(*(r.wait() for r in runs)), timeout=5)
        assert supervisor.count() == 0
        assert all(r.status is RunStatus.COMPLETED for r in runs)
