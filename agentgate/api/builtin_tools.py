"""Built-in shell tool.

Runs a command in the workspace directory and reports exit code, stdout
and stderr. Launch failures raise ToolExecutionError so the loop retries.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

from agentgate.api.tools import ToolRegistry
from agentgate.config import Settings
from agentgate.errors import ToolExecutionError

logger = logging.getLogger(__name__)

_MAX_OUTPUT_CHARS = 100 * 1024  # 100KB


def _truncate_output(text: str, stream: str) -> str:
    if len(text) > _MAX_OUTPUT_CHARS:
        return text[:_MAX_OUTPUT_CHARS] + f"\n... [{stream} truncated at 100KB]"
    return text


async def _kill(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is None:
        try:
            proc.kill()
        except ProcessLookupError:
            pass
    await proc.wait()


def format_result(exit_code: int | None, stdout: str, stderr: str) -> str:
    return f"Exit: {exit_code}\nStdout:\n{stdout}\nStderr:\n{stderr}"


async def shell_tool(command: str, *, _workspace: Path, _timeout: int = 120) -> str:
    """Execute a shell command in the workspace directory.

    Args:
        command: Shell command to execute
        _workspace: Working directory, set by the registration closure
        _timeout: Seconds before the process is killed

    Returns:
        ``Exit: N`` followed by the captured stdout and stderr
    """
    try:
        _workspace.mkdir(parents=True, exist_ok=True)
        proc = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(_workspace),
        )
    except OSError as e:
        raise ToolExecutionError(f"Failed to run command: {e}") from e

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=_timeout)
    except asyncio.TimeoutError:
        await _kill(proc)
        return f"Command timed out after {_timeout}s.\nCommand: {command}"
    except BaseException:
        # Cancelled run: the child must not outlive it
        await _kill(proc)
        raise

    stdout_text = _truncate_output(stdout.decode("utf-8", errors="replace"), "output")
    stderr_text = _truncate_output(stderr.decode("utf-8", errors="replace"), "stderr")
    return format_result(proc.returncode, stdout_text, stderr_text)


_SHELL_SCHEMA: dict[str, Any] = {
    "type": "object",
    "description": "Execute a shell command and return the output",
    "properties": {
        "command": {"type": "string", "description": "The shell command to execute"},
    },
    "required": ["command"],
}


def register_builtin_tools(registry: ToolRegistry, settings: Settings) -> None:
    """Register the shell tool with workspace and timeout from settings."""
    workspace = settings.workspace
    timeout = settings.shell_timeout

    async def _shell(command: str) -> str:
        return await shell_tool(command, _workspace=workspace, _timeout=timeout)

    registry.register("shell", _shell, _SHELL_SCHEMA)
