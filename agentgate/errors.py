"""Error taxonomy for agentgate.

Tool errors are converted to observation text inside the ReAct loop,
run errors are reported through the run's error callback, and
conversation errors are shown to the user as ``Error: ...`` replies.
"""

from __future__ import annotations


class GatewayError(Exception):
    """Base class for all agentgate errors."""


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


class ToolError(GatewayError):
    """Base class for tool failures."""


class ToolExecutionError(ToolError):
    """A tool ran and failed. Retried by the loop."""


class UnknownToolError(ToolError):
    """No tool registered under the requested name. Never retried."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Unknown tool: {name}")


# ---------------------------------------------------------------------------
# Runs
# ---------------------------------------------------------------------------


class MaxIterationsExceeded(GatewayError):
    """The loop hit its iteration ceiling without a final answer."""

    def __init__(self, max_iterations: int) -> None:
        self.max_iterations = max_iterations
        super().__init__(
            f"I've reached my thinking limit ({max_iterations} iterations). "
            "Please try a more specific question."
        )


class RunInterrupted(GatewayError):
    """The run's cancellation token was set."""


class CompletionError(GatewayError):
    """The completion service returned an error or could not be reached."""


# ---------------------------------------------------------------------------
# Conversations
# ---------------------------------------------------------------------------


class ConversationError(GatewayError):
    """Base class for conversation management errors (user-facing)."""


class NotFound(ConversationError):
    pass


class InvalidFormat(ConversationError):
    pass


class DuplicateLabel(ConversationError):
    pass


class CannotModifyCurrent(ConversationError):
    pass


class IdGenerationError(ConversationError):
    pass


# ---------------------------------------------------------------------------
# Channels
# ---------------------------------------------------------------------------


class ChannelError(GatewayError):
    """Base class for channel (surface) errors."""


class ChannelConfigError(ChannelError):
    """A channel is missing required configuration keys."""

    def __init__(self, identifier: str, missing: list[str]) -> None:
        self.identifier = identifier
        self.missing = missing
        super().__init__(
            f"{identifier}: Missing required configuration: {', '.join(missing)}"
        )


class AlreadyRunning(ChannelError):
    pass


# ---------------------------------------------------------------------------
# Skills
# ---------------------------------------------------------------------------


class SkillError(GatewayError):
    """A SKILL.md file is missing, malformed or incomplete."""
