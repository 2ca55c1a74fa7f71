"""Settings via pydantic-settings with AGENTGATE_ env prefix.

The completion API key uses validation_alias to read the unprefixed
OPENROUTER_API_KEY, so the same variable works for other OpenRouter tools.
Per-channel settings are nested dicts and can be set from the environment
with a double-underscore delimiter, e.g. AGENTGATE_CHANNELS__TELEGRAM__BOT_TOKEN.
"""

from pathlib import Path
from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEFAULT_DB_PATH = Path("~/.config/agentgate/db.sqlite")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="AGENTGATE_",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    database_url: str = f"sqlite+aiosqlite:///{_DEFAULT_DB_PATH}"
    log_level: str = "info"

    # Completion service (OpenAI-compatible chat completions)
    api_key: str = Field("", validation_alias="OPENROUTER_API_KEY")
    api_base_url: str = "https://openrouter.ai/api/v1"
    model: str = "moonshotai/kimi-k2.5"
    api_timeout_connect: int = 10  # seconds
    api_timeout_read: int = 120  # seconds

    # ReAct loop
    max_iterations: int = 20
    agent_name: str = "Agentgate"

    # Tools
    searxng_url: str = ""
    workspace_dir: str = ""  # empty = process working directory
    shell_timeout: int = 120  # seconds
    prompt_dir: str = "~"  # where OPERATOR.md and IDENTITY.md live
    skills_dir: str = "~/skills"  # one subdirectory with a SKILL.md per skill

    # Channels: identifier -> channel config dict
    channels: dict[str, dict[str, Any]] = Field(default_factory=dict)
    shutdown_timeout: float = 5.0

    # Operator API (gateway mode only)
    operator_api_enabled: bool = True
    operator_host: str = "127.0.0.1"
    operator_port: int = 8765

    @field_validator("max_iterations")
    @classmethod
    def _validate_max_iterations(cls, value: int) -> int:
        if value < 1:
            raise ValueError("max_iterations must be >= 1")
        return value

    @property
    def db_url(self) -> str:
        """Database URL with ``~`` expanded in SQLite file paths."""
        prefix = "sqlite+aiosqlite:///"
        if self.database_url.startswith(prefix):
            path = self.database_url[len(prefix):]
            if path and path != ":memory:":
                return prefix + str(Path(path).expanduser())
        return self.database_url

    @property
    def workspace(self) -> Path:
        return Path(self.workspace_dir).expanduser() if self.workspace_dir else Path.cwd()

    def channel_config(self, identifier: str) -> dict[str, Any]:
        """Config dict for one channel (empty if not configured)."""
        return dict(self.channels.get(identifier) or {})
