"""agentgate entry point.

Two run modes:
  agentgate cli      - foreground terminal chat
  agentgate gateway  - every configured channel concurrently, plus the
                       operator API served by uvicorn

Component order:
  Settings -> Database -> CompletionClient -> ToolRegistry -> ConversationManager
  -> RunSupervisor -> CommandRegistry -> MessageDispatcher -> ChannelsManager
"""

from __future__ import annotations

import argparse
import asyncio
import logging

import httpx
import uvicorn

from agentgate.api.builtin_tools import register_builtin_tools
from agentgate.api.completion import CompletionClient
from agentgate.api.rest import create_app
from agentgate.api.runs import RunSupervisor
from agentgate.api.tools import ToolRegistry
from agentgate.api.web_tools import register_web_tools
from agentgate.channels import (
    CLIChannel,
    ChannelsManager,
    MessageDispatcher,
    create_default_registry,
)
from agentgate.commands import create_default_registry as create_command_registry
from agentgate.config import Settings
from agentgate.conversations import ConversationManager
from agentgate.storage.database import Database

logger = logging.getLogger(__name__)


async def create_components(settings: Settings, handle_signals: bool = True) -> dict:
    """Initialize all components in dependency order.

    Returns dict with all components, consumed by the run modes and
    shutdown_components(). ``handle_signals`` lets the ChannelsManager
    install SIGINT/SIGTERM handlers.
    """
    database = Database(settings)
    await database.connect()

    completion = CompletionClient(settings)
    await completion.start()

    registry = ToolRegistry()
    register_builtin_tools(registry, settings)

    # Separate client for tools: never carries the completion API key
    web_http = httpx.AsyncClient(timeout=httpx.Timeout(connect=10, read=30, write=10, pool=10))
    register_web_tools(registry, settings, web_http)
    logger.info("Tools registered: %s", ", ".join(registry.names()))

    conversations = ConversationManager(database)
    supervisor = RunSupervisor(completion, registry, conversations, settings)
    commands = create_command_registry()
    dispatcher = MessageDispatcher(conversations, supervisor, commands, settings)
    channels = ChannelsManager(create_default_registry(), dispatcher, settings, handle_signals=handle_signals)

    return {
        "settings": settings,
        "database": database,
        "completion": completion,
        "web_http": web_http,
        "registry": registry,
        "conversations": conversations,
        "supervisor": supervisor,
        "commands": commands,
        "dispatcher": dispatcher,
        "channels": channels,
    }


async def shutdown_components(components: dict) -> None:
    """Graceful shutdown in reverse order."""
    logger.info("Shutting down agentgate...")

    await components["channels"].stop_all()

    interrupted = components["supervisor"].interrupt_all()
    if interrupted:
        logger.info("Interrupted %d active runs", interrupted)

    await components["web_http"].aclose()
    await components["completion"].close()
    await components["database"].disconnect()
    logger.info("Shutdown complete")


async def run_cli(settings: Settings) -> None:
    components = await create_components(settings)
    try:
        channel = CLIChannel(settings.channel_config("cli"), components["dispatcher"])
        await channel.start()
    finally:
        await shutdown_components(components)


async def run_gateway(settings: Settings) -> None:
    # uvicorn owns SIGINT/SIGTERM while the operator API is served
    components = await create_components(settings, handle_signals=not settings.operator_api_enabled)
    channels: ChannelsManager = components["channels"]
    try:
        await channels.start_all()

        if settings.operator_api_enabled:
            app = create_app(components["supervisor"], channels, components["database"])
            config = uvicorn.Config(
                app,
                host=settings.operator_host,
                port=settings.operator_port,
                log_level=settings.log_level,
            )
            logger.info("Operator API on http://%s:%d", settings.operator_host, settings.operator_port)
            # channels stop once uvicorn returns
            await uvicorn.Server(config).serve()
        else:
            await channels.wait()
    finally:
        await shutdown_components(components)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="agentgate", description="Multi-channel ReAct agent gateway")
    parser.add_argument(
        "mode",
        choices=["cli", "gateway"],
        nargs="?",
        default="cli",
        help="cli: interactive terminal (default); gateway: all configured channels + operator API",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    """Parse arguments and settings, then run the chosen mode."""
    args = build_parser().parse_args(argv)
    settings = Settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    logger.info("Starting agentgate %s mode: %s", args.mode, settings.agent_name)
    logger.info("Model: %s", settings.model)
    logger.info("Database: %s", settings.db_url)

    runner = run_gateway if args.mode == "gateway" else run_cli
    try:
        asyncio.run(runner(settings))
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()
