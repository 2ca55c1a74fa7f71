"""Channels (surfaces): adapters, dispatch and the concurrency manager.

Public API:
    Channel, ChannelHooks     - adapter contract and default hooks
    ChannelRegistry           - identifier -> adapter class
    MessageDispatcher         - fixed per-message driver
    ChannelsManager           - runs every configured channel concurrently
    create_default_registry() - registry with cli and telegram
"""

from agentgate.channels.base import Channel, ChannelHooks, ChannelRegistry, MessageDispatcher
from agentgate.channels.cli import CLIChannel
from agentgate.channels.manager import EXCLUDED_CHANNELS, ChannelsManager
from agentgate.channels.telegram import TelegramChannel


def create_default_registry() -> ChannelRegistry:
    registry = ChannelRegistry()
    registry.register(CLIChannel)
    registry.register(TelegramChannel)
    return registry


__all__ = [
    "EXCLUDED_CHANNELS",
    "CLIChannel",
    "Channel",
    "ChannelHooks",
    "ChannelRegistry",
    "ChannelsManager",
    "MessageDispatcher",
    "TelegramChannel",
    "create_default_registry",
]
