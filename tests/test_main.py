"""Tests for component wiring and shutdown."""

from agentgate.channels import ChannelsManager
from agentgate.main import create_components, shutdown_components


class TestComponents:
    async def test_wiring(self, settings):
        components = await create_components(settings, handle_signals=False)
        try:
            assert set(components) == {
                "settings", "database", "completion", "web_http", "registry",
                "conversations", "supervisor", "commands", "dispatcher", "channels",
            }
            assert components["registry"].names() == ["shell"]
            assert isinstance(components["channels"], ChannelsManager)
            assert components["dispatcher"].commands is components["commands"]
        finally:
            await shutdown_components(components)

    async def test_web_search_registered_when_configured(self, settings):
        settings = settings.model_copy(update={"searxng_url": "http://searx.local"})
        components = await create_components(settings, handle_signals=False)
        try:
            assert "web_search" in components["registry"].names()
        finally:
            await shutdown_components(components)

    async def test_gateway_without_channels_config_starts_nothing(self, settings):
        components = await create_components(settings, handle_signals=False)
        try:
            channels = components["channels"]
            await channels.start_all()
            # telegram has no bot_token, cli is excluded
            assert channels.task_count() == 0
            await channels.wait()
        finally:
            await shutdown_components(components)
