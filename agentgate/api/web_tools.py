"""Web search tool backed by a SearXNG instance.

Uses its own httpx client, separate from the completion client so no API
credentials are sent to the search backend.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from agentgate.api.tools import ToolRegistry
from agentgate.config import Settings
from agentgate.errors import ToolExecutionError

logger = logging.getLogger(__name__)


def format_results(results: list[dict[str, Any]]) -> str:
    """Render results as ``title\\nurl\\ncontent`` blocks."""
    if not results:
        return "No results found."
    return "\n\n".join(
        f"{r.get('title', '')}\n{r.get('url', '')}\n{r.get('content', '')}" for r in results
    )


async def web_search(query: str, *, _base_url: str, _http: httpx.AsyncClient) -> str:
    """Query SearXNG's JSON API and render the results."""
    try:
        response = await _http.get(
            f"{_base_url.rstrip('/')}/search",
            params={"q": query, "format": "json"},
        )
    except httpx.HTTPError as e:
        raise ToolExecutionError(f"Search failed: {e}") from e

    if response.status_code != 200:
        raise ToolExecutionError(f"Search failed: HTTP {response.status_code}")

    try:
        data = response.json()
    except ValueError as e:
        raise ToolExecutionError(f"Search failed: Invalid JSON response - {e}") from e

    results = data.get("results") or []
    logger.debug("web_search %r returned %d results", query, len(results))
    return format_results(results)


_WEB_SEARCH_SCHEMA: dict[str, Any] = {
    "type": "object",
    "description": "Search the web using SearXNG",
    "properties": {
        "query": {"type": "string", "description": "The search query"},
    },
    "required": ["query"],
}


def register_web_tools(
    registry: ToolRegistry,
    settings: Settings,
    http_client: httpx.AsyncClient,
) -> None:
    """Register web_search when a SearXNG URL is configured."""
    if not settings.searxng_url:
        logger.info("searxng_url not set, web_search disabled")
        return

    base_url = settings.searxng_url

    async def _search(query: str) -> str:
        return await web_search(query, _base_url=base_url, _http=http_client)

    registry.register("web_search", _search, _WEB_SEARCH_SCHEMA)
