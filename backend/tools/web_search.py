"""
Web Search Tool — Tavily Search API wrapper for the Research stage.

Returns structured sources rather than a formatted string so the research
stage can both cite them and feed them into a prompt. Requires the
TAVILY_API_KEY setting.
"""

import asyncio
import logging
from typing import Dict, List, Optional

from tavily import TavilyClient

from config import settings
from errors import StageError, UpstreamUnavailable

logger = logging.getLogger(__name__)


async def search_web(
    query: str,
    max_results: int = 5,
    api_key: Optional[str] = None,
) -> List[Dict[str, str]]:
    """
    Search the web for current information on a topic.

    Args:
        query:       The search query string.
        max_results: Maximum number of results to return (default 5).
        api_key:     Overrides the configured Tavily key.

    Returns:
        A list of {"title", "url", "content"} dicts, possibly empty.

    Raises:
        StageError:          Search is not configured (not retryable).
        UpstreamUnavailable: The Tavily call failed.
    """
    api_key = api_key or settings.TAVILY_API_KEY
    if not api_key:
        raise StageError(
            "Web research is not configured (TAVILY_API_KEY is not set).",
            kind="configuration",
        )

    client = TavilyClient(api_key=api_key)

    # The Tavily client is synchronous; keep it off the event loop
    loop = asyncio.get_running_loop()
    try:
        response = await loop.run_in_executor(
            None,
            lambda: client.search(
                query=query,
                max_results=max_results,
                search_depth="basic",
            ),
        )
    except Exception as exc:  # noqa: BLE001
        logger.warning(f"Tavily search failed for '{query}': {exc}")
        raise UpstreamUnavailable("Web search is temporarily unavailable.") from exc

    return [
        {
            "title": r.get("title") or "No title",
            "url": r.get("url") or "",
            "content": r.get("content") or "",
        }
        for r in response.get("results", [])
    ]


def format_sources(sources: List[Dict[str, str]]) -> str:
    """Render sources as a numbered list for inclusion in a prompt."""
    if not sources:
        return "No sources found."
    formatted = []
    for i, r in enumerate(sources, 1):
        formatted.append(f"{i}. **{r['title']}**\n   URL: {r['url']}\n   {r['content']}")
    return "\n\n".join(formatted)
