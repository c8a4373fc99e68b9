"""
Web Search Tool - Search the web using multiple providers.

Supports:
- Tavily Search API (TAVILY_API_KEY)
- Brave Search API (BRAVE_SEARCH_API_KEY)

Auto-detection: If provider="auto", tries Tavily first, then Brave.

Failures never raise into the workflow: every problem comes back as a dict
with an ``error`` key, which ``format_results`` turns into evidence text.
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, Literal

import httpx

logger = logging.getLogger(__name__)

TAVILY_URL = "https://api.tavily.com/search"
BRAVE_URL = "https://api.search.brave.com/res/v1/web/search"

Provider = Literal["auto", "tavily", "brave"]


class WebSearchTool:
    """Async web search over Tavily or Brave."""

    def __init__(
        self,
        provider: Provider | str = "auto",
        tavily_api_key: str | None = None,
        brave_api_key: str | None = None,
        max_retries: int = 3,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.provider = provider
        self.tavily_api_key = tavily_api_key or os.getenv("TAVILY_API_KEY")
        self.brave_api_key = brave_api_key or os.getenv("BRAVE_SEARCH_API_KEY")
        self.max_retries = max_retries
        self.timeout = timeout
        self._transport = transport

    async def _request(
        self, method: str, url: str, label: str, **kwargs: Any
    ) -> httpx.Response | dict:
        """Send a request, retrying on HTTP 429 with exponential backoff."""
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            for attempt in range(self.max_retries + 1):
                response = await client.request(method, url, **kwargs)

                if response.status_code == 429 and attempt < self.max_retries:
                    await asyncio.sleep(2**attempt)
                    continue

                if response.status_code == 401:
                    return {"error": f"Invalid {label} API key"}
                elif response.status_code == 429:
                    return {"error": f"{label} rate limit exceeded. Try again later."}
                elif response.status_code != 200:
                    return {"error": f"{label} API request failed: HTTP {response.status_code}"}

                return response
        return {"error": f"{label} API request failed"}

    async def _search_tavily(self, query: str, num_results: int) -> dict:
        """Execute search using the Tavily API."""
        response = await self._request(
            "POST",
            TAVILY_URL,
            "Tavily",
            json={
                "api_key": self.tavily_api_key,
                "query": query,
                "max_results": min(num_results, 20),
            },
        )
        if isinstance(response, dict):
            return response

        data = response.json()
        results = []
        for item in data.get("results", [])[:num_results]:
            results.append(
                {
                    "title": item.get("title", ""),
                    "url": item.get("url", ""),
                    "snippet": item.get("content", ""),
                }
            )

        return {
            "query": query,
            "results": results,
            "total": len(results),
            "provider": "tavily",
        }

    async def _search_brave(self, query: str, num_results: int) -> dict:
        """Execute search using the Brave Search API."""
        response = await self._request(
            "GET",
            BRAVE_URL,
            "Brave",
            params={"q": query, "count": min(num_results, 20)},
            headers={
                "X-Subscription-Token": self.brave_api_key or "",
                "Accept": "application/json",
            },
        )
        if isinstance(response, dict):
            return response

        data = response.json()
        results = []
        for item in data.get("web", {}).get("results", [])[:num_results]:
            results.append(
                {
                    "title": item.get("title", ""),
                    "url": item.get("url", ""),
                    "snippet": item.get("description", ""),
                }
            )

        return {
            "query": query,
            "results": results,
            "total": len(results),
            "provider": "brave",
        }

    async def search(self, query: str, num_results: int = 5) -> dict:
        """
        Search the web for information.

        Args:
            query: The search query (1-500 chars)
            num_results: Number of results to return

        Returns:
            Dict with search results, total count, and provider used, or a
            dict with an ``error`` key
        """
        if not query or len(query) > 500:
            return {"error": "Query must be 1-500 characters"}

        try:
            if self.provider == "tavily":
                if not self.tavily_api_key:
                    return {
                        "error": "Tavily credentials not configured",
                        "help": "Set TAVILY_API_KEY environment variable",
                    }
                return await self._search_tavily(query, num_results)

            elif self.provider == "brave":
                if not self.brave_api_key:
                    return {
                        "error": "Brave credentials not configured",
                        "help": "Set BRAVE_SEARCH_API_KEY environment variable",
                    }
                return await self._search_brave(query, num_results)

            else:
                if self.tavily_api_key:
                    result = await self._search_tavily(query, num_results)
                    if "error" not in result or not self.brave_api_key:
                        return result
                    logger.warning(
                        f"Tavily search failed, falling back to Brave: {result['error']}"
                    )
                if self.brave_api_key:
                    return await self._search_brave(query, num_results)
                return {
                    "error": "No search credentials configured",
                    "help": "Set either TAVILY_API_KEY or BRAVE_SEARCH_API_KEY",
                }

        except httpx.TimeoutException:
            return {"error": "Search request timed out"}
        except httpx.RequestError as e:
            return {"error": f"Network error: {str(e)}"}
        except ValueError as e:
            return {"error": f"Search failed: {str(e)}"}


def format_results(result: dict) -> str:
    """Render a search result dict as evidence text."""
    if "error" in result:
        help_text = f" ({result['help']})" if result.get("help") else ""
        return f"Web search failed: {result['error']}{help_text}"
    if not result.get("results"):
        return f"No web results for: {result.get('query', '')}"

    lines = [f"Web results for: {result['query']} (via {result['provider']})"]
    for item in result["results"]:
        lines.append(f"- {item['title']} <{item['url']}>\n  {item['snippet']}")
    return "\n".join(lines)
