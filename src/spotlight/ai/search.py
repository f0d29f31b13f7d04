"""``web_search`` tool offered to the quick-answer model."""

from __future__ import annotations

import logging
from typing import Any

import httpx
from openai.types.chat import ChatCompletionToolParam

from .errors import BackendError, Unconfigured

__all__ = ["WEB_SEARCH_TOOL", "WebSearchTool"]

LOGGER = logging.getLogger(__name__)

WEB_SEARCH_TOOL: ChatCompletionToolParam = {
    "type": "function",
    "function": {
        "name": "web_search",
        "description": (
            "Search the internet for current information. Use this when you need to find "
            "up-to-date information or facts you don't know."
        ),
        "parameters": {
            "type": "object",
            "required": ["query"],
            "properties": {
                "query": {
                    "type": "string",
                    "description": "The search query to look up on the internet",
                }
            },
        },
    },
}


class WebSearchTool:
    """Posts queries to a search endpoint that answers ``?format=json`` requests."""

    name = "web_search"

    def __init__(self, *, http_client: httpx.AsyncClient | None = None, timeout: float = 15.0) -> None:
        self._http = http_client
        self._timeout = timeout

    async def run(self, query: str, *, api_url: str, api_key: str) -> str:
        """Return the raw search response body for ``query``."""

        api_url = (api_url or "").strip()
        api_key = (api_key or "").strip()
        LOGGER.info("web_search requested (url_len=%d, has_key=%s)", len(api_url), bool(api_key))
        if not api_url:
            raise Unconfigured("Search API URL not configured in Options")
        if not api_key:
            raise Unconfigured("Search API key not configured in Options")

        request_kwargs: dict[str, Any] = {
            "params": {"format": "json"},
            "headers": {"Authorization": f"Bearer {api_key}"},
            "data": {"q": query},
        }
        try:
            if self._http is not None:
                response = await self._http.post(api_url, **request_kwargs)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(api_url, **request_kwargs)
        except httpx.HTTPError as exc:
            raise BackendError(f"Search request failed: {exc}") from exc
        if response.is_error:
            raise BackendError(f"Search API error: {response.status_code}")
        return response.text
