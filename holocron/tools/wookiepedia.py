from __future__ import annotations

import json
from typing import Optional

import httpx

from holocron.tools.base import ToolDescriptor, function_tool, object_schema

TAVILY_SEARCH_URL = "https://api.tavily.com/search"
WOOKIEPEDIA_DOMAIN = "https://starwars.fandom.com/"


class WookiepediaSearch:
    """Web search restricted to Wookiepedia through the Tavily search API."""

    def __init__(
        self,
        api_key: Optional[str],
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ) -> None:
        self.api_key = api_key
        self._client = client
        self.timeout = timeout

    async def __call__(self, query: str) -> str:
        if not query or not query.strip():
            return json.dumps({"error": "Query cannot be empty."})
        if not self.api_key:
            return json.dumps({"error": "Tavily API key is not configured."})

        body = {
            "query": query,
            "include_answer": "advanced",
            "include_domains": [WOOKIEPEDIA_DOMAIN],
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}
        if self._client is not None:
            response = await self._client.post(TAVILY_SEARCH_URL, json=body, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(TAVILY_SEARCH_URL, json=body, headers=headers)
        response.raise_for_status()
        return response.text

    def descriptor(self) -> ToolDescriptor:
        return function_tool(
            name="WookiepediaTool",
            description=(
                "A tool for getting information on Star Wars from Wookiepedia. "
                "This tool takes a prompt as a query and returns a list of results from Wookiepedia."
            ),
            parameters=object_schema(
                {"query": {"type": "string", "description": "The query to search for information on Wookiepedia."}},
                required=["query"],
            ),
        )(self)
