from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional
from urllib.parse import quote

import httpx

from holocron.tools.base import ToolDescriptor, function_tool, object_schema

logger = logging.getLogger(__name__)

PINECONE_API_VERSION = "2025-04"

# Pinecone accepts at most 96 records per upsert request
UPSERT_BATCH_SIZE = 96

VALID_MOVIES = (
    "the-phantom-menace",
    "attack-of-the-clones",
    "revenge-of-the-sith",
    "a-new-hope",
    "the-empire-strikes-back",
    "return-of-the-jedi",
)


def records_url(index_host: Optional[str], namespace: str, operation: str) -> str:
    host = (index_host or "").rstrip("/")
    if not host.startswith("http"):
        host = f"https://{host}"
    return f"{host}/records/namespaces/{quote(namespace)}/{operation}"


def pinecone_headers(api_key: str) -> Dict[str, str]:
    return {"Api-Key": api_key, "X-Pinecone-API-Version": PINECONE_API_VERSION}


class ScriptSearch:
    """Vector search over chunked movie scripts stored in a Pinecone index."""

    def __init__(
        self,
        api_key: Optional[str],
        index_host: Optional[str],
        namespace: str = "Star Wars",
        top_k: int = 20,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ) -> None:
        self.api_key = api_key
        self.index_host = index_host
        self.namespace = namespace
        self.top_k = top_k
        self._client = client
        self.timeout = timeout

    @property
    def url(self) -> str:
        return records_url(self.index_host, self.namespace, "search")

    async def __call__(self, query: str, movie_name: Optional[str] = None) -> str:
        if not query or not query.strip():
            return json.dumps({"error": "Query cannot be empty."})
        movie = (movie_name or "").strip().lower()
        if movie and movie not in VALID_MOVIES:
            return json.dumps(
                {"error": f"Invalid movie name '{movie_name}'. Valid options are: {', '.join(VALID_MOVIES)}."}
            )
        if not self.api_key or not self.index_host:
            return json.dumps({"error": "Script search index is not configured."})

        search: Dict[str, Any] = {"top_k": self.top_k, "inputs": {"text": query}}
        if movie:
            search["filter"] = {"movie_name": movie}
        body = {"query": search, "fields": ["movie_name", "chunk_text"]}
        headers = pinecone_headers(self.api_key)

        if self._client is not None:
            response = await self._client.post(self.url, json=body, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.url, json=body, headers=headers)
        response.raise_for_status()
        return response.text

    def descriptor(self) -> ToolDescriptor:
        return function_tool(
            name="SearchStarWarsScriptsTool",
            description=(
                "A tool for searching Star Wars movie scripts using a vector database. "
                "This tool takes a query and returns a list of relevant script chunks."
            ),
            parameters=object_schema(
                {
                    "query": {
                        "type": "string",
                        "description": "The query to search for information from the Star Wars movie scripts.",
                    },
                    "movie_name": {
                        "type": "string",
                        "enum": list(VALID_MOVIES),
                        "description": "Optional. The name of the Star Wars movie to search within.",
                    },
                },
                required=["query"],
            ),
        )(self)


def chunk_script(text: str) -> List[str]:
    """Split a markdown script into paragraph chunks (blank-line separated, trimmed, non-empty)."""
    paragraphs = re.split(r"\n\s*\n", text.replace("\r\n", "\n"))
    return [p.strip() for p in paragraphs if p.strip()]


class ScriptLoader:
    """Fills the script index: one record per chunk, tagged with the movie it came from.

    The index must embed ``chunk_text`` itself (an integrated-embedding index),
    which is what the search side queries with ``inputs.text``.
    """

    def __init__(
        self,
        api_key: str,
        index_host: str,
        namespace: str = "Star Wars",
        batch_size: int = UPSERT_BATCH_SIZE,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 60.0,
    ) -> None:
        self.api_key = api_key
        self.index_host = index_host
        self.namespace = namespace
        self.batch_size = batch_size
        self._client = client
        self.timeout = timeout

    @property
    def url(self) -> str:
        return records_url(self.index_host, self.namespace, "upsert")

    def records(self, paths: Iterable[Path]) -> Iterator[Dict[str, str]]:
        number = 0
        for path in paths:
            movie = path.stem
            if movie not in VALID_MOVIES:
                logger.warning("%s is not a known movie; its chunks will not be reachable by movie filter", path.name)
            for chunk in chunk_script(path.read_text(encoding="utf-8")):
                yield {"_id": f"rec{number}", "chunk_text": chunk, "movie_name": movie}
                number += 1

    async def load(self, paths: Iterable[Path]) -> int:
        """Upsert every chunk of every script; returns the number of records sent."""
        if self._client is not None:
            return await self._load(self._client, paths)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await self._load(client, paths)

    async def _load(self, client: httpx.AsyncClient, paths: Iterable[Path]) -> int:
        batch: List[Dict[str, str]] = []
        sent = 0
        for record in self.records(paths):
            batch.append(record)
            if len(batch) >= self.batch_size:
                sent += await self._upsert(client, batch)
                batch = []
        if batch:
            sent += await self._upsert(client, batch)
        return sent

    async def _upsert(self, client: httpx.AsyncClient, batch: List[Dict[str, str]]) -> int:
        headers = {**pinecone_headers(self.api_key), "Content-Type": "application/x-ndjson"}
        body = "\n".join(json.dumps(record) for record in batch)
        response = await client.post(self.url, content=body, headers=headers)
        response.raise_for_status()
        logger.info("Upserted %d script chunk(s) into %s", len(batch), self.namespace)
        return len(batch)
