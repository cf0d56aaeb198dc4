from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import httpx
from openai import AsyncOpenAI

from holocron.tools.base import LocalToolProvider
from holocron.tools.image_generation import CharacterSanitizer, ImageGenerator
from holocron.tools.purchases import PurchaseLookup, PurchaseStore
from holocron.tools.scripts_search import ScriptSearch
from holocron.tools.wookiepedia import WookiepediaSearch
from holocron.utils.settings import ToolsConfig

logger = logging.getLogger(__name__)


def build_starwars_provider(
    config: ToolsConfig,
    http_client: Optional[httpx.AsyncClient] = None,
    image_client: Optional[AsyncOpenAI] = None,
) -> LocalToolProvider:
    """Wire the four Star Wars tools from configuration into one provider."""
    store = None
    if config.purchases_path:
        path = Path(config.purchases_path)
        if path.exists():
            store = PurchaseStore.from_yaml(path)
        else:
            logger.warning("Purchases file %s not found; purchase lookups will report an error", path)

    sanitizer = CharacterSanitizer(config.character_descriptions) if config.character_descriptions else None
    tools = [
        WookiepediaSearch(config.tavily_api_key, client=http_client).descriptor(),
        PurchaseLookup(store).descriptor(),
        ScriptSearch(
            config.pinecone_api_key,
            config.pinecone_index_host,
            namespace=config.pinecone_namespace,
            client=http_client,
        ).descriptor(),
        ImageGenerator(
            image_client,
            model=config.image_model,
            size=config.image_size,
            sanitizer=sanitizer,
            max_retries=config.image_content_policy_retries,
        ).descriptor(),
    ]
    return LocalToolProvider("StarWarsTools", tools)
