from __future__ import annotations

import argparse
import asyncio
import logging
from typing import Any, Dict, List, Optional

import mcp.types as types
from mcp.server.lowlevel import Server
from mcp.server.stdio import stdio_server

from holocron.entrypoints.cli import build_openai_client
from holocron.telemetry.logging import setup_logging
from holocron.tools.catalog import ToolCatalog
from holocron.tools.starwars import build_starwars_provider
from holocron.utils.settings import AppConfig, load_config

logger = logging.getLogger(__name__)

SERVER_NAME = "StarWarsMCPServer"


def describe_tools(catalog: ToolCatalog) -> List[types.Tool]:
    return [
        types.Tool(name=name, description=catalog.get(name).description, inputSchema=catalog.get(name).parameters)
        for name in catalog.names()
    ]


async def call_catalog(catalog: ToolCatalog, name: str, arguments: Optional[Dict[str, Any]]) -> List[types.TextContent]:
    text = await catalog.invoke(name, arguments or {})
    return [types.TextContent(type="text", text=text)]


def build_server(catalog: ToolCatalog) -> Server:
    server = Server(SERVER_NAME)

    @server.list_tools()
    async def list_tools() -> List[types.Tool]:
        return describe_tools(catalog)

    @server.call_tool()
    async def call_tool(name: str, arguments: Dict[str, Any]) -> List[types.TextContent]:
        logger.info("MCP call %s", name)
        return await call_catalog(catalog, name, arguments)

    return server


async def serve(config: AppConfig) -> None:
    catalog = ToolCatalog([build_starwars_provider(config.tools, image_client=build_openai_client(config.llm))])
    server = build_server(catalog)
    async with stdio_server() as (read, write):
        await server.run(read, write, server.create_initialization_options())


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Serve the Star Wars tools over MCP (stdio).")
    parser.add_argument("--env", default="base")
    parser.add_argument("--config-dir", default="configs")
    args = parser.parse_args(argv)

    config = load_config(args.env, args.config_dir)
    # stdout carries the protocol; logging goes to stderr
    setup_logging(config.logging.level)
    asyncio.run(serve(config))


if __name__ == "__main__":
    main()
