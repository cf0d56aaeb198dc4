from __future__ import annotations

import logging
from contextlib import AsyncExitStack
from typing import Any, Dict, Iterable, List, Optional

from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client

from holocron.tools.base import ToolDescriptor, ToolProvider, object_schema
from holocron.utils.errors import ConfigurationError, ToolInvocationError, UnknownTool

logger = logging.getLogger(__name__)


class McpToolProvider(ToolProvider):
    """Tools served by an MCP server spawned as a subprocess and spoken to over stdio.

    Connect before building the catalog; the tool list is fetched once at
    connection time and never refreshed during a run::

        async with McpToolProvider("StarWarsTools", "python", ["-m", "holocron.entrypoints.mcp_server"]) as provider:
            catalog = ToolCatalog([provider])
    """

    def __init__(
        self,
        name: str,
        command: str,
        arguments: Iterable[str] = (),
        env: Optional[Dict[str, str]] = None,
    ) -> None:
        super().__init__(name)
        self.server = StdioServerParameters(command=command, args=list(arguments), env=env)
        self._session: Optional[ClientSession] = None
        self._stack: Optional[AsyncExitStack] = None
        self._tools: Dict[str, ToolDescriptor] = {}

    async def __aenter__(self) -> "McpToolProvider":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def connect(self) -> None:
        stack = AsyncExitStack()
        try:
            read, write = await stack.enter_async_context(stdio_client(self.server))
            session = await stack.enter_async_context(ClientSession(read, write))
            await self.attach(session)
        except Exception:
            await stack.aclose()
            raise
        self._stack = stack

    async def attach(self, session: ClientSession) -> None:
        """Initialize an open session and load the tools it serves."""
        await session.initialize()
        listing = await session.list_tools()
        self._tools = {tool.name: self._descriptor(tool) for tool in listing.tools}
        self._session = session
        logger.info("MCP server %s serves %d tool(s): %s", self.name, len(self._tools), ", ".join(self._tools))

    async def close(self) -> None:
        stack, self._stack = self._stack, None
        self._session = None
        if stack is not None:
            await stack.aclose()

    def list_tools(self) -> List[ToolDescriptor]:
        self._require_session()
        return list(self._tools.values())

    async def call(self, name: str, arguments: Dict[str, Any]) -> str:
        session = self._require_session()
        if name not in self._tools:
            raise UnknownTool(f"MCP server {self.name!r} has no tool {name!r}")
        result = await session.call_tool(name, arguments)
        text = "\n".join(block.text for block in result.content if getattr(block, "type", None) == "text")
        if result.isError:
            raise ToolInvocationError(text or f"{name} failed on MCP server {self.name}")
        return text

    def _descriptor(self, tool: Any) -> ToolDescriptor:
        async def invoke(arguments: Dict[str, Any]) -> str:
            return await self.call(tool.name, arguments)

        return ToolDescriptor(
            name=tool.name,
            description=tool.description or "",
            invoke=invoke,
            parameters=tool.inputSchema or object_schema(),
        )

    def _require_session(self) -> ClientSession:
        if self._session is None:
            raise ConfigurationError(f"MCP server {self.name!r} is not connected")
        return self._session
