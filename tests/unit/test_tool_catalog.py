import json

import pytest

from holocron.tools.base import LocalToolProvider, ToolDescriptor, function_tool, object_schema
from holocron.tools.catalog import ToolCatalog
from holocron.utils.errors import DuplicateToolName, UnknownTool


def make_tool(name, result="ok"):
    @function_tool(name=name, description=f"{name} tool", parameters=object_schema({"query": {"type": "string"}}))
    async def tool(query: str = "") -> str:
        return f"{result}:{query}"

    return tool


def test_register_and_resolve():
    catalog = ToolCatalog([LocalToolProvider("a", [make_tool("One"), make_tool("Two")])])
    resolved = catalog.resolve(["Two", "One"])
    assert [t.name for t in resolved] == ["Two", "One"]
    assert "One" in catalog
    assert len(catalog) == 2


def test_duplicate_names_across_providers_fail_without_partial_merge():
    catalog = ToolCatalog([LocalToolProvider("a", [make_tool("One")])])
    with pytest.raises(DuplicateToolName):
        catalog.register(LocalToolProvider("b", [make_tool("Extra"), make_tool("One")]))
    assert catalog.names() == ["One"]


def test_duplicate_names_within_provider_fail():
    with pytest.raises(DuplicateToolName):
        LocalToolProvider("a", [make_tool("One"), make_tool("One")])


def test_resolve_unknown_tool():
    catalog = ToolCatalog([LocalToolProvider("a", [make_tool("One")])])
    with pytest.raises(UnknownTool):
        catalog.resolve(["One", "Missing"])


@pytest.mark.asyncio
async def test_invoke_returns_text():
    catalog = ToolCatalog([LocalToolProvider("a", [make_tool("One", result="found")])])
    assert await catalog.invoke("One", {"query": "Yoda"}) == "found:Yoda"


@pytest.mark.asyncio
async def test_invoke_serializes_structured_results():
    async def lookup(arguments):
        return {"hits": [arguments["query"]]}

    catalog = ToolCatalog([LocalToolProvider("a", [ToolDescriptor("Lookup", "lookup", lookup)])])
    assert json.loads(await catalog.invoke("Lookup", {"query": "Yoda"})) == {"hits": ["Yoda"]}


@pytest.mark.asyncio
async def test_invoke_wraps_provider_failures():
    async def broken(arguments):
        raise OSError("connection reset")

    catalog = ToolCatalog([LocalToolProvider("a", [ToolDescriptor("Broken", "always fails", broken)])])
    payload = json.loads(await catalog.invoke("Broken", {}))
    assert "connection reset" in payload["error"]


@pytest.mark.asyncio
async def test_invoke_wraps_bad_arguments():
    catalog = ToolCatalog([LocalToolProvider("a", [make_tool("One")])])
    payload = json.loads(await catalog.invoke("One", {"unexpected": 1}))
    assert "TypeError" in payload["error"]


@pytest.mark.asyncio
async def test_invoke_unknown_tool_raises():
    catalog = ToolCatalog()
    with pytest.raises(UnknownTool):
        await catalog.invoke("Missing", {})


@pytest.mark.asyncio
async def test_provider_call_dispatches_by_name():
    provider = LocalToolProvider("a", [make_tool("One", result="r")])
    assert await provider.call("One", {"query": "q"}) == "r:q"
    with pytest.raises(UnknownTool):
        await provider.call("Two", {})
