from __future__ import annotations

import inspect
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from holocron.utils.errors import DuplicateToolName, UnknownTool

ToolInvoker = Callable[[Dict[str, Any]], Awaitable[Any]]


def object_schema(properties: Dict[str, Any] | None = None, required: Iterable[str] = ()) -> Dict[str, Any]:
    return {
        "type": "object",
        "properties": dict(properties or {}),
        "required": list(required),
    }


@dataclass(frozen=True, eq=False)
class ToolDescriptor:
    """Callable capability as seen by agents: name, contract, and how to run it."""

    name: str
    description: str
    invoke: ToolInvoker
    parameters: Dict[str, Any] = field(default_factory=object_schema)


class ToolProvider(ABC):
    """Source of tool descriptors feeding the catalog."""

    name: str

    def __init__(self, name: str) -> None:
        self.name = name

    @abstractmethod
    def list_tools(self) -> List[ToolDescriptor]:
        """Return every tool this provider exposes."""

    @abstractmethod
    async def call(self, name: str, arguments: Dict[str, Any]) -> Any:
        """Run one tool with arguments matching its declared schema."""


class LocalToolProvider(ToolProvider):
    """In-process provider backed by plain async (or sync) functions."""

    def __init__(self, name: str, tools: Iterable[ToolDescriptor] = ()) -> None:
        super().__init__(name)
        self._tools: Dict[str, ToolDescriptor] = {}
        for descriptor in tools:
            self.add(descriptor)

    def add(self, descriptor: ToolDescriptor) -> None:
        if descriptor.name in self._tools:
            raise DuplicateToolName(f"Provider {self.name!r} already exposes {descriptor.name!r}")
        self._tools[descriptor.name] = descriptor

    def list_tools(self) -> List[ToolDescriptor]:
        return list(self._tools.values())

    async def call(self, name: str, arguments: Dict[str, Any]) -> Any:
        descriptor = self._tools.get(name)
        if descriptor is None:
            raise UnknownTool(f"Provider {self.name!r} has no tool {name!r}")
        return await descriptor.invoke(arguments)


def function_tool(
    name: str,
    description: str,
    parameters: Optional[Dict[str, Any]] = None,
) -> Callable[[Callable[..., Any]], ToolDescriptor]:
    """Turn a function taking keyword arguments into a ToolDescriptor."""

    def decorator(fn: Callable[..., Any]) -> ToolDescriptor:
        async def invoke(arguments: Dict[str, Any]) -> Any:
            result = fn(**arguments)
            if inspect.isawaitable(result):
                result = await result
            return result

        return ToolDescriptor(
            name=name,
            description=description,
            invoke=invoke,
            parameters=parameters or object_schema(),
        )

    return decorator
