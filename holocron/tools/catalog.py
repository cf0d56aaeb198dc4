from __future__ import annotations

import json
import logging
from typing import Any, Dict, Iterable, List

from holocron.tools.base import ToolDescriptor, ToolProvider
from holocron.utils.errors import DuplicateToolName, ToolInvocationError, UnknownTool

logger = logging.getLogger(__name__)


class ToolCatalog:
    """Static name -> descriptor mapping assembled from providers before any run starts."""

    def __init__(self, providers: Iterable[ToolProvider] = ()) -> None:
        self._tools: Dict[str, ToolDescriptor] = {}
        self._owners: Dict[str, str] = {}
        for provider in providers:
            self.register(provider)

    def register(self, provider: ToolProvider) -> None:
        incoming = provider.list_tools()
        seen: Dict[str, str] = {}
        for descriptor in incoming:
            owner = self._owners.get(descriptor.name) or seen.get(descriptor.name)
            if owner is not None:
                raise DuplicateToolName(
                    f"Tool {descriptor.name!r} from provider {provider.name!r} "
                    f"is already provided by {owner!r}"
                )
            seen[descriptor.name] = provider.name

        # all-or-nothing: a failed registration leaves the catalog untouched
        for descriptor in incoming:
            self._tools[descriptor.name] = descriptor
            self._owners[descriptor.name] = provider.name
        logger.info("Registered %d tool(s) from provider %s", len(incoming), provider.name)

    def resolve(self, names: Iterable[str]) -> List[ToolDescriptor]:
        names = list(names)
        missing = sorted(n for n in set(names) if n not in self._tools)
        if missing:
            raise UnknownTool(f"Unknown tool(s): {', '.join(missing)}")
        resolved: List[ToolDescriptor] = []
        for name in dict.fromkeys(names):
            resolved.append(self._tools[name])
        return resolved

    def get(self, name: str) -> ToolDescriptor:
        return self.resolve([name])[0]

    async def invoke(self, name: str, arguments: Dict[str, Any]) -> str:
        """Run a tool and return its text result.

        Provider failures come back as a ``{"error": ...}`` JSON payload rather
        than an exception; only an unknown name raises.
        """
        descriptor = self.get(name)
        try:
            result = await descriptor.invoke(arguments)
        except Exception as exc:
            error = ToolInvocationError(f"{type(exc).__name__}: {exc}")
            logger.warning("Tool %s failed: %s", name, error.message)
            return json.dumps({"error": error.message})
        return _as_text(result)

    def names(self) -> List[str]:
        return list(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)


def _as_text(result: Any) -> str:
    if isinstance(result, str):
        return result
    if result is None:
        return ""
    return json.dumps(result, ensure_ascii=False, default=str)
