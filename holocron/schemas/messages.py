from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass(frozen=True)
class ToolCall:
    """Function call requested by the completion capability."""

    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: f"call_{uuid.uuid4().hex[:12]}")


@dataclass(frozen=True)
class Message:
    """Single conversation entry. Never mutated once appended."""

    role: Role
    content: str
    author: Optional[str] = None
    tool_call: Optional[ToolCall] = None
    tool_call_id: Optional[str] = None

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(role=Role.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(
        cls,
        content: str,
        author: Optional[str] = None,
        tool_call: Optional[ToolCall] = None,
    ) -> "Message":
        return cls(role=Role.ASSISTANT, content=content, author=author, tool_call=tool_call)

    @classmethod
    def tool(cls, content: str, tool_call_id: str, author: Optional[str] = None) -> "Message":
        return cls(role=Role.TOOL, content=content, author=author, tool_call_id=tool_call_id)
