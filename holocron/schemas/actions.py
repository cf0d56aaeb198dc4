from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from holocron.schemas.messages import ToolCall


class ToolChoiceMode(str, Enum):
    NONE = "none"
    AUTO = "auto"
    REQUIRED = "required"


@dataclass(frozen=True)
class ToolChoicePolicy:
    """Per-agent rule governing whether and which tool is called before answering."""

    mode: ToolChoiceMode
    tool_name: Optional[str] = None

    def __post_init__(self) -> None:
        if self.mode is ToolChoiceMode.REQUIRED and not self.tool_name:
            raise ValueError("Required tool-choice policy needs a tool name")
        if self.mode is not ToolChoiceMode.REQUIRED and self.tool_name:
            raise ValueError(f"Policy {self.mode.value!r} does not take a tool name")

    @classmethod
    def none(cls) -> "ToolChoicePolicy":
        return cls(ToolChoiceMode.NONE)

    @classmethod
    def auto(cls) -> "ToolChoicePolicy":
        return cls(ToolChoiceMode.AUTO)

    @classmethod
    def required(cls, tool_name: str) -> "ToolChoicePolicy":
        return cls(ToolChoiceMode.REQUIRED, tool_name)

    @property
    def is_required(self) -> bool:
        return self.mode is ToolChoiceMode.REQUIRED

    def __str__(self) -> str:
        if self.is_required:
            return f"required({self.tool_name})"
        return self.mode.value


@dataclass(frozen=True)
class RawAction:
    """Unclassified output of one completion call."""

    content: Optional[str] = None
    tool_calls: List[ToolCall] = field(default_factory=list)

    @classmethod
    def text(cls, content: str) -> "RawAction":
        return cls(content=content)

    @classmethod
    def call(cls, name: str, arguments: Dict[str, Any] | None = None, content: Optional[str] = None) -> "RawAction":
        return cls(content=content, tool_calls=[ToolCall(name=name, arguments=dict(arguments or {}))])


@dataclass(frozen=True)
class Answer:
    text: str


@dataclass(frozen=True)
class Invoke:
    tool_name: str
    arguments: Dict[str, Any]
    call: ToolCall


@dataclass(frozen=True)
class Handoff:
    target: str
    reason: str
    call: ToolCall


Action = Union[Answer, Invoke, Handoff]
