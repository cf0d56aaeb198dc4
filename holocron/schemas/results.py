from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Tuple

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from holocron.schemas.messages import Message
from holocron.utils.errors import HolocronError, MalformedTerminalPayload
from holocron.utils.parsing import extract_json_block


class StoryResult(BaseModel):
    """Structured payload the entry agent produces to end a story run."""

    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(min_length=1)
    body: str = Field(min_length=1, validation_alias=AliasChoices("body", "story"))
    image_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("image_url", "imageurl", "auxiliaryasseturl"),
    )


def parse_story_result(text: str) -> StoryResult:
    """Completion predicate for story runs: the answer must carry a StoryResult JSON object."""
    try:
        payload = extract_json_block(text)
    except ValueError as exc:
        raise MalformedTerminalPayload(f"No JSON object in final answer: {exc}") from exc
    if not isinstance(payload, dict):
        raise MalformedTerminalPayload("Final answer JSON is not an object")

    # keys are matched case-insensitively ("imageUrl", "Title", ...)
    normalized = {str(key).lower(): value for key, value in payload.items()}
    try:
        return StoryResult.model_validate(normalized)
    except ValidationError as exc:
        raise MalformedTerminalPayload(f"Final answer does not match the story schema: {exc}") from exc


def accept_text(text: str) -> str:
    """Completion predicate for chat runs: any answer ends the turn."""
    return text


class RunStatus(str, Enum):
    RUNNING = "running"
    AWAITING_TOOL = "awaiting_tool"
    TERMINAL = "terminal"
    FAILED = "failed"


@dataclass
class RunOutcome:
    """What the orchestrator hands back to the caller once a run is absorbed."""

    status: RunStatus
    result: Any = None
    text: Optional[str] = None
    error: Optional[HolocronError] = None
    depth: int = 0
    history: Tuple[Message, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return self.status is RunStatus.TERMINAL
