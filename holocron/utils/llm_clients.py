from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import openai
from openai import AsyncOpenAI

from holocron.schemas.actions import RawAction, ToolChoiceMode, ToolChoicePolicy
from holocron.schemas.messages import Message, Role, ToolCall
from holocron.tools.base import ToolDescriptor
from holocron.utils.errors import CompletionError, ContentPolicyViolation

logger = logging.getLogger(__name__)

CONTENT_POLICY_CODES = ("content_filter", "content_policy_violation")


class CompletionClient(ABC):
    """The chat-completion capability agents depend on; vendor details stay behind it."""

    @abstractmethod
    async def complete(
        self,
        history: Sequence[Message],
        tools: Sequence[ToolDescriptor],
        policy: ToolChoicePolicy,
    ) -> RawAction:
        """Return the model's next output for the given context, tools and policy."""


@dataclass(frozen=True)
class CompletionCall:
    history: Tuple[Message, ...]
    tool_names: Tuple[str, ...]
    policy: ToolChoicePolicy


ScriptStep = Union[RawAction, Exception, Callable[[Sequence[Message], Sequence[ToolDescriptor], ToolChoicePolicy], RawAction]]


class ScriptedCompletionClient(CompletionClient):
    """Deterministic client that replays queued outputs, for tests."""

    def __init__(self, script: Iterable[ScriptStep] = ()) -> None:
        self._script: Deque[ScriptStep] = deque(script)
        self.calls: List[CompletionCall] = []

    @property
    def remaining(self) -> int:
        return len(self._script)

    async def complete(
        self,
        history: Sequence[Message],
        tools: Sequence[ToolDescriptor],
        policy: ToolChoicePolicy,
    ) -> RawAction:
        self.calls.append(
            CompletionCall(
                history=tuple(history),
                tool_names=tuple(t.name for t in tools),
                policy=policy,
            )
        )
        if not self._script:
            raise CompletionError("Scripted completion client has no outputs left")
        step = self._script.popleft()
        if isinstance(step, Exception):
            raise step
        if callable(step):
            return step(history, tools, policy)
        return step


class OpenAICompletionClient(CompletionClient):
    """Chat-completions function calling against OpenAI or an Azure OpenAI deployment."""

    def __init__(
        self,
        model: str,
        client: Optional[AsyncOpenAI] = None,
        temperature: Optional[float] = None,
    ) -> None:
        self.model = model
        self.temperature = temperature
        self._client = client if client is not None else AsyncOpenAI()

    async def complete(
        self,
        history: Sequence[Message],
        tools: Sequence[ToolDescriptor],
        policy: ToolChoicePolicy,
    ) -> RawAction:
        request: Dict[str, Any] = {
            "model": self.model,
            "messages": [to_wire(m) for m in history],
        }
        if self.temperature is not None:
            request["temperature"] = self.temperature
        if tools:
            request["tools"] = [tool_spec(t) for t in tools]
            request["tool_choice"] = tool_choice(policy)

        try:
            resp = await self._client.chat.completions.create(**request)
        except openai.BadRequestError as exc:
            if is_content_policy_error(exc):
                raise ContentPolicyViolation(str(exc)) from exc
            raise CompletionError(str(exc)) from exc
        except openai.APIError as exc:
            raise CompletionError(str(exc)) from exc

        choice = resp.choices[0]
        if choice.finish_reason == "content_filter":
            raise ContentPolicyViolation("Completion was stopped by the content filter")
        return from_wire(choice.message)


def tool_spec(descriptor: ToolDescriptor) -> Dict[str, Any]:
    """Build an OpenAI function spec."""
    parameters = dict(descriptor.parameters)
    parameters.setdefault("type", "object")
    parameters.setdefault("properties", {})
    return {
        "type": "function",
        "function": {
            "name": descriptor.name,
            "description": descriptor.description,
            "parameters": parameters,
        },
    }


def tool_choice(policy: ToolChoicePolicy) -> Union[str, Dict[str, Any]]:
    if policy.mode is ToolChoiceMode.REQUIRED:
        return {"type": "function", "function": {"name": policy.tool_name}}
    return policy.mode.value


def to_wire(message: Message) -> Dict[str, Any]:
    wire: Dict[str, Any] = {"role": message.role.value, "content": message.content}
    if message.role is Role.ASSISTANT:
        if message.author:
            wire["name"] = message.author
        if message.tool_call is not None:
            wire["content"] = message.content or None
            wire["tool_calls"] = [
                {
                    "id": message.tool_call.id,
                    "type": "function",
                    "function": {
                        "name": message.tool_call.name,
                        "arguments": json.dumps(message.tool_call.arguments),
                    },
                }
            ]
    elif message.role is Role.TOOL:
        wire["tool_call_id"] = message.tool_call_id
    return wire


def from_wire(message: Any) -> RawAction:
    calls: List[ToolCall] = []
    for tc in message.tool_calls or []:
        raw_args = tc.function.arguments
        try:
            arguments = json.loads(raw_args) if raw_args else {}
        except json.JSONDecodeError:
            logger.warning("Tool call %s carried invalid JSON arguments", tc.function.name)
            arguments = {"_raw": raw_args}
        if not isinstance(arguments, dict):
            arguments = {"_raw": arguments}
        calls.append(ToolCall(name=tc.function.name, arguments=arguments, id=tc.id))
    return RawAction(content=message.content, tool_calls=calls)


def is_content_policy_error(exc: openai.APIError) -> bool:
    code = getattr(exc, "code", None) or ""
    return code in CONTENT_POLICY_CODES or any(c in str(exc) for c in CONTENT_POLICY_CODES)
