from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from holocron.agents.base import Agent
from holocron.schemas.actions import Action, Answer, Handoff, Invoke, RawAction, ToolChoiceMode, ToolChoicePolicy
from holocron.schemas.messages import Message
from holocron.tools.base import ToolDescriptor, object_schema
from holocron.tools.catalog import ToolCatalog
from holocron.utils.errors import ConfigurationError, ContentPolicyViolation, PolicyViolation, UnknownTool
from holocron.utils.llm_clients import CompletionClient
from holocron.workflows.handoff_graph import HANDOFF_PREFIX, HandoffEdge, handoff_function_name

logger = logging.getLogger(__name__)

SANITIZE_INSTRUCTION = (
    "Your previous request was rejected by the content policy. Rephrase it: describe named "
    "characters by appearance instead of by name (species, age, clothing, distinguishing "
    "features) and keep anything violent or suggestive PG."
)


async def _handoff_signal(arguments: Dict[str, Any]) -> str:
    # handoff functions are intercepted by the orchestrator and never executed
    return "Transfer acknowledged"


def _handoff_descriptor(edge: HandoffEdge) -> ToolDescriptor:
    return ToolDescriptor(
        name=handoff_function_name(edge.target),
        description=edge.rationale,
        invoke=_handoff_signal,
        parameters=object_schema(
            {"reason": {"type": "string", "description": "Why control is being transferred."}}
        ),
    )


class ChatCompletionAgent(Agent):
    """Agent whose next action comes from a chat-completion capability.

    The agent never touches the shared history: its own instructions, and a
    routing note when several transfers are possible, are prepended to the
    context it sends to the completion client only.
    """

    def __init__(
        self,
        name: str,
        instructions: str,
        client: CompletionClient,
        catalog: Optional[ToolCatalog] = None,
        tools: Iterable[str] = (),
        policy: ToolChoicePolicy | None = None,
        description: str = "",
        policy_retries: int = 1,
        content_policy_retries: int = 2,
        sanitize_instruction: str = SANITIZE_INSTRUCTION,
    ) -> None:
        policy = policy or ToolChoicePolicy.auto()
        tool_names = list(tools)
        reserved = [t for t in tool_names if t.startswith(HANDOFF_PREFIX)]
        if reserved:
            raise ConfigurationError(f"Agent {name!r} binds {reserved}; the {HANDOFF_PREFIX!r} prefix is reserved for handoffs")
        if tool_names and catalog is None:
            raise ConfigurationError(f"Agent {name!r} binds tools but was given no catalog")
        descriptors = catalog.resolve(tool_names) if tool_names else []
        if policy.is_required and policy.tool_name not in tool_names:
            raise ConfigurationError(
                f"Agent {name!r} requires tool {policy.tool_name!r} which is not in its tool subset"
            )
        if policy.mode is ToolChoiceMode.NONE and descriptors:
            logger.warning("Agent %s has policy 'none'; its %d bound tool(s) will never be offered", name, len(descriptors))

        super().__init__(name=name, description=description, policy=policy, tools=descriptors)
        self.instructions = instructions
        self.client = client
        self.policy_retries = policy_retries
        self.content_policy_retries = content_policy_retries
        self.sanitize_instruction = sanitize_instruction

    @classmethod
    def from_prompt_file(cls, prompt_path: str, **kwargs: Any) -> "ChatCompletionAgent":
        instructions = Path(prompt_path).read_text(encoding="utf-8")
        return cls(instructions=instructions, **kwargs)

    async def step(
        self,
        history: Sequence[Message],
        handoffs: Sequence[HandoffEdge] = (),
        sub_turn: int = 0,
    ) -> Action:
        handoff_map = {handoff_function_name(e.target): e for e in handoffs}
        tools, policy = self._offer(handoffs, sub_turn)
        context = self._context(history, handoffs)

        notes: List[Message] = []
        content_attempts = 0
        policy_attempts = 0
        while True:
            try:
                raw = await self.client.complete(context + notes, tools, policy)
            except ContentPolicyViolation:
                if content_attempts >= self.content_policy_retries:
                    raise
                content_attempts += 1
                logger.warning(
                    "%s: completion hit the content policy, re-prompting (%d/%d)",
                    self.name,
                    content_attempts,
                    self.content_policy_retries,
                )
                notes.append(Message.system(self.sanitize_instruction))
                continue

            try:
                return self._classify(raw, handoff_map, sub_turn)
            except PolicyViolation as exc:
                if policy_attempts >= self.policy_retries:
                    raise
                policy_attempts += 1
                logger.warning("%s: %s; re-soliciting (%d/%d)", self.name, exc.message, policy_attempts, self.policy_retries)
                notes.append(Message.system(exc.message))

    def _offer(self, handoffs: Sequence[HandoffEdge], sub_turn: int) -> Tuple[List[ToolDescriptor], ToolChoicePolicy]:
        transfers = [_handoff_descriptor(e) for e in handoffs]
        mode = self.policy.mode
        if mode is ToolChoiceMode.NONE:
            return transfers, ToolChoicePolicy.auto() if transfers else ToolChoicePolicy.none()
        if mode is ToolChoiceMode.REQUIRED and sub_turn == 0:
            required = [t for t in self.tools if t.name == self.policy.tool_name]
            return required, self.policy
        return self.tools + transfers, ToolChoicePolicy.auto()

    def _context(self, history: Sequence[Message], handoffs: Sequence[HandoffEdge]) -> List[Message]:
        messages = list(history)
        preamble = [Message.system(self.instructions)]
        if len(handoffs) > 1:
            options = "\n".join(f"- {e.target}: {e.rationale}" for e in handoffs)
            preamble.append(
                Message.system(
                    "You can transfer the conversation by calling the matching "
                    f"{HANDOFF_PREFIX}<agent> function:\n{options}"
                )
            )
        return messages[:1] + preamble + messages[1:]

    def _classify(self, raw: RawAction, handoff_map: Dict[str, HandoffEdge], sub_turn: int) -> Action:
        must_invoke = self.policy.is_required and sub_turn == 0

        if raw.tool_calls:
            call = raw.tool_calls[0]
            if len(raw.tool_calls) > 1:
                dropped = ", ".join(c.name for c in raw.tool_calls[1:])
                logger.warning("%s requested %d calls at once; acting on %s, dropping %s", self.name, len(raw.tool_calls), call.name, dropped)

            if call.name in handoff_map or call.name.startswith(HANDOFF_PREFIX):
                if must_invoke:
                    raise PolicyViolation(f"{self.name} must call {self.policy.tool_name} before transferring")
                edge = handoff_map.get(call.name)
                target = edge.target if edge else call.name[len(HANDOFF_PREFIX):]
                reason = str(call.arguments.get("reason") or raw.content or "")
                return Handoff(target=target, reason=reason, call=call)

            if self.policy.mode is ToolChoiceMode.NONE:
                raise PolicyViolation(f"{self.name} must answer directly and may not call {call.name}")
            if must_invoke and call.name != self.policy.tool_name:
                raise PolicyViolation(f"{self.name} must call {self.policy.tool_name}, not {call.name}")
            if call.name not in self.tool_names:
                raise UnknownTool(f"{self.name} is not bound to tool {call.name!r}")
            return Invoke(tool_name=call.name, arguments=dict(call.arguments), call=call)

        if must_invoke:
            raise PolicyViolation(f"{self.name} must call {self.policy.tool_name} before answering")
        return Answer(text=raw.content or "")
