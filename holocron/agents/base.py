from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Iterable, List, Sequence

from holocron.schemas.actions import Action, ToolChoicePolicy
from holocron.schemas.messages import Message
from holocron.tools.base import ToolDescriptor

if TYPE_CHECKING:
    from holocron.workflows.handoff_graph import HandoffEdge


class Agent(ABC):
    """Base contract for every agent taking part in an orchestration."""

    name: str

    def __init__(
        self,
        name: str,
        description: str = "",
        policy: ToolChoicePolicy | None = None,
        tools: Iterable[ToolDescriptor] | None = None,
    ) -> None:
        self.name = name
        self.description = description
        self.policy = policy or ToolChoicePolicy.auto()
        self.tools: List[ToolDescriptor] = list(tools or [])

    @property
    def tool_names(self) -> List[str]:
        return [t.name for t in self.tools]

    @abstractmethod
    async def step(
        self,
        history: Sequence[Message],
        handoffs: Sequence["HandoffEdge"] = (),
        sub_turn: int = 0,
    ) -> Action:
        """Decide the next action from the shared history.

        ``handoffs`` are the transfers this agent may request and ``sub_turn``
        counts the tool calls it already made since it was activated.
        """

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, policy={self.policy})"
