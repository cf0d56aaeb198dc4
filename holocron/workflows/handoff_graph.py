from __future__ import annotations

import re
from collections import deque
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Set, Tuple, Union

from holocron.agents.base import Agent
from holocron.utils.errors import ConfigurationError, UnknownAgent

AgentRef = Union[Agent, str]

HANDOFF_PREFIX = "transfer_to_"


def handoff_function_name(agent_name: str) -> str:
    """Name of the function an agent calls to transfer control to ``agent_name``."""
    return HANDOFF_PREFIX + re.sub(r"[^\w-]", "_", agent_name)


@dataclass(frozen=True)
class HandoffEdge:
    """Directed transfer permission; the rationale steers the routing decision."""

    source: str
    target: str
    rationale: str


class HandoffGraph:
    """Agents of an orchestration and the transfers allowed between them.

    Agents are owned here and referenced by name everywhere else. Edges are
    directed and need not be symmetric.
    """

    def __init__(self, entry: Optional[Agent] = None) -> None:
        self._agents: Dict[str, Agent] = {}
        self._edges: Dict[str, List[HandoffEdge]] = {}
        self._entry: Optional[str] = None
        if entry is not None:
            self.add_agent(entry)
            self._entry = entry.name

    @classmethod
    def start_with(cls, entry: Agent) -> "HandoffGraph":
        return cls(entry)

    def add_agent(self, agent: Agent) -> "HandoffGraph":
        existing = self._agents.get(agent.name)
        if existing is not None and existing is not agent:
            raise ConfigurationError(f"Another agent is already named {agent.name!r}")
        self._agents[agent.name] = agent
        self._edges.setdefault(agent.name, [])
        return self

    def add(self, source: AgentRef, target: AgentRef, rationale: str) -> "HandoffGraph":
        return self.add_edge(source, target, rationale)

    def add_edge(self, source: AgentRef, target: AgentRef, rationale: str) -> "HandoffGraph":
        source_name = self._known(source)
        target_name = self._known(target)
        edges = self._edges[source_name]
        if any(e.target == target_name for e in edges):
            raise ConfigurationError(f"Edge {source_name} -> {target_name} is already declared")
        function_name = handoff_function_name(target_name)
        clash = next((e.target for e in edges if handoff_function_name(e.target) == function_name), None)
        if clash is not None:
            raise ConfigurationError(
                f"Edges {source_name} -> {clash} and {source_name} -> {target_name} would both be offered as {function_name}"
            )
        edges.append(HandoffEdge(source=source_name, target=target_name, rationale=rationale))
        return self

    def set_entry(self, agent: AgentRef) -> "HandoffGraph":
        self._entry = self._known(agent)
        return self

    @property
    def entry(self) -> Agent:
        if self._entry is None:
            raise ConfigurationError("Handoff graph has no entry agent")
        return self._agents[self._entry]

    def agent(self, name: str) -> Agent:
        try:
            return self._agents[name]
        except KeyError:
            raise UnknownAgent(f"No agent named {name!r} in the handoff graph") from None

    def agents(self) -> Tuple[Agent, ...]:
        return tuple(self._agents.values())

    def edges_from(self, agent: AgentRef) -> Tuple[HandoffEdge, ...]:
        return tuple(self._edges[self._known(agent)])

    def edge(self, source: str, target: str) -> Optional[HandoffEdge]:
        for edge in self._edges.get(source, ()):
            if edge.target == target:
                return edge
        return None

    def reachable(self) -> Set[str]:
        """Names of agents reachable from the entry agent (entry included)."""
        start = self.entry.name
        seen = {start}
        queue = deque([start])
        while queue:
            for edge in self._edges[queue.popleft()]:
                if edge.target not in seen:
                    seen.add(edge.target)
                    queue.append(edge.target)
        return seen

    def validate(self) -> None:
        entry = self.entry
        missing = self.reachable() - set(self._agents)
        if missing:
            raise UnknownAgent(f"Agents reachable from {entry.name} are not declared: {sorted(missing)}")

    def _known(self, agent: AgentRef) -> str:
        name = agent if isinstance(agent, str) else agent.name
        if name not in self._agents:
            raise UnknownAgent(f"Agent {name!r} must be added to the graph before it is used in an edge")
        return name

    def __contains__(self, name: object) -> bool:
        return name in self._agents

    def __iter__(self) -> Iterator[Agent]:
        return iter(self.agents())
