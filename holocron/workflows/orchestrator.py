from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from holocron.agents.base import Agent
from holocron.memory.history import History
from holocron.schemas.actions import Answer, Handoff, Invoke
from holocron.schemas.messages import Message
from holocron.schemas.results import RunOutcome, RunStatus, parse_story_result
from holocron.tools.catalog import ToolCatalog
from holocron.utils.errors import DepthExceeded, HolocronError, IllegalTransition, RunTimeout
from holocron.workflows.handoff_graph import HandoffGraph

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    "You are part of a team of assistants for a Star Wars figurine store. "
    "Stay in the Star Wars universe, keep content family friendly, and never "
    "reveal customer data beyond what the request needs."
)

CompletionPredicate = Callable[[str], Any]


@dataclass
class OrchestrationRun:
    """Mutable state of one user request; never shared between runs."""

    history: History
    active: Agent
    deadline: float
    status: RunStatus = RunStatus.RUNNING
    depth: int = 0
    sub_turn: int = 0
    pending: Optional[Invoke] = None
    result: Any = None
    text: Optional[str] = None
    error: Optional[HolocronError] = None


class Orchestrator:
    """Drives a conversation across the agents of a handoff graph.

    A run is a sequential state machine: RUNNING(agent) asks the active agent
    for its next action, AWAITING_TOOL runs the requested tool, and TERMINAL /
    FAILED are absorbing. Every handoff, return to the entry agent, and tool
    call counts toward ``max_depth``.
    """

    def __init__(
        self,
        graph: HandoffGraph,
        catalog: ToolCatalog,
        max_depth: int = 40,
        timeout_seconds: float = 300.0,
        completion_predicate: CompletionPredicate = parse_story_result,
        return_to_entry: bool = True,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
    ) -> None:
        if max_depth < 1:
            raise ValueError("max_depth must be at least 1")
        graph.validate()
        self.graph = graph
        self.catalog = catalog
        self.max_depth = max_depth
        self.timeout_seconds = timeout_seconds
        self.completion_predicate = completion_predicate
        self.return_to_entry = return_to_entry
        self.system_prompt = system_prompt

    def new_history(self) -> History:
        return History(self.system_prompt)

    async def run(self, user_input: str, history: Optional[History] = None) -> RunOutcome:
        """Run one request to a terminal result or a tagged failure.

        Pass an existing ``history`` to continue a conversation across runs.
        """
        history = history if history is not None else self.new_history()
        history.append(Message.user(user_input))
        loop = asyncio.get_running_loop()
        run = OrchestrationRun(
            history=history,
            active=self.graph.entry,
            deadline=loop.time() + self.timeout_seconds,
        )
        logger.info("Run started with %s (max depth %d, timeout %.0fs)", run.active.name, self.max_depth, self.timeout_seconds)

        try:
            await asyncio.wait_for(self._drive(run), timeout=max(run.deadline - loop.time(), 0))
        except asyncio.TimeoutError:
            self._fail(run, RunTimeout(f"Run exceeded {self.timeout_seconds:.0f}s while {run.active.name} was {run.status.value}"))

        return RunOutcome(
            status=run.status,
            result=run.result,
            text=run.text,
            error=run.error,
            depth=run.depth,
            history=run.history.all(),
        )

    async def _drive(self, run: OrchestrationRun) -> None:
        while run.status in (RunStatus.RUNNING, RunStatus.AWAITING_TOOL):
            try:
                if run.status is RunStatus.RUNNING:
                    await self._advance(run)
                else:
                    await self._call_tool(run)
            except HolocronError as exc:
                self._fail(run, exc)

    async def _advance(self, run: OrchestrationRun) -> None:
        agent = run.active
        logger.debug("RUNNING(%s) sub-turn %d, depth %d", agent.name, run.sub_turn, run.depth)
        action = await agent.step(run.history.all(), self.graph.edges_from(agent), run.sub_turn)

        if isinstance(action, Answer):
            self._on_answer(run, agent, action)
        elif isinstance(action, Invoke):
            run.pending = action
            run.status = RunStatus.AWAITING_TOOL
        elif isinstance(action, Handoff):
            self._on_handoff(run, agent, action)
        else:
            raise TypeError(f"{agent.name} returned an unsupported action {action!r}")

    def _on_answer(self, run: OrchestrationRun, agent: Agent, action: Answer) -> None:
        run.history.append(Message.assistant(action.text, author=agent.name))
        entry = self.graph.entry
        if agent is entry or not self.return_to_entry:
            run.result = self.completion_predicate(action.text)
            run.text = action.text
            run.status = RunStatus.TERMINAL
            logger.info("Run finished by %s after %d transition(s)", agent.name, run.depth)
            return

        # a sub-agent's answer is a report for the entry agent, which takes over again
        self._check_depth(run, f"return from {agent.name} to {entry.name}")
        logger.info("%s reported back to %s", agent.name, entry.name)
        self._activate(run, entry)

    def _on_handoff(self, run: OrchestrationRun, agent: Agent, action: Handoff) -> None:
        run.history.append(Message.assistant(action.reason, author=agent.name, tool_call=action.call))
        try:
            if self.graph.edge(agent.name, action.target) is None:
                raise IllegalTransition(f"{agent.name} has no handoff edge to {action.target!r}")
            self._check_depth(run, f"handoff {agent.name} -> {action.target}")
        except HolocronError as exc:
            # every assistant tool call gets a Tool reply, refused ones included
            refusal = json.dumps({"error": str(exc)})
            run.history.append(Message.tool(refusal, tool_call_id=action.call.id, author=agent.name))
            raise

        target = self.graph.agent(action.target)
        note = f"Transferred from {agent.name} to {target.name}"
        if action.reason:
            note += f": {action.reason}"
        run.history.append(Message.tool(note, tool_call_id=action.call.id, author=agent.name))
        logger.info("Handoff %s -> %s (%s)", agent.name, target.name, action.reason or "no reason given")
        self._activate(run, target)

    async def _call_tool(self, run: OrchestrationRun) -> None:
        action = run.pending
        agent = run.active
        self._check_depth(run, f"{agent.name} calling {action.tool_name}")
        logger.info("%s invoking %s", agent.name, action.tool_name)
        logger.debug("AWAITING_TOOL(%s, %s, %s)", agent.name, action.tool_name, action.arguments)

        result = await self.catalog.invoke(action.tool_name, action.arguments)

        run.history.extend(
            [
                Message.assistant("", author=agent.name, tool_call=action.call),
                Message.tool(result, tool_call_id=action.call.id, author=action.tool_name),
            ]
        )
        run.pending = None
        run.status = RunStatus.RUNNING
        run.depth += 1
        run.sub_turn += 1

    def _activate(self, run: OrchestrationRun, agent: Agent) -> None:
        run.active = agent
        run.sub_turn = 0
        run.depth += 1

    def _check_depth(self, run: OrchestrationRun, what: str) -> None:
        if run.depth >= self.max_depth:
            raise DepthExceeded(f"Refusing {what}: {run.depth} transitions already made (max {self.max_depth})", run.depth)

    @staticmethod
    def _fail(run: OrchestrationRun, error: HolocronError) -> None:
        run.pending = None
        run.status = RunStatus.FAILED
        run.error = error
        logger.error("Run failed in %s: %s", run.active.name, error)
