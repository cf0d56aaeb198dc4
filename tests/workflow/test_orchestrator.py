import asyncio
import json
from collections import deque

import pytest

from holocron.agents.base import Agent
from holocron.agents.chat_agent import ChatCompletionAgent
from holocron.schemas.actions import Answer, Handoff, Invoke, RawAction, ToolChoicePolicy
from holocron.schemas.messages import Role, ToolCall
from holocron.schemas.results import RunStatus, StoryResult, accept_text
from holocron.tools.base import LocalToolProvider, function_tool
from holocron.tools.catalog import ToolCatalog
from holocron.utils.errors import (
    DepthExceeded,
    IllegalTransition,
    MalformedTerminalPayload,
    PolicyViolation,
    RunTimeout,
    UnknownTool,
)
from holocron.utils.llm_clients import ScriptedCompletionClient, to_wire
from holocron.workflows.handoff_graph import HandoffGraph
from holocron.workflows.orchestrator import Orchestrator

FINAL_STORY = json.dumps({"title": "The Sage of Dagobah", "story": "Yoda is...", "imageUrl": "https://img/yoda.png"})


class ScriptedAgent(Agent):
    """Agent returning pre-built actions, recording the history it was shown."""

    def __init__(self, name, actions=()):
        super().__init__(name)
        self.actions = deque(actions)
        self.seen = []

    async def step(self, history, handoffs=(), sub_turn=0):
        self.seen.append(tuple(history))
        action = self.actions.popleft()
        return action(history) if callable(action) else action


def invoke(name, **arguments):
    return Invoke(tool_name=name, arguments=arguments, call=ToolCall(name=name, arguments=arguments))


def handoff(target, reason=""):
    name = f"transfer_to_{target}"
    return Handoff(target=target, reason=reason, call=ToolCall(name=name, arguments={"reason": reason}))


def build_catalog(**tools):
    descriptors = [function_tool(name=name, description=name)(fn) for name, fn in tools.items()]
    return ToolCatalog([LocalToolProvider("test", descriptors)])


async def wookie(query: str) -> str:
    return f"Wookiepedia: {query} is a legendary Jedi Master."


@pytest.mark.asyncio
async def test_supervisor_delegates_research_and_finishes():
    catalog = build_catalog(WookieTool=wookie)
    supervisor = ChatCompletionAgent(
        name="Supervisor",
        instructions="Supervise.",
        client=ScriptedCompletionClient(
            [RawAction.call("transfer_to_ResearchAgent", {"reason": "needs lore"}), RawAction.text(FINAL_STORY)]
        ),
        policy=ToolChoicePolicy.auto(),
    )
    research = ChatCompletionAgent(
        name="ResearchAgent",
        instructions="Research.",
        client=ScriptedCompletionClient(
            [RawAction.call("WookieTool", {"query": "Yoda"}), RawAction.text("Yoda is a Jedi Master.")]
        ),
        catalog=catalog,
        tools=["WookieTool"],
        policy=ToolChoicePolicy.required("WookieTool"),
    )
    graph = HandoffGraph.start_with(supervisor).add_agent(research).add_edge(supervisor, research, "Research lore")

    outcome = await Orchestrator(graph, catalog).run("tell me about Yoda")

    assert outcome.status is RunStatus.TERMINAL
    assert outcome.result == StoryResult(title="The Sage of Dagobah", body="Yoda is...", image_url="https://img/yoda.png")
    assert outcome.depth == 3
    history = outcome.history
    assert [m.role for m in history] == [
        Role.SYSTEM,
        Role.USER,
        Role.ASSISTANT,
        Role.TOOL,
        Role.ASSISTANT,
        Role.TOOL,
        Role.ASSISTANT,
        Role.ASSISTANT,
    ]
    assert history[2].tool_call.name == "transfer_to_ResearchAgent"
    assert history[3].content == "Transferred from Supervisor to ResearchAgent: needs lore"
    assert history[3].tool_call_id == history[2].tool_call.id
    assert history[4].tool_call.name == "WookieTool"
    assert history[5].content == "Wookiepedia: Yoda is a legendary Jedi Master."
    assert history[5].tool_call_id == history[4].tool_call.id
    assert (history[6].author, history[6].content) == ("ResearchAgent", "Yoda is a Jedi Master.")
    assert history[7].author == "Supervisor"

    # the supervisor saw the research report before answering
    report_context = supervisor.client.calls[1].history
    assert report_context[-1].content == "Yoda is a Jedi Master."


@pytest.mark.asyncio
async def test_tool_failure_is_fed_back_and_agent_recovers():
    attempts = []

    async def flaky(query: str) -> str:
        attempts.append(query)
        if len(attempts) == 1:
            raise RuntimeError("HTTP 500 Internal Server Error")
        return f"results for {query}"

    catalog = build_catalog(WookieTool=flaky)
    agent = ScriptedAgent(
        "ResearchAgent",
        [invoke("WookieTool", query="Yoda Jedi"), invoke("WookieTool", query="Yoda"), Answer("Yoda is wise.")],
    )
    orchestrator = Orchestrator(HandoffGraph.start_with(agent), catalog, completion_predicate=accept_text)

    outcome = await orchestrator.run("tell me about Yoda")

    assert outcome.ok
    assert outcome.result == "Yoda is wise."
    assert attempts == ["Yoda Jedi", "Yoda"]
    tool_messages = [m for m in outcome.history if m.role is Role.TOOL]
    assert "HTTP 500" in json.loads(tool_messages[0].content)["error"]
    assert tool_messages[1].content == "results for Yoda"


@pytest.mark.asyncio
async def test_handoff_without_edge_fails_immediately():
    a = ScriptedAgent("A", [handoff("B", "wants B")])
    b = ScriptedAgent("B", [Answer("never")])
    graph = HandoffGraph.start_with(a).add_agent(b)

    outcome = await Orchestrator(graph, ToolCatalog()).run("hello")

    assert outcome.status is RunStatus.FAILED
    assert isinstance(outcome.error, IllegalTransition)
    assert outcome.error.code == "illegal_transition"
    attempted, refusal = outcome.history[2:]
    assert [m.role for m in outcome.history[:2]] == [Role.SYSTEM, Role.USER]
    assert attempted.tool_call.name == "transfer_to_B"
    assert refusal.role is Role.TOOL
    assert refusal.tool_call_id == attempted.tool_call.id
    assert "illegal_transition" in json.loads(refusal.content)["error"]
    assert b.seen == []


@pytest.mark.asyncio
async def test_two_cycle_stops_after_exactly_max_depth_transitions():
    a = ScriptedAgent("A", [handoff("B")] * 10)
    b = ScriptedAgent("B", [handoff("A")] * 10)
    graph = HandoffGraph.start_with(a).add_agent(b).add_edge(a, b, "ping").add_edge(b, a, "pong")

    outcome = await Orchestrator(graph, ToolCatalog(), max_depth=6).run("loop forever")

    assert outcome.status is RunStatus.FAILED
    assert isinstance(outcome.error, DepthExceeded)
    assert outcome.error.depth == 6
    assert outcome.depth == 6
    transfers = [m for m in outcome.history if m.role is Role.TOOL and m.content.startswith("Transferred")]
    assert len(transfers) == 6
    assert "depth_exceeded" in json.loads(outcome.history[-1].content)["error"]
    assert len(a.seen) + len(b.seen) == 7


@pytest.mark.asyncio
async def test_self_loop_is_bounded():
    looper = ScriptedAgent("Looper", [handoff("Looper", "again")] * 20)
    graph = HandoffGraph.start_with(looper).add_edge(looper, looper, "retry")

    outcome = await Orchestrator(graph, ToolCatalog(), max_depth=4).run("go")

    assert isinstance(outcome.error, DepthExceeded)
    assert outcome.depth == 4


@pytest.mark.asyncio
async def test_tool_loop_is_bounded():
    agent = ScriptedAgent("Agent", [invoke("WookieTool", query="again")] * 20)
    outcome = await Orchestrator(
        HandoffGraph.start_with(agent), build_catalog(WookieTool=wookie), max_depth=5, completion_predicate=accept_text
    ).run("go")

    assert isinstance(outcome.error, DepthExceeded)
    assert len([m for m in outcome.history if m.role is Role.TOOL]) == 5


@pytest.mark.asyncio
async def test_tool_os_error_never_escapes():
    async def disk(path: str) -> str:
        raise OSError(28, "No space left on device")

    agent = ScriptedAgent("Agent", [invoke("DiskTool", path="/tmp/x"), Answer("could not save")])
    outcome = await Orchestrator(
        HandoffGraph.start_with(agent), build_catalog(DiskTool=disk), completion_predicate=accept_text
    ).run("save it")

    assert outcome.ok
    tool_message = outcome.history[-2]
    assert tool_message.role is Role.TOOL
    assert "No space left on device" in json.loads(tool_message.content)["error"]
    assert len(agent.seen) == 2


@pytest.mark.asyncio
async def test_history_only_grows():
    async def echo(text: str) -> str:
        return text

    supervisor = ScriptedAgent(
        "Supervisor", [handoff("Helper", "help"), invoke("Echo", text="x"), Answer(FINAL_STORY)]
    )
    helper = ScriptedAgent("Helper", [invoke("Echo", text="y"), Answer("helped")])
    graph = HandoffGraph.start_with(supervisor).add_agent(helper).add_edge(supervisor, helper, "help")

    outcome = await Orchestrator(graph, build_catalog(Echo=echo)).run("go")

    assert outcome.ok
    final = outcome.history
    snapshots = supervisor.seen + helper.seen
    for snapshot in snapshots:
        assert final[: len(snapshot)] == snapshot


@pytest.mark.asyncio
async def test_required_policy_violation_is_a_tagged_failure():
    catalog = build_catalog(WookieTool=wookie)
    agent = ChatCompletionAgent(
        name="PurchaseAgent",
        instructions="Look up purchases.",
        client=ScriptedCompletionClient([RawAction.text("no lookup"), RawAction.text("still no lookup")]),
        catalog=catalog,
        tools=["WookieTool"],
        policy=ToolChoicePolicy.required("WookieTool"),
        policy_retries=1,
    )
    outcome = await Orchestrator(HandoffGraph.start_with(agent), catalog).run("Ben Smith")

    assert outcome.status is RunStatus.FAILED
    assert isinstance(outcome.error, PolicyViolation)
    assert len(outcome.history) == 2


@pytest.mark.asyncio
async def test_malformed_final_payload_fails_the_run():
    agent = ScriptedAgent("Supervisor", [Answer("Here is your story, no JSON though.")])
    outcome = await Orchestrator(HandoffGraph.start_with(agent), ToolCatalog()).run("Ben Smith")

    assert isinstance(outcome.error, MalformedTerminalPayload)
    assert outcome.history[-1].content == "Here is your story, no JSON though."


@pytest.mark.asyncio
async def test_unknown_tool_at_runtime_fails_the_run():
    agent = ScriptedAgent("Agent", [invoke("Missing")])
    outcome = await Orchestrator(HandoffGraph.start_with(agent), ToolCatalog()).run("go")

    assert isinstance(outcome.error, UnknownTool)


@pytest.mark.asyncio
async def test_sub_agent_answer_can_end_the_run_without_hand_back():
    supervisor = ScriptedAgent("Supervisor", [handoff("Writer", "write it")])
    writer = ScriptedAgent("Writer", [Answer(FINAL_STORY)])
    graph = HandoffGraph.start_with(supervisor).add_agent(writer).add_edge(supervisor, writer, "write")

    outcome = await Orchestrator(graph, ToolCatalog(), return_to_entry=False).run("Ben Smith")

    assert outcome.ok
    assert outcome.result.title == "The Sage of Dagobah"
    assert len(supervisor.seen) == 1


@pytest.mark.asyncio
async def test_deadline_cancels_in_flight_tool_without_partial_history():
    async def slow(query: str) -> str:
        await asyncio.sleep(10)
        return "too late"

    agent = ScriptedAgent("Agent", [invoke("SlowTool", query="Yoda")])
    orchestrator = Orchestrator(HandoffGraph.start_with(agent), build_catalog(SlowTool=slow), timeout_seconds=0.05)

    outcome = await orchestrator.run("go")

    assert outcome.status is RunStatus.FAILED
    assert isinstance(outcome.error, RunTimeout)
    assert outcome.error.code == "timeout"
    assert [m.role for m in outcome.history] == [Role.SYSTEM, Role.USER]


@pytest.mark.asyncio
async def test_concurrent_runs_share_graph_and_catalog_only():
    def story_for(history):
        name = history[-1].content
        return Answer(json.dumps({"title": f"Tale of {name}", "story": f"{name} met Yoda."}))

    agent = ScriptedAgent("Supervisor", [story_for, story_for])
    orchestrator = Orchestrator(HandoffGraph.start_with(agent), ToolCatalog())

    first, second = await asyncio.gather(orchestrator.run("Ben Smith"), orchestrator.run("Leia Jones"))

    assert first.result.title == "Tale of Ben Smith"
    assert second.result.title == "Tale of Leia Jones"
    assert all(len(o.history) == 3 for o in (first, second))


@pytest.mark.asyncio
async def test_chat_turns_continue_one_history():
    agent = ScriptedAgent("Copilot", [Answer("General Kenobi!"), Answer("Yoda is 900 years old.")])
    orchestrator = Orchestrator(HandoffGraph.start_with(agent), ToolCatalog(), completion_predicate=accept_text)
    history = orchestrator.new_history()

    await orchestrator.run("Hello there", history=history)
    outcome = await orchestrator.run("How old is Yoda?", history=history)

    assert outcome.text == "Yoda is 900 years old."
    assert [m.content for m in history][1:] == [
        "Hello there",
        "General Kenobi!",
        "How old is Yoda?",
        "Yoda is 900 years old.",
    ]


def assert_tool_calls_answered(messages):
    wire = [to_wire(m) for m in messages]
    for i, message in enumerate(wire):
        for call in message.get("tool_calls") or ():
            replies = {m.get("tool_call_id") for m in wire[i + 1 :] if m["role"] == "tool"}
            assert call["id"] in replies, f"{call['function']['name']} has no tool reply"
            assert wire[i + 1]["role"] == "tool"


@pytest.mark.asyncio
async def test_chat_continues_after_refused_handoff():
    client = ScriptedCompletionClient(
        [RawAction.call("transfer_to_Ghost", {"reason": "boo"}), RawAction.text("General Kenobi!")]
    )
    copilot = ChatCompletionAgent(name="Copilot", instructions="Chat.", client=client)
    orchestrator = Orchestrator(HandoffGraph.start_with(copilot), ToolCatalog(), completion_predicate=accept_text)
    history = orchestrator.new_history()

    failed = await orchestrator.run("Hello", history=history)
    outcome = await orchestrator.run("Hello there", history=history)

    assert isinstance(failed.error, IllegalTransition)
    assert outcome.text == "General Kenobi!"
    assert_tool_calls_answered(client.calls[1].history)
    assert_tool_calls_answered(history.all())


@pytest.mark.asyncio
async def test_depth_refusal_on_handoff_is_answered():
    looper = ScriptedAgent("Looper", [handoff("Looper")] * 5)
    graph = HandoffGraph.start_with(looper).add_edge(looper, looper, "again")

    outcome = await Orchestrator(graph, ToolCatalog(), max_depth=2).run("go")

    assert isinstance(outcome.error, DepthExceeded)
    assert_tool_calls_answered(outcome.history)


class StalledAgent(Agent):
    async def step(self, history, handoffs=(), sub_turn=0):
        await asyncio.sleep(10)
        return Answer("too late")


@pytest.mark.asyncio
async def test_deadline_cancels_stalled_completion():
    orchestrator = Orchestrator(HandoffGraph.start_with(StalledAgent("Copilot")), ToolCatalog(), timeout_seconds=0.05)
    history = orchestrator.new_history()

    outcome = await orchestrator.run("Hello there", history=history)

    assert outcome.status is RunStatus.FAILED
    assert isinstance(outcome.error, RunTimeout)
    assert [m.role for m in history] == [Role.SYSTEM, Role.USER]
    assert outcome.history == history.all()
