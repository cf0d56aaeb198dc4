from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from contextlib import AsyncExitStack
from typing import List, Optional, Sequence, Tuple

import httpx
from openai import AsyncAzureOpenAI, AsyncOpenAI

from holocron.agents.chat_agent import ChatCompletionAgent
from holocron.memory.artifacts import ArtifactsStore
from holocron.schemas.actions import ToolChoicePolicy
from holocron.schemas.results import accept_text, parse_story_result
from holocron.telemetry.logging import setup_logging
from holocron.tools.base import ToolProvider
from holocron.tools.catalog import ToolCatalog
from holocron.tools.mcp_provider import McpToolProvider
from holocron.tools.starwars import build_starwars_provider
from holocron.utils.llm_clients import CompletionClient, OpenAICompletionClient
from holocron.utils.settings import AgentConfig, AppConfig, LLMConfig, ToolsConfig, load_config
from holocron.workflows.handoff_graph import HandoffGraph
from holocron.workflows.orchestrator import Orchestrator

logger = logging.getLogger(__name__)


def build_openai_client(llm: LLMConfig) -> AsyncOpenAI:
    if llm.provider == "azure":
        return AsyncAzureOpenAI(api_key=llm.api_key, azure_endpoint=llm.endpoint, api_version=llm.api_version)
    return AsyncOpenAI(api_key=llm.api_key, base_url=llm.endpoint)


def build_policy(agent_config: AgentConfig) -> ToolChoicePolicy:
    if agent_config.policy == "required":
        return ToolChoicePolicy.required(agent_config.required_tool)
    if agent_config.policy == "none":
        return ToolChoicePolicy.none()
    return ToolChoicePolicy.auto()


def build_agent(
    name: str,
    agent_config: AgentConfig,
    config: AppConfig,
    client: CompletionClient,
    catalog: ToolCatalog,
) -> ChatCompletionAgent:
    return ChatCompletionAgent.from_prompt_file(
        agent_config.prompt_path,
        name=name,
        description=agent_config.description,
        client=client,
        catalog=catalog,
        tools=agent_config.tools,
        policy=build_policy(agent_config),
        policy_retries=config.workflow.policy_retries,
        content_policy_retries=config.workflow.content_policy_retries,
    )


def build_graph(config: AppConfig, client: CompletionClient, catalog: ToolCatalog) -> HandoffGraph:
    agents = {
        name: build_agent(name, agent_config, config, client, catalog)
        for name, agent_config in config.agents.items()
    }
    graph = HandoffGraph.start_with(agents[config.handoffs.entry])
    for agent in agents.values():
        graph.add_agent(agent)
    for edge in config.handoffs.edges:
        graph.add_edge(edge.source, edge.target, edge.rationale)
    return graph


async def connect_mcp_servers(config: ToolsConfig, stack: AsyncExitStack) -> List[McpToolProvider]:
    """Start every configured MCP server; they stay connected until ``stack`` closes."""
    providers = []
    for server in config.mcp_servers:
        logger.info("Starting MCP server %s: %s %s", server.name, server.command, " ".join(server.arguments))
        provider = McpToolProvider(server.name, server.command, server.arguments, env=server.env)
        providers.append(await stack.enter_async_context(provider))
    return providers


def build_runtime(
    config: AppConfig,
    client: Optional[CompletionClient] = None,
    image_client: Optional[AsyncOpenAI] = None,
    providers: Sequence[ToolProvider] = (),
) -> Tuple[CompletionClient, ToolCatalog]:
    """Completion client and tool catalog shared by every agent of a process."""
    if client is None:
        openai_client = build_openai_client(config.llm)
        image_client = image_client or openai_client
        client = OpenAICompletionClient(
            model=config.llm.model,
            client=openai_client,
            temperature=config.llm.temperature,
        )
    sources: List[ToolProvider] = []
    if config.tools.local:
        sources.append(build_starwars_provider(config.tools, image_client=image_client))
    sources.extend(providers)
    return client, ToolCatalog(sources)


def build_orchestrator(
    config: AppConfig,
    client: Optional[CompletionClient] = None,
    providers: Sequence[ToolProvider] = (),
) -> Orchestrator:
    client, catalog = build_runtime(config, client, providers=providers)
    return Orchestrator(
        graph=build_graph(config, client, catalog),
        catalog=catalog,
        max_depth=config.workflow.max_depth,
        timeout_seconds=config.workflow.timeout_seconds,
        completion_predicate=parse_story_result,
        return_to_entry=config.workflow.return_to_entry,
        system_prompt=config.workflow.system_prompt,
    )


def build_chat_orchestrator(
    config: AppConfig,
    client: Optional[CompletionClient] = None,
    providers: Sequence[ToolProvider] = (),
) -> Orchestrator:
    if config.chat is None:
        raise SystemExit("No chat agent configured (missing 'chat' section).")
    client, catalog = build_runtime(config, client, providers=providers)
    tools = config.chat.agent.tools or catalog.names()
    chat_config = config.chat.agent.model_copy(update={"tools": tools})
    copilot = build_agent(config.chat.name, chat_config, config, client, catalog)
    return Orchestrator(
        graph=HandoffGraph.start_with(copilot),
        catalog=catalog,
        max_depth=config.workflow.max_depth,
        timeout_seconds=config.workflow.timeout_seconds,
        completion_predicate=accept_text,
        system_prompt=config.workflow.system_prompt,
    )


async def run_story(config: AppConfig, customer: str) -> int:
    async with AsyncExitStack() as stack:
        orchestrator = build_orchestrator(config, providers=await connect_mcp_servers(config.tools, stack))
        logger.info("Creating a story for %s", customer)
        outcome = await orchestrator.run(customer)
    if not outcome.ok:
        print(f"Story generation failed ({outcome.error.code}): {outcome.error.message}", file=sys.stderr)
        return 1

    try:
        saved = await ArtifactsStore(config.output.directory).save_story(outcome.result)
    except httpx.HTTPError as exc:
        print(f"Could not download the story image: {exc}", file=sys.stderr)
        return 1
    image = f" with image at {saved.image_path}" if saved.image_path else ""
    print(f"Story '{outcome.result.title}' created successfully{image} and saved to {saved.story_path}")
    return 0


async def run_chat(config: AppConfig) -> int:
    async with AsyncExitStack() as stack:
        orchestrator = build_chat_orchestrator(config, providers=await connect_mcp_servers(config.tools, stack))
        history = orchestrator.new_history()
        while True:
            try:
                user_input = input("User > ")
            except EOFError:
                break
            if not user_input.strip():
                break
            outcome = await orchestrator.run(user_input, history=history)
            if outcome.ok:
                print(f"Assistant > {outcome.text}")
            else:
                print(f"Assistant failed ({outcome.error.code}): {outcome.error.message}", file=sys.stderr)
    return 0


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Star Wars figurine store copilot.")
    parser.add_argument("--env", default="base", help="Config environment (base, dev, prod, ...).")
    parser.add_argument("--config-dir", default="configs", help="Directory holding base.yaml and overlays.")
    commands = parser.add_subparsers(dest="command", required=True)
    story = commands.add_parser("story", help="Write a personalised story for a customer.")
    story.add_argument("--customer", help="Customer name; prompted for when omitted.")
    commands.add_parser("chat", help="Chat with the copilot.")
    args = parser.parse_args(argv)

    config = load_config(args.env, args.config_dir)
    setup_logging(config.logging.level)

    if args.command == "story":
        customer = args.customer or input("Which customer would you like to create a story for? (e.g., 'Ben Smith') ")
        code = asyncio.run(run_story(config, customer.strip()))
    else:
        code = asyncio.run(run_chat(config))
    sys.exit(code)


if __name__ == "__main__":
    main()
