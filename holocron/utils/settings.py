from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

from omegaconf import OmegaConf
from pydantic import BaseModel, Field, model_validator


class LLMConfig(BaseModel):
    provider: Literal["openai", "azure"] = "openai"
    model: str
    temperature: Optional[float] = None
    endpoint: Optional[str] = None
    api_key: Optional[str] = None
    api_version: Optional[str] = None


class McpServerConfig(BaseModel):
    name: str
    command: str
    arguments: List[str] = Field(default_factory=list)
    env: Optional[Dict[str, str]] = None


class ToolsConfig(BaseModel):
    local: bool = True
    mcp_servers: List[McpServerConfig] = Field(default_factory=list)
    tavily_api_key: Optional[str] = None
    purchases_path: Optional[str] = None
    pinecone_api_key: Optional[str] = None
    pinecone_index_host: Optional[str] = None
    pinecone_namespace: str = "Star Wars"
    image_model: str = "dall-e-3"
    image_size: str = "1024x1024"
    image_content_policy_retries: int = 1
    character_descriptions: Dict[str, str] = Field(default_factory=dict)


class AgentConfig(BaseModel):
    prompt_path: str
    description: str = ""
    policy: Literal["none", "auto", "required"] = "auto"
    required_tool: Optional[str] = None
    tools: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _required_tool_is_bound(self) -> "AgentConfig":
        if self.policy == "required":
            if not self.required_tool:
                raise ValueError("policy 'required' needs required_tool")
            if self.required_tool not in self.tools:
                self.tools.append(self.required_tool)
        elif self.required_tool:
            raise ValueError(f"required_tool is only valid with policy 'required', not {self.policy!r}")
        return self


class HandoffEdgeConfig(BaseModel):
    source: str
    target: str
    rationale: str


class HandoffConfig(BaseModel):
    entry: str
    edges: List[HandoffEdgeConfig] = Field(default_factory=list)


class WorkflowConfig(BaseModel):
    max_depth: int = Field(default=40, ge=1)
    timeout_seconds: float = Field(default=300.0, gt=0)
    return_to_entry: bool = True
    policy_retries: int = Field(default=1, ge=0)
    content_policy_retries: int = Field(default=2, ge=0)
    system_prompt: str


class LoggingConfig(BaseModel):
    level: str = "INFO"


class OutputConfig(BaseModel):
    directory: str = "output"


class ChatConfig(BaseModel):
    agent: AgentConfig
    name: str = "StarWarsCopilot"


class AppConfig(BaseModel):
    llm: LLMConfig
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    agents: Dict[str, AgentConfig]
    handoffs: HandoffConfig
    workflow: WorkflowConfig
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)
    chat: Optional[ChatConfig] = None

    @model_validator(mode="after")
    def _handoffs_reference_agents(self) -> "AppConfig":
        names = set(self.agents)
        referenced = {self.handoffs.entry}
        for edge in self.handoffs.edges:
            referenced.update((edge.source, edge.target))
        unknown = sorted(referenced - names)
        if unknown:
            raise ValueError(f"handoffs reference undeclared agents: {unknown}")
        return self


def load_config(env: str = "base", config_dir: str | Path = "configs") -> AppConfig:
    """Load configs/base.yaml, merge configs/<env>.yaml over it, resolve ${oc.env:...}."""
    config_dir = Path(config_dir)
    merged = OmegaConf.load(config_dir / "base.yaml")
    if env != "base":
        override_path = config_dir / f"{env}.yaml"
        if override_path.exists():
            merged = OmegaConf.merge(merged, OmegaConf.load(override_path))
    data: Dict[str, Any] = OmegaConf.to_container(merged, resolve=True)
    return AppConfig.model_validate(data)
