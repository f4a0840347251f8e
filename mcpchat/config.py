"""Configuration management for the tool-chat service."""
from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, Field

from mcpchat.core.models import ServerConfig


@dataclass(frozen=True)
class OpenAIConfig:
    """OpenAI-compatible endpoint configuration (Cerebras by default)."""

    api_key: str
    base_url: str = "https://api.cerebras.ai/v1"
    model: str = "llama-3.3-70b"
    max_concurrent: int = 50
    timeout: float = 120.0


@dataclass(frozen=True)
class AzureOpenAIConfig:
    """Azure OpenAI service configuration."""

    api_key: str
    endpoint: str
    api_version: str = "2024-02-15-preview"
    deployment_name: str = "gpt-4"
    max_concurrent: int = 50
    timeout: float = 120.0


@dataclass(frozen=True)
class ToolLoopConfig:
    """Bounds applied to tool servers and the orchestrator loop."""

    max_iterations: int = 5
    tool_timeout: float = 60.0
    handshake_timeout: float = 30.0
    close_timeout: float = 5.0


@dataclass(frozen=True)
class Config:
    """Application configuration loaded from environment variables."""

    openai: Optional[OpenAIConfig] = None
    azure_openai: Optional[AzureOpenAIConfig] = None
    tool_loop: ToolLoopConfig = field(default_factory=ToolLoopConfig)
    environment: str = "development"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables."""
        openai_config = None
        api_key = os.getenv("LLM_API_KEY") or os.getenv("CEREBRAS_API_KEY")
        if api_key:
            openai_config = OpenAIConfig(
                api_key=api_key,
                base_url=os.getenv("LLM_BASE_URL", "https://api.cerebras.ai/v1"),
                model=os.getenv("LLM_MODEL", "llama-3.3-70b"),
                max_concurrent=int(os.getenv("LLM_MAX_CONCURRENT", "50")),
                timeout=float(os.getenv("LLM_TIMEOUT", "120")),
            )

        azure_config = None
        azure_key = os.getenv("AZURE_OPENAI_KEY")
        azure_endpoint = os.getenv("AZURE_OPENAI_ENDPOINT")
        if azure_key and azure_endpoint:
            azure_config = AzureOpenAIConfig(
                api_key=azure_key,
                endpoint=azure_endpoint,
                api_version=os.getenv("AZURE_OPENAI_API_VERSION", "2024-02-15-preview"),
                deployment_name=os.getenv("AZURE_OPENAI_DEPLOYMENT", "gpt-4"),
                max_concurrent=int(os.getenv("AZURE_OPENAI_MAX_CONCURRENT", "50")),
                timeout=float(os.getenv("AZURE_OPENAI_TIMEOUT", "120")),
            )

        tool_loop = ToolLoopConfig(
            max_iterations=int(os.getenv("MCP_MAX_TOOL_ITERATIONS", "5")),
            tool_timeout=float(os.getenv("MCP_TOOL_TIMEOUT", "60")),
            handshake_timeout=float(os.getenv("MCP_HANDSHAKE_TIMEOUT", "30")),
            close_timeout=float(os.getenv("MCP_CLOSE_TIMEOUT", "5")),
        )

        return cls(
            openai=openai_config,
            azure_openai=azure_config,
            tool_loop=tool_loop,
            environment=os.getenv("ENVIRONMENT", "development"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )


class McpServerConfigModel(BaseModel):
    """Wire shape of a single tool server entry."""

    command: str
    args: List[str] = Field(default_factory=list)
    env: Dict[str, str] = Field(default_factory=dict)

    def to_server_config(self) -> ServerConfig:
        return ServerConfig(command=self.command, args=tuple(self.args), env=self.env)


class McpConfigInput(BaseModel):
    """A named bundle of tool servers, as found in ``mcpServers`` files."""

    mcpServers: Dict[str, McpServerConfigModel]

    def server_configs(self) -> Dict[str, ServerConfig]:
        return {name: entry.to_server_config() for name, entry in self.mcpServers.items()}


def load_server_bundle(path: Union[str, Path]) -> McpConfigInput:
    """Read and validate an ``{"mcpServers": {...}}`` JSON file."""
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    return McpConfigInput.model_validate(raw)
