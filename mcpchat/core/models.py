"""Core data models shared across the connection manager and the tool loop."""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum, auto
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple


class ConnectionState(Enum):
    """Lifecycle states for a tool-server connection owned by the registry."""

    CONNECTING = auto()
    READY = auto()
    CLOSING = auto()
    CLOSED = auto()
    FAILED = auto()


class Role(str, Enum):
    """Conversation roles understood by the model endpoint."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class ServerConfig:
    """How to launch one tool server process."""

    command: str
    args: Tuple[str, ...] = ()
    env: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "args", tuple(self.args))
        object.__setattr__(self, "env", MappingProxyType(dict(self.env)))

    def merged_env(self, base: Mapping[str, str]) -> Dict[str, str]:
        """Overlay this server's variables on ``base``; server keys win."""
        return {**base, **self.env}


@dataclass(frozen=True, slots=True)
class ToolDescriptor:
    """A tool advertised by a connected server."""

    name: str
    input_schema: Dict[str, Any]
    server_name: str
    description: Optional[str] = None

    @classmethod
    def from_mcp(cls, tool: Any, server_name: str) -> "ToolDescriptor":
        schema = getattr(tool, "inputSchema", None)
        if schema is None:
            schema = getattr(tool, "input_schema", None)
        return cls(
            name=tool.name,
            description=getattr(tool, "description", None),
            input_schema=dict(schema or {}),
            server_name=server_name,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
            "serverName": self.server_name,
        }


@dataclass(slots=True)
class ToolCall:
    """A tool request parsed out of one model reply."""

    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ConversationTurn:
    """One message in the working conversation."""

    role: Role
    content: str

    def to_message(self) -> Dict[str, str]:
        return {"role": self.role.value, "content": self.content}


@dataclass(frozen=True, slots=True)
class ToolResult:
    """Text produced by one successful tool execution."""

    tool_name: str
    result_text: str

    def to_dict(self) -> Dict[str, str]:
        return {"tool": self.tool_name, "result": self.result_text}


@dataclass(slots=True)
class ToolLoopResult:
    """Outcome of one orchestrator run."""

    final_text: str
    tool_results: List[ToolResult] = field(default_factory=list)
    iterations: int = 0


@dataclass(frozen=True, slots=True)
class TextPart:
    """Content part carrying plain text."""

    text: str

    def render(self) -> str:
        return self.text


@dataclass(frozen=True, slots=True)
class OpaquePart:
    """Content part of a kind we do not interpret (images, resources, ...)."""

    payload: Any

    def render(self) -> str:
        return json.dumps(self.payload, default=str)


ContentPart = TextPart | OpaquePart
