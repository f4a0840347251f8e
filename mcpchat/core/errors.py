"""Error taxonomy for the connection manager and the tool loop."""
from __future__ import annotations

from typing import Iterable


class ToolChatError(Exception):
    """Base class for errors raised by mcpchat."""


class ServerConnectionError(ToolChatError):
    """A tool server could not be spawned or failed its handshake."""

    def __init__(self, server_name: str, cause: object) -> None:
        self.server_name = server_name
        self.cause = cause
        super().__init__(f"Failed to connect to MCP server {server_name}: {_describe(cause)}")


class ServerNotConnected(ToolChatError):
    """No live connection is registered under the requested name."""

    def __init__(self, server_name: str) -> None:
        self.server_name = server_name
        super().__init__(f"MCP server not connected: {server_name}")


class ToolExecutionError(ToolChatError):
    """The remote tool failed, timed out, or the transport broke mid-call."""

    def __init__(self, tool_name: str, cause: object) -> None:
        self.tool_name = tool_name
        self.cause = cause
        super().__init__(f"Tool execution failed: {_describe(cause)}")


class UnknownTool(ToolChatError):
    """The model asked for a tool that no connected server advertises."""

    def __init__(self, tool_name: str, available: Iterable[str]) -> None:
        self.tool_name = tool_name
        self.available = list(available)
        super().__init__(
            f'Error: Tool "{tool_name}" not found. Available tools: {", ".join(self.available)}'
        )


class ToolCallParseError(ToolChatError):
    """A tool-call marker was found but its payload is unusable.

    Only raised inside the protocol adapter; ``parse_tool_call`` turns it into
    "no tool call".
    """


def _describe(cause: object) -> str:
    if isinstance(cause, BaseException):
        text = str(cause)
        return text or type(cause).__name__
    return str(cause) if cause else "Unknown error"
