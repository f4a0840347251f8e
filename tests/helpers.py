"""In-process stand-ins for tool server processes and chat models."""
from __future__ import annotations

import asyncio
import inspect
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Sequence

from mcp import types

from mcpchat.core.models import ConversationTurn, ServerConfig

class FakeToolServer:
    """Behaviour of one simulated tool server process."""

    def __init__(
        self,
        handlers: Dict[str, Callable[[Dict[str, Any]], Any]],
        *,
        descriptions: Optional[Dict[str, str]] = None,
        schemas: Optional[Dict[str, Dict[str, Any]]] = None,
        handshake_error: Optional[Exception] = None,
        close_error: Optional[Exception] = None,
        hang_on_close: bool = False,
        handshake_delay: float = 0.0,
    ) -> None:
        self.handlers = handlers
        self.descriptions = descriptions or {}
        self.schemas = schemas or {}
        self.handshake_error = handshake_error
        self.close_error = close_error
        self.hang_on_close = hang_on_close
        self.handshake_delay = handshake_delay
        self.calls: List[tuple[str, Dict[str, Any]]] = []
        self.crashed = False
        self._host: Optional[asyncio.Task[Any]] = None

    def crash(self) -> None:
        """Simulate the process dying while its session is open."""
        self.crashed = True
        if self._host is not None:
            self._host.cancel()

    def tool_listing(self) -> types.ListToolsResult:
        return types.ListToolsResult(
            tools=[
                types.Tool(
                    name=name,
                    description=self.descriptions.get(name),
                    inputSchema=self.schemas.get(name, {"type": "object", "properties": {}}),
                )
                for name in self.handlers
            ]
        )


class FakeSession:
    def __init__(self, server: FakeToolServer, config: ServerConfig) -> None:
        self.server = server
        self.config = config

    async def initialize(self) -> None:
        if self.server.handshake_delay:
            await asyncio.sleep(self.server.handshake_delay)
        if self.server.handshake_error is not None:
            raise self.server.handshake_error

    async def list_tools(self) -> types.ListToolsResult:
        return self.server.tool_listing()

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> Any:
        self.server.calls.append((name, arguments))
        value = self.server.handlers[name](arguments)
        if inspect.isawaitable(value):
            value = await value
        if isinstance(value, types.CallToolResult):
            return value
        return types.CallToolResult(content=[types.TextContent(type="text", text=str(value))])


class FakeServerFarm:
    """Session factory standing in for ``open_stdio_session``.

    ``config.command`` selects the simulated server; ``live`` counts processes
    that have been spawned and not yet torn down.
    """

    def __init__(self) -> None:
        self.servers: Dict[str, FakeToolServer] = {}
        self.spawned: List[ServerConfig] = []
        self.live = 0

    def add(self, command: str, server: FakeToolServer) -> FakeToolServer:
        self.servers[command] = server
        return server

    @asynccontextmanager
    async def __call__(self, config: ServerConfig) -> AsyncIterator[FakeSession]:
        server = self.servers.get(config.command)
        if server is None:
            raise FileNotFoundError(f"No such command: {config.command}")
        await asyncio.sleep(0)
        self.spawned.append(config)
        self.live += 1
        server._host = asyncio.current_task()
        try:
            yield FakeSession(server, config)
        finally:
            self.live -= 1
            server._host = None
            if server.crashed:
                raise ConnectionResetError("server process exited")
            if server.hang_on_close:
                await asyncio.sleep(3600)
            if server.close_error is not None:
                raise server.close_error


class ScriptedModel:
    """Chat model returning canned replies; the last reply repeats forever."""

    def __init__(self, replies: Sequence[Any], fragments: Sequence[str] = ()) -> None:
        self._replies = list(replies)
        self._fragments = list(fragments)
        self.calls: List[List[ConversationTurn]] = []

    async def complete(self, turns: Sequence[ConversationTurn]) -> str:
        self.calls.append(list(turns))
        reply = self._replies[min(len(self.calls), len(self._replies)) - 1]
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def stream(self, turns: Sequence[ConversationTurn]) -> AsyncIterator[str]:
        self.calls.append(list(turns))
        for fragment in self._fragments:
            yield fragment


MATH_SCHEMAS = {
    "add": {
        "type": "object",
        "properties": {"a": {"type": "number"}, "b": {"type": "number"}},
        "required": ["a", "b"],
    },
    "multiply": {
        "type": "object",
        "properties": {"a": {"type": "number"}, "b": {"type": "number"}},
    },
}


def explode(arguments: Dict[str, Any]) -> Any:
    raise RuntimeError("disk on fire")


MATH = ServerConfig(command="math-server")
ECHO = ServerConfig(command="echo-server")
BROKEN = ServerConfig(command="broken-server")
