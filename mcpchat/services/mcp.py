"""Connection registry for stdio MCP tool servers."""
from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import Any, AsyncContextManager, AsyncIterator, Callable, Dict, List, Optional

from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client

from mcpchat.core.errors import ServerConnectionError, ServerNotConnected
from mcpchat.core.models import ConnectionState, ServerConfig, ToolDescriptor

logger = logging.getLogger(__name__)

SessionFactory = Callable[[ServerConfig], AsyncContextManager[Any]]


@asynccontextmanager
async def open_stdio_session(config: ServerConfig) -> AsyncIterator[ClientSession]:
    """Spawn the server process and open an MCP client session over its stdio."""
    params = StdioServerParameters(
        command=config.command,
        args=list(config.args),
        env=config.merged_env(os.environ),
    )
    async with stdio_client(params) as (read_stream, write_stream):
        async with ClientSession(read_stream, write_stream) as session:
            yield session


class ToolServerConnection:
    """One tool server process plus the session bound to it.

    A dedicated background task enters the transport and session contexts,
    performs the handshake, and holds them open until ``close`` is requested.
    Entering and exiting in the same task keeps the SDK's cancel scopes valid
    even when connect and disconnect are driven by different requests.
    """

    def __init__(
        self,
        name: str,
        config: ServerConfig,
        *,
        session_factory: SessionFactory = open_stdio_session,
    ) -> None:
        self.name = name
        self.config = config
        self.state = ConnectionState.CONNECTING
        self.tools: List[ToolDescriptor] = []
        self.last_error: Optional[BaseException] = None
        self._session_factory = session_factory
        self._session: Any = None
        self._runner: Optional[asyncio.Task[None]] = None
        self._stop_event = asyncio.Event()
        self._started_event = asyncio.Event()

    @property
    def is_ready(self) -> bool:
        return self.state is ConnectionState.READY and self._session is not None

    async def open(self, timeout: Optional[float] = None) -> List[ToolDescriptor]:
        """Start the server, handshake, and return its advertised tools."""
        if self._runner is not None:
            raise RuntimeError(f"Connection {self.name} was already opened")
        self._runner = asyncio.create_task(self._run_safe(), name=f"mcp-server:{self.name}")
        try:
            await asyncio.wait_for(self._started_event.wait(), timeout=timeout)
        except asyncio.TimeoutError as exc:
            self._runner.cancel()
            await asyncio.gather(self._runner, return_exceptions=True)
            self.state = ConnectionState.FAILED
            self.last_error = exc
            raise ServerConnectionError(self.name, f"handshake timed out after {timeout}s") from exc

        if self.state is not ConnectionState.READY:
            await asyncio.gather(self._runner, return_exceptions=True)
            self.state = ConnectionState.FAILED
            raise ServerConnectionError(self.name, self.last_error) from self.last_error
        return list(self.tools)

    async def close(self, timeout: Optional[float] = None) -> None:
        """Ask the runner to release the session and process, then wait for it."""
        runner = self._runner
        if runner is None:
            self.state = ConnectionState.CLOSED
            return
        if self.state is ConnectionState.READY:
            self.state = ConnectionState.CLOSING
        self._stop_event.set()
        done, _ = await asyncio.wait({runner}, timeout=timeout)
        if not done:
            logger.warning(f"Tool server {self.name} did not stop within {timeout}s, cancelling")
            runner.cancel()
            await asyncio.gather(runner, return_exceptions=True)
        self._runner = None
        self.state = ConnectionState.CLOSED

    async def call_tool(self, tool_name: str, arguments: Dict[str, Any]) -> Any:
        """Forward one ``tools/call`` request to the server."""
        session = self._session
        if session is None or self.state is not ConnectionState.READY:
            raise ServerNotConnected(self.name)
        return await session.call_tool(tool_name, arguments)

    async def _run_safe(self) -> None:
        try:
            async with self._session_factory(self.config) as session:
                await session.initialize()
                listing = await session.list_tools()
                self.tools = [ToolDescriptor.from_mcp(tool, self.name) for tool in listing.tools]
                self._session = session
                self.state = ConnectionState.READY
                self._started_event.set()
                await self._stop_event.wait()
                self._session = None
        except Exception as exc:  # noqa: BLE001
            if self.state is ConnectionState.CONNECTING:
                self.state = ConnectionState.FAILED
                self.last_error = exc
            elif self.state is ConnectionState.READY:
                self.last_error = exc
                logger.error(f"Tool server {self.name} exited unexpectedly: {exc}")
            else:
                logger.warning(f"Error while closing tool server {self.name}: {exc}")
        finally:
            self._session = None
            if self.state is ConnectionState.READY:
                # Transport ended without a close request.
                self.state = ConnectionState.CLOSED
            self._started_event.set()


class ConnectionRegistry:
    """Table of live tool-server connections keyed by server name.

    Mutations are serialized per name; reads never wait and only ever see
    connections that are READY. An entry whose process ended on its own stays
    in the table, hidden, until it is disconnected or replaced.
    """

    def __init__(
        self,
        *,
        session_factory: SessionFactory = open_stdio_session,
        handshake_timeout: Optional[float] = 30.0,
        close_timeout: Optional[float] = 5.0,
    ) -> None:
        self._connections: Dict[str, ToolServerConnection] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}
        self._session_factory = session_factory
        self._handshake_timeout = handshake_timeout
        self._close_timeout = close_timeout

    async def connect(self, name: str, config: ServerConfig) -> List[ToolDescriptor]:
        """Start a server under ``name``, replacing any existing connection."""
        async with self._lock_for(name):
            if name in self._connections:
                await self._disconnect_locked(name)

            connection = ToolServerConnection(name, config, session_factory=self._session_factory)
            try:
                tools = await connection.open(timeout=self._handshake_timeout)
            except ServerConnectionError as exc:
                logger.error(f"Failed to connect to MCP server {name}: {exc.cause}")
                raise

            self._connections[name] = connection
            logger.info(
                f"Connected to MCP server: {name} with {len(tools)} tools "
                f"{[tool.name for tool in tools]}"
            )
            return tools

    async def disconnect(self, name: str) -> None:
        """Close the connection registered under ``name``; absent names are a no-op."""
        async with self._lock_for(name):
            await self._disconnect_locked(name)

    async def disconnect_all(self) -> None:
        """Disconnect every server concurrently; one failure does not stop the rest."""
        names = list(self._connections)
        results = await asyncio.gather(
            *(self.disconnect(name) for name in names), return_exceptions=True
        )
        for name, result in zip(names, results):
            if isinstance(result, BaseException):
                logger.error(f"Error disconnecting from {name}: {result}")

    def get(self, name: str) -> Optional[ToolServerConnection]:
        return self._connections.get(name)

    def is_connected(self, name: str) -> bool:
        connection = self._connections.get(name)
        return connection is not None and connection.state is ConnectionState.READY

    def tools_for(self, name: str) -> List[ToolDescriptor]:
        if not self.is_connected(name):
            return []
        return list(self._connections[name].tools)

    def all_tools(self) -> List[ToolDescriptor]:
        return [tool for connection in self._live() for tool in connection.tools]

    def connected_names(self) -> List[str]:
        return [connection.name for connection in self._live()]

    def _live(self) -> List[ToolServerConnection]:
        return [
            connection
            for connection in list(self._connections.values())
            if connection.state is ConnectionState.READY
        ]

    async def _disconnect_locked(self, name: str) -> None:
        # Unregister first so the router can no longer resolve a closing connection.
        connection = self._connections.pop(name, None)
        if connection is None:
            return
        try:
            await connection.close(timeout=self._close_timeout)
        except Exception as exc:  # noqa: BLE001
            logger.error(f"Error disconnecting from {name}: {exc}")
        logger.info(f"Disconnected from MCP server: {name}")

    @asynccontextmanager
    async def _lock_for(self, name: str) -> AsyncIterator[None]:
        # Locks live only while some caller holds or waits on them.
        lock = self._locks.setdefault(name, asyncio.Lock())
        self._lock_users[name] = self._lock_users.get(name, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[name] -= 1
            if not self._lock_users[name]:
                del self._lock_users[name]
                del self._locks[name]
