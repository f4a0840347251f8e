"""End-to-end checks against a real stdio MCP server subprocess."""
from __future__ import annotations

import sys

import pytest

from mcpchat.core.errors import ServerConnectionError, ToolExecutionError
from mcpchat.core.models import ServerConfig
from mcpchat.orchestration.orchestrator import ToolUseOrchestrator
from mcpchat.services.mcp import ConnectionRegistry
from mcpchat.services.router import ToolRouter
from helpers import ScriptedModel

CALCULATOR = ServerConfig(
    command=sys.executable,
    args=("-m", "mcpchat.servers.calculator"),
    env={"CALCULATOR_GREETING": "hello from env"},
)


@pytest.mark.anyio
async def test_calculator_round_trip() -> None:
    registry = ConnectionRegistry(handshake_timeout=60.0, close_timeout=10.0)
    try:
        tools = await registry.connect("calc", CALCULATOR)
        assert {"add", "multiply", "divide", "getenv"} <= {tool.name for tool in tools}
        add = next(tool for tool in tools if tool.name == "add")
        assert set(add.input_schema["properties"]) == {"a", "b"}

        router = ToolRouter(registry, timeout=30.0)
        assert await router.call_tool("calc", "add", {"a": 2, "b": 2}) == "4"
        assert await router.call_tool("calc", "getenv", {"key": "CALCULATOR_GREETING"}) == "hello from env"

        with pytest.raises(ToolExecutionError, match="division by zero"):
            await router.call_tool("calc", "divide", {"a": 1, "b": 0})

        model = ScriptedModel(
            ['<tool_call>{"name": "multiply", "arguments": {"a": 17, "b": 23}}</tool_call>', "391"]
        )
        result = await ToolUseOrchestrator(model=model, router=router).run([], "17*23?", tools)
        assert result.final_text == "391"
        assert [r.result_text for r in result.tool_results] == ["391"]
    finally:
        await registry.disconnect_all()

    assert registry.connected_names() == []


@pytest.mark.anyio
async def test_missing_executable_fails_to_connect() -> None:
    registry = ConnectionRegistry(handshake_timeout=30.0)

    with pytest.raises(ServerConnectionError):
        await registry.connect("nope", ServerConfig(command="mcpchat-definitely-not-installed"))

    assert not registry.is_connected("nope")
