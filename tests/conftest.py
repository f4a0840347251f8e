from __future__ import annotations

import pytest

from mcpchat.services.mcp import ConnectionRegistry
from helpers import MATH_SCHEMAS, FakeServerFarm, FakeToolServer, explode


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def farm() -> FakeServerFarm:
    farm = FakeServerFarm()
    farm.add(
        "math-server",
        FakeToolServer(
            {
                "add": lambda args: args["a"] + args["b"],
                "multiply": lambda args: args["a"] * args["b"],
            },
            descriptions={"add": "Add two numbers"},
            schemas=MATH_SCHEMAS,
        ),
    )
    farm.add(
        "echo-server",
        FakeToolServer({"echo": lambda args: args.get("text", "")}, descriptions={"echo": "Echo"}),
    )
    farm.add("broken-server", FakeToolServer({"explode": explode}))
    return farm


@pytest.fixture
def registry(farm: FakeServerFarm) -> ConnectionRegistry:
    return ConnectionRegistry(session_factory=farm, handshake_timeout=2.0, close_timeout=0.5)
