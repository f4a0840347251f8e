"""
Calculator MCP tool server.

A small reference server used by the demo and the integration tests.
Runs as a subprocess and speaks MCP over stdin/stdout.

Launch:
    python -m mcpchat.servers.calculator
"""

import os

from mcp.server.fastmcp import FastMCP

mcp = FastMCP(name="calculator")


@mcp.tool(name="add", description="Add two integers.")
def add(a: int, b: int) -> int:
    return a + b


@mcp.tool(name="multiply", description="Multiply two integers.")
def multiply(a: int, b: int) -> int:
    return a * b


@mcp.tool(name="divide", description="Divide a by b.")
def divide(a: float, b: float) -> float:
    if b == 0:
        raise ValueError("division by zero")
    return a / b


@mcp.tool(name="getenv", description="Read an environment variable visible to this server.")
def getenv(key: str) -> str:
    return os.environ.get(key, "")


if __name__ == "__main__":
    mcp.run(transport="stdio")
