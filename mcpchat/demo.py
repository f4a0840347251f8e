"""CLI demonstration of a tool-using conversation against MCP servers.

Usage:
    python -m mcpchat.demo --servers servers.json "What is 17 * 23?"

``servers.json`` uses the usual ``{"mcpServers": {name: {command, args, env}}}``
shape. Without ``--servers`` the bundled calculator server is started.
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import NoReturn, Optional, Sequence

from mcpchat.config import Config, load_server_bundle
from mcpchat.core.errors import ServerConnectionError
from mcpchat.core.models import ServerConfig
from mcpchat.runtime import build_runtime

CALCULATOR = ServerConfig(command=sys.executable, args=("-m", "mcpchat.servers.calculator"))


async def main(question: str, servers_path: Optional[str] = None) -> int:
    config = Config.from_env()
    runtime = build_runtime(config)
    if runtime.orchestrator is None:
        print("No language model configured; set LLM_API_KEY or AZURE_OPENAI_KEY.", file=sys.stderr)
        return 2

    if servers_path:
        servers = load_server_bundle(servers_path).server_configs()
    else:
        servers = {"calculator": CALCULATOR}

    try:
        for name, server in servers.items():
            try:
                tools = await runtime.connect(name, server)
            except ServerConnectionError as exc:
                print(f"Failed to connect to {name}: {exc.cause}", file=sys.stderr)
                return 1
            print(f"Connected {name}: {', '.join(tool.name for tool in tools) or 'no tools'}")

        result = await runtime.run_tool_loop([], question)
        for tool_result in result.tool_results:
            print(f"[{tool_result.tool_name}] {tool_result.result_text}")
        print(result.final_text)
        return 0
    finally:
        await runtime.shutdown()


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Ask a question with MCP tools available.")
    parser.add_argument("question", help="User message to send")
    parser.add_argument("--servers", help="Path to an mcpServers JSON bundle")
    return parser.parse_args(argv)


def run(argv: Optional[Sequence[str]] = None) -> NoReturn:
    args = parse_args(argv)
    logging.basicConfig(level=Config.from_env().log_level, format="%(levelname)s: %(message)s")
    sys.exit(asyncio.run(main(args.question, args.servers)))


if __name__ == "__main__":
    run()
