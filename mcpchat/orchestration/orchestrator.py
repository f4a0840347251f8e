"""Bounded tool-use loop alternating model inference and tool execution."""
from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from mcpchat.core.errors import ServerNotConnected, ToolExecutionError, UnknownTool
from mcpchat.core.models import (
    ConversationTurn,
    Role,
    ToolCall,
    ToolDescriptor,
    ToolLoopResult,
    ToolResult,
)
from mcpchat.orchestration.protocol import build_instruction, parse_tool_call
from mcpchat.services.llm_pool import ChatModel
from mcpchat.services.router import ToolRouter

logger = logging.getLogger(__name__)

MAX_TOOL_ITERATIONS = 5


class ToolUseOrchestrator:
    """Drive the model through up to ``max_iterations`` tool round-trips.

    Unknown tools and failing tools are reported back to the model as a new
    user turn so it can recover; only a failing model call ends a run early.
    """

    def __init__(
        self,
        *,
        model: ChatModel,
        router: ToolRouter,
        max_iterations: int = MAX_TOOL_ITERATIONS,
    ) -> None:
        if max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        self._model = model
        self._router = router
        self.max_iterations = max_iterations

    async def run(
        self,
        history: Sequence[ConversationTurn],
        message: str,
        tools: Sequence[ToolDescriptor],
    ) -> ToolLoopResult:
        turns: List[ConversationTurn] = [
            ConversationTurn(Role.SYSTEM, build_instruction(tools)),
            *history,
            ConversationTurn(Role.USER, message),
        ]
        result = ToolLoopResult(final_text="")

        while result.iterations < self.max_iterations:
            result.iterations += 1
            response = await self._model.complete(list(turns))
            result.final_text = response

            tool_call = parse_tool_call(response)
            if tool_call is None:
                break

            turns.append(ConversationTurn(Role.ASSISTANT, response))
            turns.append(ConversationTurn(Role.USER, await self._execute(tool_call, tools, result)))

        return result

    async def _execute(
        self,
        tool_call: ToolCall,
        tools: Sequence[ToolDescriptor],
        result: ToolLoopResult,
    ) -> str:
        """Run one tool call and return the text of the follow-up user turn."""
        tool = _resolve(tool_call.name, tools)
        if tool is None:
            error = UnknownTool(tool_call.name, (t.name for t in tools))
            logger.warning(f"Model requested unknown tool {tool_call.name!r}")
            return str(error)

        logger.info(f"Calling tool {tool.name} on {tool.server_name}")
        try:
            output = await self._router.call_tool(tool.server_name, tool.name, tool_call.arguments)
        except (ToolExecutionError, ServerNotConnected) as exc:
            logger.warning(f"Tool {tool.name} failed: {exc}")
            return f"Tool error for {tool.name}: {exc}"

        result.tool_results.append(ToolResult(tool_name=tool.name, result_text=output))
        return f"Tool result for {tool.name}:\n{output}"


def _resolve(name: str, tools: Sequence[ToolDescriptor]) -> Optional[ToolDescriptor]:
    return next((tool for tool in tools if tool.name == name), None)
