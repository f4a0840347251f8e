"""Chat endpoints running the tool-use loop against connected servers."""
from __future__ import annotations

import logging
from typing import AsyncIterator, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from mcpchat.core.models import ConversationTurn, Role
from mcpchat.orchestration.orchestrator import ToolUseOrchestrator
from mcpchat.orchestration.protocol import build_instruction
from mcpchat.services.llm_pool import ChatModel
from mcpchat.services.mcp import ConnectionRegistry
from mcpchat.runtime import get_model, get_orchestrator, get_registry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["chat"])


class TurnModel(BaseModel):
    role: Role
    content: str

    def to_turn(self) -> ConversationTurn:
        return ConversationTurn(role=self.role, content=self.content)


class ChatRequest(BaseModel):
    message: str = Field(..., min_length=1, description="New user message")
    history: List[TurnModel] = Field(
        default_factory=list,
        description="Prior conversation turns, oldest first",
    )

    def turns(self) -> List[ConversationTurn]:
        return [turn.to_turn() for turn in self.history]


class ToolResultModel(BaseModel):
    tool: str
    result: str


class ChatResponse(BaseModel):
    response: str
    tool_results: Optional[List[ToolResultModel]] = None
    iterations: int


@router.post("", response_model=ChatResponse)
async def chat(
    request: ChatRequest,
    orchestrator: ToolUseOrchestrator = Depends(get_orchestrator),
    registry: ConnectionRegistry = Depends(get_registry),
) -> ChatResponse:
    """Answer a message, letting the model call any currently connected tool."""
    try:
        result = await orchestrator.run(request.turns(), request.message, registry.all_tools())
    except Exception as exc:  # noqa: BLE001
        logger.exception("Chat error")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to process chat",
        ) from exc

    return ChatResponse(
        response=result.final_text,
        tool_results=[ToolResultModel(**r.to_dict()) for r in result.tool_results] or None,
        iterations=result.iterations,
    )


@router.post("/stream")
async def chat_stream(
    request: ChatRequest,
    model: ChatModel = Depends(get_model),
) -> StreamingResponse:
    """Stream a plain completion without tools."""
    turns = [
        ConversationTurn(Role.SYSTEM, build_instruction([])),
        *request.turns(),
        ConversationTurn(Role.USER, request.message),
    ]

    async def fragments() -> AsyncIterator[str]:
        async for fragment in model.stream(turns):
            yield fragment

    return StreamingResponse(fragments(), media_type="text/plain")
