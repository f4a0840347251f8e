"""Application runtime composition helpers."""
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

from fastapi import HTTPException, Request, status

from mcpchat.config import Config
from mcpchat.core.models import ConversationTurn, ServerConfig, ToolDescriptor, ToolLoopResult
from mcpchat.orchestration.orchestrator import ToolUseOrchestrator
from mcpchat.services.llm_pool import ChatModel, LLMPool, PooledChatModel
from mcpchat.services.mcp import ConnectionRegistry, SessionFactory, open_stdio_session
from mcpchat.services.router import ToolRouter

DEFAULT_MODEL_KEY = "default"


@dataclass
class Runtime:
    """Everything one host process needs to serve tool-using conversations.

    Created once at startup and torn down with :meth:`shutdown`; request
    handlers receive it by reference instead of reaching for globals.
    """

    config: Config
    registry: ConnectionRegistry
    router: ToolRouter
    model: Optional[ChatModel] = None
    orchestrator: Optional[ToolUseOrchestrator] = None

    async def connect(self, name: str, server: ServerConfig) -> List[ToolDescriptor]:
        return await self.registry.connect(name, server)

    async def disconnect(self, name: str) -> None:
        await self.registry.disconnect(name)

    def list_connected(self) -> List[str]:
        return self.registry.connected_names()

    async def run_tool_loop(
        self,
        history: Sequence[ConversationTurn],
        message: str,
        tools: Optional[Sequence[ToolDescriptor]] = None,
    ) -> ToolLoopResult:
        if self.orchestrator is None:
            raise RuntimeError("No language model configured")
        if tools is None:
            tools = self.registry.all_tools()
        return await self.orchestrator.run(history, message, tools)

    async def shutdown(self) -> None:
        await self.registry.disconnect_all()


def build_llm_pool(config: Config) -> tuple[LLMPool, Optional[ChatModel]]:
    pool = LLMPool()

    # Prefer the OpenAI-compatible endpoint when both are configured
    if config.openai:
        pool.register_openai(DEFAULT_MODEL_KEY, config.openai)
        return pool, PooledChatModel(pool, DEFAULT_MODEL_KEY, model=config.openai.model)
    if config.azure_openai:
        pool.register_azure_openai(DEFAULT_MODEL_KEY, config.azure_openai)
        return pool, PooledChatModel(
            pool, DEFAULT_MODEL_KEY, model=config.azure_openai.deployment_name
        )
    return pool, None


def build_runtime(
    config: Config,
    *,
    model: Optional[ChatModel] = None,
    session_factory: SessionFactory = open_stdio_session,
) -> Runtime:
    loop_config = config.tool_loop
    registry = ConnectionRegistry(
        session_factory=session_factory,
        handshake_timeout=loop_config.handshake_timeout,
        close_timeout=loop_config.close_timeout,
    )
    router = ToolRouter(registry, timeout=loop_config.tool_timeout)

    if model is None:
        _, model = build_llm_pool(config)

    orchestrator = None
    if model is not None:
        orchestrator = ToolUseOrchestrator(
            model=model,
            router=router,
            max_iterations=loop_config.max_iterations,
        )

    return Runtime(
        config=config,
        registry=registry,
        router=router,
        model=model,
        orchestrator=orchestrator,
    )


def get_runtime(request: Request) -> Runtime:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise RuntimeError("Runtime not initialized. Is the application lifespan running?")
    return runtime


def get_registry(request: Request) -> ConnectionRegistry:
    return get_runtime(request).registry


def get_orchestrator(request: Request) -> ToolUseOrchestrator:
    orchestrator = get_runtime(request).orchestrator
    if orchestrator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="No language model configured",
        )
    return orchestrator


def get_model(request: Request) -> ChatModel:
    model = get_runtime(request).model
    if model is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="No language model configured",
        )
    return model
