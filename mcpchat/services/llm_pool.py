"""LLM client pool for shared model access with concurrency control."""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional, Protocol, Sequence

from openai import AsyncAzureOpenAI, AsyncOpenAI

from mcpchat.config import AzureOpenAIConfig, OpenAIConfig
from mcpchat.core.models import ConversationTurn


class ChatModel(Protocol):
    """What the orchestrator needs from a language model."""

    async def complete(self, turns: Sequence[ConversationTurn]) -> str:
        ...

    def stream(self, turns: Sequence[ConversationTurn]) -> AsyncIterator[str]:
        ...


class LLMPool:
    """Manages shared LLM clients with concurrency limiting."""

    def __init__(self) -> None:
        self._clients: Dict[str, Any] = {}
        self._semaphores: Dict[str, asyncio.Semaphore] = {}
        self._initialized: Dict[str, bool] = {}

    def register_openai(self, name: str, config: OpenAIConfig) -> None:
        """Register an OpenAI-compatible endpoint configuration."""
        self._register(name, config, config.max_concurrent, initialized=False)

    def register_azure_openai(self, name: str, config: AzureOpenAIConfig) -> None:
        """Register an Azure OpenAI model configuration."""
        self._register(name, config, config.max_concurrent, initialized=False)

    def register_client(self, name: str, client: Any, max_concurrent: int = 50) -> None:
        """Register an already constructed client exposing ``chat.completions.create``."""
        self._register(name, client, max_concurrent, initialized=True)

    def __contains__(self, name: str) -> bool:
        return name in self._clients

    @asynccontextmanager
    async def acquire(self, model_name: str) -> AsyncIterator[Any]:
        """Acquire access to a model client with concurrency control."""
        if model_name not in self._clients:
            raise KeyError(f"Model '{model_name}' not registered in LLM pool")

        semaphore = self._semaphores[model_name]
        await semaphore.acquire()

        try:
            # Lazy initialization on first use
            if not self._initialized[model_name]:
                self._initialize_client(model_name)

            yield self._clients[model_name]
        finally:
            semaphore.release()

    def _register(self, name: str, client: Any, max_concurrent: int, *, initialized: bool) -> None:
        self._clients[name] = client
        self._semaphores[name] = asyncio.Semaphore(max_concurrent)
        self._initialized[name] = initialized

    def _initialize_client(self, model_name: str) -> None:
        """Lazy initialization of the actual client."""
        config = self._clients[model_name]

        if isinstance(config, AzureOpenAIConfig):
            self._clients[model_name] = AsyncAzureOpenAI(
                api_key=config.api_key,
                api_version=config.api_version,
                azure_endpoint=config.endpoint,
                timeout=config.timeout,
            )
        elif isinstance(config, OpenAIConfig):
            self._clients[model_name] = AsyncOpenAI(
                api_key=config.api_key,
                base_url=config.base_url,
                timeout=config.timeout,
            )
        self._initialized[model_name] = True


class PooledChatModel:
    """``ChatModel`` backed by a chat-completions client from an ``LLMPool``."""

    def __init__(
        self,
        pool: LLMPool,
        pool_key: str,
        *,
        model: str,
        temperature: Optional[float] = None,
    ) -> None:
        self._pool = pool
        self._pool_key = pool_key
        self.model = model
        self.temperature = temperature

    async def complete(self, turns: Sequence[ConversationTurn]) -> str:
        async with self._pool.acquire(self._pool_key) as client:
            response = await client.chat.completions.create(**self._request(turns))
        if not response.choices:
            return ""
        return response.choices[0].message.content or ""

    async def stream(self, turns: Sequence[ConversationTurn]) -> AsyncIterator[str]:
        async with self._pool.acquire(self._pool_key) as client:
            chunks = await client.chat.completions.create(**self._request(turns), stream=True)
            async for chunk in chunks:
                if not chunk.choices:
                    continue
                content = chunk.choices[0].delta.content
                if content:
                    yield content

    def _request(self, turns: Sequence[ConversationTurn]) -> Dict[str, Any]:
        request: Dict[str, Any] = {
            "model": self.model,
            "messages": [turn.to_message() for turn in turns],
        }
        if self.temperature is not None:
            request["temperature"] = self.temperature
        return request
