"""Tests for the model client pool and its chat-model adapter."""
from __future__ import annotations

import asyncio
from types import SimpleNamespace
from typing import Any, Dict, List

import pytest
from openai import AsyncAzureOpenAI, AsyncOpenAI

from mcpchat.config import AzureOpenAIConfig, OpenAIConfig
from mcpchat.core.models import ConversationTurn, Role
from mcpchat.services.llm_pool import LLMPool, PooledChatModel


class StubCompletions:
    def __init__(self, reply: str = "", fragments: List[str] | None = None) -> None:
        self.reply = reply
        self.fragments = fragments or []
        self.requests: List[Dict[str, Any]] = []

    async def create(self, **kwargs: Any) -> Any:
        self.requests.append(kwargs)
        if kwargs.get("stream"):
            return self._stream()
        message = SimpleNamespace(content=self.reply, role="assistant")
        return SimpleNamespace(choices=[SimpleNamespace(message=message, finish_reason="stop")])

    async def _stream(self):
        yield SimpleNamespace(choices=[])
        for fragment in self.fragments:
            yield SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=fragment))])
        yield SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=None))])


class StubClient:
    def __init__(self, completions: StubCompletions) -> None:
        self.chat = SimpleNamespace(completions=completions)


TURNS = [ConversationTurn(Role.SYSTEM, "be brief"), ConversationTurn(Role.USER, "2+2?")]


@pytest.mark.anyio
async def test_complete_sends_turns_as_messages() -> None:
    completions = StubCompletions(reply="4")
    pool = LLMPool()
    pool.register_client("stub", StubClient(completions))
    model = PooledChatModel(pool, "stub", model="llama-3.3-70b", temperature=0.2)

    assert await model.complete(TURNS) == "4"
    assert completions.requests == [
        {
            "model": "llama-3.3-70b",
            "messages": [
                {"role": "system", "content": "be brief"},
                {"role": "user", "content": "2+2?"},
            ],
            "temperature": 0.2,
        }
    ]


@pytest.mark.anyio
async def test_missing_content_becomes_empty_string() -> None:
    pool = LLMPool()
    pool.register_client("stub", StubClient(StubCompletions(reply=None)))  # type: ignore[arg-type]

    assert await PooledChatModel(pool, "stub", model="m").complete(TURNS) == ""


@pytest.mark.anyio
async def test_stream_yields_fragments_that_concatenate_to_completion() -> None:
    completions = StubCompletions(reply="The answer is 4.", fragments=["The ", "answer ", "is 4."])
    pool = LLMPool()
    pool.register_client("stub", StubClient(completions))
    model = PooledChatModel(pool, "stub", model="m")

    fragments = [fragment async for fragment in model.stream(TURNS)]

    assert fragments == ["The ", "answer ", "is 4."]
    assert "".join(fragments) == await model.complete(TURNS)
    assert completions.requests[0]["stream"] is True


@pytest.mark.anyio
async def test_unknown_model_is_rejected() -> None:
    pool = LLMPool()

    with pytest.raises(KeyError, match="not registered"):
        async with pool.acquire("missing"):
            pass


@pytest.mark.anyio
async def test_acquire_limits_concurrency() -> None:
    pool = LLMPool()
    pool.register_client("stub", object(), max_concurrent=1)
    active = 0
    peak = 0

    async def use() -> None:
        nonlocal active, peak
        async with pool.acquire("stub"):
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1

    await asyncio.gather(use(), use(), use())

    assert peak == 1


@pytest.mark.anyio
async def test_configured_clients_are_built_lazily() -> None:
    pool = LLMPool()
    pool.register_openai("cerebras", OpenAIConfig(api_key="test-key"))
    pool.register_azure_openai(
        "azure", AzureOpenAIConfig(api_key="test-key", endpoint="https://example.openai.azure.com")
    )

    assert "cerebras" in pool
    async with pool.acquire("cerebras") as client:
        assert isinstance(client, AsyncOpenAI)
        assert str(client.base_url).startswith("https://api.cerebras.ai/v1")
    async with pool.acquire("azure") as client:
        assert isinstance(client, AsyncAzureOpenAI)
