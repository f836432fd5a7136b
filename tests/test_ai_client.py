"""Tests for the OpenAI-compatible AI client."""

from __future__ import annotations

from types import MappingProxyType
from typing import cast

import pytest

from openai import AsyncOpenAI

from canvasagent.ai.client import AIClient, ClientSettings
from tests.helpers import FakeOpenAI, completion


def _client(fake: FakeOpenAI, **overrides) -> AIClient:
    settings = ClientSettings(
        base_url="https://api.example.com/v1",
        api_key="sk-test",
        model="gpt-test",
        **overrides,
    )
    return AIClient(settings, client=cast(AsyncOpenAI, fake))


@pytest.mark.asyncio
async def test_create_chat_completion_builds_payload() -> None:
    fake = FakeOpenAI([completion("hello")])
    client = _client(fake, metadata={"app": "canvas"})
    tools = [{"type": "function", "function": {"name": "getCanvasState", "parameters": {}}}]

    result = await client.create_chat_completion(
        [{"role": "user", "content": "hi"}],
        tools=tools,
        tool_choice="auto",
        temperature=0.2,
        max_tokens=100,
    )

    assert result.choices[0].message.content == "hello"
    (payload,) = fake.completions.calls
    assert payload == {
        "model": "gpt-test",
        "messages": [{"role": "user", "content": "hi"}],
        "metadata": {"app": "canvas"},
        "tools": tools,
        "tool_choice": "auto",
        "temperature": 0.2,
        "max_tokens": 100,
    }


@pytest.mark.asyncio
async def test_tool_choice_only_sent_with_tools() -> None:
    fake = FakeOpenAI([completion("ok")])
    client = _client(fake)

    await client.create_chat_completion([{"role": "user", "content": "hi"}], tool_choice="auto", temperature=None)

    (payload,) = fake.completions.calls
    assert "tools" not in payload
    assert "tool_choice" not in payload
    assert "temperature" not in payload
    assert "metadata" not in payload


@pytest.mark.asyncio
async def test_runtime_metadata_overrides_settings() -> None:
    fake = FakeOpenAI([completion("ok")])
    client = _client(fake, metadata={"app": "canvas", "env": "dev"})

    await client.create_chat_completion([{"role": "user", "content": "hi"}], metadata={"env": "test"})

    assert fake.completions.calls[0]["metadata"] == {"app": "canvas", "env": "test"}


@pytest.mark.asyncio
async def test_requires_at_least_one_message() -> None:
    client = _client(FakeOpenAI())
    with pytest.raises(ValueError):
        await client.create_chat_completion([])


@pytest.mark.asyncio
async def test_read_only_mappings_are_copied_into_plain_dicts() -> None:
    fake = FakeOpenAI([completion("ok")])
    client = _client(fake)
    message = MappingProxyType({"role": "user", "content": "hi"})

    await client.create_chat_completion([message])

    (sent,) = fake.completions.calls[0]["messages"]
    assert type(sent) is dict
    assert sent == {"role": "user", "content": "hi"}


@pytest.mark.asyncio
@pytest.mark.parametrize("message", [7, "hello", None])
async def test_non_mapping_messages_are_rejected(message) -> None:
    fake = FakeOpenAI()
    client = _client(fake)

    with pytest.raises(TypeError, match="Messages must be mapping-like objects"):
        await client.create_chat_completion([message])
    assert fake.completions.calls == []


@pytest.mark.asyncio
async def test_aclose_closes_underlying_client() -> None:
    fake = FakeOpenAI()
    client = _client(fake)

    await client.aclose()

    assert fake.closed is True


def test_sdk_client_has_retries_disabled() -> None:
    client = AIClient(ClientSettings(base_url="https://api.example.com/v1", api_key="sk-test", model="gpt-test"))
    assert client._client.max_retries == 0
