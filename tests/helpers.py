"""Shared test helpers and stub classes.

Import from here instead of duplicating fakes in individual test files:

    from tests.helpers import FakeOpenAI, completion, make_object
"""

from __future__ import annotations

import json
from types import SimpleNamespace
from typing import Any, Iterable, Mapping, Sequence

import httpx
from openai import APIStatusError, RateLimitError

from canvasagent.ai.orchestration.types import OperationCall, ValidatedOperation
from canvasagent.ai.tools.schemas import PARAMETER_MODELS

DOCUMENT_ID = "doc-1"

_REQUEST = httpx.Request("POST", "https://api.example.com/v1/chat/completions")


def make_object(object_id: str, type: str = "rectangle", **fields: Any) -> dict[str, Any]:
    """Return a stored canvas object payload with sensible defaults."""

    payload: dict[str, Any] = {
        "id": object_id,
        "type": type,
        "x": 100,
        "y": 100,
        "width": 50,
        "height": 50,
        "color": "#3B82F6",
        "rotation": 0,
        "createdBy": "user-1",
        "timestamp": 1_000,
    }
    payload.update(fields)
    return payload


def tool_call(name: str, arguments: Mapping[str, Any] | str | None = None, call_id: str | None = None) -> SimpleNamespace:
    raw = arguments if isinstance(arguments, str) or arguments is None else json.dumps(dict(arguments))
    return SimpleNamespace(
        id=call_id or f"call_{name}",
        type="function",
        function=SimpleNamespace(name=name, arguments=raw),
    )


def completion(
    text: str | None = "",
    calls: Sequence[SimpleNamespace] = (),
    *,
    prompt_tokens: int = 10,
    completion_tokens: int = 5,
) -> SimpleNamespace:
    """Build an object shaped like ``openai.types.chat.ChatCompletion``."""

    message = SimpleNamespace(role="assistant", content=text, tool_calls=list(calls) or None)
    return SimpleNamespace(
        choices=[SimpleNamespace(index=0, message=message, finish_reason="tool_calls" if calls else "stop")],
        usage=SimpleNamespace(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens),
    )


def status_error(status: int, message: str = "upstream error") -> APIStatusError:
    response = httpx.Response(status, request=_REQUEST)
    if status == 429:
        return RateLimitError(message, response=response, body=None)
    return APIStatusError(message, response=response, body=None)


class FakeCompletions:
    """Replays queued completions or exceptions for ``chat.completions.create``."""

    def __init__(self, outcomes: Iterable[Any] = ()) -> None:
        self._outcomes = list(outcomes)
        self.calls: list[dict[str, Any]] = []

    def queue(self, *outcomes: Any) -> None:
        self._outcomes.extend(outcomes)

    async def create(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        if not self._outcomes:
            raise AssertionError("No fake completion queued")
        outcome = self._outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class FakeOpenAI:
    """Minimal stand-in for ``AsyncOpenAI`` exposing ``chat.completions``."""

    def __init__(self, outcomes: Iterable[Any] = ()) -> None:
        self.completions = FakeCompletions(outcomes)
        self.chat = SimpleNamespace(completions=self.completions)
        self.closed = False

    async def close(self) -> None:
        self.closed = True


class FakeTransport:
    """Reasoning transport stub recording every request."""

    def __init__(self, outcomes: Iterable[Any] = ()) -> None:
        self._outcomes = list(outcomes)
        self.requests: list[dict[str, Any]] = []

    def queue(self, *outcomes: Any) -> None:
        self._outcomes.extend(outcomes)

    async def create_chat_completion(self, messages: Sequence[Mapping[str, Any]], **kwargs: Any) -> Any:
        self.requests.append({"messages": [dict(item) for item in messages], **kwargs})
        if not self._outcomes:
            raise AssertionError("No fake completion queued")
        outcome = self._outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class RecordingSleep:
    """Async sleep replacement that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def validated(name: str, call_id: str | None = None, **arguments: Any) -> ValidatedOperation:
    """Build a :class:`ValidatedOperation` by parsing ``arguments`` through the schema."""

    model = PARAMETER_MODELS[name]
    return ValidatedOperation(
        call_id=call_id or f"call_{name}",
        name=name,
        parameters=model.model_validate(arguments),
        is_query=name in {"getCanvasState", "findShapesByColor", "findShapesByType"},
    )


def operation_call(name: str, call_id: str | None = None, **arguments: Any) -> OperationCall:
    return OperationCall(call_id=call_id or f"call_{name}", name=name, parameters=arguments)
