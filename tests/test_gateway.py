"""Tests for the reasoning gateway: retries, failure mapping and parsing."""

from __future__ import annotations

import httpx
import pytest

from canvasagent.ai.orchestration.errors import (
    AuthenticationRequiredError,
    ErrorKind,
    InvalidRequestError,
    MalformedResponseError,
    RateLimitedError,
    UpstreamUnavailableError,
)
from canvasagent.ai.orchestration.gateway import (
    GatewayConfig,
    ReasoningGateway,
    ReasoningServiceError,
    UpstreamFailure,
    classify_failure,
    parse_completion,
)
from canvasagent.ai.orchestration.types import Message
from tests.helpers import FakeTransport, RecordingSleep, completion, status_error, tool_call

CATALOG = [{"type": "function", "function": {"name": "getCanvasState", "parameters": {"type": "object"}}}]


def _gateway(transport: FakeTransport, sleep: RecordingSleep, **config) -> ReasoningGateway:
    return ReasoningGateway(transport, config=GatewayConfig(**config), sleep=sleep)


# =============================================================================
# Failure classification
# =============================================================================


@pytest.mark.parametrize(
    "status,expected",
    [
        (429, UpstreamFailure.RATE_LIMITED),
        (401, UpstreamFailure.UNAUTHENTICATED),
        (403, UpstreamFailure.UNAUTHENTICATED),
        (400, UpstreamFailure.BAD_REQUEST),
        (408, UpstreamFailure.TIMEOUT),
        (500, UpstreamFailure.SERVER_ERROR),
        (503, UpstreamFailure.SERVER_ERROR),
    ],
)
def test_classify_status_errors(status: int, expected: UpstreamFailure) -> None:
    assert classify_failure(status_error(status)) is expected


def test_classify_other_failures() -> None:
    assert classify_failure(httpx.ReadTimeout("slow")) is UpstreamFailure.TIMEOUT
    assert classify_failure(ReasoningServiceError(UpstreamFailure.SERVER_ERROR)) is UpstreamFailure.SERVER_ERROR
    assert classify_failure(KeyError("x")) is None


def test_retryable_failures() -> None:
    assert UpstreamFailure.RATE_LIMITED.retryable
    assert UpstreamFailure.SERVER_ERROR.retryable
    assert UpstreamFailure.TIMEOUT.retryable
    assert not UpstreamFailure.UNAUTHENTICATED.retryable
    assert not UpstreamFailure.BAD_REQUEST.retryable


# =============================================================================
# Retry behaviour
# =============================================================================


class TestRetries:
    @pytest.mark.asyncio
    async def test_rate_limit_backs_off_then_succeeds(self, sleep: RecordingSleep) -> None:
        transport = FakeTransport([status_error(429), status_error(429), completion("done")])

        response = await _gateway(transport, sleep).call("system", "hi", None, CATALOG)

        assert response.text == "done"
        assert sleep.delays == [2.0, 4.0]
        assert len(transport.requests) == 3

    @pytest.mark.asyncio
    async def test_rate_limit_exhausted(self, sleep: RecordingSleep) -> None:
        transport = FakeTransport([status_error(429)] * 3)

        with pytest.raises(RateLimitedError) as excinfo:
            await _gateway(transport, sleep).call("system", "hi", None, CATALOG)

        assert excinfo.value.kind == ErrorKind.RATE_LIMITED
        assert excinfo.value.details["attempts"] == 3

    @pytest.mark.asyncio
    async def test_server_errors_exhaust_to_upstream_unavailable(self, sleep: RecordingSleep) -> None:
        transport = FakeTransport([status_error(500)] * 3)

        with pytest.raises(UpstreamUnavailableError) as excinfo:
            await _gateway(transport, sleep).call("system", "hi", None, CATALOG)

        assert excinfo.value.kind == ErrorKind.UPSTREAM_UNAVAILABLE
        assert sleep.delays == [1.0, 2.0]
        assert len(transport.requests) == 3

    @pytest.mark.asyncio
    async def test_timeout_is_retried(self, sleep: RecordingSleep) -> None:
        transport = FakeTransport([httpx.ReadTimeout("slow"), completion("ok")])

        response = await _gateway(transport, sleep).call("system", "hi", None, CATALOG)

        assert response.text == "ok"
        assert sleep.delays == [1.0]

    @pytest.mark.asyncio
    async def test_authentication_failure_is_not_retried(self, sleep: RecordingSleep) -> None:
        transport = FakeTransport([status_error(401)])

        with pytest.raises(AuthenticationRequiredError):
            await _gateway(transport, sleep).call("system", "hi", None, CATALOG)

        assert sleep.delays == []
        assert len(transport.requests) == 1

    @pytest.mark.asyncio
    async def test_bad_request_is_not_retried(self, sleep: RecordingSleep) -> None:
        transport = FakeTransport([status_error(400)])

        with pytest.raises(InvalidRequestError):
            await _gateway(transport, sleep).call("system", "hi", None, CATALOG)

        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_unrelated_errors_propagate(self, sleep: RecordingSleep) -> None:
        transport = FakeTransport([KeyError("boom")])

        with pytest.raises(KeyError):
            await _gateway(transport, sleep).call("system", "hi", None, CATALOG)

    @pytest.mark.asyncio
    async def test_single_attempt_config(self, sleep: RecordingSleep) -> None:
        transport = FakeTransport([status_error(503)])

        with pytest.raises(UpstreamUnavailableError):
            await _gateway(transport, sleep, max_attempts=1).call("system", "hi", None, CATALOG)

        assert sleep.delays == []


# =============================================================================
# Request and response handling
# =============================================================================


@pytest.mark.asyncio
async def test_request_carries_catalog_and_sampling(sleep: RecordingSleep) -> None:
    transport = FakeTransport([completion("ok")])
    gateway = _gateway(transport, sleep, temperature=0.1, max_tokens=50)

    await gateway.call("system", "draw", [{"role": "user", "content": "earlier"}], CATALOG)

    (request,) = transport.requests
    assert request["tools"] == CATALOG
    assert request["tool_choice"] == "auto"
    assert request["temperature"] == 0.1
    assert request["max_tokens"] == 50
    assert [item["role"] for item in request["messages"]] == ["system", "user", "user"]
    assert request["messages"][-1]["content"] == "draw"


@pytest.mark.asyncio
async def test_iteration_context_replaces_history(sleep: RecordingSleep) -> None:
    transport = FakeTransport([completion("ok")])
    context = [Message.tool("Tool: getCanvasState\nStatus: Success", "call_1")]

    await _gateway(transport, sleep).call("system", "draw", [{"role": "user", "content": "earlier"}], CATALOG, context)

    messages = transport.requests[0]["messages"]
    assert [item["role"] for item in messages] == ["system", "user", "tool"]
    assert messages[-1]["tool_call_id"] == "call_1"


@pytest.mark.asyncio
async def test_malformed_arguments_raise(sleep: RecordingSleep) -> None:
    transport = FakeTransport([completion("", [tool_call("moveShape", "{not json")])])

    with pytest.raises(MalformedResponseError) as excinfo:
        await _gateway(transport, sleep).call("system", "hi", None, CATALOG)

    assert excinfo.value.kind == ErrorKind.VALIDATION_ERROR
    assert "moveShape" in excinfo.value.message
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_aclose_closes_transport(sleep: RecordingSleep) -> None:
    class _Closable(FakeTransport):
        closed = False

        async def aclose(self) -> None:
            self.closed = True

    transport = _Closable()
    await _gateway(transport, sleep).aclose()
    assert transport.closed is True


class TestParseCompletion:
    def test_text_calls_and_usage(self) -> None:
        payload = completion(
            "Working on it",
            [tool_call("moveShape", {"shapeId": "a", "x": 1, "y": 2}, "call_9"), tool_call("getCanvasState", "")],
            prompt_tokens=120,
            completion_tokens=30,
        )

        response = parse_completion(payload)

        assert response.text == "Working on it"
        assert [call.name for call in response.operation_calls] == ["moveShape", "getCanvasState"]
        assert response.operation_calls[0].call_id == "call_9"
        assert response.operation_calls[0].parameters == {"shapeId": "a", "x": 1, "y": 2}
        assert response.operation_calls[1].parameters == {}
        assert response.usage.total == 150
        assert response.finish_reason == "tool_calls"

    def test_non_object_arguments_are_malformed(self) -> None:
        with pytest.raises(MalformedResponseError):
            parse_completion(completion("", [tool_call("moveShape", "[1, 2]")]))

    def test_empty_completion(self) -> None:
        response = parse_completion(completion(None))
        assert response.text == ""
        assert response.operation_calls == ()
