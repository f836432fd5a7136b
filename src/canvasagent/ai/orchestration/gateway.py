"""Reasoning gateway: one model turn with retry, backoff and parsing.

The gateway owns the transcript for the call in flight, classifies transport
failures into a small set of upstream failure classes, retries the transient
ones with exponential backoff and turns the model's tool calls into
:class:`OperationCall` records.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping, Protocol, Sequence

import httpx
from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AuthenticationError,
    BadRequestError,
    InternalServerError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitError,
    UnprocessableEntityError,
)
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from .errors import (
    AuthenticationRequiredError,
    CommandError,
    InvalidRequestError,
    MalformedResponseError,
    RateLimitedError,
    UpstreamUnavailableError,
)
from .message_builder import MessageBuilder
from .types import GatewayResponse, Message, OperationCall, TokenUsage

__all__ = [
    "UpstreamFailure",
    "ReasoningServiceError",
    "ReasoningTransport",
    "GatewayConfig",
    "ReasoningGateway",
    "classify_failure",
    "parse_completion",
]

LOGGER = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Failure classification
# -----------------------------------------------------------------------------


class UpstreamFailure(str, Enum):
    """Failure classes a reasoning service may report."""

    RATE_LIMITED = "rate-limited"
    UNAUTHENTICATED = "unauthenticated"
    BAD_REQUEST = "bad-request"
    SERVER_ERROR = "server-error"
    TIMEOUT = "timeout"

    @property
    def retryable(self) -> bool:
        return self in _RETRYABLE


_RETRYABLE = frozenset({UpstreamFailure.RATE_LIMITED, UpstreamFailure.SERVER_ERROR, UpstreamFailure.TIMEOUT})


class ReasoningServiceError(Exception):
    """Transport-neutral failure raised by non-OpenAI reasoning backends."""

    def __init__(self, failure: UpstreamFailure, message: str = "", *, status_code: int | None = None) -> None:
        self.failure = failure
        self.status_code = status_code
        super().__init__(message or failure.value)


def _classify_status(status: int | None) -> UpstreamFailure | None:
    if status is None:
        return None
    if status == 429:
        return UpstreamFailure.RATE_LIMITED
    if status in (401, 403):
        return UpstreamFailure.UNAUTHENTICATED
    if status == 408:
        return UpstreamFailure.TIMEOUT
    if status >= 500:
        return UpstreamFailure.SERVER_ERROR
    if 400 <= status < 500:
        return UpstreamFailure.BAD_REQUEST
    return None


def classify_failure(exc: BaseException) -> UpstreamFailure | None:
    """Map an exception to an :class:`UpstreamFailure`, or None if unrelated."""

    if isinstance(exc, ReasoningServiceError):
        return exc.failure
    if isinstance(exc, RateLimitError):
        return UpstreamFailure.RATE_LIMITED
    if isinstance(exc, (AuthenticationError, PermissionDeniedError)):
        return UpstreamFailure.UNAUTHENTICATED
    if isinstance(exc, (BadRequestError, UnprocessableEntityError, NotFoundError)):
        return UpstreamFailure.BAD_REQUEST
    if isinstance(exc, InternalServerError):
        return UpstreamFailure.SERVER_ERROR
    if isinstance(exc, APIStatusError):
        return _classify_status(exc.status_code)
    # APITimeoutError subclasses APIConnectionError, so it is checked first.
    if isinstance(exc, APITimeoutError):
        return UpstreamFailure.TIMEOUT
    if isinstance(exc, APIConnectionError):
        return UpstreamFailure.SERVER_ERROR
    if isinstance(exc, (httpx.TimeoutException, asyncio.TimeoutError, TimeoutError)):
        return UpstreamFailure.TIMEOUT
    return None


def _is_retryable(exc: BaseException) -> bool:
    failure = classify_failure(exc)
    return failure is not None and failure.retryable


def _translate(exc: BaseException, failure: UpstreamFailure, attempts: int) -> CommandError:
    details = {"failure": failure.value, "attempts": attempts, "error": str(exc)}
    if failure is UpstreamFailure.RATE_LIMITED:
        return RateLimitedError(details=details)
    if failure is UpstreamFailure.UNAUTHENTICATED:
        return AuthenticationRequiredError(
            message="The AI service rejected the configured credentials",
            details=details,
        )
    if failure is UpstreamFailure.BAD_REQUEST:
        return InvalidRequestError(
            message="The AI service rejected the request",
            suggestions=("Try rephrasing your command",),
            details=details,
        )
    return UpstreamUnavailableError(details=details)


# -----------------------------------------------------------------------------
# Response parsing
# -----------------------------------------------------------------------------


def parse_completion(completion: Any) -> GatewayResponse:
    """Extract text, operation calls and usage from a chat completion.

    Raises:
        MalformedResponseError: If any tool call's arguments are not a JSON object.
    """

    choices = getattr(completion, "choices", None) or []
    message = getattr(choices[0], "message", None) if choices else None
    finish_reason = getattr(choices[0], "finish_reason", None) if choices else None
    text = str(getattr(message, "content", None) or "")

    calls: list[OperationCall] = []
    for index, tool_call in enumerate(getattr(message, "tool_calls", None) or []):
        function = getattr(tool_call, "function", None)
        name = str(getattr(function, "name", "") or "")
        raw_arguments = getattr(function, "arguments", None)
        call_id = str(getattr(tool_call, "id", None) or f"call_{index}")
        calls.append(OperationCall(call_id=call_id, name=name, parameters=_parse_arguments(name, raw_arguments)))

    usage_payload = getattr(completion, "usage", None)
    usage = TokenUsage(
        input=int(getattr(usage_payload, "prompt_tokens", 0) or 0),
        output=int(getattr(usage_payload, "completion_tokens", 0) or 0),
    )
    return GatewayResponse(text=text, operation_calls=tuple(calls), usage=usage, finish_reason=finish_reason)


def _parse_arguments(name: str, raw: Any) -> Mapping[str, Any]:
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return {}
    if isinstance(raw, Mapping):
        return dict(raw)
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise MalformedResponseError(
            message=f"Invalid JSON in tool call arguments: {name}",
            details={"tool": name, "arguments": str(raw)[:500]},
        ) from exc
    if not isinstance(parsed, dict):
        raise MalformedResponseError(
            message=f"Tool call arguments must be a JSON object: {name}",
            details={"tool": name, "arguments": str(raw)[:500]},
        )
    return parsed


# -----------------------------------------------------------------------------
# Gateway
# -----------------------------------------------------------------------------


class ReasoningTransport(Protocol):
    """Anything that can run one chat completion; :class:`AIClient` qualifies."""

    async def create_chat_completion(
        self,
        messages: Sequence[Mapping[str, Any]],
        *,
        tools: Sequence[Mapping[str, Any]] | None = None,
        tool_choice: Any = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> Any:
        ...


@dataclass(slots=True)
class GatewayConfig:
    """Retry and sampling parameters for the gateway."""

    max_attempts: int = 3
    rate_limit_backoff_seconds: float = 2.0
    transient_backoff_seconds: float = 1.0
    temperature: float = 0.7
    max_tokens: int = 2000
    tool_choice: str = "auto"


class ReasoningGateway:
    """Invokes the reasoning service for one turn of a command."""

    def __init__(
        self,
        transport: ReasoningTransport,
        *,
        config: GatewayConfig | None = None,
        message_builder: MessageBuilder | None = None,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
    ) -> None:
        self._transport = transport
        self._config = config or GatewayConfig()
        self._builder = message_builder or MessageBuilder()
        self._sleep = sleep or asyncio.sleep

    @property
    def config(self) -> GatewayConfig:
        return self._config

    @property
    def message_builder(self) -> MessageBuilder:
        return self._builder

    async def call(
        self,
        system_context: str,
        user_text: str,
        history: Sequence[Mapping[str, Any]] | None,
        catalog: Sequence[Mapping[str, Any]],
        iteration_context: Sequence[Message] | None = None,
    ) -> GatewayResponse:
        """Run one reasoning turn.

        Args:
            system_context: System prompt with the rendered canvas digest.
            user_text: The original command text.
            history: Caller conversation history; ignored when iterating.
            catalog: Operation catalog in OpenAI ``tools`` format.
            iteration_context: Tool exchange from earlier iterations.

        Raises:
            CommandError: For upstream failures (after retries) and malformed tool calls.
        """
        messages = self._builder.build_transcript(system_context, user_text, history, iteration_context)
        started = time.perf_counter()
        attempts = 0
        try:
            async for attempt in self._retrying():
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    completion = await self._transport.create_chat_completion(
                        messages,
                        tools=list(catalog),
                        tool_choice=self._config.tool_choice,
                        temperature=self._config.temperature,
                        max_tokens=self._config.max_tokens,
                    )
        except CommandError:
            raise
        except Exception as exc:
            failure = classify_failure(exc)
            if failure is None:
                raise
            LOGGER.warning(
                "Reasoning call failed after %s attempt(s): %s (%s)",
                attempts,
                failure.value,
                exc,
            )
            raise _translate(exc, failure, attempts) from exc

        response = parse_completion(completion)
        LOGGER.info(
            "Reasoning call finished in %.2fs after %s attempt(s): %s operation call(s), %s tokens",
            time.perf_counter() - started,
            attempts,
            len(response.operation_calls),
            response.usage.total,
        )
        return response

    async def aclose(self) -> None:
        """Release the transport, if it holds network resources."""
        close = getattr(self._transport, "aclose", None)
        if close is not None:
            await close()

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, self._config.max_attempts)),
            wait=self._backoff,
            retry=retry_if_exception(_is_retryable),
            sleep=self._sleep,
            before_sleep=self._log_retry,
        )

    def _backoff(self, retry_state: RetryCallState) -> float:
        outcome = retry_state.outcome
        exc = outcome.exception() if outcome is not None else None
        failure = classify_failure(exc) if exc is not None else None
        if failure is UpstreamFailure.RATE_LIMITED:
            base = self._config.rate_limit_backoff_seconds
        else:
            base = self._config.transient_backoff_seconds
        return base * (2 ** max(0, retry_state.attempt_number - 1))

    def _log_retry(self, retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        exc = outcome.exception() if outcome is not None else None
        failure = classify_failure(exc) if exc is not None else None
        next_action = retry_state.next_action
        LOGGER.warning(
            "Reasoning attempt %s failed (%s); retrying in %.1fs",
            retry_state.attempt_number,
            failure.value if failure is not None else exc,
            next_action.sleep if next_action is not None else 0.0,
        )
