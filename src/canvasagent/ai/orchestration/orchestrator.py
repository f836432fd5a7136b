"""Command orchestration: admission, queueing and the reasoning loop.

:class:`CommandOrchestrator` is the single entry point for a natural-language
command. It validates the request, serializes it behind earlier commands for
the same document, and then alternates between the reasoning gateway and the
executor until the model is done or the iteration budget runs out.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Mapping, Sequence

from ...canvas.store import DocumentNotFoundError, DocumentStore, DocumentStoreError
from ..prompts import system_prompt
from ..services.summarizer import CanvasStateSummarizer
from ..tools.registry import OperationRegistry
from ..tools.validation import ToolCallValidator, collect_suggestions, format_rejections
from .command_queue import (
    DEFAULT_CAPACITY,
    DEFAULT_TIMEOUT_SECONDS,
    CommandQueueRegistry,
    QueueListener,
    QueueSnapshot,
)
from .errors import (
    AuthenticationRequiredError,
    CommandError,
    CommandValidationError,
    DocumentNotFoundCommandError,
    ErrorKind,
    InternalCommandError,
    InvalidRequestError,
)
from .executor import OperationExecutor
from .gateway import ReasoningGateway
from .types import (
    Command,
    CommandOutcome,
    CommandRequest,
    CommandResponse,
    ExecutionResult,
    Message,
    TokenUsage,
)

__all__ = ["DEFAULT_MAX_ITERATIONS", "MAX_COMMAND_LENGTH", "CommandOrchestrator"]

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 5
MAX_COMMAND_LENGTH = 1000

NARROWER_REQUEST_TEXT = (
    "This request needs more steps than I can take at once. Try splitting it into smaller requests."
)


@dataclass(slots=True)
class _InFlight:
    request: CommandRequest
    started: float


@dataclass(slots=True)
class _LoopState:
    usage: TokenUsage = field(default_factory=TokenUsage)
    results: list[ExecutionResult] = field(default_factory=list)
    context: list[Message] = field(default_factory=list)
    assistant_text: str = ""
    iterations: int = 0


class CommandOrchestrator:
    """Runs commands end to end.

    Args:
        store: Document store read for snapshots and written by the executor.
        gateway: Reasoning gateway used for each iteration.
        registry: Operation catalog offered to the model.
        validator: Validates model operation calls.
        executor: Applies validated operations.
        summarizer: Builds the canvas digest for the system prompt.
        max_iterations: Reasoning turns allowed per command.
        max_command_length: Longest accepted command text.
        queue_capacity: Commands allowed per document, pending plus processing.
        queue_timeout_seconds: Longest a command may wait in its queue.
    """

    def __init__(
        self,
        store: DocumentStore,
        gateway: ReasoningGateway,
        *,
        registry: OperationRegistry | None = None,
        validator: ToolCallValidator | None = None,
        executor: OperationExecutor | None = None,
        summarizer: CanvasStateSummarizer | None = None,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        max_command_length: int = MAX_COMMAND_LENGTH,
        queue_capacity: int = DEFAULT_CAPACITY,
        queue_timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._validator = validator or ToolCallValidator(registry)
        self._registry = registry or self._validator.registry
        self._executor = executor or OperationExecutor(store)
        self._summarizer = summarizer or CanvasStateSummarizer()
        self._max_iterations = max(1, max_iterations)
        self._max_command_length = max_command_length
        self._clock = clock or time.perf_counter
        self._in_flight: dict[str, _InFlight] = {}
        self._queues: CommandQueueRegistry[CommandResponse] = CommandQueueRegistry(
            self._process,
            capacity=queue_capacity,
            timeout_seconds=queue_timeout_seconds,
            is_success=lambda response: response.success,
        )

    @property
    def queues(self) -> CommandQueueRegistry[CommandResponse]:
        return self._queues

    @property
    def registry(self) -> OperationRegistry:
        return self._registry

    # ------------------------------------------------------------------
    # Command boundary
    # ------------------------------------------------------------------

    async def handle(self, request: CommandRequest | Mapping[str, Any]) -> CommandResponse:
        """Run one command and return its terminal response.

        Never raises for command failures; they are reported on the response.
        """

        started = self._clock()
        command: Command | None = None
        try:
            if not isinstance(request, CommandRequest):
                request = CommandRequest.from_mapping(request)
            self._check_request(request)
            if not await self._store.document_exists(request.document_id):
                raise DocumentNotFoundCommandError(message=f'Canvas "{request.document_id}" not found')
            command = Command(document_id=request.document_id, user_id=request.user_id, text=request.text)
            LOGGER.info(
                "Command %s from %s on %s: %r",
                command.id,
                request.user_id,
                request.document_id,
                request.text[:100],
            )
            self._in_flight[command.id] = _InFlight(request=request, started=started)
            try:
                return await self._queues.submit(command)
            finally:
                self._in_flight.pop(command.id, None)
        except CommandError as exc:
            LOGGER.info("Command %s failed: %s", command.id if command else "<rejected>", exc)
            return self._failure(exc, command)
        except Exception as exc:
            LOGGER.exception("Unexpected error while handling command")
            return self._failure(InternalCommandError(details={"error": str(exc)}), command)

    def cancel(self, document_id: str, command_id: str, user_id: str) -> bool:
        return self._queues.cancel(document_id, command_id, user_id)

    def queue_status(self, document_id: str) -> QueueSnapshot:
        return self._queues.snapshot(document_id)

    def subscribe(self, listener: QueueListener) -> Callable[[], None]:
        return self._queues.subscribe(listener)

    def _check_request(self, request: CommandRequest) -> None:
        text = request.text.strip()
        if not text:
            raise InvalidRequestError(message="Command text is required")
        if len(request.text) > self._max_command_length:
            raise InvalidRequestError(
                message=f"Command too long (max {self._max_command_length} characters)",
                suggestions=("Split the request into smaller commands",),
            )
        if not request.document_id:
            raise InvalidRequestError(message="Canvas ID is required")
        if not request.user_id:
            raise AuthenticationRequiredError()

    def _failure(
        self,
        error: CommandError,
        command: Command | None,
        operations: Sequence[ExecutionResult] = (),
    ) -> CommandResponse:
        return CommandResponse(
            success=False,
            command_id=command.id if command is not None else None,
            operations=tuple(operations),
            error_kind=error.kind,
            message=error.message,
            suggestions=tuple(error.suggestions),
        )

    # ------------------------------------------------------------------
    # Reasoning loop
    # ------------------------------------------------------------------

    async def _process(self, command: Command) -> CommandResponse:
        in_flight = self._in_flight.get(command.id)
        if in_flight is None:
            raise InternalCommandError(message="Command request is no longer available")
        request = in_flight.request
        state = _LoopState()
        catalog = self._registry.get_openai_tools()

        try:
            while state.iterations < self._max_iterations:
                state.iterations += 1
                response = await self._iterate(command, request, catalog, state)
                if response is not None:
                    return self._finish(response, in_flight)
        except DocumentNotFoundError as exc:
            raise DocumentNotFoundCommandError(message=str(exc)) from exc
        except DocumentStoreError as exc:
            raise InternalCommandError(
                message=f"Failed to read canvas: {exc}",
                details={"document_id": command.document_id},
            ) from exc

        LOGGER.warning(
            "Command %s reached the iteration cap (%s) without finishing",
            command.id,
            self._max_iterations,
        )
        return self._finish(
            self._success(
                command,
                state,
                CommandOutcome.NEEDS_NARROWER_REQUEST,
                assistant_text=state.assistant_text or NARROWER_REQUEST_TEXT,
            ),
            in_flight,
        )

    async def _iterate(
        self,
        command: Command,
        request: CommandRequest,
        catalog: Sequence[Mapping[str, Any]],
        state: _LoopState,
    ) -> CommandResponse | None:
        """Run one reason-act-observe turn; return a response when the command is done."""

        snapshot = await self._store.read_snapshot(command.document_id)
        digest = self._summarizer.summarize(snapshot, selected_ids=request.selected_ids)
        canvas_text, digest_tokens = self._summarizer.render(digest)
        LOGGER.debug(
            "Iteration %s of %s: digest covers %s/%s object(s) (~%s tokens)",
            state.iterations,
            command.id,
            len(digest.objects),
            digest.object_count,
            digest_tokens,
        )

        reply = await self._gateway.call(
            system_prompt(canvas_text, registry=self._registry, max_iterations=self._max_iterations),
            request.text,
            request.conversation_history,
            catalog,
            state.context or None,
        )
        state.usage = state.usage + reply.usage
        if reply.text:
            state.assistant_text = reply.text

        if not reply.operation_calls:
            outcome = CommandOutcome.APPLIED if self._has_actions(state.results) else CommandOutcome.ANSWERED
            return self._success(command, state, outcome)

        live_ids = await self._store.live_ids(command.document_id)
        report = self._validator.validate(reply.operation_calls, live_ids)
        if not report.ok:
            raise CommandValidationError(
                message=format_rejections(report.rejected),
                suggestions=collect_suggestions(report.rejected),
                details={"rejected": [item.name for item in report.rejected], "iteration": state.iterations},
            )

        results = await self._executor.execute(report.accepted, command.document_id)
        state.results.extend(results)

        if all(operation.is_query for operation in report.accepted):
            state.context.extend(
                self._gateway.message_builder.iteration_messages(reply.text, reply.operation_calls, results)
            )
            LOGGER.info(
                "Command %s ran %s query operation(s); continuing to iteration %s",
                command.id,
                len(results),
                state.iterations + 1,
            )
            return None

        actions = [result for operation, result in zip(report.accepted, results) if not operation.is_query]
        if not any(result.success for result in actions):
            summary = "; ".join(f"{result.operation}: {result.message}" for result in actions)
            LOGGER.warning("Every operation of command %s failed: %s", command.id, summary)
            return CommandResponse(
                success=False,
                command_id=command.id,
                operations=tuple(state.results),
                error_kind=ErrorKind.INTERNAL_ERROR,
                message=f"All operations failed: {summary}",
                iterations=state.iterations,
                token_usage=state.usage,
            )
        return self._success(command, state, CommandOutcome.APPLIED)

    @staticmethod
    def _has_actions(results: Sequence[ExecutionResult]) -> bool:
        return any(result.created_ids or result.modified_ids for result in results)

    def _success(
        self,
        command: Command,
        state: _LoopState,
        outcome: str,
        *,
        assistant_text: str | None = None,
    ) -> CommandResponse:
        return CommandResponse(
            success=True,
            command_id=command.id,
            operations=tuple(state.results),
            assistant_text=assistant_text if assistant_text is not None else state.assistant_text,
            token_usage=state.usage,
            iterations=state.iterations,
            outcome=outcome,
        )

    def _finish(self, response: CommandResponse, in_flight: _InFlight) -> CommandResponse:
        elapsed_ms = int((self._clock() - in_flight.started) * 1000)
        LOGGER.info(
            "Command %s finished in %sms after %s iteration(s): %s",
            response.command_id,
            elapsed_ms,
            response.iterations,
            response.outcome or response.error_kind,
        )
        return replace(response, elapsed_ms=elapsed_ms)

    async def aclose(self) -> None:
        """Cancel pending commands, let the processing ones finish, then close the gateway."""
        cleared = self._queues.clear()
        if cleared:
            LOGGER.info("Cancelled %s pending command(s) on shutdown", cleared)
        await self._queues.wait_idle()
        await self._gateway.aclose()
