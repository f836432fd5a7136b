"""Core type definitions for the command pipeline.

These dataclasses flow between the queue, gateway, validator, executor and
orchestrator. Value objects are frozen; :class:`Command` is the one mutable
record because its status advances through the queue's state machine.
"""

from __future__ import annotations

import json
import secrets
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Literal, Mapping, Sequence

from openai.types.chat import ChatCompletionMessageParam

from ...canvas.document_model import now_ms
from .errors import InvalidRequestError

if TYPE_CHECKING:
    from ..tools.schemas import OperationParams

__all__ = [
    # Messages
    "MessageRole",
    "Message",
    # Command lifecycle
    "CommandStatus",
    "InvalidTransitionError",
    "Command",
    "QueueEntry",
    "new_command_id",
    # Operation calls
    "OperationCall",
    "ValidatedOperation",
    "Rejection",
    "ValidationReport",
    # Model interaction
    "TokenUsage",
    "GatewayResponse",
    # Execution
    "ExecutionResult",
    # Boundary
    "CommandRequest",
    "CommandOutcome",
    "CommandResponse",
]


# -----------------------------------------------------------------------------
# Message Type
# -----------------------------------------------------------------------------

MessageRole = Literal["system", "user", "assistant", "tool"]


@dataclass(slots=True, frozen=True)
class Message:
    """Immutable chat message used to build transcripts.

    Attributes:
        role: The role of the message sender.
        content: The text content of the message.
        tool_call_id: ID linking a tool result to its call.
        tool_calls: Tool calls made by the assistant.
    """

    role: MessageRole
    content: str
    tool_call_id: str | None = None
    tool_calls: tuple[Mapping[str, Any], ...] | None = None

    def to_chat_param(self) -> ChatCompletionMessageParam:
        """Convert to OpenAI's ChatCompletionMessageParam format."""
        payload: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_call_id is not None:
            payload["tool_call_id"] = self.tool_call_id
        if self.tool_calls is not None:
            payload["tool_calls"] = [dict(call) for call in self.tool_calls]
        return payload  # type: ignore[return-value]

    @classmethod
    def system(cls, content: str) -> Message:
        return cls(role="system", content=content)

    @classmethod
    def user(cls, content: str) -> Message:
        return cls(role="user", content=content)

    @classmethod
    def assistant(cls, content: str, tool_calls: Sequence[Mapping[str, Any]] | None = None) -> Message:
        return cls(
            role="assistant",
            content=content,
            tool_calls=tuple(tool_calls) if tool_calls else None,
        )

    @classmethod
    def tool(cls, content: str, tool_call_id: str) -> Message:
        return cls(role="tool", content=content, tool_call_id=tool_call_id)


# -----------------------------------------------------------------------------
# Command lifecycle
# -----------------------------------------------------------------------------


class CommandStatus(str, Enum):
    """Lifecycle state of a queued command."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL


_TERMINAL = frozenset(
    {CommandStatus.COMPLETED, CommandStatus.FAILED, CommandStatus.CANCELLED, CommandStatus.TIMED_OUT}
)

_TRANSITIONS: Mapping[CommandStatus, frozenset[CommandStatus]] = {
    CommandStatus.PENDING: frozenset(
        {CommandStatus.PROCESSING, CommandStatus.CANCELLED, CommandStatus.TIMED_OUT}
    ),
    CommandStatus.PROCESSING: frozenset({CommandStatus.COMPLETED, CommandStatus.FAILED}),
    CommandStatus.COMPLETED: frozenset(),
    CommandStatus.FAILED: frozenset(),
    CommandStatus.CANCELLED: frozenset(),
    CommandStatus.TIMED_OUT: frozenset(),
}


class InvalidTransitionError(RuntimeError):
    """Raised when a command is moved along an edge the state machine lacks."""

    def __init__(self, command_id: str, current: CommandStatus, target: CommandStatus) -> None:
        self.command_id = command_id
        self.current = current
        self.target = target
        super().__init__(f"Command {command_id} cannot move from {current.value} to {target.value}")


def new_command_id() -> str:
    return f"cmd-{now_ms()}-{secrets.token_hex(5)[:9]}"


@dataclass(slots=True)
class Command:
    """A user's natural-language request against one document."""

    document_id: str
    user_id: str
    text: str
    id: str = field(default_factory=new_command_id)
    created_at: int = field(default_factory=now_ms)
    status: CommandStatus = CommandStatus.PENDING

    def transition(self, target: CommandStatus) -> None:
        if target not in _TRANSITIONS[self.status]:
            raise InvalidTransitionError(self.id, self.status, target)
        self.status = target

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


@dataclass(slots=True)
class QueueEntry:
    """A command waiting in, or at the head of, a document queue.

    ``enqueued_at`` is measured on the event loop clock.
    """

    command: Command
    enqueued_at: float
    retry_count: int = 0

    @property
    def command_id(self) -> str:
        return self.command.id

    @property
    def status(self) -> CommandStatus:
        return self.command.status


# -----------------------------------------------------------------------------
# Operation calls
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class OperationCall:
    """Untyped operation request as returned by the reasoning service."""

    call_id: str
    name: str
    parameters: Mapping[str, Any] = field(default_factory=dict)

    def to_tool_call(self) -> dict[str, Any]:
        """Render in the assistant ``tool_calls`` wire format."""
        return {
            "id": self.call_id,
            "type": "function",
            "function": {"name": self.name, "arguments": json.dumps(dict(self.parameters))},
        }


@dataclass(slots=True, frozen=True)
class ValidatedOperation:
    """An operation whose parameters passed both validation passes."""

    call_id: str
    name: str
    parameters: OperationParams
    is_query: bool = False

    @property
    def arguments(self) -> dict[str, Any]:
        return self.parameters.to_arguments()


@dataclass(slots=True, frozen=True)
class Rejection:
    """Why a single operation call was refused."""

    call_id: str
    name: str
    errors: tuple[str, ...]
    kind: Literal["unknown", "schema", "reference"] = "schema"
    suggestions: tuple[str, ...] = ()


@dataclass(slots=True, frozen=True)
class ValidationReport:
    accepted: tuple[ValidatedOperation, ...] = ()
    rejected: tuple[Rejection, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.rejected


# -----------------------------------------------------------------------------
# Model interaction
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class TokenUsage:
    input: int = 0
    output: int = 0

    @property
    def total(self) -> int:
        return self.input + self.output

    def __add__(self, other: TokenUsage) -> TokenUsage:
        return TokenUsage(input=self.input + other.input, output=self.output + other.output)

    def to_dict(self) -> dict[str, int]:
        return {"input": self.input, "output": self.output, "total": self.total}


@dataclass(slots=True, frozen=True)
class GatewayResponse:
    """Parsed reasoning-service turn."""

    text: str = ""
    operation_calls: tuple[OperationCall, ...] = ()
    usage: TokenUsage = field(default_factory=TokenUsage)
    finish_reason: str | None = None


# -----------------------------------------------------------------------------
# Execution
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ExecutionResult:
    """Outcome of applying one operation to the document."""

    operation: str
    success: bool
    message: str = ""
    call_id: str | None = None
    created_ids: tuple[str, ...] = ()
    modified_ids: tuple[str, ...] = ()
    error: str | None = None
    data: Any = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "tool": self.operation,
            "success": self.success,
            "message": self.message,
            "createdIds": list(self.created_ids),
            "modifiedIds": list(self.modified_ids),
        }
        if self.error is not None:
            payload["error"] = self.error
        if self.data is not None:
            payload["data"] = self.data
        return payload


# -----------------------------------------------------------------------------
# Command boundary
# -----------------------------------------------------------------------------


def _pick(payload: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in payload:
            return payload[key]
    return None


@dataclass(slots=True, frozen=True)
class CommandRequest:
    """Inbound command from the presentation layer."""

    text: str
    document_id: str
    user_id: str
    conversation_history: tuple[Mapping[str, Any], ...] = ()
    selected_ids: tuple[str, ...] | None = None

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> CommandRequest:
        """Build a request from camelCase or snake_case keys."""
        history = _pick(payload, "conversationHistory", "conversation_history") or ()
        if isinstance(history, (str, bytes, Mapping)) or not isinstance(history, Sequence):
            raise InvalidRequestError(message="conversationHistory must be a list of messages")
        if not all(isinstance(item, Mapping) for item in history):
            raise InvalidRequestError(message="conversationHistory entries must be objects")
        selected = _pick(payload, "selectedIds", "selected_ids")
        if selected is not None and (
            isinstance(selected, (str, bytes))
            or not isinstance(selected, Sequence)
            or not all(isinstance(item, str) for item in selected)
        ):
            raise InvalidRequestError(message="selectedIds must be a list of strings")
        return cls(
            text=str(_pick(payload, "text", "command") or ""),
            document_id=str(_pick(payload, "documentId", "document_id", "canvasId") or ""),
            user_id=str(_pick(payload, "userId", "user_id") or ""),
            conversation_history=tuple(history),
            selected_ids=tuple(selected) if selected is not None else None,
        )


class CommandOutcome:
    """How a completed command ended."""

    APPLIED = "applied"
    ANSWERED = "answered"
    NEEDS_NARROWER_REQUEST = "needs_narrower_request"


@dataclass(slots=True, frozen=True)
class CommandResponse:
    """Terminal result returned to the caller for one command."""

    success: bool
    command_id: str | None = None
    operations: tuple[ExecutionResult, ...] = ()
    assistant_text: str = ""
    elapsed_ms: int = 0
    token_usage: TokenUsage = field(default_factory=TokenUsage)
    iterations: int = 0
    outcome: str | None = None
    error_kind: str | None = None
    message: str | None = None
    suggestions: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        if not self.success:
            payload: dict[str, Any] = {
                "success": False,
                "errorKind": self.error_kind,
                "message": self.message or "",
            }
            if self.suggestions:
                payload["suggestions"] = list(self.suggestions)
            if self.command_id:
                payload["commandId"] = self.command_id
            if self.operations:
                payload["operations"] = [result.to_dict() for result in self.operations]
            return payload
        return {
            "success": True,
            "operations": [result.to_dict() for result in self.operations],
            "assistantText": self.assistant_text,
            "commandId": self.command_id,
            "elapsedMs": self.elapsed_ms,
            "tokenUsage": self.token_usage.to_dict(),
            "iterations": self.iterations,
            "outcome": self.outcome,
        }
