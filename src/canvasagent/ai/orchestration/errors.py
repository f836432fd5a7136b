"""Command-boundary error types.

Every failure that reaches the caller is a :class:`CommandError` carrying a
stable :class:`ErrorKind`, a human-readable message and optional suggestions.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar

__all__ = [
    "ErrorKind",
    "CommandError",
    "InvalidRequestError",
    "AuthenticationRequiredError",
    "DocumentNotFoundCommandError",
    "CommandValidationError",
    "CommandTimeoutError",
    "QueueFullError",
    "CommandCancelledError",
    "RateLimitedError",
    "UpstreamUnavailableError",
    "MalformedResponseError",
    "InternalCommandError",
]


# -----------------------------------------------------------------------------
# Error Kind Constants
# -----------------------------------------------------------------------------


class ErrorKind:
    """Stable error identifiers surfaced to callers."""

    INVALID_REQUEST = "invalid-request"
    AUTHENTICATION_REQUIRED = "authentication-required"
    DOCUMENT_NOT_FOUND = "document-not-found"
    VALIDATION_ERROR = "validation-error"
    TIMEOUT = "timeout"
    UPSTREAM_UNAVAILABLE = "upstream-unavailable"
    INTERNAL_ERROR = "internal-error"
    # Capacity and throttling are reported separately so callers can retry later.
    RATE_LIMITED = "rate-limited"
    QUEUE_FULL = "queue-full"
    CANCELLED = "cancelled"


# -----------------------------------------------------------------------------
# Base Error Class
# -----------------------------------------------------------------------------


@dataclass
class CommandError(Exception):
    """Base exception for failures reported at the command boundary.

    Attributes:
        kind: One of :class:`ErrorKind`.
        message: Human-readable description.
        suggestions: Actionable hints for the user.
        details: Additional structured information for logs.
    """

    kind: str
    message: str
    suggestions: tuple[str, ...] = ()
    details: dict[str, Any] = field(default_factory=dict)

    retryable: ClassVar[bool] = False

    def __post_init__(self) -> None:
        Exception.__init__(self, self.message)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"errorKind": self.kind, "message": self.message}
        if self.suggestions:
            payload["suggestions"] = list(self.suggestions)
        if self.details:
            payload["details"] = dict(self.details)
        return payload

    def __str__(self) -> str:
        return f"[{self.kind}] {self.message}"


# -----------------------------------------------------------------------------
# Input errors
# -----------------------------------------------------------------------------


@dataclass
class InvalidRequestError(CommandError):
    kind: str = field(default=ErrorKind.INVALID_REQUEST)
    message: str = field(default="Invalid command request")


@dataclass
class AuthenticationRequiredError(CommandError):
    kind: str = field(default=ErrorKind.AUTHENTICATION_REQUIRED)
    message: str = field(default="User must be authenticated")


@dataclass
class DocumentNotFoundCommandError(CommandError):
    kind: str = field(default=ErrorKind.DOCUMENT_NOT_FOUND)
    message: str = field(default="Canvas not found")


# -----------------------------------------------------------------------------
# Validation errors
# -----------------------------------------------------------------------------


@dataclass
class CommandValidationError(CommandError):
    """Raised when the model's operation batch fails validation."""

    kind: str = field(default=ErrorKind.VALIDATION_ERROR)
    message: str = field(default="Validation failed")


@dataclass
class MalformedResponseError(CommandError):
    """The reasoning service returned tool-call arguments that are not JSON objects."""

    kind: str = field(default=ErrorKind.VALIDATION_ERROR)
    message: str = field(default="Invalid JSON in tool call arguments")
    suggestions: tuple[str, ...] = ("Try rephrasing your command",)


# -----------------------------------------------------------------------------
# Capacity / timeout errors
# -----------------------------------------------------------------------------


@dataclass
class QueueFullError(CommandError):
    kind: str = field(default=ErrorKind.QUEUE_FULL)
    message: str = field(default="Too many AI commands queued for this canvas. Please wait.")

    retryable: ClassVar[bool] = True


@dataclass
class CommandTimeoutError(CommandError):
    kind: str = field(default=ErrorKind.TIMEOUT)
    message: str = field(default="Command timed out while waiting in queue")

    retryable: ClassVar[bool] = True


@dataclass
class CommandCancelledError(CommandError):
    kind: str = field(default=ErrorKind.CANCELLED)
    message: str = field(default="Command was cancelled")


# -----------------------------------------------------------------------------
# Upstream errors
# -----------------------------------------------------------------------------


@dataclass
class RateLimitedError(CommandError):
    kind: str = field(default=ErrorKind.RATE_LIMITED)
    message: str = field(default="AI service is rate limited. Please try again in a moment.")

    retryable: ClassVar[bool] = True


@dataclass
class UpstreamUnavailableError(CommandError):
    kind: str = field(default=ErrorKind.UPSTREAM_UNAVAILABLE)
    message: str = field(default="AI service is temporarily unavailable. Please try again.")

    retryable: ClassVar[bool] = True


@dataclass
class InternalCommandError(CommandError):
    kind: str = field(default=ErrorKind.INTERNAL_ERROR)
    message: str = field(default="An unexpected error occurred while processing the command")
