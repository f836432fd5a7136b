"""Per-operation failure types raised inside the executor.

These never cross the command boundary as exceptions: the executor records
them on the operation's :class:`ExecutionResult` and moves on.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

__all__ = [
    "ErrorCode",
    "OperationError",
    "ShapeNotFoundError",
    "TextNotFoundError",
    "CreationFailedError",
    "UnknownOperationError",
]


class ErrorCode:
    """Machine-readable failure codes attached to execution results."""

    SHAPE_NOT_FOUND = "shape_not_found"
    TEXT_NOT_FOUND = "text_not_found"
    CREATION_FAILED = "creation_failed"
    UNKNOWN_OPERATION = "unknown_operation"
    STORE_ERROR = "store_error"
    INTERNAL_ERROR = "internal_error"


@dataclass
class OperationError(Exception):
    """Base class for a single operation's failure.

    Attributes:
        error_code: One of :class:`ErrorCode`.
        message: Human-readable description.
        details: Extra structured context for logs.
    """

    error_code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        Exception.__init__(self, self.message)

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"


@dataclass
class ShapeNotFoundError(OperationError):
    error_code: str = field(default=ErrorCode.SHAPE_NOT_FOUND)
    message: str = field(default="Shape not found")

    @classmethod
    def for_id(cls, shape_id: str) -> "ShapeNotFoundError":
        return cls(message=f"Shape {shape_id} not found", details={"shape_id": shape_id})


@dataclass
class TextNotFoundError(OperationError):
    error_code: str = field(default=ErrorCode.TEXT_NOT_FOUND)
    message: str = field(default="Text object not found")

    @classmethod
    def for_id(cls, shape_id: str) -> "TextNotFoundError":
        return cls(message=f"Text object {shape_id} not found", details={"shape_id": shape_id})


@dataclass
class CreationFailedError(OperationError):
    error_code: str = field(default=ErrorCode.CREATION_FAILED)
    message: str = field(default="Failed to create object")


@dataclass
class UnknownOperationError(OperationError):
    error_code: str = field(default=ErrorCode.UNKNOWN_OPERATION)
    message: str = field(default="Unknown operation")
