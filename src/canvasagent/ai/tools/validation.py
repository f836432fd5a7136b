"""Validation of operation calls returned by the reasoning service.

Two independent passes run for every call:

* the schema pass parses arguments through the operation's pydantic model;
* the reference pass checks ``shapeId``/``shapeIds`` against the live ids.

A call is accepted only when both passes succeed. The orchestrator refuses to
execute any part of a batch that contains a rejection.
"""

from __future__ import annotations

import logging
from typing import Any, Collection, Iterable, Mapping, Sequence

from pydantic import ValidationError

from ..orchestration.types import OperationCall, Rejection, ValidatedOperation, ValidationReport
from .registry import OperationRegistry, default_registry

__all__ = [
    "ToolCallValidator",
    "REFERENCE_SUGGESTIONS",
    "format_pydantic_errors",
    "format_rejections",
    "collect_suggestions",
]

LOGGER = logging.getLogger(__name__)

_SINGLE_ID_FIELDS: tuple[str, ...] = ("shapeId", "shape_id")
_ID_COLLECTION_FIELDS: tuple[str, ...] = ("shapeIds", "shape_ids")

REFERENCE_SUGGESTIONS: tuple[str, ...] = (
    "Make sure you're referencing existing shapes",
    "Use getCanvasState to see available shapes",
    "Try findShapesByColor or findShapesByType to find shapes",
)


def format_pydantic_errors(error: ValidationError) -> list[str]:
    """Render pydantic errors as ``"<field>: <message>"`` strings."""

    messages: list[str] = []
    for item in error.errors():
        path = ".".join(str(part) for part in item.get("loc", ()))
        if item.get("type") == "value_error" and item.get("ctx", {}).get("error") is not None:
            text = str(item["ctx"]["error"])
        else:
            text = str(item.get("msg", "Invalid value"))
        messages.append(f"{path}: {text}" if path else text)
    return messages


class ToolCallValidator:
    """Validates operation calls against the catalog and the live document."""

    def __init__(self, registry: OperationRegistry | None = None) -> None:
        self._registry = registry or default_registry()

    @property
    def registry(self) -> OperationRegistry:
        return self._registry

    def validate(self, calls: Sequence[OperationCall], live_ids: Collection[str]) -> ValidationReport:
        """Split ``calls`` into accepted operations and rejections.

        Args:
            calls: Operation calls in model order.
            live_ids: Object ids currently present in the document. Read this
                after summarizing so deletions since the snapshot are caught.

        Returns:
            A report whose ``accepted`` tuple preserves call order.
        """
        live = frozenset(live_ids)
        accepted: list[ValidatedOperation] = []
        rejected: list[Rejection] = []

        for call in calls:
            outcome = self.validate_call(call, live)
            if isinstance(outcome, Rejection):
                rejected.append(outcome)
            else:
                accepted.append(outcome)

        if rejected:
            LOGGER.warning(
                "Rejected %s of %s operation call(s): %s",
                len(rejected),
                len(calls),
                [item.name for item in rejected],
            )
        else:
            LOGGER.debug("Validated %s operation call(s)", len(accepted))
        return ValidationReport(accepted=tuple(accepted), rejected=tuple(rejected))

    def validate_call(self, call: OperationCall, live_ids: Collection[str]) -> ValidatedOperation | Rejection:
        spec = self._registry.get(call.name)
        if spec is None:
            return Rejection(call_id=call.call_id, name=call.name, errors=(f"Unknown tool: {call.name}",), kind="unknown")

        errors: list[str] = []
        params = None
        try:
            params = spec.params_model.model_validate(dict(call.parameters))
        except ValidationError as exc:
            errors.extend(format_pydantic_errors(exc))

        reference_errors = self._check_references(call.name, call.parameters, live_ids)
        errors.extend(reference_errors)

        if errors or params is None:
            return Rejection(
                call_id=call.call_id,
                name=call.name,
                errors=tuple(errors),
                kind="reference" if reference_errors and len(reference_errors) == len(errors) else "schema",
                suggestions=REFERENCE_SUGGESTIONS if reference_errors else (),
            )
        return ValidatedOperation(call_id=call.call_id, name=call.name, parameters=params, is_query=spec.is_query)

    @staticmethod
    def _check_references(name: str, parameters: Mapping[str, Any], live_ids: Collection[str]) -> list[str]:
        errors: list[str] = []
        for key in _SINGLE_ID_FIELDS:
            value = parameters.get(key)
            if isinstance(value, str) and value and value not in live_ids:
                errors.append(f'{name}: Shape ID "{value}" does not exist')
        for key in _ID_COLLECTION_FIELDS:
            value = parameters.get(key)
            if not isinstance(value, (list, tuple)):
                continue
            missing = [str(item) for item in value if str(item) not in live_ids]
            if missing:
                errors.append(f"{name}: Shape IDs do not exist: {', '.join(missing)}")
        return errors


def format_rejections(rejected: Sequence[Rejection]) -> str:
    """Combine rejections into one user-facing message."""

    if not rejected:
        return ""
    if len(rejected) == 1:
        item = rejected[0]
        return f"Validation error in {item.name}: {', '.join(item.errors)}"
    lines = [f"Validation errors found in {len(rejected)} tool calls:"]
    lines.extend(f"- {item.name}: {', '.join(item.errors)}" for item in rejected)
    return "\n".join(lines)


def collect_suggestions(rejected: Iterable[Rejection]) -> tuple[str, ...]:
    seen: dict[str, None] = {}
    for item in rejected:
        for suggestion in item.suggestions:
            seen.setdefault(suggestion, None)
    return tuple(seen)
