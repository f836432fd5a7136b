"""Operation catalog for the canvas agent.

The registry is the single source for operation names, their parameter
models, and the OpenAI tool definitions sent to the reasoning service.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterator, Mapping, Sequence

from . import schemas
from .schemas import OperationParams

__all__ = [
    "CATALOG_VERSION",
    "OperationCategory",
    "OperationSpec",
    "OperationRegistry",
    "DuplicateOperationError",
    "OperationNotFoundError",
    "default_registry",
]

LOGGER = logging.getLogger(__name__)

CATALOG_VERSION = "2024.1"


# -----------------------------------------------------------------------------
# Exceptions
# -----------------------------------------------------------------------------


class DuplicateOperationError(Exception):
    """Raised when an operation name is registered twice."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Operation '{name}' is already registered")


class OperationNotFoundError(Exception):
    """Raised when a requested operation is not in the registry."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Unknown tool: {name}")


# -----------------------------------------------------------------------------
# Operation Specification
# -----------------------------------------------------------------------------


class OperationCategory:
    """Operation groups used in prompts and logs."""

    CREATION = "creation"
    MANIPULATION = "manipulation"
    STYLING = "styling"
    LAYOUT = "layout"
    QUERY = "query"


@dataclass(slots=True, frozen=True)
class OperationSpec:
    """Specification for a single canvas operation.

    Attributes:
        name: Operation name the reasoning service calls.
        description: Human-readable description sent with the catalog.
        params_model: Pydantic model validating the operation's arguments.
        category: One of :class:`OperationCategory`.
        creates_objects: Whether the operation inserts new objects.
    """

    name: str
    description: str
    params_model: type[OperationParams]
    category: str
    creates_objects: bool = False

    @property
    def is_query(self) -> bool:
        """True when the operation only reads document state."""
        return self.category == OperationCategory.QUERY

    def parameters_schema(self) -> dict[str, Any]:
        schema = self.params_model.model_json_schema(by_alias=True)
        schema = _strip_titles(schema)
        schema.pop("description", None)
        schema.setdefault("properties", {})
        schema.setdefault("required", [])
        schema["type"] = "object"
        return schema

    def to_openai_tool(self) -> dict[str, Any]:
        """Convert to OpenAI tool definition format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters_schema(),
            },
        }


def _strip_titles(node: Any) -> Any:
    if isinstance(node, Mapping):
        return {key: _strip_titles(value) for key, value in node.items() if key != "title"}
    if isinstance(node, list):
        return [_strip_titles(item) for item in node]
    return node


# -----------------------------------------------------------------------------
# Operation Registry
# -----------------------------------------------------------------------------


class OperationRegistry:
    """Registry mapping operation names to their specs.

    Example:
        registry = default_registry()
        spec = registry.get_required("moveShape")
        params = spec.params_model.model_validate({"shapeId": "a", "x": 1, "y": 2})
    """

    def __init__(self, *, version: str = CATALOG_VERSION) -> None:
        self.version = version
        self._operations: dict[str, OperationSpec] = {}

    def register(self, spec: OperationSpec, *, allow_override: bool = False) -> OperationSpec:
        """Register an operation.

        Raises:
            DuplicateOperationError: If the name is taken and ``allow_override`` is False.
        """
        if spec.name in self._operations and not allow_override:
            raise DuplicateOperationError(spec.name)
        self._operations[spec.name] = spec
        LOGGER.debug("Registered operation: %s (%s)", spec.name, spec.category)
        return spec

    def get(self, name: str) -> OperationSpec | None:
        return self._operations.get(name)

    def get_required(self, name: str) -> OperationSpec:
        spec = self.get(name)
        if spec is None:
            raise OperationNotFoundError(name)
        return spec

    def has(self, name: str) -> bool:
        return name in self._operations

    def is_query(self, name: str) -> bool:
        spec = self.get(name)
        return spec is not None and spec.is_query

    def list_operations(self, *, category: str | None = None) -> list[OperationSpec]:
        return [spec for spec in self._operations.values() if category is None or spec.category == category]

    def list_names(self) -> list[str]:
        return list(self._operations)

    def get_openai_tools(self, *, filter_names: Sequence[str] | None = None) -> list[dict[str, Any]]:
        """Return the catalog in OpenAI ``tools`` format."""
        return [
            spec.to_openai_tool()
            for spec in self._operations.values()
            if filter_names is None or spec.name in filter_names
        ]

    def describe(self) -> dict[str, Any]:
        """Versioned catalog payload, suitable for dumping as JSON."""
        return {"version": self.version, "tools": self.get_openai_tools()}

    def __len__(self) -> int:
        return len(self._operations)

    def __contains__(self, name: object) -> bool:
        return name in self._operations

    def __iter__(self) -> Iterator[OperationSpec]:
        return iter(self._operations.values())


_DEFAULT_SPECS: tuple[tuple[type[OperationParams], str, str, bool], ...] = (
    (schemas.CreateShapeParams, OperationCategory.CREATION,
     "Create a new shape on the canvas (rectangle, circle, star, or line)", True),
    (schemas.CreateTextParams, OperationCategory.CREATION,
     "Create a text label or content on the canvas", True),
    (schemas.MoveShapeParams, OperationCategory.MANIPULATION,
     "Move a shape to a new position on the canvas", False),
    (schemas.ResizeShapeParams, OperationCategory.MANIPULATION,
     "Resize a shape to new dimensions", False),
    (schemas.RotateShapeParams, OperationCategory.MANIPULATION,
     "Rotate a shape by a specified angle", False),
    (schemas.DeleteShapeParams, OperationCategory.MANIPULATION,
     "Delete a shape from the canvas", False),
    (schemas.UpdateShapeStyleParams, OperationCategory.STYLING,
     "Update visual styling of a shape (color, stroke, opacity)", False),
    (schemas.UpdateTextStyleParams, OperationCategory.STYLING,
     "Update text styling (font size, family, weight, color, etc.)", False),
    (schemas.ArrangeHorizontalParams, OperationCategory.LAYOUT,
     "Arrange multiple shapes horizontally with specified spacing", False),
    (schemas.ArrangeVerticalParams, OperationCategory.LAYOUT,
     "Arrange multiple shapes vertically with specified spacing", False),
    (schemas.CreateGridParams, OperationCategory.LAYOUT,
     "Create a grid of rectangles with specified dimensions and spacing", True),
    (schemas.AlignShapesParams, OperationCategory.LAYOUT,
     "Align multiple shapes along a specified edge or center", False),
    (schemas.DistributeShapesParams, OperationCategory.LAYOUT,
     "Distribute shapes evenly across a horizontal or vertical axis", False),
    (schemas.GetCanvasStateParams, OperationCategory.QUERY,
     "Get the current state of the canvas (all objects, selection, etc.)", False),
    (schemas.FindShapesByColorParams, OperationCategory.QUERY,
     "Find all shapes with a specific color", False),
    (schemas.FindShapesByTypeParams, OperationCategory.QUERY,
     "Find all shapes of a specific type", False),
)


def default_registry() -> OperationRegistry:
    """Build a registry holding the full canvas operation catalog."""

    registry = OperationRegistry()
    for model, category, description, creates in _DEFAULT_SPECS:
        registry.register(
            OperationSpec(
                name=model.operation,
                description=description,
                params_model=model,
                category=category,
                creates_objects=creates,
            )
        )
    return registry
