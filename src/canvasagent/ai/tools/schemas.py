"""Parameter models for every canvas operation.

Each operation owns one pydantic model. The validator parses raw tool-call
arguments through these models and the operation catalog is generated from
their JSON schema, so both views always agree.
"""

from __future__ import annotations

import re
from typing import Annotated, Any, ClassVar, Literal

from pydantic import AfterValidator, BaseModel, BeforeValidator, ConfigDict, Field
from pydantic.alias_generators import to_camel

__all__ = [
    "NAMED_COLORS",
    "FONT_FAMILIES",
    "SHAPE_TYPES",
    "OBJECT_TYPES",
    "COLOR_ERROR",
    "normalize_color",
    "OperationParams",
    "CreateShapeParams",
    "CreateTextParams",
    "MoveShapeParams",
    "ResizeShapeParams",
    "RotateShapeParams",
    "DeleteShapeParams",
    "UpdateShapeStyleParams",
    "UpdateTextStyleParams",
    "ArrangeHorizontalParams",
    "ArrangeVerticalParams",
    "CreateGridParams",
    "AlignShapesParams",
    "DistributeShapesParams",
    "GetCanvasStateParams",
    "FindShapesByColorParams",
    "FindShapesByTypeParams",
    "PARAMETER_MODELS",
]

# -----------------------------------------------------------------------------
# Bounds and lookup tables
# -----------------------------------------------------------------------------

MIN_CANVAS = -10_000
MAX_CANVAS = 10_000
MIN_SIZE = 1
MAX_SIZE = 5_000
MAX_STROKE = 50
MIN_FONT_SIZE = 8
MAX_FONT_SIZE = 200
MAX_TEXT_LENGTH = 1_000
MAX_ROTATION = 360

FONT_FAMILIES: tuple[str, ...] = (
    "Arial",
    "Helvetica",
    "Times New Roman",
    "Courier New",
    "Georgia",
    "Verdana",
    "Trebuchet MS",
    "Impact",
    "Comic Sans MS",
    "Palatino",
    "Garamond",
    "Bookman",
    "Avant Garde",
)

SHAPE_TYPES: tuple[str, ...] = ("rectangle", "circle", "star", "line")
OBJECT_TYPES: tuple[str, ...] = SHAPE_TYPES + ("text",)

NAMED_COLORS: dict[str, str] = {
    "red": "#EF4444",
    "blue": "#3B82F6",
    "green": "#10B981",
    "yellow": "#F59E0B",
    "purple": "#8B5CF6",
    "pink": "#EC4899",
    "orange": "#F97316",
    "teal": "#14B8A6",
    "cyan": "#06B6D4",
    "gray": "#6B7280",
    "black": "#000000",
    "white": "#FFFFFF",
    "amber": "#F59E0B",
    "lime": "#84CC16",
    "indigo": "#6366F1",
    "violet": "#8B5CF6",
}

_HEX_COLOR = re.compile(r"^#([A-Fa-f0-9]{3}|[A-Fa-f0-9]{6}|[A-Fa-f0-9]{8})$")
COLOR_ERROR = "Color must be a valid hex color (e.g., #FF0000) or named color (e.g., red, blue)"


def normalize_color(value: Any) -> str:
    """Return ``value`` as hex, resolving names through :data:`NAMED_COLORS`."""

    if not isinstance(value, str):
        raise ValueError(COLOR_ERROR)
    candidate = value.strip()
    named = NAMED_COLORS.get(candidate.lower())
    if named is not None:
        return named
    if not _HEX_COLOR.match(candidate):
        raise ValueError(COLOR_ERROR)
    return candidate


def _min_ids(minimum: int, message: str):
    def _check(values: list[str]) -> list[str]:
        if len(values) < minimum:
            raise ValueError(message)
        return values

    return AfterValidator(_check)


# -----------------------------------------------------------------------------
# Field types
# -----------------------------------------------------------------------------

Color = Annotated[str, BeforeValidator(normalize_color)]
Coordinate = Annotated[float, Field(strict=True, ge=MIN_CANVAS, le=MAX_CANVAS)]
Dimension = Annotated[float, Field(strict=True, ge=MIN_SIZE, le=MAX_SIZE)]
StrokeWidth = Annotated[float, Field(strict=True, ge=0, le=MAX_STROKE)]
Opacity = Annotated[float, Field(strict=True, ge=0, le=1)]
Rotation = Annotated[float, Field(strict=True, ge=-MAX_ROTATION, le=MAX_ROTATION)]
FontSize = Annotated[float, Field(strict=True, ge=MIN_FONT_SIZE, le=MAX_FONT_SIZE)]
ShapeId = Annotated[str, Field(min_length=1)]

FontFamily = Literal[
    "Arial",
    "Helvetica",
    "Times New Roman",
    "Courier New",
    "Georgia",
    "Verdana",
    "Trebuchet MS",
    "Impact",
    "Comic Sans MS",
    "Palatino",
    "Garamond",
    "Bookman",
    "Avant Garde",
]
FontWeight = Literal["normal", "bold"]
FontStyle = Literal["normal", "italic"]
TextAlign = Literal["left", "center", "right"]
ShapeType = Literal["rectangle", "circle", "star", "line"]
ObjectType = Literal["rectangle", "circle", "star", "line", "text"]


class OperationParams(BaseModel):
    """Base for operation parameter records.

    Fields are declared in snake_case and exposed in camelCase, which is the
    spelling the reasoning service uses. Unknown keys are dropped.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )

    operation: ClassVar[str] = ""

    def to_arguments(self) -> dict[str, Any]:
        """Return camelCase arguments with unset optionals omitted."""

        return self.model_dump(by_alias=True, exclude_none=True)


# -----------------------------------------------------------------------------
# Creation
# -----------------------------------------------------------------------------


class CreateShapeParams(OperationParams):
    operation: ClassVar[str] = "createShape"

    type: ShapeType = Field(description="Type of shape to create")
    x: Coordinate | None = Field(default=None, description="X position; defaults to the canvas center")
    y: Coordinate | None = Field(default=None, description="Y position; defaults to the canvas center")
    width: Dimension = Field(description="Width of the shape in pixels (1-5000)")
    height: Dimension = Field(description="Height of the shape in pixels (1-5000)")
    color: Color = Field(description="Fill color as hex (#RRGGBB) or a named color such as red or blue")
    stroke: Color | None = Field(default=None, description="Stroke/border color")
    stroke_width: StrokeWidth | None = Field(default=None, description="Stroke width in pixels (0-50)")
    rotation: Rotation | None = Field(default=None, description="Rotation in degrees (-360 to 360)")
    opacity: Opacity | None = Field(default=None, description="Opacity (0.0-1.0)")
    num_points: Annotated[int, Field(strict=True, ge=3, le=12)] | None = Field(
        default=None, description="Number of star points (3-12, star only)"
    )
    inner_radius: Annotated[float, Field(strict=True, ge=0, le=1)] | None = Field(
        default=None, description="Inner radius ratio (0-1, star only)"
    )
    points: list[float] | None = Field(
        default=None, description="Line points as [x1, y1, x2, y2] relative to x/y (line only)"
    )
    arrow_start: bool | None = Field(default=None, description="Arrow at line start (line only)")
    arrow_end: bool | None = Field(default=None, description="Arrow at line end (line only)")


class CreateTextParams(OperationParams):
    operation: ClassVar[str] = "createText"

    text: str = Field(min_length=1, max_length=MAX_TEXT_LENGTH, description="Text content (max 1000 characters)")
    x: Coordinate | None = Field(default=None, description="X position; defaults to the canvas center")
    y: Coordinate | None = Field(default=None, description="Y position; defaults to the canvas center")
    font_size: FontSize | None = Field(default=None, description="Font size in pixels (8-200, default 16)")
    font_family: FontFamily | None = Field(default=None, description="Font family (default Arial)")
    font_weight: FontWeight | None = None
    font_style: FontStyle | None = None
    text_align: TextAlign | None = None
    color: Color | None = Field(default=None, description="Text color (default black)")
    rotation: Rotation | None = None
    opacity: Opacity | None = None


# -----------------------------------------------------------------------------
# Manipulation
# -----------------------------------------------------------------------------


class MoveShapeParams(OperationParams):
    operation: ClassVar[str] = "moveShape"

    shape_id: ShapeId = Field(description="ID of the shape to move")
    x: Coordinate = Field(description="New X position")
    y: Coordinate = Field(description="New Y position")


class ResizeShapeParams(OperationParams):
    operation: ClassVar[str] = "resizeShape"

    shape_id: ShapeId = Field(description="ID of the shape to resize")
    width: Dimension = Field(description="New width in pixels (1-5000)")
    height: Dimension = Field(description="New height in pixels (1-5000)")


class RotateShapeParams(OperationParams):
    operation: ClassVar[str] = "rotateShape"

    shape_id: ShapeId = Field(description="ID of the shape to rotate")
    degrees: Rotation = Field(description="Rotation angle in degrees (-360 to 360)")


class DeleteShapeParams(OperationParams):
    operation: ClassVar[str] = "deleteShape"

    shape_id: ShapeId = Field(description="ID of the shape to delete")


# -----------------------------------------------------------------------------
# Styling
# -----------------------------------------------------------------------------


class UpdateShapeStyleParams(OperationParams):
    operation: ClassVar[str] = "updateShapeStyle"

    shape_id: ShapeId = Field(description="ID of the shape to style")
    color: Color | None = Field(default=None, description="New fill color")
    stroke: Color | None = Field(default=None, description="New stroke color")
    stroke_width: StrokeWidth | None = Field(default=None, description="New stroke width (0-50)")
    opacity: Opacity | None = Field(default=None, description="New opacity (0.0-1.0)")


class UpdateTextStyleParams(OperationParams):
    operation: ClassVar[str] = "updateTextStyle"

    shape_id: ShapeId = Field(description="ID of the text object to style")
    font_size: FontSize | None = None
    font_family: FontFamily | None = None
    font_weight: FontWeight | None = None
    font_style: FontStyle | None = None
    text_align: TextAlign | None = None
    color: Color | None = Field(default=None, description="New text color")


# -----------------------------------------------------------------------------
# Layout
# -----------------------------------------------------------------------------

ArrangeIds = Annotated[
    list[str],
    _min_ids(2, "At least 2 shapes required for arrangement"),
    Field(json_schema_extra={"minItems": 2}, description="IDs of the shapes to arrange (minimum 2)"),
]


class ArrangeHorizontalParams(OperationParams):
    operation: ClassVar[str] = "arrangeHorizontal"

    shape_ids: ArrangeIds
    spacing: Annotated[float, Field(strict=True, ge=0, le=1_000)] = Field(
        description="Space between shapes in pixels (0-1000)"
    )


class ArrangeVerticalParams(OperationParams):
    operation: ClassVar[str] = "arrangeVertical"

    shape_ids: ArrangeIds
    spacing: Annotated[float, Field(strict=True, ge=0, le=1_000)] = Field(
        description="Space between shapes in pixels (0-1000)"
    )


class CreateGridParams(OperationParams):
    operation: ClassVar[str] = "createGrid"

    rows: Annotated[int, Field(strict=True, ge=1, le=20)] = Field(description="Number of rows (1-20)")
    cols: Annotated[int, Field(strict=True, ge=1, le=20)] = Field(description="Number of columns (1-20)")
    cell_width: Annotated[float, Field(strict=True, ge=MIN_SIZE, le=1_000)] = Field(
        description="Cell width in pixels (1-1000)"
    )
    cell_height: Annotated[float, Field(strict=True, ge=MIN_SIZE, le=1_000)] = Field(
        description="Cell height in pixels (1-1000)"
    )
    spacing: Annotated[float, Field(strict=True, ge=0, le=200)] = Field(
        description="Space between cells in pixels (0-200)"
    )
    start_x: Coordinate | None = Field(default=None, description="Grid origin X; defaults to the canvas center")
    start_y: Coordinate | None = Field(default=None, description="Grid origin Y; defaults to the canvas center")
    color: Color | None = Field(default=None, description="Cell color (default blue)")


class AlignShapesParams(OperationParams):
    operation: ClassVar[str] = "alignShapes"

    shape_ids: Annotated[
        list[str],
        _min_ids(2, "At least 2 shapes required for alignment"),
        Field(json_schema_extra={"minItems": 2}, description="IDs of the shapes to align (minimum 2)"),
    ]
    alignment: Literal["left", "center", "right", "top", "middle", "bottom"] = Field(
        description="Edge or center line to align to"
    )


class DistributeShapesParams(OperationParams):
    operation: ClassVar[str] = "distributeShapes"

    shape_ids: Annotated[
        list[str],
        _min_ids(3, "At least 3 shapes required for distribution"),
        Field(json_schema_extra={"minItems": 3}, description="IDs of the shapes to distribute (minimum 3)"),
    ]
    direction: Literal["horizontal", "vertical"] = Field(description="Distribution direction")


# -----------------------------------------------------------------------------
# Query
# -----------------------------------------------------------------------------


class GetCanvasStateParams(OperationParams):
    operation: ClassVar[str] = "getCanvasState"


class FindShapesByColorParams(OperationParams):
    operation: ClassVar[str] = "findShapesByColor"

    color: Color = Field(description="Color to search for (hex or named color)")


class FindShapesByTypeParams(OperationParams):
    operation: ClassVar[str] = "findShapesByType"

    type: ObjectType = Field(description="Type of object to find")


PARAMETER_MODELS: dict[str, type[OperationParams]] = {
    model.operation: model
    for model in (
        CreateShapeParams,
        CreateTextParams,
        MoveShapeParams,
        ResizeShapeParams,
        RotateShapeParams,
        DeleteShapeParams,
        UpdateShapeStyleParams,
        UpdateTextStyleParams,
        ArrangeHorizontalParams,
        ArrangeVerticalParams,
        CreateGridParams,
        AlignShapesParams,
        DistributeShapesParams,
        GetCanvasStateParams,
        FindShapesByColorParams,
        FindShapesByTypeParams,
    )
}
