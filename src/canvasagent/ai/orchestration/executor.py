"""Applies validated operations to a canvas document.

The executor is the only component that writes to documents. Operations run
strictly in order with a short pacing delay between them, and a failure in one
operation is recorded on its result without unwinding earlier ones.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Awaitable, Callable, Mapping, Sequence, cast

from ...canvas.document_model import CanvasObject, DocumentSnapshot, now_ms
from ...canvas.layout import align_positions, arrange_positions, distribute_positions, grid_cells
from ...canvas.store import DocumentStore, DocumentStoreError, ObjectNotFoundError
from ..tools.errors import (
    CreationFailedError,
    ErrorCode,
    OperationError,
    ShapeNotFoundError,
    TextNotFoundError,
    UnknownOperationError,
)
from ..tools.schemas import (
    AlignShapesParams,
    ArrangeHorizontalParams,
    ArrangeVerticalParams,
    CreateGridParams,
    CreateShapeParams,
    CreateTextParams,
    DeleteShapeParams,
    DistributeShapesParams,
    FindShapesByColorParams,
    FindShapesByTypeParams,
    MoveShapeParams,
    ResizeShapeParams,
    RotateShapeParams,
    UpdateShapeStyleParams,
    UpdateTextStyleParams,
    normalize_color,
)
from .types import ExecutionResult, ValidatedOperation

__all__ = [
    "AI_AGENT_ID",
    "AI_AGENT_NAME",
    "DEFAULT_PACING_DELAY",
    "DEFAULT_GRID_COLOR",
    "OperationExecutor",
]

LOGGER = logging.getLogger(__name__)

AI_AGENT_ID = "ai-agent"
AI_AGENT_NAME = "AI Agent"
DEFAULT_PACING_DELAY = 0.05
DEFAULT_GRID_COLOR = "#3B82F6"
DEFAULT_FONT_SIZE = 16
DEFAULT_FONT_FAMILY = "Arial"
DEFAULT_TEXT_COLOR = "#000000"

# Average glyph width relative to the font size, used to size new text boxes.
_GLYPH_WIDTH_RATIO = 0.6
_LINE_HEIGHT_RATIO = 1.2

Handler = Callable[[ValidatedOperation, str], Awaitable[ExecutionResult]]


def _attribution(*, created: bool = False) -> dict[str, Any]:
    stamp: dict[str, Any] = {
        "lastEditedBy": AI_AGENT_ID,
        "lastEditedByName": AI_AGENT_NAME,
        "lastEditedAt": now_ms(),
    }
    if created:
        stamp["createdBy"] = AI_AGENT_ID
        stamp["timestamp"] = stamp["lastEditedAt"]
    return stamp


def _format_number(value: float) -> str:
    return f"{value:g}"


class OperationExecutor:
    """Runs validated operations against a :class:`DocumentStore`.

    Args:
        store: Document store that receives every mutation.
        pacing_delay: Seconds to wait between consecutive operations.
        sleep: Awaitable sleep, injectable for tests.
        id_factory: Generates ids for newly created objects.
    """

    def __init__(
        self,
        store: DocumentStore,
        *,
        pacing_delay: float = DEFAULT_PACING_DELAY,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self._store = store
        self._pacing_delay = pacing_delay
        self._sleep = sleep or asyncio.sleep
        self._new_id = id_factory or (lambda: uuid.uuid4().hex)
        self._handlers: dict[str, Handler] = {
            "createShape": self._create_shape,
            "createText": self._create_text,
            "moveShape": self._move_shape,
            "resizeShape": self._resize_shape,
            "rotateShape": self._rotate_shape,
            "deleteShape": self._delete_shape,
            "updateShapeStyle": self._update_shape_style,
            "updateTextStyle": self._update_text_style,
            "arrangeHorizontal": self._arrange,
            "arrangeVertical": self._arrange,
            "createGrid": self._create_grid,
            "alignShapes": self._align_shapes,
            "distributeShapes": self._distribute_shapes,
            "getCanvasState": self._get_canvas_state,
            "findShapesByColor": self._find_by_color,
            "findShapesByType": self._find_by_type,
        }

    @property
    def supported_operations(self) -> frozenset[str]:
        return frozenset(self._handlers)

    async def execute(self, operations: Sequence[ValidatedOperation], document_id: str) -> list[ExecutionResult]:
        """Apply ``operations`` in order and return one result per operation."""

        results: list[ExecutionResult] = []
        for index, operation in enumerate(operations):
            if index:
                await self._sleep(self._pacing_delay)
            result = await self.execute_one(operation, document_id)
            results.append(result)
        failures = sum(1 for result in results if not result.success)
        LOGGER.info(
            "Executed %s operation(s) on %s (%s failed)",
            len(results),
            document_id,
            failures,
        )
        return results

    async def execute_one(self, operation: ValidatedOperation, document_id: str) -> ExecutionResult:
        """Apply one operation, converting per-operation failures into a result."""

        LOGGER.debug("Executing %s on %s: %s", operation.name, document_id, operation.arguments)
        handler = self._handlers.get(operation.name)
        try:
            if handler is None:
                raise UnknownOperationError(message=f"Unknown tool: {operation.name}")
            return await handler(operation, document_id)
        except OperationError as exc:
            LOGGER.warning("Operation %s failed: %s", operation.name, exc)
            return self._failure(operation, exc.message, exc.error_code)
        except ObjectNotFoundError as exc:
            LOGGER.warning("Operation %s failed: %s", operation.name, exc)
            return self._failure(operation, f"Shape {exc.object_id} not found", ErrorCode.SHAPE_NOT_FOUND)
        except DocumentStoreError as exc:
            LOGGER.warning("Operation %s failed in the document store: %s", operation.name, exc)
            return self._failure(operation, f"Failed to execute {operation.name}: {exc}", ErrorCode.STORE_ERROR)
        except (TypeError, ValueError) as exc:
            LOGGER.exception("Operation %s raised unexpectedly", operation.name)
            return self._failure(operation, f"Failed to execute {operation.name}: {exc}", ErrorCode.INTERNAL_ERROR)

    # ------------------------------------------------------------------
    # Result helpers
    # ------------------------------------------------------------------

    def _success(
        self,
        operation: ValidatedOperation,
        message: str,
        *,
        created: Sequence[str] = (),
        modified: Sequence[str] = (),
        data: Any = None,
    ) -> ExecutionResult:
        return ExecutionResult(
            operation=operation.name,
            success=True,
            message=message,
            call_id=operation.call_id,
            created_ids=tuple(created),
            modified_ids=tuple(modified),
            data=data,
        )

    def _failure(self, operation: ValidatedOperation, message: str, error: str) -> ExecutionResult:
        return ExecutionResult(
            operation=operation.name,
            success=False,
            message=message,
            call_id=operation.call_id,
            error=error,
        )

    async def _require(self, document_id: str, shape_id: str) -> CanvasObject:
        obj = await self._store.get_object(document_id, shape_id)
        if obj is None:
            raise ShapeNotFoundError.for_id(shape_id)
        return obj

    async def _update(self, document_id: str, shape_id: str, patch: Mapping[str, Any]) -> CanvasObject:
        return await self._store.apply_mutation(document_id, shape_id, {**patch, **_attribution()})

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def _insert(self, document_id: str, base: Mapping[str, Any], style: Mapping[str, Any]) -> str:
        """Insert ``base`` and apply ``style`` while replication is suspended."""

        object_id = self._new_id()
        await self._store.pause_sync(document_id)
        try:
            await self._store.apply_mutation(
                document_id, object_id, {**base, **_attribution(created=True)}, upsert=True
            )
            if style:
                await self._store.apply_mutation(document_id, object_id, dict(style))
        except DocumentStoreError as exc:
            raise CreationFailedError(
                message=f"Failed to create {base.get('type', 'object')}: {exc}",
                details={"object_id": object_id},
            ) from exc
        finally:
            await self._store.resume_sync(document_id)
        return object_id

    async def _origin(self, document_id: str, x: float | None, y: float | None) -> tuple[float, float]:
        if x is not None and y is not None:
            return x, y
        snapshot = await self._store.read_snapshot(document_id)
        center_x, center_y = snapshot.canvas_size.center
        return (center_x if x is None else x, center_y if y is None else y)

    async def _create_shape(self, operation: ValidatedOperation, document_id: str) -> ExecutionResult:
        params = cast(CreateShapeParams, operation.parameters)
        x, y = await self._origin(document_id, params.x, params.y)
        base = {
            "type": params.type,
            "x": x,
            "y": y,
            "width": params.width,
            "height": params.height,
            "rotation": 0,
        }
        style = {"color": params.color}
        for key in ("stroke", "stroke_width", "opacity"):
            value = getattr(params, key)
            if value is not None:
                style[_camel(key)] = value
        if params.rotation is not None:
            style["rotation"] = _normalize_degrees(params.rotation)
        if params.type == "star":
            style.update(_present(params, "num_points", "inner_radius"))
        elif params.type == "line":
            style.update(_present(params, "points", "arrow_start", "arrow_end"))
        object_id = await self._insert(document_id, base, style)
        return self._success(
            operation,
            f"Created {params.type} at ({_format_number(x)}, {_format_number(y)})",
            created=[object_id],
        )

    async def _create_text(self, operation: ValidatedOperation, document_id: str) -> ExecutionResult:
        params = cast(CreateTextParams, operation.parameters)
        x, y = await self._origin(document_id, params.x, params.y)
        font_size = params.font_size or DEFAULT_FONT_SIZE
        base = {
            "type": "text",
            "x": x,
            "y": y,
            "text": params.text,
            "width": max(1.0, len(params.text) * font_size * _GLYPH_WIDTH_RATIO),
            "height": font_size * _LINE_HEIGHT_RATIO,
            "rotation": 0,
        }
        style: dict[str, Any] = {
            "fontSize": font_size,
            "fontFamily": params.font_family or DEFAULT_FONT_FAMILY,
            "color": params.color or DEFAULT_TEXT_COLOR,
        }
        style.update(_present(params, "font_weight", "font_style", "text_align", "opacity"))
        if params.rotation is not None:
            style["rotation"] = _normalize_degrees(params.rotation)
        object_id = await self._insert(document_id, base, style)
        return self._success(
            operation,
            f'Created text "{params.text}" at ({_format_number(x)}, {_format_number(y)})',
            created=[object_id],
        )

    async def _create_grid(self, operation: ValidatedOperation, document_id: str) -> ExecutionResult:
        params = cast(CreateGridParams, operation.parameters)
        origin = await self._origin(document_id, params.start_x, params.start_y)
        color = params.color or DEFAULT_GRID_COLOR
        created: list[str] = []
        await self._store.pause_sync(document_id)
        try:
            for _row, _col, (x, y) in grid_cells(
                params.rows, params.cols, params.cell_width, params.cell_height, params.spacing, origin
            ):
                base = {
                    "type": "rectangle",
                    "x": x,
                    "y": y,
                    "width": params.cell_width,
                    "height": params.cell_height,
                    "rotation": 0,
                }
                created.append(await self._insert(document_id, base, {"color": color}))
        finally:
            await self._store.resume_sync(document_id)
        return self._success(
            operation,
            f"Created {params.rows}x{params.cols} grid ({len(created)} shapes)",
            created=created,
        )

    # ------------------------------------------------------------------
    # Manipulation
    # ------------------------------------------------------------------

    async def _move_shape(self, operation: ValidatedOperation, document_id: str) -> ExecutionResult:
        params = cast(MoveShapeParams, operation.parameters)
        await self._require(document_id, params.shape_id)
        await self._update(document_id, params.shape_id, {"x": params.x, "y": params.y})
        return self._success(
            operation,
            f"Moved shape to ({_format_number(params.x)}, {_format_number(params.y)})",
            modified=[params.shape_id],
        )

    async def _resize_shape(self, operation: ValidatedOperation, document_id: str) -> ExecutionResult:
        params = cast(ResizeShapeParams, operation.parameters)
        await self._require(document_id, params.shape_id)
        await self._update(document_id, params.shape_id, {"width": params.width, "height": params.height})
        return self._success(
            operation,
            f"Resized shape to {_format_number(params.width)}x{_format_number(params.height)}",
            modified=[params.shape_id],
        )

    async def _rotate_shape(self, operation: ValidatedOperation, document_id: str) -> ExecutionResult:
        params = cast(RotateShapeParams, operation.parameters)
        await self._require(document_id, params.shape_id)
        degrees = _normalize_degrees(params.degrees)
        await self._update(document_id, params.shape_id, {"rotation": degrees})
        return self._success(operation, f"Rotated shape to {_format_number(degrees)}°", modified=[params.shape_id])

    async def _delete_shape(self, operation: ValidatedOperation, document_id: str) -> ExecutionResult:
        params = cast(DeleteShapeParams, operation.parameters)
        await self._require(document_id, params.shape_id)
        await self._store.delete_object(document_id, params.shape_id)
        return self._success(operation, "Deleted shape", modified=[params.shape_id])

    # ------------------------------------------------------------------
    # Styling
    # ------------------------------------------------------------------

    async def _update_shape_style(self, operation: ValidatedOperation, document_id: str) -> ExecutionResult:
        params = cast(UpdateShapeStyleParams, operation.parameters)
        await self._require(document_id, params.shape_id)
        patch = _present(params, "color", "stroke", "stroke_width", "opacity")
        await self._update(document_id, params.shape_id, patch)
        return self._success(operation, "Updated shape style", modified=[params.shape_id])

    async def _update_text_style(self, operation: ValidatedOperation, document_id: str) -> ExecutionResult:
        params = cast(UpdateTextStyleParams, operation.parameters)
        obj = await self._store.get_object(document_id, params.shape_id)
        if obj is None or obj.type != "text":
            raise TextNotFoundError.for_id(params.shape_id)
        patch = _present(params, "font_size", "font_family", "font_weight", "font_style", "text_align", "color")
        await self._update(document_id, params.shape_id, patch)
        return self._success(operation, "Updated text style", modified=[params.shape_id])

    # ------------------------------------------------------------------
    # Layout
    # ------------------------------------------------------------------

    async def _collect(self, document_id: str, shape_ids: Sequence[str]) -> list[CanvasObject]:
        objects: list[CanvasObject] = []
        for shape_id in shape_ids:
            obj = await self._store.get_object(document_id, shape_id)
            if obj is not None:
                objects.append(obj)
        if not objects:
            raise ShapeNotFoundError(
                message="No valid shapes found",
                details={"shape_ids": list(shape_ids)},
            )
        return objects

    async def _apply_positions(self, document_id: str, positions: Mapping[str, tuple[float, float]]) -> list[str]:
        for shape_id, (x, y) in positions.items():
            await self._update(document_id, shape_id, {"x": x, "y": y})
        return list(positions)

    async def _arrange(self, operation: ValidatedOperation, document_id: str) -> ExecutionResult:
        params = cast("ArrangeHorizontalParams | ArrangeVerticalParams", operation.parameters)
        direction = "horizontal" if isinstance(params, ArrangeHorizontalParams) else "vertical"
        objects = await self._collect(document_id, params.shape_ids)
        modified = await self._apply_positions(document_id, arrange_positions(objects, direction, params.spacing))
        return self._success(operation, f"Arranged {len(objects)} shapes {direction}ly", modified=modified)

    async def _align_shapes(self, operation: ValidatedOperation, document_id: str) -> ExecutionResult:
        params = cast(AlignShapesParams, operation.parameters)
        objects = await self._collect(document_id, params.shape_ids)
        modified = await self._apply_positions(document_id, align_positions(objects, params.alignment))
        return self._success(operation, f"Aligned {len(objects)} shapes to {params.alignment}", modified=modified)

    async def _distribute_shapes(self, operation: ValidatedOperation, document_id: str) -> ExecutionResult:
        params = cast(DistributeShapesParams, operation.parameters)
        objects = await self._collect(document_id, params.shape_ids)
        modified = await self._apply_positions(document_id, distribute_positions(objects, params.direction))
        return self._success(
            operation,
            f"Distributed {len(objects)} shapes {params.direction}ly",
            modified=modified,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def _get_canvas_state(self, operation: ValidatedOperation, document_id: str) -> ExecutionResult:
        snapshot = await self._store.read_snapshot(document_id)
        data = {
            "objectCount": snapshot.object_count,
            "selectedCount": len(snapshot.selected_ids),
            "selectedIds": list(snapshot.selected_ids),
            "objects": [obj.lean() for obj in snapshot.objects],
        }
        return self._success(
            operation,
            f"Canvas has {snapshot.object_count} objects, {len(snapshot.selected_ids)} selected",
            data=data,
        )

    async def _find_by_color(self, operation: ValidatedOperation, document_id: str) -> ExecutionResult:
        params = cast(FindShapesByColorParams, operation.parameters)
        target = params.color.lower()
        snapshot = await self._store.read_snapshot(document_id)
        matches = [obj for obj in snapshot.objects if _color_key(obj.color) == target]
        return self._query_result(operation, snapshot, matches, f"with color {params.color}")

    async def _find_by_type(self, operation: ValidatedOperation, document_id: str) -> ExecutionResult:
        params = cast(FindShapesByTypeParams, operation.parameters)
        snapshot = await self._store.read_snapshot(document_id)
        matches = [obj for obj in snapshot.objects if obj.type == params.type]
        return self._query_result(operation, snapshot, matches, f"of type {params.type}")

    def _query_result(
        self,
        operation: ValidatedOperation,
        snapshot: DocumentSnapshot,
        matches: Sequence[CanvasObject],
        description: str,
    ) -> ExecutionResult:
        data = {
            "count": len(matches),
            "shapeIds": [obj.id for obj in matches],
            "shapes": [obj.lean() for obj in matches],
        }
        LOGGER.debug("Query on %s matched %s of %s object(s)", snapshot.document_id, len(matches), snapshot.object_count)
        return self._success(operation, f"Found {len(matches)} shapes {description}", data=data)


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _present(params: Any, *names: str) -> dict[str, Any]:
    """Return the camelCase patch for the named fields that are set."""

    patch: dict[str, Any] = {}
    for name in names:
        value = getattr(params, name)
        if value is not None:
            patch[_camel(name)] = value
    return patch


def _normalize_degrees(degrees: float) -> float:
    return degrees % 360


def _color_key(color: str | None) -> str | None:
    if not color:
        return None
    try:
        return normalize_color(color).lower()
    except ValueError:
        return color.strip().lower()
