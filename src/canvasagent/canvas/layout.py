"""Group geometry for align, distribute, arrange and grid operations.

All helpers are pure: they take canvas objects and return the new positions
keyed by object id. Applying those positions is the executor's job.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Sequence

from .document_model import CanvasObject

__all__ = [
    "Bounds",
    "group_bounds",
    "align_positions",
    "distribute_positions",
    "arrange_positions",
    "grid_cells",
]

Position = tuple[float, float]


@dataclass(slots=True, frozen=True)
class Bounds:
    left: float
    top: float
    right: float
    bottom: float

    @property
    def center_x(self) -> float:
        return (self.left + self.right) / 2

    @property
    def center_y(self) -> float:
        return (self.top + self.bottom) / 2


def group_bounds(objects: Sequence[CanvasObject]) -> Bounds:
    """Return the bounding box enclosing every object."""

    if not objects:
        raise ValueError("group_bounds requires at least one object")
    return Bounds(
        left=min(obj.x for obj in objects),
        top=min(obj.y for obj in objects),
        right=max(obj.x + obj.width for obj in objects),
        bottom=max(obj.y + obj.height for obj in objects),
    )


def align_positions(objects: Sequence[CanvasObject], alignment: str) -> dict[str, Position]:
    """Align objects against the group bounding box.

    ``left``/``right``/``center`` move objects horizontally while
    ``top``/``bottom``/``middle`` move them vertically.
    """

    bounds = group_bounds(objects)
    positions: dict[str, Position] = {}
    for obj in objects:
        x, y = obj.x, obj.y
        if alignment == "left":
            x = bounds.left
        elif alignment == "right":
            x = bounds.right - obj.width
        elif alignment == "center":
            x = bounds.center_x - obj.width / 2
        elif alignment == "top":
            y = bounds.top
        elif alignment == "bottom":
            y = bounds.bottom - obj.height
        elif alignment == "middle":
            y = bounds.center_y - obj.height / 2
        else:
            raise ValueError(f"Unknown alignment: {alignment}")
        positions[obj.id] = (x, y)
    return positions


def distribute_positions(objects: Sequence[CanvasObject], direction: str) -> dict[str, Position]:
    """Spread objects so the gaps between neighbours are equal.

    The first and last objects along the axis keep their positions.
    """

    if direction not in {"horizontal", "vertical"}:
        raise ValueError(f"Unknown direction: {direction}")
    if len(objects) < 3:
        return {obj.id: (obj.x, obj.y) for obj in objects}

    horizontal = direction == "horizontal"
    ordered = sorted(objects, key=lambda obj: obj.x if horizontal else obj.y)
    first, last = ordered[0], ordered[-1]
    if horizontal:
        span = (last.x + last.width) - first.x
        occupied = sum(obj.width for obj in ordered)
    else:
        span = (last.y + last.height) - first.y
        occupied = sum(obj.height for obj in ordered)
    gap = (span - occupied) / (len(ordered) - 1)

    positions: dict[str, Position] = {}
    cursor = first.x if horizontal else first.y
    for obj in ordered:
        if horizontal:
            positions[obj.id] = (cursor, obj.y)
            cursor += obj.width + gap
        else:
            positions[obj.id] = (obj.x, cursor)
            cursor += obj.height + gap
    # keep the outer edges exact despite float accumulation
    positions[last.id] = (last.x, last.y)
    return positions


def arrange_positions(
    objects: Sequence[CanvasObject], direction: str, spacing: float
) -> dict[str, Position]:
    """Stack objects in a row or column starting at the leading object."""

    if not objects:
        return {}
    horizontal = direction == "horizontal"
    ordered = sorted(objects, key=lambda obj: obj.x if horizontal else obj.y)
    cursor = ordered[0].x if horizontal else ordered[0].y
    positions: dict[str, Position] = {}
    for obj in ordered:
        if horizontal:
            positions[obj.id] = (cursor, obj.y)
            cursor += obj.width + spacing
        else:
            positions[obj.id] = (obj.x, cursor)
            cursor += obj.height + spacing
    return positions


def grid_cells(
    rows: int,
    cols: int,
    cell_width: float,
    cell_height: float,
    spacing: float,
    origin: Position,
) -> Iterator[tuple[int, int, Position]]:
    """Yield ``(row, col, (x, y))`` for each grid cell in row-major order."""

    start_x, start_y = origin
    for row in range(rows):
        for col in range(cols):
            yield row, col, (
                start_x + col * (cell_width + spacing),
                start_y + row * (cell_height + spacing),
            )
