"""Immutable canvas document views used by the orchestration pipeline."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Sequence

__all__ = [
    "CanvasObject",
    "CanvasSize",
    "DocumentSnapshot",
    "DEFAULT_CANVAS_SIZE",
    "now_ms",
]

# Keys promoted to first-class attributes; everything else lands in ``extra``.
_CORE_KEYS = frozenset(
    {
        "id",
        "type",
        "x",
        "y",
        "width",
        "height",
        "color",
        "text",
        "rotation",
        "createdBy",
        "timestamp",
        "lastEditedAt",
        "lastEditedBy",
        "lastEditedByName",
    }
)


def now_ms() -> int:
    """Return the wall clock in epoch milliseconds."""

    return int(time.time() * 1000)


@dataclass(slots=True, frozen=True)
class CanvasSize:
    """Canvas dimensions in pixels."""

    width: float = 10_000
    height: float = 10_000

    @property
    def center(self) -> tuple[float, float]:
        return self.width / 2, self.height / 2

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any] | None) -> "CanvasSize":
        if not payload:
            return DEFAULT_CANVAS_SIZE
        return cls(
            width=float(payload.get("width", DEFAULT_CANVAS_SIZE.width)),
            height=float(payload.get("height", DEFAULT_CANVAS_SIZE.height)),
        )

    def to_dict(self) -> dict[str, float]:
        return {"width": self.width, "height": self.height}


DEFAULT_CANVAS_SIZE = CanvasSize()


@dataclass(slots=True, frozen=True)
class CanvasObject:
    """A single shape or text object as stored in a canvas document.

    Attributes:
        id: Stable object identifier.
        type: Object kind (rectangle, circle, star, line, text).
        x: Left edge in canvas pixels.
        y: Top edge in canvas pixels.
        width: Width in pixels.
        height: Height in pixels.
        color: Fill color as stored (usually hex).
        text: Text content for text objects.
        rotation: Rotation in degrees.
        created_by: Author identity that created the object.
        timestamp: Creation time in epoch milliseconds.
        last_edited_at: Last edit time in epoch milliseconds.
        last_edited_by: Identity of the last editor.
        last_edited_by_name: Display name of the last editor.
        extra: Remaining document fields (stroke, opacity, font settings...).
    """

    id: str
    type: str
    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0
    color: str | None = None
    text: str | None = None
    rotation: float = 0.0
    created_by: str | None = None
    timestamp: int | None = None
    last_edited_at: int | None = None
    last_edited_by: str | None = None
    last_edited_by_name: str | None = None
    extra: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "CanvasObject":
        """Build an object from a stored camelCase document."""

        extra = {key: value for key, value in payload.items() if key not in _CORE_KEYS}
        return cls(
            id=str(payload["id"]),
            type=str(payload.get("type", "rectangle")),
            x=float(payload.get("x") or 0),
            y=float(payload.get("y") or 0),
            width=float(payload.get("width") or 0),
            height=float(payload.get("height") or 0),
            color=payload.get("color"),
            text=payload.get("text"),
            rotation=float(payload.get("rotation") or 0),
            created_by=payload.get("createdBy"),
            timestamp=_optional_int(payload.get("timestamp")),
            last_edited_at=_optional_int(payload.get("lastEditedAt")),
            last_edited_by=payload.get("lastEditedBy"),
            last_edited_by_name=payload.get("lastEditedByName"),
            extra=MappingProxyType(extra),
        )

    @property
    def edited_or_created_at(self) -> int:
        return self.last_edited_at or self.timestamp or 0

    def lean(self) -> dict[str, Any]:
        """Return the compact view sent to the reasoning service."""

        summary: dict[str, Any] = {
            "id": self.id,
            "type": self.type,
            "x": self.x,
            "y": self.y,
            "width": self.width,
            "height": self.height,
            "color": self.color,
            "rotation": self.rotation,
            "createdBy": self.created_by,
            "timestamp": self.timestamp,
        }
        if self.text is not None:
            summary["text"] = self.text
        return summary


@dataclass(slots=True, frozen=True)
class DocumentSnapshot:
    """Point-in-time, read-only view of a canvas document."""

    document_id: str
    objects: tuple[CanvasObject, ...] = ()
    selected_ids: tuple[str, ...] = ()
    canvas_size: CanvasSize = DEFAULT_CANVAS_SIZE
    taken_at: int = field(default_factory=now_ms)

    @classmethod
    def from_mapping(
        cls,
        document_id: str,
        objects: Iterable[Mapping[str, Any]],
        *,
        selected_ids: Sequence[str] = (),
        canvas_size: Mapping[str, Any] | CanvasSize | None = None,
    ) -> "DocumentSnapshot":
        size = canvas_size if isinstance(canvas_size, CanvasSize) else CanvasSize.from_mapping(canvas_size)
        return cls(
            document_id=document_id,
            objects=tuple(CanvasObject.from_mapping(item) for item in objects),
            selected_ids=tuple(selected_ids),
            canvas_size=size,
        )

    @property
    def object_count(self) -> int:
        return len(self.objects)

    @property
    def object_ids(self) -> frozenset[str]:
        return frozenset(obj.id for obj in self.objects)

    def get(self, object_id: str) -> CanvasObject | None:
        for obj in self.objects:
            if obj.id == object_id:
                return obj
        return None

    def with_selection(self, selected_ids: Sequence[str]) -> "DocumentSnapshot":
        return DocumentSnapshot(
            document_id=self.document_id,
            objects=self.objects,
            selected_ids=tuple(selected_ids),
            canvas_size=self.canvas_size,
            taken_at=self.taken_at,
        )


def _optional_int(value: Any) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
