"""Deterministic canvas digests for the reasoning prompt.

Small canvases are sent in full. Once a canvas reaches the summarization
threshold only the selection plus a handful of recently touched objects are
included, alongside a per-type histogram of the whole canvas.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

from ...canvas.document_model import CanvasObject, CanvasSize, DocumentSnapshot
from ...utils.tokens import estimate_tokens

__all__ = [
    "SUMMARIZATION_THRESHOLD",
    "RECENT_OBJECT_COUNT",
    "Digest",
    "CanvasStateSummarizer",
    "summarize",
    "format_for_prompt",
    "estimate_digest_tokens",
]

LOGGER = logging.getLogger(__name__)

SUMMARIZATION_THRESHOLD = 100
RECENT_OBJECT_COUNT = 5


@dataclass(slots=True, frozen=True)
class Digest:
    """Size-bounded view of a :class:`DocumentSnapshot`.

    Attributes:
        object_count: Number of objects on the whole canvas.
        objects: Lean object summaries; selected objects first.
        selected_ids: Selected ids that exist on the canvas.
        canvas_size: Canvas dimensions.
        type_counts: Histogram over every object on the canvas.
        recent_ids: Non-selected ids included because they were touched recently.
        summarized: True when the threshold was reached.
    """

    object_count: int
    objects: tuple[Mapping[str, Any], ...]
    selected_ids: tuple[str, ...]
    canvas_size: CanvasSize
    type_counts: Mapping[str, int] = field(default_factory=dict)
    recent_ids: tuple[str, ...] = ()
    summarized: bool = False

    @property
    def included_ids(self) -> tuple[str, ...]:
        return tuple(str(item["id"]) for item in self.objects)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "objectCount": self.object_count,
            "objects": [dict(item) for item in self.objects],
            "selectedIds": list(self.selected_ids),
            "canvasSize": self.canvas_size.to_dict(),
            "typeCounts": dict(self.type_counts),
        }
        if self.summarized:
            payload["recentIds"] = list(self.recent_ids)
        return payload


def _recency_key(indexed: tuple[int, CanvasObject]) -> tuple[int, int, int]:
    index, obj = indexed
    return (-obj.edited_or_created_at, -(obj.timestamp or 0), index)


def summarize(
    snapshot: DocumentSnapshot,
    *,
    selected_ids: Sequence[str] | None = None,
    threshold: int = SUMMARIZATION_THRESHOLD,
    recent_count: int = RECENT_OBJECT_COUNT,
) -> Digest:
    """Reduce ``snapshot`` to a :class:`Digest`.

    Args:
        snapshot: Document state to summarize.
        selected_ids: Client-side selection, used only when the snapshot has none.
        threshold: Object count at which summarization kicks in.
        recent_count: How many non-selected recent objects to keep.
    """

    selection = snapshot.selected_ids or tuple(selected_ids or ())
    present = snapshot.object_ids
    selected = tuple(dict.fromkeys(item for item in selection if item in present))
    type_counts = dict(sorted(Counter(obj.type for obj in snapshot.objects).items()))
    count = snapshot.object_count

    if count < threshold:
        return Digest(
            object_count=count,
            objects=tuple(obj.lean() for obj in snapshot.objects),
            selected_ids=selected,
            canvas_size=snapshot.canvas_size,
            type_counts=type_counts,
        )

    selected_set = set(selected)
    selected_objects = [obj for obj in snapshot.objects if obj.id in selected_set]
    candidates = [(index, obj) for index, obj in enumerate(snapshot.objects) if obj.id not in selected_set]
    recent = [obj for _, obj in sorted(candidates, key=_recency_key)[: max(0, recent_count)]]

    digest = Digest(
        object_count=count,
        objects=tuple(obj.lean() for obj in (*selected_objects, *recent)),
        selected_ids=selected,
        canvas_size=snapshot.canvas_size,
        type_counts=type_counts,
        recent_ids=tuple(obj.id for obj in recent),
        summarized=True,
    )
    LOGGER.debug(
        "Summarized canvas %s: %s -> %s object(s)",
        snapshot.document_id,
        count,
        len(digest.objects),
    )
    return digest


# -----------------------------------------------------------------------------
# Rendering
# -----------------------------------------------------------------------------


def _num(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, float):
        return f"{value:.2f}".rstrip("0").rstrip(".")
    return str(value)


def _object_line(item: Mapping[str, Any]) -> str:
    line = (
        f"  - {item.get('type')} ({item.get('id')}): position ({_num(item.get('x'))}, {_num(item.get('y'))}), "
        f"size {_num(item.get('width'))}x{_num(item.get('height'))}, color {item.get('color')}"
    )
    if item.get("text"):
        line += f', text: "{item["text"]}"'
    return line


def format_for_prompt(digest: Digest) -> str:
    """Render ``digest`` as stable, line-oriented text."""

    size = digest.canvas_size
    lines = [
        "Canvas State:",
        f"- Canvas size: {_num(size.width)}x{_num(size.height)}px",
        f"- Total objects: {digest.object_count}",
    ]
    if digest.type_counts:
        breakdown = ", ".join(
            f"{count} {kind}{'s' if count > 1 else ''}" for kind, count in digest.type_counts.items()
        )
        lines.append(f"- Object types: {breakdown}")

    by_id = {str(item["id"]): item for item in digest.objects}
    if digest.selected_ids:
        lines.append(f"- Selected objects ({len(digest.selected_ids)}):")
        lines.extend(_object_line(by_id[item]) for item in digest.selected_ids if item in by_id)
    else:
        lines.append("- No objects selected")

    if digest.summarized:
        if digest.recent_ids:
            lines.append("- Recently created/edited objects:")
            lines.extend(_object_line(by_id[item]) for item in digest.recent_ids)
    elif digest.objects:
        lines.append("- All objects:")
        lines.extend(_object_line(item) for item in digest.objects)

    return "\n".join(lines) + "\n"


def estimate_digest_tokens(digest: Digest) -> int:
    return estimate_tokens(format_for_prompt(digest))


class CanvasStateSummarizer:
    """Configured summarizer used by the orchestrator."""

    def __init__(self, *, threshold: int = SUMMARIZATION_THRESHOLD, recent_count: int = RECENT_OBJECT_COUNT) -> None:
        self.threshold = threshold
        self.recent_count = recent_count

    def summarize(self, snapshot: DocumentSnapshot, *, selected_ids: Sequence[str] | None = None) -> Digest:
        return summarize(
            snapshot,
            selected_ids=selected_ids,
            threshold=self.threshold,
            recent_count=self.recent_count,
        )

    def render(self, digest: Digest) -> tuple[str, int]:
        """Return the prompt text and its estimated token count."""
        text = format_for_prompt(digest)
        return text, estimate_tokens(text)
