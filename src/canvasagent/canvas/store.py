"""Document store contract plus an in-memory implementation.

The orchestration pipeline only talks to canvas documents through the
:class:`DocumentStore` protocol. :class:`InMemoryDocumentStore` implements the
protocol for tests and the command line, including outward replication
listeners and sync suspension so creation bursts surface as one write.
"""

from __future__ import annotations

import copy
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Protocol, Sequence

from .document_model import CanvasObject, CanvasSize, DocumentSnapshot, DEFAULT_CANVAS_SIZE

__all__ = [
    "DocumentStore",
    "DocumentStoreError",
    "DocumentNotFoundError",
    "ObjectNotFoundError",
    "InMemoryDocumentStore",
    "ReplicationListener",
]

LOGGER = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Exceptions
# -----------------------------------------------------------------------------


class DocumentStoreError(Exception):
    """Base error raised by document store implementations."""


class DocumentNotFoundError(DocumentStoreError):
    """Raised when a document id is unknown to the store."""

    def __init__(self, document_id: str) -> None:
        self.document_id = document_id
        super().__init__(f'Canvas "{document_id}" not found')


class ObjectNotFoundError(DocumentStoreError):
    """Raised when an object id is not present in a document."""

    def __init__(self, document_id: str, object_id: str) -> None:
        self.document_id = document_id
        self.object_id = object_id
        super().__init__(f'Object "{object_id}" not found in canvas "{document_id}"')


# -----------------------------------------------------------------------------
# Store Protocol
# -----------------------------------------------------------------------------


class DocumentStore(Protocol):
    """Asynchronous access to shared canvas documents."""

    async def document_exists(self, document_id: str) -> bool:
        ...

    async def read_snapshot(self, document_id: str) -> DocumentSnapshot:
        ...

    async def get_object(self, document_id: str, object_id: str) -> CanvasObject | None:
        ...

    async def apply_mutation(
        self,
        document_id: str,
        object_id: str,
        patch: Mapping[str, Any],
        *,
        upsert: bool = False,
    ) -> CanvasObject:
        ...

    async def delete_object(self, document_id: str, object_id: str) -> None:
        ...

    async def live_ids(self, document_id: str) -> frozenset[str]:
        ...

    async def pause_sync(self, document_id: str) -> None:
        ...

    async def resume_sync(self, document_id: str) -> None:
        ...


class ReplicationListener(Protocol):
    """Callback receiving outward writes; ``payload`` is None for deletions."""

    def __call__(self, document_id: str, object_id: str, payload: Mapping[str, Any] | None) -> None:
        ...


# -----------------------------------------------------------------------------
# In-memory implementation
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class _CanvasDocument:
    objects: dict[str, dict[str, Any]] = field(default_factory=dict)
    selected_ids: list[str] = field(default_factory=list)
    canvas_size: CanvasSize = DEFAULT_CANVAS_SIZE
    pause_depth: int = 0
    dirty: dict[str, None] = field(default_factory=dict)


class InMemoryDocumentStore:
    """Dictionary-backed :class:`DocumentStore` with replication listeners."""

    def __init__(self) -> None:
        self._documents: dict[str, _CanvasDocument] = {}
        self._listeners: list[ReplicationListener] = []

    # ------------------------------------------------------------------
    # Document management
    # ------------------------------------------------------------------

    def create_document(
        self,
        document_id: str,
        objects: Iterable[Mapping[str, Any]] = (),
        *,
        selected_ids: Sequence[str] = (),
        canvas_size: CanvasSize | Mapping[str, Any] | None = None,
    ) -> None:
        size = canvas_size if isinstance(canvas_size, CanvasSize) else CanvasSize.from_mapping(canvas_size)
        document = _CanvasDocument(canvas_size=size, selected_ids=list(selected_ids))
        for payload in objects:
            if "id" not in payload:
                raise ValueError("Canvas objects require an 'id' field")
            document.objects[str(payload["id"])] = dict(payload)
        self._documents[document_id] = document
        LOGGER.debug("Created canvas %s with %s object(s)", document_id, len(document.objects))

    def set_selection(self, document_id: str, selected_ids: Sequence[str]) -> None:
        self._require(document_id).selected_ids = list(selected_ids)

    def export_document(self, document_id: str) -> dict[str, Any]:
        document = self._require(document_id)
        return {
            "id": document_id,
            "canvasSize": document.canvas_size.to_dict(),
            "selectedIds": list(document.selected_ids),
            "objects": [copy.deepcopy(item) for item in document.objects.values()],
        }

    @classmethod
    def from_json_file(cls, path: Path | str) -> tuple["InMemoryDocumentStore", str]:
        """Load a single-document store from a canvas JSON file."""

        source = Path(path)
        payload = json.loads(source.read_text(encoding="utf-8"))
        if not isinstance(payload, Mapping):
            raise ValueError(f"Canvas file {source} must contain a JSON object")
        document_id = str(payload.get("id") or source.stem)
        store = cls()
        store.create_document(
            document_id,
            payload.get("objects") or (),
            selected_ids=payload.get("selectedIds") or (),
            canvas_size=payload.get("canvasSize"),
        )
        return store, document_id

    def write_json_file(self, document_id: str, path: Path | str) -> Path:
        target = Path(path)
        body = json.dumps(self.export_document(document_id), indent=2)
        tmp_path = target.with_suffix(".tmp")
        tmp_path.write_text(body, encoding="utf-8")
        tmp_path.replace(target)
        return target

    # ------------------------------------------------------------------
    # Replication listeners
    # ------------------------------------------------------------------

    def subscribe(self, listener: ReplicationListener) -> Callable[[], None]:
        """Register a replication listener and return an unsubscribe callable."""

        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    # ------------------------------------------------------------------
    # DocumentStore protocol
    # ------------------------------------------------------------------

    async def document_exists(self, document_id: str) -> bool:
        return document_id in self._documents

    async def read_snapshot(self, document_id: str) -> DocumentSnapshot:
        document = self._require(document_id)
        return DocumentSnapshot.from_mapping(
            document_id,
            [copy.deepcopy(item) for item in document.objects.values()],
            selected_ids=tuple(document.selected_ids),
            canvas_size=document.canvas_size,
        )

    async def get_object(self, document_id: str, object_id: str) -> CanvasObject | None:
        payload = self._require(document_id).objects.get(object_id)
        if payload is None:
            return None
        return CanvasObject.from_mapping(copy.deepcopy(payload))

    async def apply_mutation(
        self,
        document_id: str,
        object_id: str,
        patch: Mapping[str, Any],
        *,
        upsert: bool = False,
    ) -> CanvasObject:
        document = self._require(document_id)
        current = document.objects.get(object_id)
        if current is None:
            if not upsert:
                raise ObjectNotFoundError(document_id, object_id)
            current = {"id": object_id}
            document.objects[object_id] = current
        current.update(patch)
        current["id"] = object_id
        self._replicate(document_id, document, object_id)
        return CanvasObject.from_mapping(copy.deepcopy(current))

    async def delete_object(self, document_id: str, object_id: str) -> None:
        document = self._require(document_id)
        if object_id not in document.objects:
            raise ObjectNotFoundError(document_id, object_id)
        del document.objects[object_id]
        if object_id in document.selected_ids:
            document.selected_ids.remove(object_id)
        self._replicate(document_id, document, object_id)

    async def live_ids(self, document_id: str) -> frozenset[str]:
        return frozenset(self._require(document_id).objects)

    async def pause_sync(self, document_id: str) -> None:
        document = self._require(document_id)
        document.pause_depth += 1
        LOGGER.debug("Sync paused for canvas %s (depth=%s)", document_id, document.pause_depth)

    async def resume_sync(self, document_id: str) -> None:
        document = self._require(document_id)
        if document.pause_depth == 0:
            LOGGER.warning("resume_sync called for canvas %s without a matching pause", document_id)
            return
        document.pause_depth -= 1
        if document.pause_depth:
            return
        dirty = list(document.dirty)
        document.dirty.clear()
        LOGGER.debug("Sync resumed for canvas %s; flushing %s object(s)", document_id, len(dirty))
        for object_id in dirty:
            self._emit(document_id, object_id, document.objects.get(object_id))

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require(self, document_id: str) -> _CanvasDocument:
        document = self._documents.get(document_id)
        if document is None:
            raise DocumentNotFoundError(document_id)
        return document

    def _replicate(self, document_id: str, document: _CanvasDocument, object_id: str) -> None:
        if document.pause_depth:
            document.dirty[object_id] = None
            return
        self._emit(document_id, object_id, document.objects.get(object_id))

    def _emit(self, document_id: str, object_id: str, payload: Mapping[str, Any] | None) -> None:
        snapshot = copy.deepcopy(dict(payload)) if payload is not None else None
        for listener in list(self._listeners):
            try:
                listener(document_id, object_id, snapshot)
            except Exception:  # pragma: no cover - listener failures are logged only
                LOGGER.debug("Replication listener failed for %s/%s", document_id, object_id, exc_info=True)
