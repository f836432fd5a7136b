"""Canvas document model, store contract and layout geometry."""

from .document_model import CanvasObject, CanvasSize, DocumentSnapshot, DEFAULT_CANVAS_SIZE, now_ms
from .store import (
    DocumentNotFoundError,
    DocumentStore,
    DocumentStoreError,
    InMemoryDocumentStore,
    ObjectNotFoundError,
)

__all__ = [
    "CanvasObject",
    "CanvasSize",
    "DocumentSnapshot",
    "DEFAULT_CANVAS_SIZE",
    "now_ms",
    "DocumentStore",
    "DocumentStoreError",
    "DocumentNotFoundError",
    "ObjectNotFoundError",
    "InMemoryDocumentStore",
]
