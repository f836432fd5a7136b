"""Operation catalog, parameter schemas and tool-call validation."""

from .schemas import NAMED_COLORS, OperationParams, PARAMETER_MODELS, normalize_color
from .registry import (
    CATALOG_VERSION,
    OperationCategory,
    OperationRegistry,
    OperationSpec,
    default_registry,
)
from .validation import ToolCallValidator, format_rejections

__all__ = [
    "NAMED_COLORS",
    "OperationParams",
    "PARAMETER_MODELS",
    "normalize_color",
    "CATALOG_VERSION",
    "OperationCategory",
    "OperationRegistry",
    "OperationSpec",
    "default_registry",
    "ToolCallValidator",
    "format_rejections",
]
