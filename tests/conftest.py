"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from canvasagent.ai.tools.registry import OperationRegistry, default_registry
from canvasagent.canvas.store import InMemoryDocumentStore
from tests.helpers import DOCUMENT_ID, RecordingSleep, make_object


@pytest.fixture
def store() -> InMemoryDocumentStore:
    memory = InMemoryDocumentStore()
    memory.create_document(
        DOCUMENT_ID,
        [
            make_object("rect-1", x=0, y=0, width=100, height=50, color="#EF4444", timestamp=1_000),
            make_object("circle-1", "circle", x=300, y=40, width=80, height=80, timestamp=2_000),
            make_object("text-1", "text", x=10, y=400, width=120, height=20, color="#000000", text="Title", timestamp=3_000),
        ],
        canvas_size={"width": 2000, "height": 1000},
    )
    return memory


@pytest.fixture
def registry() -> OperationRegistry:
    return default_registry()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture(autouse=True)
def _isolate_home(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CANVASAGENT_LOG_DIR", str(tmp_path / "logs"))
    for name in (
        "CANVASAGENT_API_KEY",
        "CANVASAGENT_BASE_URL",
        "CANVASAGENT_MODEL",
        "CANVASAGENT_ORGANIZATION",
        "CANVASAGENT_REQUEST_TIMEOUT",
        "CANVASAGENT_TEMPERATURE",
        "CANVASAGENT_MAX_ITERATIONS",
        "CANVASAGENT_DEBUG_LOGGING",
        "CANVASAGENT_SETTINGS_PATH",
    ):
        monkeypatch.delenv(name, raising=False)
