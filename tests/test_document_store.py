"""Tests for the in-memory document store."""

from __future__ import annotations

import json

import pytest

from canvasagent.canvas.store import DocumentNotFoundError, InMemoryDocumentStore, ObjectNotFoundError
from tests.helpers import DOCUMENT_ID, make_object


@pytest.mark.asyncio
async def test_read_snapshot_returns_objects_and_canvas_size(store: InMemoryDocumentStore) -> None:
    snapshot = await store.read_snapshot(DOCUMENT_ID)

    assert snapshot.object_count == 3
    assert snapshot.object_ids == {"rect-1", "circle-1", "text-1"}
    assert snapshot.canvas_size.width == 2000
    assert snapshot.get("text-1").text == "Title"


@pytest.mark.asyncio
async def test_unknown_document_raises(store: InMemoryDocumentStore) -> None:
    assert await store.document_exists("missing") is False
    with pytest.raises(DocumentNotFoundError) as excinfo:
        await store.read_snapshot("missing")
    assert str(excinfo.value) == 'Canvas "missing" not found'


@pytest.mark.asyncio
async def test_snapshot_is_isolated_from_later_mutations(store: InMemoryDocumentStore) -> None:
    snapshot = await store.read_snapshot(DOCUMENT_ID)
    await store.apply_mutation(DOCUMENT_ID, "rect-1", {"x": 500})

    assert snapshot.get("rect-1").x == 0
    assert (await store.get_object(DOCUMENT_ID, "rect-1")).x == 500


@pytest.mark.asyncio
async def test_apply_mutation_requires_upsert_for_new_objects(store: InMemoryDocumentStore) -> None:
    with pytest.raises(ObjectNotFoundError):
        await store.apply_mutation(DOCUMENT_ID, "new-1", {"type": "circle"})

    created = await store.apply_mutation(DOCUMENT_ID, "new-1", {"type": "circle", "x": 5}, upsert=True)

    assert created.id == "new-1"
    assert "new-1" in await store.live_ids(DOCUMENT_ID)


@pytest.mark.asyncio
async def test_delete_object_drops_selection(store: InMemoryDocumentStore) -> None:
    store.set_selection(DOCUMENT_ID, ["rect-1", "circle-1"])
    await store.delete_object(DOCUMENT_ID, "rect-1")

    snapshot = await store.read_snapshot(DOCUMENT_ID)
    assert snapshot.selected_ids == ("circle-1",)
    with pytest.raises(ObjectNotFoundError):
        await store.delete_object(DOCUMENT_ID, "rect-1")


# =============================================================================
# Replication and sync suspension
# =============================================================================


class TestReplication:
    @pytest.mark.asyncio
    async def test_writes_replicate_immediately_when_not_paused(self, store: InMemoryDocumentStore) -> None:
        events: list[tuple[str, str, object]] = []
        store.subscribe(lambda doc, obj, payload: events.append((doc, obj, payload)))

        await store.apply_mutation(DOCUMENT_ID, "rect-1", {"color": "#000000"})
        await store.delete_object(DOCUMENT_ID, "circle-1")

        assert events[0][1] == "rect-1"
        assert events[0][2]["color"] == "#000000"
        assert events[1] == (DOCUMENT_ID, "circle-1", None)

    @pytest.mark.asyncio
    async def test_paused_writes_flush_once_on_resume(self, store: InMemoryDocumentStore) -> None:
        events: list[str] = []
        store.subscribe(lambda doc, obj, payload: events.append(obj))

        await store.pause_sync(DOCUMENT_ID)
        await store.apply_mutation(DOCUMENT_ID, "a", {"type": "rectangle"}, upsert=True)
        await store.apply_mutation(DOCUMENT_ID, "a", {"color": "#FFFFFF"})
        await store.apply_mutation(DOCUMENT_ID, "b", {"type": "circle"}, upsert=True)
        assert events == []

        await store.resume_sync(DOCUMENT_ID)
        assert events == ["a", "b"]

    @pytest.mark.asyncio
    async def test_nested_pauses_flush_on_outermost_resume(self, store: InMemoryDocumentStore) -> None:
        events: list[str] = []
        store.subscribe(lambda doc, obj, payload: events.append(obj))

        await store.pause_sync(DOCUMENT_ID)
        await store.pause_sync(DOCUMENT_ID)
        await store.apply_mutation(DOCUMENT_ID, "a", {"type": "rectangle"}, upsert=True)
        await store.resume_sync(DOCUMENT_ID)
        assert events == []
        await store.resume_sync(DOCUMENT_ID)
        assert events == ["a"]

    @pytest.mark.asyncio
    async def test_unbalanced_resume_is_ignored(self, store: InMemoryDocumentStore) -> None:
        await store.resume_sync(DOCUMENT_ID)
        await store.apply_mutation(DOCUMENT_ID, "rect-1", {"x": 1})

    def test_unsubscribe_stops_delivery(self, store: InMemoryDocumentStore) -> None:
        events: list[str] = []
        unsubscribe = store.subscribe(lambda doc, obj, payload: events.append(obj))
        unsubscribe()
        unsubscribe()
        assert store._listeners == []


# =============================================================================
# JSON files
# =============================================================================


def test_json_file_round_trip(tmp_path) -> None:
    source = tmp_path / "board.json"
    source.write_text(
        json.dumps(
            {
                "canvasSize": {"width": 640, "height": 480},
                "selectedIds": ["r1"],
                "objects": [make_object("r1")],
            }
        ),
        encoding="utf-8",
    )

    store, document_id = InMemoryDocumentStore.from_json_file(source)
    assert document_id == "board"

    target = store.write_json_file(document_id, tmp_path / "out.json")
    exported = json.loads(target.read_text(encoding="utf-8"))
    assert exported["canvasSize"] == {"width": 640.0, "height": 480.0}
    assert exported["selectedIds"] == ["r1"]
    assert exported["objects"][0]["id"] == "r1"


def test_json_file_must_hold_an_object(tmp_path) -> None:
    source = tmp_path / "bad.json"
    source.write_text("[]", encoding="utf-8")

    with pytest.raises(ValueError):
        InMemoryDocumentStore.from_json_file(source)


def test_create_document_rejects_objects_without_id() -> None:
    with pytest.raises(ValueError):
        InMemoryDocumentStore().create_document("doc", [{"type": "circle"}])
