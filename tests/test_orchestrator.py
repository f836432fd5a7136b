"""End-to-end tests for the command orchestrator."""

from __future__ import annotations

import itertools

import pytest

from canvasagent.ai.orchestration.errors import ErrorKind
from canvasagent.ai.orchestration.executor import OperationExecutor
from canvasagent.ai.orchestration.gateway import ReasoningGateway
from canvasagent.ai.orchestration.orchestrator import NARROWER_REQUEST_TEXT, CommandOrchestrator
from canvasagent.ai.orchestration.types import CommandOutcome, CommandRequest
from canvasagent.ai.tools.validation import REFERENCE_SUGGESTIONS
from canvasagent.canvas.store import InMemoryDocumentStore
from tests.helpers import DOCUMENT_ID, FakeTransport, RecordingSleep, completion, make_object, status_error, tool_call


class _Harness:
    def __init__(self, store: InMemoryDocumentStore, sleep: RecordingSleep, *, max_iterations: int = 5) -> None:
        counter = itertools.count(1)
        self.store = store
        self.transport = FakeTransport()
        self.gateway = ReasoningGateway(self.transport, sleep=sleep)
        self.executor = OperationExecutor(store, sleep=sleep, id_factory=lambda: f"new-{next(counter)}")
        ticks = itertools.count()
        self.orchestrator = CommandOrchestrator(
            store,
            self.gateway,
            executor=self.executor,
            max_iterations=max_iterations,
            clock=lambda: next(ticks) * 0.25,
        )

    def reply(self, *outcomes) -> None:
        self.transport.queue(*outcomes)

    async def run(self, text: str = "do something", **overrides):
        payload = {"text": text, "documentId": DOCUMENT_ID, "userId": "user-1"}
        payload.update(overrides)
        return await self.orchestrator.handle(payload)


@pytest.fixture
def harness(store: InMemoryDocumentStore, sleep: RecordingSleep) -> _Harness:
    return _Harness(store, sleep)


# =============================================================================
# Single-step commands
# =============================================================================


class TestSingleStep:
    @pytest.mark.asyncio
    async def test_create_shape_command(self, harness: _Harness) -> None:
        harness.reply(
            completion(
                "Created a red circle",
                [tool_call("createShape", {"type": "circle", "x": 50, "y": 60, "width": 40, "height": 40, "color": "red"})],
            )
        )

        response = await harness.run("draw a red circle")

        assert response.success
        assert response.outcome == CommandOutcome.APPLIED
        assert response.iterations == 1
        assert response.assistant_text == "Created a red circle"
        assert [result.created_ids for result in response.operations] == [("new-1",)]
        assert response.token_usage.to_dict() == {"input": 10, "output": 5, "total": 15}
        assert response.command_id.startswith("cmd-")
        assert response.elapsed_ms > 0
        assert (await harness.store.get_object(DOCUMENT_ID, "new-1")).color == "#EF4444"

    @pytest.mark.asyncio
    async def test_answer_without_tools(self, harness: _Harness) -> None:
        harness.reply(completion("There are three objects on the canvas."))

        response = await harness.run("what is on the canvas?")

        assert response.success
        assert response.outcome == CommandOutcome.ANSWERED
        assert response.operations == ()
        assert response.to_dict()["assistantText"] == "There are three objects on the canvas."

    @pytest.mark.asyncio
    async def test_request_carries_digest_history_and_catalog(self, harness: _Harness) -> None:
        harness.reply(completion("ok"))

        await harness.run(
            "hello",
            conversationHistory=[{"role": "user", "content": "earlier"}, {"role": "assistant", "content": "sure"}],
            selectedIds=["circle-1"],
        )

        (request,) = harness.transport.requests
        system = request["messages"][0]["content"]
        assert "Canvas State:" in system
        assert "- Selected objects (1):" in system
        assert "circle (circle-1)" in system
        assert [item["role"] for item in request["messages"]] == ["system", "user", "assistant", "user"]
        assert len(request["tools"]) == 16

    @pytest.mark.asyncio
    async def test_partial_failure_is_a_success(self, harness: _Harness) -> None:
        harness.reply(
            completion(
                "",
                [
                    tool_call("moveShape", {"shapeId": "rect-1", "x": 5, "y": 5}, "call_1"),
                    tool_call("updateTextStyle", {"shapeId": "circle-1", "fontSize": 20}, "call_2"),
                ],
            )
        )

        response = await harness.run()

        assert response.success
        assert [result.success for result in response.operations] == [True, False]
        assert response.operations[1].message == "Text object circle-1 not found"


# =============================================================================
# Multi-step reasoning
# =============================================================================


class TestReasoningLoop:
    @pytest.mark.asyncio
    async def test_query_then_action(self, harness: _Harness) -> None:
        harness.reply(
            completion("Looking for red shapes", [tool_call("findShapesByColor", {"color": "red"}, "call_q")]),
            completion("Moved the red shape", [tool_call("moveShape", {"shapeId": "rect-1", "x": 500, "y": 500}, "call_a")]),
        )

        response = await harness.run("move all red shapes to 500,500")

        assert response.success
        assert response.iterations == 2
        assert response.outcome == CommandOutcome.APPLIED
        assert [result.operation for result in response.operations] == ["findShapesByColor", "moveShape"]
        assert response.token_usage.total == 30
        assert (await harness.store.get_object(DOCUMENT_ID, "rect-1")).x == 500

        second = harness.transport.requests[1]["messages"]
        assert [item["role"] for item in second] == ["system", "user", "assistant", "tool"]
        assert second[2]["tool_calls"][0]["id"] == "call_q"
        assert second[3]["tool_call_id"] == "call_q"
        assert "rect-1" in second[3]["content"]

    @pytest.mark.asyncio
    async def test_query_then_answer(self, harness: _Harness) -> None:
        harness.reply(
            completion("", [tool_call("findShapesByType", {"type": "circle"})]),
            completion("There is one circle."),
        )

        response = await harness.run("how many circles?")

        assert response.outcome == CommandOutcome.ANSWERED
        assert response.iterations == 2

    @pytest.mark.asyncio
    async def test_iteration_cap(self, store: InMemoryDocumentStore, sleep: RecordingSleep) -> None:
        harness = _Harness(store, sleep, max_iterations=3)
        harness.reply(*[completion("", [tool_call("getCanvasState")]) for _ in range(3)])

        response = await harness.run("keep looking")

        assert response.success
        assert response.outcome == CommandOutcome.NEEDS_NARROWER_REQUEST
        assert response.iterations == 3
        assert response.assistant_text == NARROWER_REQUEST_TEXT
        assert len(harness.transport.requests) == 3

    @pytest.mark.asyncio
    async def test_default_cap_is_five(self, harness: _Harness) -> None:
        harness.reply(*[completion("still looking", [tool_call("getCanvasState")]) for _ in range(5)])

        response = await harness.run()

        assert response.iterations == 5
        assert response.assistant_text == "still looking"
        assert len(harness.transport.requests) == 5


# =============================================================================
# Failures
# =============================================================================


class TestFailures:
    @pytest.mark.asyncio
    async def test_missing_reference_rejects_whole_batch(self, harness: _Harness) -> None:
        harness.reply(
            completion(
                "",
                [
                    tool_call("moveShape", {"shapeId": "rect-1", "x": 1, "y": 1}, "call_1"),
                    tool_call("deleteShape", {"shapeId": "ghost"}, "call_2"),
                ],
            )
        )

        response = await harness.run()

        assert not response.success
        assert response.error_kind == ErrorKind.VALIDATION_ERROR
        assert response.message == 'Validation error in deleteShape: deleteShape: Shape ID "ghost" does not exist'
        assert response.suggestions == REFERENCE_SUGGESTIONS
        assert (await harness.store.get_object(DOCUMENT_ID, "rect-1")).x == 0

    @pytest.mark.asyncio
    async def test_all_actions_failed(self, harness: _Harness) -> None:
        harness.reply(completion("", [tool_call("updateTextStyle", {"shapeId": "rect-1", "fontSize": 20})]))

        response = await harness.run()

        assert not response.success
        assert response.error_kind == ErrorKind.INTERNAL_ERROR
        assert response.message == "All operations failed: updateTextStyle: Text object rect-1 not found"
        assert len(response.operations) == 1
        payload = response.to_dict()
        assert payload["errorKind"] == "internal-error"
        assert payload["operations"][0]["success"] is False

    @pytest.mark.asyncio
    async def test_malformed_tool_arguments(self, harness: _Harness) -> None:
        harness.reply(completion("", [tool_call("moveShape", "{oops")]))

        response = await harness.run()

        assert response.error_kind == ErrorKind.VALIDATION_ERROR
        assert response.suggestions == ("Try rephrasing your command",)

    @pytest.mark.asyncio
    async def test_upstream_authentication_failure(self, harness: _Harness) -> None:
        harness.reply(status_error(401))

        response = await harness.run()

        assert response.error_kind == ErrorKind.AUTHENTICATION_REQUIRED
        assert response.command_id is not None

    @pytest.mark.asyncio
    async def test_upstream_unavailable_after_retries(self, harness: _Harness, sleep: RecordingSleep) -> None:
        harness.reply(status_error(502), status_error(502), status_error(502))

        response = await harness.run()

        assert response.error_kind == ErrorKind.UPSTREAM_UNAVAILABLE
        assert sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_unexpected_error_becomes_internal(self, harness: _Harness) -> None:
        harness.reply(KeyError("boom"))

        response = await harness.run()

        assert response.error_kind == ErrorKind.INTERNAL_ERROR

    @pytest.mark.asyncio
    async def test_failed_command_does_not_block_the_next(self, harness: _Harness) -> None:
        harness.reply(status_error(400), completion("fine"))

        first = await harness.run()
        second = await harness.run()

        assert first.error_kind == ErrorKind.INVALID_REQUEST
        assert second.success


# =============================================================================
# Request checks
# =============================================================================


class TestRequestChecks:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "overrides,kind,message",
        [
            ({"text": "   "}, ErrorKind.INVALID_REQUEST, "Command text is required"),
            ({"text": "x" * 1001}, ErrorKind.INVALID_REQUEST, "Command too long (max 1000 characters)"),
            ({"documentId": ""}, ErrorKind.INVALID_REQUEST, "Canvas ID is required"),
            ({"userId": ""}, ErrorKind.AUTHENTICATION_REQUIRED, "User must be authenticated"),
            ({"documentId": "missing"}, ErrorKind.DOCUMENT_NOT_FOUND, 'Canvas "missing" not found'),
            ({"conversationHistory": 7}, ErrorKind.INVALID_REQUEST, "conversationHistory must be a list of messages"),
            ({"conversationHistory": ["earlier"]}, ErrorKind.INVALID_REQUEST, "conversationHistory entries must be objects"),
            ({"selectedIds": 5}, ErrorKind.INVALID_REQUEST, "selectedIds must be a list of strings"),
            ({"selectedIds": [1, 2]}, ErrorKind.INVALID_REQUEST, "selectedIds must be a list of strings"),
        ],
    )
    async def test_rejected_before_queueing(self, harness: _Harness, overrides, kind, message) -> None:
        text = overrides.pop("text", "do something")

        response = await harness.run(text, **overrides)

        assert not response.success
        assert response.error_kind == kind
        assert response.message == message
        assert response.command_id is None
        assert harness.transport.requests == []

    @pytest.mark.asyncio
    async def test_accepts_request_objects(self, harness: _Harness) -> None:
        harness.reply(completion("hi"))

        response = await harness.orchestrator.handle(
            CommandRequest(text="hello", document_id=DOCUMENT_ID, user_id="user-1")
        )

        assert response.success


# =============================================================================
# Queue integration
# =============================================================================


class TestQueueIntegration:
    @pytest.mark.asyncio
    async def test_observers_and_status(self, harness: _Harness) -> None:
        seen = []
        harness.orchestrator.subscribe(lambda snapshot: seen.append(snapshot.changed.status.value))
        harness.reply(completion("ok"))

        await harness.run()

        assert seen == ["pending", "processing", "completed"]
        status = harness.orchestrator.queue_status(DOCUMENT_ID)
        assert status.size == 0
        assert harness.orchestrator.cancel(DOCUMENT_ID, "nope", "user-1") is False

    @pytest.mark.asyncio
    async def test_aclose_closes_gateway(self, harness: _Harness) -> None:
        closed = []

        async def _aclose() -> None:
            closed.append(True)

        harness.transport.aclose = _aclose
        await harness.orchestrator.aclose()

        assert closed == [True]


# =============================================================================
# Large canvas scenario
# =============================================================================


class TestLargeCanvasScenario:
    @pytest.mark.asyncio
    async def test_find_red_shapes_on_busy_canvas_through_rate_limits(self) -> None:
        store = InMemoryDocumentStore()
        store.create_document(
            DOCUMENT_ID,
            [
                make_object(f"obj-{i}", color="#EF4444" if i % 10 == 0 else "#3B82F6", timestamp=1_000 + i)
                for i in range(150)
            ],
            selected_ids=["obj-10", "obj-20"],
        )
        sleep = RecordingSleep()
        harness = _Harness(store, sleep)
        statuses = []
        harness.orchestrator.subscribe(lambda snapshot: statuses.append(snapshot.changed.status.value))
        harness.reply(
            status_error(429),
            status_error(429),
            completion("Searching", [tool_call("findShapesByColor", {"color": "red"}, "call_red")]),
            completion("There are 15 red shapes."),
        )

        response = await harness.run("find all red shapes")

        assert response.success
        assert response.outcome == CommandOutcome.ANSWERED
        assert response.iterations == 2
        assert response.assistant_text == "There are 15 red shapes."
        assert sleep.delays == [2.0, 4.0]
        assert statuses == ["pending", "processing", "completed"]

        (query,) = response.operations
        assert query.data["count"] == 15
        assert query.data["shapeIds"][:2] == ["obj-0", "obj-10"]

        assert len(harness.transport.requests) == 4
        system_prompt = harness.transport.requests[0]["messages"][0]["content"]
        assert "- Total objects: 150" in system_prompt
        assert "- Selected objects (2):" in system_prompt
        assert "- Recently created/edited objects:" in system_prompt
        assert system_prompt.count("  - rectangle (") == 7
        assert "All objects" not in system_prompt

        follow_up = harness.transport.requests[3]["messages"]
        assert [item["role"] for item in follow_up] == ["system", "user", "assistant", "tool"]
        assert follow_up[3]["tool_call_id"] == "call_red"
        assert "obj-140" in follow_up[3]["content"]
