"""Tests for pipeline value types."""

from __future__ import annotations

import json

import pytest

from canvasagent.ai.orchestration.errors import InvalidRequestError
from canvasagent.ai.orchestration.types import (
    CommandOutcome,
    CommandRequest,
    CommandResponse,
    ExecutionResult,
    Message,
    OperationCall,
    TokenUsage,
)
from canvasagent.canvas.document_model import CanvasObject, CanvasSize, DocumentSnapshot
from tests.helpers import make_object


def test_message_chat_params() -> None:
    assert Message.user("hi").to_chat_param() == {"role": "user", "content": "hi"}
    assert Message.tool("out", "call_1").to_chat_param() == {"role": "tool", "content": "out", "tool_call_id": "call_1"}
    assistant = Message.assistant("", [{"id": "call_1"}]).to_chat_param()
    assert assistant["tool_calls"] == [{"id": "call_1"}]
    assert "tool_calls" not in Message.assistant("plain").to_chat_param()


def test_operation_call_wire_format() -> None:
    call = OperationCall(call_id="call_1", name="moveShape", parameters={"shapeId": "a", "x": 1})
    wire = call.to_tool_call()

    assert wire["function"]["name"] == "moveShape"
    assert json.loads(wire["function"]["arguments"]) == {"shapeId": "a", "x": 1}


def test_token_usage_adds() -> None:
    usage = TokenUsage(input=3, output=4) + TokenUsage(input=10, output=1)
    assert usage.to_dict() == {"input": 13, "output": 5, "total": 18}


def test_request_from_mapping_accepts_both_spellings() -> None:
    camel = CommandRequest.from_mapping(
        {"text": "go", "canvasId": "doc", "userId": "u", "selectedIds": ["a"], "conversationHistory": [{"role": "user"}]}
    )
    snake = CommandRequest.from_mapping({"command": "go", "document_id": "doc", "user_id": "u"})

    assert camel.document_id == snake.document_id == "doc"
    assert camel.selected_ids == ("a",)
    assert snake.selected_ids is None
    assert camel.conversation_history == ({"role": "user"},)


@pytest.mark.parametrize(
    "field,value",
    [
        ("conversationHistory", "not a list"),
        ("conversationHistory", [{"role": "user"}, "junk"]),
        ("selectedIds", "rect-1"),
        ("selectedIds", ["rect-1", None]),
    ],
)
def test_request_from_mapping_rejects_malformed_fields(field: str, value: object) -> None:
    with pytest.raises(InvalidRequestError):
        CommandRequest.from_mapping({"text": "go", "documentId": "doc", "userId": "u", field: value})


def test_success_response_payload() -> None:
    response = CommandResponse(
        success=True,
        command_id="cmd-1",
        operations=(ExecutionResult(operation="createShape", success=True, message="ok", created_ids=("n1",)),),
        assistant_text="Done",
        elapsed_ms=12,
        token_usage=TokenUsage(input=1, output=2),
        iterations=1,
        outcome=CommandOutcome.APPLIED,
    )

    payload = response.to_dict()

    assert payload["operations"] == [
        {"tool": "createShape", "success": True, "message": "ok", "createdIds": ["n1"], "modifiedIds": []}
    ]
    assert payload["tokenUsage"]["total"] == 3
    assert payload["outcome"] == "applied"


def test_failure_response_payload() -> None:
    payload = CommandResponse(success=False, error_kind="timeout", message="late", suggestions=("retry",)).to_dict()
    assert payload == {"success": False, "errorKind": "timeout", "message": "late", "suggestions": ["retry"]}


def test_canvas_object_keeps_unknown_fields_as_extra() -> None:
    obj = CanvasObject.from_mapping(make_object("a", stroke="#000000", lastEditedAt=5))

    assert obj.extra["stroke"] == "#000000"
    assert obj.edited_or_created_at == 5
    assert "stroke" not in obj.lean()


def test_snapshot_lookup_and_selection() -> None:
    snapshot = DocumentSnapshot.from_mapping("doc", [make_object("a")], canvas_size=None)

    assert snapshot.canvas_size == CanvasSize()
    assert snapshot.get("a").id == "a"
    assert snapshot.get("b") is None
    assert snapshot.with_selection(["a"]).selected_ids == ("a",)
