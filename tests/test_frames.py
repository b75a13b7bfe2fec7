"""Tests for WebSocket frame parsing and construction."""
from __future__ import annotations

import json

import pytest

from pagebridge.engine.errors import InvalidMessageError
from pagebridge.server.frames import (
    AbortRequest,
    ChatRequest,
    complete_frame,
    error_frame,
    file_operation_frame,
    parse_client_frame,
)
from pagebridge.shared.models.conversation import FileOperation, FileOperationType


def _raw(frame_type, payload):
    return json.dumps({"type": frame_type, "payload": payload})


def test_parse_chat():
    frame = parse_client_frame(_raw("chat", {
        "conversationId": "c1",
        "message": "hello",
        "elements": [{"tagName": "a", "selector": "a.nav"}],
        "pageUrl": "http://localhost:3000/",
        "attachments": ["/tmp/a.css"],
    }))
    assert isinstance(frame, ChatRequest)
    assert frame.conversation_id == "c1"
    assert frame.elements[0].selector == "a.nav"
    assert frame.page_url == "http://localhost:3000/"
    assert frame.attachments == ["/tmp/a.css"]


def test_parse_chat_minimal():
    frame = parse_client_frame(_raw("chat", {"conversationId": "c1", "message": "m", "elements": []}))
    assert frame.page_url is None
    assert frame.attachments == []


def test_parse_abort():
    frame = parse_client_frame(_raw("abort", {"conversationId": "c9"}))
    assert frame == AbortRequest(conversation_id="c9")


@pytest.mark.parametrize(
    "raw, reason",
    [
        ("not json", "Invalid message format"),
        ("[1, 2]", "Invalid message format"),
        (_raw("ping", {}), "Invalid message type"),
        (_raw("chat", {"conversationId": "c1", "message": "m"}), "Invalid chat payload"),
        (_raw("chat", {"conversationId": 1, "message": "m", "elements": []}), "Invalid chat payload"),
        (_raw("chat", {"conversationId": "c1", "message": "m", "elements": [], "pageUrl": 5}),
         "Invalid chat payload"),
        (_raw("chat", {"conversationId": "c1", "message": "m", "elements": ["x"]}),
         "Invalid chat payload"),
        (_raw("abort", {}), "Invalid abort payload"),
        (_raw("abort", None), "Invalid abort payload"),
    ],
)
def test_invalid_frames(raw, reason):
    with pytest.raises(InvalidMessageError) as excinfo:
        parse_client_frame(raw)
    assert str(excinfo.value) == reason
    assert excinfo.value.code == "INVALID_MESSAGE"


def test_server_frames():
    assert complete_frame("c1", "m1", "text") == {
        "type": "complete",
        "payload": {"conversationId": "c1", "messageId": "m1", "fullContent": "text"},
    }
    assert complete_frame("c1", "m1", "text", "sess")["payload"]["sessionId"] == "sess"
    assert error_frame("", "bad", "INVALID_MESSAGE")["payload"] == {
        "conversationId": "",
        "error": "bad",
        "code": "INVALID_MESSAGE",
    }
    op = FileOperation(type=FileOperationType.DELETE, file_path="x.txt", tool_name="Bash (rm)")
    frame = file_operation_frame("c1", "m1", op)
    assert frame["type"] == "file_operation"
    assert frame["payload"]["operation"] == {"type": "delete", "filePath": "x.txt", "toolName": "Bash (rm)"}
