"""WebSocket frame shapes.

Every frame is a JSON object ``{"type": ..., "payload": {...}}``.

Server -> client: connected, chunk, complete, error, file_operation.
Client -> server: chat, abort.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Union

from pagebridge.engine.errors import InvalidMessageError
from pagebridge.shared.models.conversation import ElementInfo, FileOperation


def _frame(frame_type: str, **payload: Any) -> dict[str, Any]:
    return {"type": frame_type, "payload": payload}


def connected_frame(connection_id: str) -> dict[str, Any]:
    return _frame("connected", connectionId=connection_id)


def chunk_frame(conversation_id: str, content: str, message_id: str) -> dict[str, Any]:
    return _frame(
        "chunk",
        conversationId=conversation_id,
        content=content,
        messageId=message_id,
    )


def complete_frame(
    conversation_id: str,
    message_id: str,
    full_content: str,
    session_id: str | None = None,
) -> dict[str, Any]:
    frame = _frame(
        "complete",
        conversationId=conversation_id,
        messageId=message_id,
        fullContent=full_content,
    )
    if session_id:
        frame["payload"]["sessionId"] = session_id
    return frame


def error_frame(conversation_id: str, error: str, code: str) -> dict[str, Any]:
    return _frame("error", conversationId=conversation_id, error=error, code=code)


def file_operation_frame(
    conversation_id: str,
    message_id: str,
    operation: FileOperation,
) -> dict[str, Any]:
    return _frame(
        "file_operation",
        conversationId=conversation_id,
        messageId=message_id,
        operation=operation.to_dict(),
    )


# ── Client frames ──


@dataclass
class ChatRequest:
    conversation_id: str
    message: str
    elements: list[ElementInfo] = field(default_factory=list)
    page_url: str | None = None
    attachments: list[str] = field(default_factory=list)


@dataclass
class AbortRequest:
    conversation_id: str


ClientFrame = Union[ChatRequest, AbortRequest]


def _parse_chat(payload: Any) -> ChatRequest:
    if not isinstance(payload, dict):
        raise InvalidMessageError("Invalid chat payload")
    conversation_id = payload.get("conversationId")
    message = payload.get("message")
    elements = payload.get("elements")
    page_url = payload.get("pageUrl")
    attachments = payload.get("attachments")
    if not isinstance(conversation_id, str) or not isinstance(message, str):
        raise InvalidMessageError("Invalid chat payload")
    if not isinstance(elements, list) or not all(isinstance(e, dict) for e in elements):
        raise InvalidMessageError("Invalid chat payload")
    if page_url is not None and not isinstance(page_url, str):
        raise InvalidMessageError("Invalid chat payload")
    if attachments is not None and (
        not isinstance(attachments, list)
        or not all(isinstance(a, str) for a in attachments)
    ):
        raise InvalidMessageError("Invalid chat payload")
    return ChatRequest(
        conversation_id=conversation_id,
        message=message,
        elements=[ElementInfo(e) for e in elements],
        page_url=page_url,
        attachments=list(attachments or []),
    )


def _parse_abort(payload: Any) -> AbortRequest:
    if not isinstance(payload, dict) or not isinstance(payload.get("conversationId"), str):
        raise InvalidMessageError("Invalid abort payload")
    return AbortRequest(conversation_id=payload["conversationId"])


def parse_client_frame(raw: str | bytes) -> ClientFrame:
    """Parse one client text frame. Raises InvalidMessageError."""
    try:
        data = json.loads(raw)
    except ValueError as exc:
        raise InvalidMessageError("Invalid message format") from exc
    if not isinstance(data, dict):
        raise InvalidMessageError("Invalid message format")

    frame_type = data.get("type")
    if frame_type == "chat":
        return _parse_chat(data.get("payload"))
    if frame_type == "abort":
        return _parse_abort(data.get("payload"))
    raise InvalidMessageError("Invalid message type")
