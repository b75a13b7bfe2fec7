"""Event types produced while parsing one agent run.

The stream parser turns raw agent records into these dataclasses;
the executor forwards them to the session manager in parse order.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from pagebridge.shared.models.conversation import FileOperation


@dataclass
class BridgeEvent:
    """Base event emitted during a run."""
    event_type: str = ""


@dataclass
class SessionEstablished(BridgeEvent):
    event_type: str = "session_established"
    session_id: str = ""


@dataclass
class TextDelta(BridgeEvent):
    event_type: str = "text_delta"
    text: str = ""


@dataclass
class ToolUseStarted(BridgeEvent):
    event_type: str = "tool_use_started"
    tool_use_id: str = ""
    tool_name: str = ""
    input: dict[str, Any] = field(default_factory=dict)


@dataclass
class FileOperationDetected(BridgeEvent):
    event_type: str = "file_operation"
    tool_use_id: str | None = None
    operation: FileOperation | None = None


@dataclass
class TurnResult(BridgeEvent):
    event_type: str = "turn_result"
    content: str = ""


def event_to_dict(event: BridgeEvent) -> dict[str, Any]:
    """Convert an event dataclass to a plain dict for logging/JSON."""
    d: dict[str, Any] = {}
    for f in event.__dataclass_fields__:
        val = getattr(event, f)
        if val is None:
            continue
        if isinstance(val, FileOperation):
            val = val.to_dict()
        d[f] = val
    if "event_type" in d:
        d["event"] = d.pop("event_type")
    return d
