"""Adapters package: agent stream records to bridge events.

Holds the event dataclasses and the tool-use correlator that turns
tool results into file operations.
"""
from __future__ import annotations

__all__ = [
    "BridgeEvent",
    "event_to_dict",
    "ToolUseCorrelator",
    "classify_tool_result",
    "normalize_tool_name",
]

from pagebridge.adapters.events import BridgeEvent, event_to_dict
from pagebridge.adapters.file_tracker import (
    ToolUseCorrelator,
    classify_tool_result,
    normalize_tool_name,
)
