"""Incremental parser for the agent's ``--output-format stream-json`` output.

The agent writes one JSON object per line, but stdout arrives in
arbitrary byte chunks. The parser keeps one partial-line buffer and
turns every complete line into zero or more ``BridgeEvent`` objects.

Recognized record types:
  system:    ``subtype == "init"`` carries the session id
  assistant: text blocks and tool_use blocks (or a flat ``content``)
  user:      tool results echoed back, correlated by tool_use_id
  result:    final text; authoritative over accumulated deltas
"""
from __future__ import annotations

import codecs
import json
import logging
from typing import Any

from pagebridge.adapters.events import (
    BridgeEvent,
    FileOperationDetected,
    SessionEstablished,
    TextDelta,
    ToolUseStarted,
    TurnResult,
)
from pagebridge.adapters.file_tracker import ToolUseCorrelator
from pagebridge.engine.errors import StreamOverflowError

logger = logging.getLogger(__name__)

DEFAULT_MAX_LINE_BYTES = 10 * 1024 * 1024


class StreamParser:
    """Per-run parser state: line buffer, accumulated text, session id."""

    def __init__(
        self,
        correlator: ToolUseCorrelator | None = None,
        *,
        max_line_bytes: int = DEFAULT_MAX_LINE_BYTES,
    ) -> None:
        self._correlator = correlator if correlator is not None else ToolUseCorrelator()
        self._max_line_bytes = max_line_bytes
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._full_content = ""
        self._session_id: str | None = None

    @property
    def full_content(self) -> str:
        return self._full_content

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def correlator(self) -> ToolUseCorrelator:
        return self._correlator

    def feed(self, chunk: bytes) -> list[BridgeEvent]:
        """Consume one raw chunk; return events for every completed line."""
        self._buffer += self._decoder.decode(chunk)
        *lines, self._buffer = self._buffer.split("\n")
        if self._buffer_exceeds_limit():
            raise StreamOverflowError(self._max_line_bytes)

        events: list[BridgeEvent] = []
        for line in lines:
            events.extend(self._process_line(line))
        return events

    def flush(self) -> list[BridgeEvent]:
        """Process a trailing line left unterminated at EOF."""
        self._buffer += self._decoder.decode(b"", final=True)
        line, self._buffer = self._buffer, ""
        return self._process_line(line)

    def _process_line(self, line: str) -> list[BridgeEvent]:
        stripped = line.strip()
        if not stripped:
            return []
        try:
            record = json.loads(stripped)
        except ValueError:
            logger.warning("Failed to parse agent output line: %.200s", stripped)
            return []
        if not isinstance(record, dict):
            logger.warning("Ignoring non-object agent output line: %.200s", stripped)
            return []

        rtype = record.get("type")
        if rtype == "system":
            return self._on_system(record)
        if rtype == "assistant":
            return self._on_assistant(record)
        if rtype == "user":
            return self._on_user(record)
        if rtype == "result":
            return self._on_result(record)
        logger.debug("Ignoring agent record type=%r", rtype)
        return []

    # ── Record handlers ──

    def _on_system(self, record: dict[str, Any]) -> list[BridgeEvent]:
        session_id = record.get("session_id")
        if record.get("subtype") != "init" or not session_id:
            return []
        if self._session_id is not None:
            return []
        self._session_id = str(session_id)
        logger.info("Received session id from agent: %s", self._session_id)
        return [SessionEstablished(session_id=self._session_id)]

    def _on_assistant(self, record: dict[str, Any]) -> list[BridgeEvent]:
        message = record.get("message")
        blocks = message.get("content") if isinstance(message, dict) else None
        if not isinstance(blocks, list):
            content = record.get("content")
            if isinstance(content, str) and content:
                return [self._append_text(content)]
            return []

        events: list[BridgeEvent] = []
        for block in blocks:
            if not isinstance(block, dict):
                continue
            btype = block.get("type")
            if btype == "text":
                text = block.get("text")
                if isinstance(text, str) and text:
                    events.append(self._append_text(text))
            elif btype == "tool_use":
                tool_id = block.get("id")
                name = block.get("name")
                if not tool_id or not name:
                    continue
                pending = self._correlator.register(str(tool_id), str(name), block.get("input"))
                events.append(ToolUseStarted(
                    tool_use_id=pending.id,
                    tool_name=pending.name,
                    input=pending.input,
                ))
        return events

    def _on_user(self, record: dict[str, Any]) -> list[BridgeEvent]:
        tool_use_id = self._find_tool_use_id(record)
        operation = self._correlator.resolve(tool_use_id, record.get("tool_use_result"))
        if operation is None:
            return []
        return [FileOperationDetected(tool_use_id=tool_use_id, operation=operation)]

    def _on_result(self, record: dict[str, Any]) -> list[BridgeEvent]:
        final = record.get("result")
        if not (isinstance(final, str) and final):
            final = record.get("content")
        if not (isinstance(final, str) and final):
            return []
        self._full_content = final
        return [TurnResult(content=final)]

    # ── Helpers ──

    def _buffer_exceeds_limit(self) -> bool:
        # A UTF-8 char is 1-4 bytes; only encode when the bound is ambiguous.
        size = len(self._buffer)
        if size * 4 <= self._max_line_bytes:
            return False
        if size > self._max_line_bytes:
            return True
        return len(self._buffer.encode("utf-8")) > self._max_line_bytes

    def _append_text(self, text: str) -> TextDelta:
        self._full_content += text
        return TextDelta(text=text)

    @staticmethod
    def _find_tool_use_id(record: dict[str, Any]) -> str | None:
        message = record.get("message")
        blocks = message.get("content") if isinstance(message, dict) else None
        if not isinstance(blocks, list):
            return None
        for block in blocks:
            if isinstance(block, dict) and block.get("tool_use_id"):
                return str(block["tool_use_id"])
        return None
