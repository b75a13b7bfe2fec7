"""Infer file operations from agent tool results.

The agent stream never labels file effects explicitly. A ``tool_use``
block announces a tool call; a later ``user`` record echoes its
result. This module pairs the two by tool-use id and classifies the
result by shape. Shell deletes are recognized from the command text.

All classification is best-effort and lives in
``classify_tool_result()`` so it can be exercised in isolation.
Only a single ``rm`` invocation is recognized: chained commands
(``&&``, ``;``, pipes) and globs are not modelled.
"""
from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from types import MappingProxyType
from typing import Any

from pagebridge.shared.models.conversation import (
    FileOperation,
    FileOperationType,
    PatchHunk,
    PendingToolUse,
)

logger = logging.getLogger(__name__)

_TOOL_NAME_ALIASES: dict[str, str] = {
    "read": "Read",
    "read_file": "Read",
    "write": "Write",
    "write_file": "Write",
    "edit": "Edit",
    "edit_file": "Edit",
    "multiedit": "Edit",
    "bash": "Bash",
    "run_bash": "Bash",
    "run_shell_command": "Bash",
}

_RM_COMMAND_RE = re.compile(r"\brm\s+(?:-[rf]+\s+)*(.+)")


def normalize_tool_name(tool_name: str) -> str:
    """Normalize tool aliases (and MCP-prefixed names) to canonical names."""
    if not tool_name:
        return ""
    bare_name = tool_name
    if bare_name.startswith("mcp__") and bare_name.count("__") >= 2:
        bare_name = bare_name.split("__", 2)[2]
    return _TOOL_NAME_ALIASES.get(bare_name.lower(), bare_name)


def _parse_patch(raw: Any) -> tuple[PatchHunk, ...]:
    if not isinstance(raw, list):
        return ()
    return tuple(PatchHunk.from_dict(h) for h in raw if isinstance(h, dict))


def extract_rm_target(command: str) -> str | None:
    """Return the path removed by a single ``rm`` command, or None."""
    match = _RM_COMMAND_RE.search(command or "")
    if not match:
        return None
    target = match.group(1).strip().replace('"', "").replace("'", "")
    return target or None


def classify_tool_result(
    result: Any,
    pending: PendingToolUse | None,
) -> FileOperation | None:
    """Classify one tool result; first matching rule wins.

    1. text result carrying ``file.filePath``      -> read
    2. ``filePath`` plus a non-empty structuredPatch -> edit
    3. ``type == "create"`` with ``filePath``       -> create
    4. Bash tool whose command is ``rm [-rf] path`` -> delete
    5. anything else                               -> None
    """
    shape = result if isinstance(result, dict) else {}
    result_type = shape.get("type")
    file_path = shape.get("filePath")

    file_info = shape.get("file")
    if result_type == "text" and isinstance(file_info, dict) and file_info.get("filePath"):
        return FileOperation(
            type=FileOperationType.READ,
            file_path=str(file_info["filePath"]),
            tool_name="Read",
        )

    patch = _parse_patch(shape.get("structuredPatch"))
    if file_path and patch:
        return FileOperation(
            type=FileOperationType.EDIT,
            file_path=str(file_path),
            tool_name="Edit",
            old_string=shape.get("oldString"),
            new_string=shape.get("newString"),
            patch=patch,
        )

    if result_type == "create" and file_path:
        return FileOperation(
            type=FileOperationType.CREATE,
            file_path=str(file_path),
            tool_name="Write",
        )

    if pending is not None and normalize_tool_name(pending.name) == "Bash":
        command = str(pending.input.get("command") or "")
        target = extract_rm_target(command)
        if target:
            return FileOperation(
                type=FileOperationType.DELETE,
                file_path=target,
                tool_name="Bash (rm)",
            )

    return None


class ToolUseCorrelator:
    """Tracks outstanding tool uses for one run and resolves their results.

    Usage:
        correlator = ToolUseCorrelator()

        # assistant record with a tool_use block:
        correlator.register(block_id, name, input)

        # user record echoing the result:
        operation = correlator.resolve(tool_use_id, tool_use_result)
    """

    def __init__(self) -> None:
        self._pending: dict[str, PendingToolUse] = {}

    @property
    def pending(self) -> Mapping[str, PendingToolUse]:
        return MappingProxyType(self._pending)

    def register(self, tool_use_id: str, name: str, tool_input: Any = None) -> PendingToolUse:
        pending = PendingToolUse(
            id=tool_use_id,
            name=name,
            input=tool_input if isinstance(tool_input, dict) else {},
        )
        self._pending[tool_use_id] = pending
        logger.debug("Tracking tool use id=%s name=%s", tool_use_id, name)
        return pending

    def resolve(self, tool_use_id: str | None, result: Any) -> FileOperation | None:
        """Classify a result and drop its pending entry whatever the outcome."""
        pending = self._pending.pop(tool_use_id, None) if tool_use_id else None
        if tool_use_id and pending is None:
            logger.debug("Tool result for untracked tool use id=%s", tool_use_id)
        operation = classify_tool_result(result, pending)
        if operation is not None:
            logger.info(
                "File operation detected type=%s path=%s",
                operation.type.value, operation.file_path,
            )
        return operation

    def clear(self) -> None:
        if self._pending:
            logger.debug("Discarding %d unresolved tool use(s)", len(self._pending))
        self._pending.clear()
