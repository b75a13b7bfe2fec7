"""Conversation, message and file-operation models.

On-disk and wire representations use the camelCase keys the side
panel expects; the dataclasses use snake_case attributes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any
import uuid


DEFAULT_TITLE = "New conversation"


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def _gen_id() -> str:
    return str(uuid.uuid4())


class MessageRole(Enum):
    USER = "user"
    ASSISTANT = "assistant"


class FileOperationType(Enum):
    READ = "read"
    EDIT = "edit"
    WRITE = "write"
    CREATE = "create"
    DELETE = "delete"


@dataclass(frozen=True)
class PatchHunk:
    """One unified-diff hunk; each line is prefixed '+', '-' or ' '."""
    old_start: int
    old_lines: int
    new_start: int
    new_lines: int
    lines: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "oldStart": self.old_start,
            "oldLines": self.old_lines,
            "newStart": self.new_start,
            "newLines": self.new_lines,
            "lines": list(self.lines),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PatchHunk:
        return cls(
            old_start=int(data.get("oldStart", 0)),
            old_lines=int(data.get("oldLines", 0)),
            new_start=int(data.get("newStart", 0)),
            new_lines=int(data.get("newLines", 0)),
            lines=tuple(str(line) for line in data.get("lines") or ()),
        )


@dataclass(frozen=True)
class FileOperation:
    """A file effect inferred from a tool result. Never mutated after emission."""
    type: FileOperationType
    file_path: str
    tool_name: str
    old_string: str | None = None
    new_string: str | None = None
    patch: tuple[PatchHunk, ...] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "type": self.type.value,
            "filePath": self.file_path,
            "toolName": self.tool_name,
        }
        if self.old_string is not None:
            data["oldString"] = self.old_string
        if self.new_string is not None:
            data["newString"] = self.new_string
        if self.patch is not None:
            data["patch"] = [hunk.to_dict() for hunk in self.patch]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FileOperation:
        patch = data.get("patch")
        return cls(
            type=FileOperationType(data["type"]),
            file_path=data["filePath"],
            tool_name=data.get("toolName", ""),
            old_string=data.get("oldString"),
            new_string=data.get("newString"),
            patch=tuple(PatchHunk.from_dict(h) for h in patch) if patch is not None else None,
        )


class ElementInfo(dict):
    """Opaque selected-element record produced by the browser extension.

    Kept as a plain mapping so unknown keys survive a round trip; the
    properties below cover the fields the prompt builder reads.
    """

    @property
    def tag_name(self) -> str:
        return str(self.get("tagName") or "")

    @property
    def id_attr(self) -> str | None:
        return self.get("id_attr") or None

    @property
    def class_name(self) -> str:
        return str(self.get("className") or "")

    @property
    def selector(self) -> str:
        return str(self.get("selector") or "")

    @property
    def xpath(self) -> str:
        return str(self.get("xpath") or "")

    @property
    def comment(self) -> str:
        return str(self.get("comment") or "")

    @property
    def outer_html(self) -> str:
        return str(self.get("outerHTML") or "")

    @property
    def computed_styles(self) -> dict[str, Any]:
        styles = self.get("computedStyles")
        return styles if isinstance(styles, dict) else {}


@dataclass
class Message:
    role: MessageRole
    content: str
    id: str = field(default_factory=_gen_id)
    elements: list[ElementInfo] = field(default_factory=list)
    file_operations: list[FileOperation] = field(default_factory=list)
    timestamp: str = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "role": self.role.value,
            "content": self.content,
        }
        if self.elements:
            data["elements"] = [dict(e) for e in self.elements]
        if self.file_operations:
            data["fileOperations"] = [op.to_dict() for op in self.file_operations]
        data["timestamp"] = self.timestamp
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        return cls(
            id=data["id"],
            role=MessageRole(data["role"]),
            content=data.get("content", ""),
            elements=[ElementInfo(e) for e in data.get("elements") or []],
            file_operations=[
                FileOperation.from_dict(op) for op in data.get("fileOperations") or []
            ],
            timestamp=data.get("timestamp", ""),
        )


@dataclass
class Conversation:
    """Conversation summary (no message history)."""
    id: str
    session_token: str | None = None
    title: str = DEFAULT_TITLE
    created_at: str = field(default_factory=_utcnow)
    updated_at: str = field(default_factory=_utcnow)

    @property
    def has_default_title(self) -> bool:
        return self.title == DEFAULT_TITLE

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "sessionId": self.session_token,
            "title": self.title,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Conversation:
        return cls(
            id=data["id"],
            session_token=data.get("sessionId"),
            title=data.get("title") or DEFAULT_TITLE,
            created_at=data.get("createdAt", ""),
            updated_at=data.get("updatedAt", ""),
        )


@dataclass
class ConversationData(Conversation):
    """Full conversation record as stored on disk."""
    messages: list[Message] = field(default_factory=list)

    def summary(self) -> Conversation:
        return Conversation(
            id=self.id,
            session_token=self.session_token,
            title=self.title,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["messages"] = [m.to_dict() for m in self.messages]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConversationData:
        base = Conversation.from_dict(data)
        return cls(
            id=base.id,
            session_token=base.session_token,
            title=base.title,
            created_at=base.created_at,
            updated_at=base.updated_at,
            messages=[Message.from_dict(m) for m in data.get("messages") or []],
        )


@dataclass
class PendingToolUse:
    """A tool invocation awaiting its result within one run. Never persisted."""
    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)
