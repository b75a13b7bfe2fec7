"""Conversation persistence: one JSON file per conversation.

Storage layout:
    <data_dir>/{conversation_id}.json

Each file holds the full conversation record (summary fields plus the
ordered message list). Every operation is a whole-file
read-modify-write. Writers inside this process are serialized per
conversation; nothing guards against a second process writing the
same file.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
import re
import weakref

import aiofiles.os

from pagebridge.engine.errors import InvalidConversationIdError, StorageError
from pagebridge.shared.models.conversation import (
    DEFAULT_TITLE,
    Conversation,
    ConversationData,
    Message,
    MessageRole,
    _utcnow,
)
from pagebridge.shared.services.durable_write import atomic_write_text, read_text
from pagebridge.shared.services.session_naming import generate_title

logger = logging.getLogger(__name__)

BASE_DIR = Path.home() / ".pagebridge" / "conversations"

_SAFE_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")

class ConversationStore:
    """Save and load conversations as JSON files under ``data_dir``."""

    def __init__(self, data_dir: Path | str | None = None) -> None:
        self._dir = Path(data_dir).expanduser() if data_dir is not None else BASE_DIR
        # Entries vanish once no operation holds the lock.
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    @property
    def data_dir(self) -> Path:
        return self._dir

    def _path_for(self, conversation_id: str) -> Path:
        if not _SAFE_ID_RE.match(conversation_id or "") or ".." in conversation_id:
            raise InvalidConversationIdError(conversation_id)
        return self._dir / f"{conversation_id}.json"

    def _lock_for(self, conversation_id: str) -> asyncio.Lock:
        lock = self._locks.get(conversation_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[conversation_id] = lock
        return lock

    async def _ensure_dir(self) -> None:
        try:
            await aiofiles.os.makedirs(self._dir, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"Cannot create data directory {self._dir}: {exc}") from exc

    async def _read(self, conversation_id: str) -> ConversationData | None:
        path = self._path_for(conversation_id)
        if not await aiofiles.os.path.exists(path):
            return None
        try:
            data = json.loads(await read_text(path))
            return ConversationData.from_dict(data)
        except (OSError, ValueError, KeyError, TypeError) as exc:
            logger.error("Failed to read conversation %s: %s", conversation_id, exc)
            raise StorageError(f"Failed to read conversation {conversation_id}: {exc}") from exc

    async def _write(self, conversation: ConversationData) -> None:
        path = self._path_for(conversation.id)
        await self._ensure_dir()
        try:
            await atomic_write_text(path, json.dumps(conversation.to_dict(), indent=2, ensure_ascii=False))
        except OSError as exc:
            logger.error("Failed to write conversation %s: %s", conversation.id, exc)
            raise StorageError(f"Failed to write conversation {conversation.id}: {exc}") from exc

    # ── Queries ──

    async def get(self, conversation_id: str) -> ConversationData | None:
        await self._ensure_dir()
        return await self._read(conversation_id)

    async def list_all(self) -> list[Conversation]:
        """Return conversation summaries, most recently updated first."""
        await self._ensure_dir()
        try:
            names = await aiofiles.os.listdir(self._dir)
        except OSError as exc:
            logger.error("Failed to read conversations directory %s: %s", self._dir, exc)
            return []

        conversations: list[Conversation] = []
        for name in names:
            if not name.endswith(".json") or name.startswith("."):
                continue
            try:
                data = json.loads(await read_text(self._dir / name))
                conversations.append(Conversation.from_dict(data))
            except (OSError, ValueError, KeyError, TypeError):
                logger.warning("Failed to read conversation file: %s", name, exc_info=True)
        conversations.sort(key=lambda c: c.updated_at, reverse=True)
        return conversations

    # ── Mutations ──

    async def create(self, conversation_id: str, title: str | None = None) -> ConversationData:
        now = _utcnow()
        conversation = ConversationData(
            id=conversation_id,
            session_token=None,
            title=title or DEFAULT_TITLE,
            created_at=now,
            updated_at=now,
        )
        async with self._lock_for(conversation_id):
            await self._write(conversation)
        logger.info("Created conversation: %s", conversation_id)
        return conversation

    async def update(
        self,
        conversation_id: str,
        *,
        title: str | None = None,
    ) -> ConversationData | None:
        """Apply a partial update; returns None for an unknown id.

        The session token is not updatable here; see set_session_token.
        """
        async with self._lock_for(conversation_id):
            conversation = await self._read(conversation_id)
            if conversation is None:
                return None
            if title is not None:
                conversation.title = title
            conversation.updated_at = _utcnow()
            await self._write(conversation)
        logger.info("Updated conversation: %s", conversation_id)
        return conversation

    async def set_session_token(self, conversation_id: str, token: str) -> ConversationData | None:
        """Persist the agent session token unless one is already stored."""
        async with self._lock_for(conversation_id):
            conversation = await self._read(conversation_id)
            if conversation is None:
                return None
            if conversation.session_token:
                if conversation.session_token != token:
                    logger.info(
                        "Conversation %s keeps session token %s (ignoring %s)",
                        conversation_id, conversation.session_token, token,
                    )
                return conversation
            conversation.session_token = token
            conversation.updated_at = _utcnow()
            await self._write(conversation)
        logger.info("Session token saved for conversation %s", conversation_id)
        return conversation

    async def append_message(self, conversation_id: str, message: Message) -> ConversationData | None:
        """Append a message; a first user message names the conversation."""
        async with self._lock_for(conversation_id):
            conversation = await self._read(conversation_id)
            if conversation is None:
                return None
            first_message = not conversation.messages
            conversation.messages.append(message)
            conversation.updated_at = _utcnow()
            if (
                first_message
                and conversation.has_default_title
                and message.role is MessageRole.USER
            ):
                conversation.title = generate_title(message.content) or DEFAULT_TITLE
                logger.info(
                    "Auto-generated title for conversation %s: %s",
                    conversation_id, conversation.title,
                )
            await self._write(conversation)
        logger.info("Added %s message to conversation: %s", message.role.value, conversation_id)
        return conversation

    async def delete(self, conversation_id: str) -> bool:
        path = self._path_for(conversation_id)
        async with self._lock_for(conversation_id):
            if not await aiofiles.os.path.exists(path):
                return False
            try:
                await aiofiles.os.remove(path)
            except OSError as exc:
                logger.error("Failed to delete conversation %s: %s", conversation_id, exc)
                return False
        logger.info("Deleted conversation: %s", conversation_id)
        return True
