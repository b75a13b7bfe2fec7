"""Relay between WebSocket frames and the session manager.

Each ``chat`` frame runs as its own task so the socket keeps reading
and an ``abort`` for the same conversation can arrive mid-run. Frames
produced by a run go only to the connection that sent the chat.
"""
from __future__ import annotations

import asyncio
import logging

from pagebridge.engine.errors import InvalidMessageError, error_code_for
from pagebridge.engine.session_manager import ChatCallbacks, SessionManager
from pagebridge.shared.models.conversation import FileOperation

from .connections import ConnectionRegistry
from .frames import (
    AbortRequest,
    ChatRequest,
    chunk_frame,
    complete_frame,
    error_frame,
    file_operation_frame,
    parse_client_frame,
)

logger = logging.getLogger(__name__)


class ChatRelay:
    """Dispatches client frames and routes run output back as frames."""

    def __init__(self, sessions: SessionManager, connections: ConnectionRegistry) -> None:
        self._sessions = sessions
        self._connections = connections
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    async def handle_text(self, connection_id: str, raw: str) -> None:
        try:
            frame = parse_client_frame(raw)
        except InvalidMessageError as exc:
            logger.warning("Rejected frame from %s: %s", connection_id, exc)
            await self._send_error(connection_id, "", exc)
            return

        if isinstance(frame, ChatRequest):
            logger.info(
                "Processing chat message conversation=%s elements=%d attachments=%d page_url=%s",
                frame.conversation_id, len(frame.elements),
                len(frame.attachments), frame.page_url,
            )
            task = asyncio.create_task(self._run_chat(connection_id, frame))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        elif isinstance(frame, AbortRequest):
            self._handle_abort(frame)

    def _handle_abort(self, frame: AbortRequest) -> None:
        if not self._sessions.abort(frame.conversation_id):
            logger.warning("No active session to abort for %s", frame.conversation_id)

    async def _run_chat(self, connection_id: str, request: ChatRequest) -> None:
        conversation_id = request.conversation_id

        async def on_chunk(content: str, message_id: str) -> None:
            await self._connections.send(
                connection_id, chunk_frame(conversation_id, content, message_id),
            )

        async def on_file_operation(operation: FileOperation, message_id: str) -> None:
            await self._connections.send(
                connection_id, file_operation_frame(conversation_id, message_id, operation),
            )

        async def on_complete(full_content: str, message_id: str, session_id: str | None) -> None:
            logger.info(
                "Sending complete to %s (message_id=%s chars=%d)",
                connection_id, message_id, len(full_content),
            )
            await self._connections.send(
                connection_id,
                complete_frame(conversation_id, message_id, full_content, session_id),
            )

        async def on_error(exc: BaseException) -> None:
            await self._send_error(connection_id, conversation_id, exc)

        callbacks = ChatCallbacks(
            on_chunk=on_chunk,
            on_complete=on_complete,
            on_error=on_error,
            on_file_operation=on_file_operation,
        )
        try:
            await self._sessions.execute_chat(
                conversation_id,
                request.message,
                request.elements,
                request.page_url,
                attachments=request.attachments,
                callbacks=callbacks,
            )
        except asyncio.CancelledError:
            logger.info("Chat task for %s cancelled", conversation_id)
            raise
        except Exception as exc:
            logger.exception("Chat execution error for %s", conversation_id)
            await self._send_error(connection_id, conversation_id, exc)

    async def _send_error(self, connection_id: str, conversation_id: str, exc: BaseException) -> None:
        await self._connections.send(
            connection_id,
            error_frame(conversation_id, str(exc) or type(exc).__name__, error_code_for(exc)),
        )

    async def shutdown(self) -> None:
        """Cancel in-flight chat tasks and wait for them to unwind."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Cancelled %d in-flight chat task(s)", len(tasks))
