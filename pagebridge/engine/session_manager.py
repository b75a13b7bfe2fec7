"""Session manager: one exclusive agent run per conversation.

Per conversation id the lifecycle is

    Idle -> Running -> {Completed | Errored | Aborted} -> Idle

The ``ActiveSessionRegistry`` holds the Running entries. A second chat
for a conversation that is already running is rejected with
``SessionBusyError``; it is never queued and never replaces the
running one.
"""
from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

from pagebridge.adapters.events import BridgeEvent, FileOperationDetected, TextDelta
from pagebridge.engine.errors import (
    BridgeError,
    ConversationNotFoundError,
    SessionBusyError,
    StorageError,
)
from pagebridge.engine.executor import (
    AgentExecutor,
    RunAborted,
    RunCompleted,
    RunErrored,
    RunOutcome,
)
from pagebridge.engine.prompt_builder import build_prompt
from pagebridge.shared.models.conversation import (
    ElementInfo,
    FileOperation,
    Message,
    MessageRole,
    _gen_id,
)

if TYPE_CHECKING:
    from pagebridge.engine.config import BridgeConfig
    from pagebridge.engine.providers.base import Provider
    from pagebridge.shared.services.persistence import ConversationStore

logger = logging.getLogger(__name__)


@dataclass
class ActiveSession:
    conversation_id: str
    executor: AgentExecutor


class ActiveSessionRegistry:
    """Running sessions keyed by conversation id."""

    def __init__(self) -> None:
        self._sessions: dict[str, ActiveSession] = {}

    def acquire(self, conversation_id: str, executor: AgentExecutor) -> ActiveSession:
        """Claim the slot for ``conversation_id`` or raise SessionBusyError."""
        if conversation_id in self._sessions:
            raise SessionBusyError(conversation_id)
        session = ActiveSession(conversation_id=conversation_id, executor=executor)
        self._sessions[conversation_id] = session
        return session

    def release(self, conversation_id: str, session: ActiveSession) -> bool:
        """Drop the entry only if it is still ``session``."""
        if self._sessions.get(conversation_id) is not session:
            return False
        del self._sessions[conversation_id]
        return True

    def get(self, conversation_id: str) -> ActiveSession | None:
        return self._sessions.get(conversation_id)

    def is_active(self, conversation_id: str) -> bool:
        return conversation_id in self._sessions

    def active_ids(self) -> list[str]:
        return list(self._sessions)

    def __len__(self) -> int:
        return len(self._sessions)


@dataclass
class ChatCallbacks:
    """Async sinks for one chat run.

    on_chunk(text, message_id)
    on_file_operation(operation, message_id)
    on_complete(full_content, message_id, session_id)
    on_error(exc)
    """
    on_chunk: Callable[[str, str], Awaitable[None]]
    on_complete: Callable[[str, str, "str | None"], Awaitable[None]]
    on_error: Callable[[BaseException], Awaitable[None]]
    on_file_operation: Callable[[FileOperation, str], Awaitable[None]] | None = None


class SessionManager:
    """Runs chats against the agent and persists the transcript."""

    def __init__(
        self,
        store: ConversationStore,
        provider: Provider,
        registry: ActiveSessionRegistry | None = None,
        *,
        config: BridgeConfig | None = None,
    ) -> None:
        self._store = store
        self._provider = provider
        self._registry = registry if registry is not None else ActiveSessionRegistry()
        self._config = config

    @property
    def registry(self) -> ActiveSessionRegistry:
        return self._registry

    def is_active(self, conversation_id: str) -> bool:
        return self._registry.is_active(conversation_id)

    def provider_available(self) -> bool:
        return self._provider.is_available()

    def abort(self, conversation_id: str) -> bool:
        """Terminate the active run for ``conversation_id``.

        Returns False when nothing is running or the process already
        exited; the run's own completion clears the entry then.
        """
        session = self._registry.get(conversation_id)
        if session is None:
            return False
        if not session.executor.abort():
            logger.info("Abort for %s arrived after the run finished", conversation_id)
            return False
        self._registry.release(conversation_id, session)
        logger.info("Aborted session for conversation %s", conversation_id)
        return True

    def abort_all(self) -> int:
        count = 0
        for conversation_id in self._registry.active_ids():
            if self.abort(conversation_id):
                count += 1
        return count

    def _new_executor(self, event_callback) -> AgentExecutor:
        if self._config is None:
            return AgentExecutor(self._provider, event_callback=event_callback)
        return AgentExecutor(
            self._provider,
            max_line_bytes=self._config.max_line_bytes,
            read_size=self._config.read_size,
            event_callback=event_callback,
        )

    async def execute_chat(
        self,
        conversation_id: str,
        message: str,
        elements: Sequence[ElementInfo],
        page_url: str | None = None,
        *,
        attachments: Sequence[str] | None = None,
        callbacks: ChatCallbacks,
    ) -> RunOutcome:
        message_id = _gen_id()

        async def on_event(event: BridgeEvent) -> None:
            if isinstance(event, TextDelta):
                await callbacks.on_chunk(event.text, message_id)
            elif isinstance(event, FileOperationDetected):
                if callbacks.on_file_operation is not None and event.operation is not None:
                    await callbacks.on_file_operation(event.operation, message_id)

        executor = self._new_executor(on_event)
        # Claimed before the first await so two chats cannot both pass.
        try:
            session = self._registry.acquire(conversation_id, executor)
        except SessionBusyError as exc:
            logger.warning("Rejected chat for busy conversation %s", conversation_id)
            await callbacks.on_error(exc)
            return RunErrored(exc)

        try:
            return await self._run_chat(
                session, message_id, message, elements, page_url, attachments, callbacks,
            )
        finally:
            self._registry.release(conversation_id, session)

    async def _run_chat(
        self,
        session: ActiveSession,
        message_id: str,
        message: str,
        elements: Sequence[ElementInfo],
        page_url: str | None,
        attachments: Sequence[str] | None,
        callbacks: ChatCallbacks,
    ) -> RunOutcome:
        conversation_id = session.conversation_id
        elements = [e if isinstance(e, ElementInfo) else ElementInfo(e) for e in elements]

        try:
            conversation = await self._store.get(conversation_id)
            if conversation is None:
                raise ConversationNotFoundError(conversation_id)
            user_message = Message(role=MessageRole.USER, content=message, elements=elements)
            if await self._store.append_message(conversation_id, user_message) is None:
                raise ConversationNotFoundError(conversation_id)
        except BridgeError as exc:
            logger.error("Chat setup failed for %s: %s", conversation_id, exc)
            await callbacks.on_error(exc)
            return RunErrored(exc)

        prompt = build_prompt(message, elements, page_url, attachments)
        resume_token = conversation.session_token
        logger.info(
            "Starting run for conversation %s (message_id=%s resume=%s elements=%d)",
            conversation_id, message_id, bool(resume_token), len(elements),
        )

        outcome = await session.executor.execute(prompt, resume_token)

        if isinstance(outcome, RunAborted):
            logger.info("Run for conversation %s was aborted", conversation_id)
            return outcome

        if isinstance(outcome, RunErrored):
            self._registry.release(conversation_id, session)
            await callbacks.on_error(outcome.error)
            return outcome

        try:
            await self._persist_completion(conversation_id, resume_token, message_id, outcome)
        except (StorageError, ConversationNotFoundError) as exc:
            logger.error("Failed to persist run result for %s: %s", conversation_id, exc)
            self._registry.release(conversation_id, session)
            await callbacks.on_error(exc)
            return RunErrored(exc)

        self._registry.release(conversation_id, session)
        await callbacks.on_complete(outcome.content, message_id, outcome.session_id)
        return outcome

    async def _persist_completion(
        self,
        conversation_id: str,
        resume_token: str | None,
        message_id: str,
        outcome: RunCompleted,
    ) -> None:
        """Raises ConversationNotFoundError if the conversation was deleted mid-run."""
        if outcome.session_id and not resume_token:
            if await self._store.set_session_token(conversation_id, outcome.session_id) is None:
                raise ConversationNotFoundError(conversation_id)
        assistant_message = Message(
            id=message_id,
            role=MessageRole.ASSISTANT,
            content=outcome.content,
            file_operations=list(outcome.file_operations),
        )
        if await self._store.append_message(conversation_id, assistant_message) is None:
            raise ConversationNotFoundError(conversation_id)
