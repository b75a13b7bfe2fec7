"""One agent run: spawn, stream-parse, correlate, report an outcome.

``AgentExecutor`` ties a provider's ``AgentProcess`` to a
``StreamParser`` and forwards parsed events to an async callback as
they arrive. Every run ends in exactly one ``RunOutcome``:

    RunCompleted(content, session_id, file_operations)
    RunErrored(error)
    RunAborted()

An executor is single-use; create one per chat request.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Union

from pagebridge.adapters.events import BridgeEvent, FileOperationDetected
from pagebridge.engine.config import EventCallback, fire_event
from pagebridge.engine.errors import AgentExecutionError, BridgeError
from pagebridge.engine.providers.base import DEFAULT_READ_SIZE, AgentProcess, Provider
from pagebridge.engine.stream_parser import DEFAULT_MAX_LINE_BYTES, StreamParser
from pagebridge.shared.models.conversation import FileOperation

logger = logging.getLogger(__name__)


@dataclass
class RunCompleted:
    content: str
    session_id: str | None = None
    file_operations: list[FileOperation] = field(default_factory=list)


@dataclass
class RunErrored:
    error: BridgeError


@dataclass
class RunAborted:
    pass


RunOutcome = Union[RunCompleted, RunErrored, RunAborted]


class AgentExecutor:
    """Runs the agent once and streams parsed events to ``event_callback``."""

    def __init__(
        self,
        provider: Provider,
        *,
        max_line_bytes: int = DEFAULT_MAX_LINE_BYTES,
        read_size: int = DEFAULT_READ_SIZE,
        event_callback: EventCallback | None = None,
    ) -> None:
        self._provider = provider
        self._max_line_bytes = max_line_bytes
        self._read_size = read_size
        self._event_callback = event_callback
        self._process: AgentProcess | None = None
        self._started = False
        self._finished = False
        self._aborted = False

    @property
    def aborted(self) -> bool:
        return self._aborted

    @property
    def finished(self) -> bool:
        return self._finished

    @property
    def process(self) -> AgentProcess | None:
        return self._process

    def abort(self) -> bool:
        """Stop the run.

        Before spawn the run is only marked and the agent is never
        started. Returns False once the run has finished,
        when the process already exited, or when called a second time.
        """
        if self._finished or self._aborted:
            return False
        if self._process is None:
            self._aborted = True
            logger.info("Run aborted before the agent process started")
            return True
        if not self._process.abort():
            return False
        self._aborted = True
        return True

    async def execute(self, prompt: str, resume_token: str | None = None) -> RunOutcome:
        if self._started:
            raise RuntimeError("AgentExecutor.execute() can only be called once")
        self._started = True
        parser = StreamParser(max_line_bytes=self._max_line_bytes)
        try:
            return await self._run(parser, prompt, resume_token)
        finally:
            parser.correlator.clear()
            self._finished = True

    async def _run(
        self,
        parser: StreamParser,
        prompt: str,
        resume_token: str | None,
    ) -> RunOutcome:
        if self._aborted:
            logger.info("Run aborted before spawn; agent not started")
            return RunAborted()
        try:
            process = await self._provider.spawn(prompt, resume_token)
        except BridgeError as exc:
            if self._aborted:
                return RunAborted()
            return RunErrored(exc)

        self._process = process
        if self._aborted:
            process.abort()

        file_operations: list[FileOperation] = []
        failure: BridgeError | None = None
        try:
            async for chunk in process.chunks(self._read_size):
                if self._aborted:
                    # Drain until EOF without parsing.
                    continue
                for event in parser.feed(chunk):
                    await self._deliver(event, file_operations)
            if not self._aborted:
                for event in parser.flush():
                    await self._deliver(event, file_operations)
        except BridgeError as exc:
            logger.error("Agent run failed (pid=%s): %s", process.pid, exc)
            failure = exc
            process.abort()
        except asyncio.CancelledError:
            process.abort()
            raise
        except Exception as exc:
            logger.exception("Unexpected error while reading agent output (pid=%s)", process.pid)
            failure = AgentExecutionError(str(exc) or type(exc).__name__)
            process.abort()

        returncode = await process.wait()

        if self._aborted:
            logger.info(
                "Run aborted (pid=%s exit=%s), discarding %d file operation(s)",
                process.pid, returncode, len(file_operations),
            )
            return RunAborted()
        if failure is not None:
            return RunErrored(failure)
        if returncode != 0:
            logger.error("Claude CLI exited with code %s (pid=%s)", returncode, process.pid)
            return RunErrored(AgentExecutionError.from_exit_code(returncode))

        logger.info(
            "Run completed (pid=%s chars=%d file_ops=%d session=%s)",
            process.pid, len(parser.full_content), len(file_operations), parser.session_id,
        )
        return RunCompleted(
            content=parser.full_content,
            session_id=parser.session_id,
            file_operations=file_operations,
        )

    async def _deliver(self, event: BridgeEvent, file_operations: list[FileOperation]) -> None:
        if self._aborted:
            return
        if isinstance(event, FileOperationDetected) and event.operation is not None:
            file_operations.append(event.operation)
        await fire_event(self._event_callback, event)
