"""Abstract base for agent process providers.

A provider knows how to launch one agent CLI for a prompt and hands
back an ``AgentProcess``: raw stdout chunks, an exit code and a
one-shot ``abort()``. Parsing the output is not the provider's job.
"""
from __future__ import annotations

import abc
import asyncio
import logging
import shutil
from typing import AsyncIterator

logger = logging.getLogger(__name__)

DEFAULT_READ_SIZE = 64 * 1024


class AgentProcess:
    """A running agent subprocess.

    stdout is exposed as an ordered stream of raw byte chunks with no
    alignment to lines or records. stderr is drained in the background
    and logged.
    """

    def __init__(
        self,
        proc: asyncio.subprocess.Process,
        *,
        label: str = "agent",
        terminate_timeout: float = 5.0,
    ) -> None:
        self._proc = proc
        self._label = label
        self._terminate_timeout = terminate_timeout
        self._aborted = False
        self._escalation_task: asyncio.Task | None = None
        self._stderr_task: asyncio.Task | None = None
        if proc.stderr is not None:
            self._stderr_task = asyncio.ensure_future(self._drain_stderr())

    @property
    def pid(self) -> int | None:
        return self._proc.pid

    @property
    def returncode(self) -> int | None:
        return self._proc.returncode

    @property
    def aborted(self) -> bool:
        return self._aborted

    async def chunks(self, read_size: int = DEFAULT_READ_SIZE) -> AsyncIterator[bytes]:
        """Yield stdout chunks until EOF."""
        stdout = self._proc.stdout
        if stdout is None:
            return
        while True:
            chunk = await stdout.read(read_size)
            if not chunk:
                break
            yield chunk

    async def wait(self) -> int:
        """Wait for exit and return the exit code."""
        returncode = await self._proc.wait()
        if self._stderr_task is not None:
            try:
                await self._stderr_task
            except asyncio.CancelledError:
                pass
        return returncode

    def abort(self) -> bool:
        """Send SIGTERM once. Returns False if already aborted or exited."""
        if self._aborted or self._proc.returncode is not None:
            return False
        self._aborted = True
        try:
            self._proc.terminate()
        except ProcessLookupError:
            logger.debug("%s process %s already gone on abort", self._label, self.pid)
            return True
        logger.info("%s execution aborted (pid=%s)", self._label, self.pid)
        if self._terminate_timeout > 0:
            self._escalation_task = asyncio.ensure_future(self._kill_after_timeout())
        return True

    async def _kill_after_timeout(self) -> None:
        try:
            await asyncio.wait_for(self._proc.wait(), timeout=self._terminate_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "%s process %s ignored SIGTERM for %.1fs; killing",
                self._label, self.pid, self._terminate_timeout,
            )
            try:
                self._proc.kill()
            except ProcessLookupError:
                pass

    async def _drain_stderr(self) -> None:
        stderr = self._proc.stderr
        while True:
            line = await stderr.readline()
            if not line:
                break
            text = line.decode("utf-8", errors="replace").rstrip()
            if text:
                logger.warning("%s stderr: %s", self._label, text)


class Provider(abc.ABC):
    """Abstract agent provider.

    Implementations wrap a specific agent CLI:
    - ClaudeProvider: ``claude -p ... --output-format stream-json``
    """

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Short provider name (e.g. 'claude')."""

    @abc.abstractmethod
    def build_args(self, prompt: str, resume_token: str | None = None) -> list[str]:
        """Build the argument vector for one run."""

    @abc.abstractmethod
    async def spawn(self, prompt: str, resume_token: str | None = None) -> AgentProcess:
        """Start one agent process for ``prompt``.

        Raises AgentNotFoundError if the executable is missing.
        """

    def is_available(self) -> bool:
        """Check whether the provider's CLI is installed."""
        return shutil.which(self.command) is not None

    @property
    def command(self) -> str:
        return self.name

    def resolve_command(self, command: str, fallback: str | None = None) -> str:
        """Resolve a provider binary by preferring explicit command, then fallback.

        The command may point to a CLI that is not on PATH when using
        custom wrappers or tests. In that case, keep the raw value so
        callers can surface the configured command in error messages.
        """
        if command:
            if shutil.which(command):
                return command
            if fallback and shutil.which(fallback):
                logger.debug(
                    "Command %s not found; falling back to %s for provider %s",
                    command, fallback, self.name,
                )
                return fallback
            return command
        return fallback or command
