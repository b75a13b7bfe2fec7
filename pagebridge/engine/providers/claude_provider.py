"""Claude Code CLI provider.

Runs ``claude -p <prompt> --output-format stream-json --verbose`` as a
subprocess per chat request. Runs after the first one pass
``--resume <session_id>`` to continue the agent's prior context.
"""
from __future__ import annotations

import asyncio
import logging

from pagebridge.engine.errors import AgentExecutionError, AgentNotFoundError

from .base import AgentProcess, Provider

logger = logging.getLogger(__name__)


class ClaudeProvider(Provider):
    """Provider backed by the Claude Code CLI.

    The prompt is passed as an argument and stdin is closed
    immediately: runs are never interactive. With
    ``skip_permissions`` the CLI does not stop to ask before
    editing files.
    """

    def __init__(
        self,
        command: str = "claude",
        *,
        skip_permissions: bool = True,
        cwd: str | None = None,
        terminate_timeout: float = 5.0,
    ) -> None:
        self._command = self.resolve_command(command, "claude")
        self._skip_permissions = skip_permissions
        self._cwd = cwd
        self._terminate_timeout = terminate_timeout

    @property
    def name(self) -> str:
        return "claude"

    @property
    def command(self) -> str:
        return self._command

    def build_args(self, prompt: str, resume_token: str | None = None) -> list[str]:
        args = [
            self._command,
            "-p", prompt,
            "--output-format", "stream-json",
            "--verbose",
        ]
        if self._skip_permissions:
            args.append("--dangerously-skip-permissions")
        if resume_token:
            args.extend(["--resume", resume_token])
        return args

    async def spawn(self, prompt: str, resume_token: str | None = None) -> AgentProcess:
        args = self.build_args(prompt, resume_token)
        logger.info(
            "Executing Claude CLI resume=%s prompt_chars=%d cwd=%s",
            bool(resume_token), len(prompt), self._cwd or "<inherit>",
        )
        try:
            # Argument array, no shell.
            proc = await asyncio.create_subprocess_exec(
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self._cwd,
            )
        except FileNotFoundError as exc:
            logger.error("'%s' CLI not found", self._command)
            raise AgentNotFoundError(self._command) from exc
        except OSError as exc:
            logger.error("Failed to start '%s': %s", self._command, exc)
            raise AgentExecutionError(f"Failed to start {self._command}: {exc}") from exc

        logger.info("Claude process spawned (pid=%s)", proc.pid)
        return AgentProcess(
            proc,
            label="Claude",
            terminate_timeout=self._terminate_timeout,
        )
