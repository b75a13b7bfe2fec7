"""Exception hierarchy for the execution bridge.

One exception per failure mode. Each carries a stable ``code`` that
the relay puts on the ``error`` frame sent to the client.
"""
from __future__ import annotations


class BridgeError(Exception):
    """Base exception for all bridge errors."""

    code = "CLAUDE_EXECUTION_ERROR"


class AgentNotFoundError(BridgeError):
    """The agent executable is not installed or not on PATH."""

    code = "CLAUDE_NOT_FOUND"

    def __init__(self, command: str):
        self.command = command
        super().__init__(
            f"'{command}' command not found. "
            f"Check that the Claude Code CLI is installed."
        )


class AgentExecutionError(BridgeError):
    """The agent process failed (non-zero exit or mid-stream failure)."""

    code = "CLAUDE_EXECUTION_ERROR"

    def __init__(self, reason: str, exit_code: int | None = None):
        self.reason = reason
        self.exit_code = exit_code
        super().__init__(reason)

    @classmethod
    def from_exit_code(cls, exit_code: int) -> AgentExecutionError:
        return cls(f"Claude CLI exited with code {exit_code}", exit_code)


class StreamOverflowError(AgentExecutionError):
    """A single output line grew past the configured buffer limit."""

    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(
            f"Agent output line exceeded {limit} bytes without a newline"
        )


class InvalidMessageError(BridgeError):
    """A client frame is malformed or has the wrong payload shape."""

    code = "INVALID_MESSAGE"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class ConversationNotFoundError(BridgeError):
    """Operation against a conversation id the store does not know."""

    code = "SESSION_NOT_FOUND"

    def __init__(self, conversation_id: str):
        self.conversation_id = conversation_id
        super().__init__(f"Conversation not found: {conversation_id}")


class SessionBusyError(BridgeError):
    """A run is already active for this conversation."""

    # Older side panels do not know this code and show the error text instead.
    code = "SESSION_BUSY"

    def __init__(self, conversation_id: str):
        self.conversation_id = conversation_id
        super().__init__(
            f"Conversation {conversation_id} already has an active run"
        )


class StorageError(BridgeError):
    """Reading or writing the conversation store failed."""

    code = "STORAGE_ERROR"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class InvalidConversationIdError(StorageError):
    """Conversation id cannot be mapped to a file inside the data dir."""

    def __init__(self, conversation_id: str):
        self.conversation_id = conversation_id
        super().__init__(f"Invalid conversation id: {conversation_id!r}")


def error_code_for(exc: BaseException) -> str:
    """Map an exception to the wire error code."""
    if isinstance(exc, BridgeError):
        return exc.code
    return BridgeError.code
