"""pagebridge engine: agent runs, stream parsing and per-conversation sessions."""
from .config import BridgeConfig
from .errors import (
    AgentExecutionError,
    AgentNotFoundError,
    BridgeError,
    ConversationNotFoundError,
    InvalidConversationIdError,
    InvalidMessageError,
    SessionBusyError,
    StorageError,
    StreamOverflowError,
    error_code_for,
)

__all__ = [
    # Config
    "BridgeConfig",
    # YAML config (lazy import)
    "load_yaml_config",
    # Providers (lazy import)
    "Provider",
    "ClaudeProvider",
    # Run pipeline (lazy import)
    "AgentExecutor",
    "StreamParser",
    "SessionManager",
    "build_prompt",
    # Errors
    "AgentExecutionError",
    "AgentNotFoundError",
    "BridgeError",
    "ConversationNotFoundError",
    "InvalidConversationIdError",
    "InvalidMessageError",
    "SessionBusyError",
    "StorageError",
    "StreamOverflowError",
    "error_code_for",
]


def __getattr__(name: str):
    if name == "load_yaml_config":
        from .yaml_config import load_yaml_config
        return load_yaml_config
    if name == "Provider":
        from .providers.base import Provider
        return Provider
    if name == "ClaudeProvider":
        from .providers.claude_provider import ClaudeProvider
        return ClaudeProvider
    if name == "AgentExecutor":
        from .executor import AgentExecutor
        return AgentExecutor
    if name == "StreamParser":
        from .stream_parser import StreamParser
        return StreamParser
    if name == "SessionManager":
        from .session_manager import SessionManager
        return SessionManager
    if name == "build_prompt":
        from .prompt_builder import build_prompt
        return build_prompt
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
