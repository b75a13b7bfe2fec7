"""Agent process providers."""
from .base import AgentProcess, Provider
from .claude_provider import ClaudeProvider

__all__ = [
    "AgentProcess",
    "Provider",
    "ClaudeProvider",
]
