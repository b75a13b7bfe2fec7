"""Configuration loaded from environment variables.

All settings have sensible defaults. Override via PAGEBRIDGE_* env vars
or a YAML file (see yaml_config.py).
"""
from __future__ import annotations

import logging
import os
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pagebridge.adapters.events import BridgeEvent

logger = logging.getLogger(__name__)


# Optional async callback for real-time run events.
# Signature: async def callback(event: BridgeEvent) -> None
EventCallback = Callable[["BridgeEvent"], Awaitable[None]]


async def fire_event(
    callback: EventCallback | None,
    event: BridgeEvent,
) -> None:
    """Fire an event callback if set; failures are logged, never raised."""
    if callback is None:
        return
    try:
        await callback(event)
    except Exception:
        logger.warning("Event callback failed for %s", event.event_type, exc_info=True)


def _default_home() -> Path:
    return Path.home() / ".pagebridge"


@dataclass
class BridgeConfig:
    """Server, agent and storage configuration."""

    # HTTP / WebSocket listener
    host: str = "localhost"
    port: int = 3456

    # Agent process
    agent_command: str = "claude"
    # Pass --dangerously-skip-permissions so runs never block on a prompt.
    skip_permissions: bool = True
    # Working directory for the agent; None inherits the server's cwd.
    agent_cwd: str | None = None
    # Cap on a single buffered output line before the run is failed.
    max_line_bytes: int = 10 * 1024 * 1024
    read_size: int = 64 * 1024
    # Seconds between SIGTERM and SIGKILL on abort.
    terminate_timeout: float = 5.0

    # Conversation store
    data_dir: Path = field(default_factory=lambda: _default_home() / "conversations")

    # Logging
    log_level: str = "INFO"
    log_dir: Path = field(default_factory=lambda: _default_home() / "logs")

    @classmethod
    def from_env(cls) -> BridgeConfig:
        """Load configuration from PAGEBRIDGE_* environment variables."""
        bridge_vars = {
            k: v for k, v in os.environ.items() if k.startswith("PAGEBRIDGE_")
        }
        if bridge_vars:
            logger.info(
                "BridgeConfig.from_env: PAGEBRIDGE_* env overrides: %s",
                ", ".join(f"{k}={v}" for k, v in sorted(bridge_vars.items())),
            )
        else:
            logger.debug("BridgeConfig.from_env: no PAGEBRIDGE_* env vars set, using defaults")

        defaults = cls()
        config = cls(
            host=os.getenv("PAGEBRIDGE_HOST", defaults.host),
            port=_env_number("PAGEBRIDGE_PORT", defaults.port, int),
            agent_command=os.getenv("PAGEBRIDGE_AGENT_COMMAND", defaults.agent_command),
            skip_permissions=(
                os.getenv("PAGEBRIDGE_SKIP_PERMISSIONS", "1").lower()
                in {"1", "true", "yes", "on"}
            ),
            agent_cwd=os.getenv("PAGEBRIDGE_AGENT_CWD") or None,
            max_line_bytes=_env_number(
                "PAGEBRIDGE_MAX_LINE_BYTES", defaults.max_line_bytes, int,
            ),
            read_size=_env_number("PAGEBRIDGE_READ_SIZE", defaults.read_size, int),
            terminate_timeout=_env_number(
                "PAGEBRIDGE_TERMINATE_TIMEOUT", defaults.terminate_timeout, float,
            ),
            data_dir=Path(os.getenv("PAGEBRIDGE_DATA_DIR") or defaults.data_dir).expanduser(),
            log_level=os.getenv("PAGEBRIDGE_LOG_LEVEL", defaults.log_level).upper(),
            log_dir=Path(os.getenv("PAGEBRIDGE_LOG_DIR") or defaults.log_dir).expanduser(),
        )
        logger.info(
            "BridgeConfig.from_env: host=%s port=%d agent=%s data_dir=%s log_level=%s",
            config.host, config.port, config.agent_command,
            config.data_dir, config.log_level,
        )
        return config


def _env_number(name: str, default, cast):
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return cast(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r (using %s)", name, raw, default)
        return default
