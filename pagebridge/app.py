"""pagebridge: main application entry point."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

import yaml

from pagebridge.engine.config import BridgeConfig

DEFAULT_CONFIG_PATH = Path.home() / ".pagebridge" / "config.yaml"


def _configure_logging(config: BridgeConfig) -> Path:
    """Root logger: rotating file under ``log_dir`` plus stderr."""
    log_dir = Path(config.log_dir).expanduser()
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "pagebridge-server.log"

    root = logging.getLogger()
    root.setLevel(getattr(logging, config.log_level.upper(), logging.INFO))
    root.handlers.clear()
    formatter = logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s [pid=%(process)d] %(message)s"
    )
    file_handler = RotatingFileHandler(
        log_file, maxBytes=2_000_000, backupCount=5, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)
    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    root.addHandler(file_handler)
    root.addHandler(stream_handler)
    return log_file


def load_config(args) -> BridgeConfig:
    """Resolve config: defaults < env < YAML file < command-line flags."""
    config = BridgeConfig.from_env()

    config_path = Path(args.config).expanduser() if args.config else None
    if config_path is None and DEFAULT_CONFIG_PATH.exists():
        config_path = DEFAULT_CONFIG_PATH
    if config_path is not None:
        from pagebridge.engine.yaml_config import load_yaml_config

        config = load_yaml_config(config_path, base=config)

    overrides = {}
    if args.host:
        overrides["host"] = args.host
    if args.port is not None:
        overrides["port"] = args.port
    if args.data_dir:
        overrides["data_dir"] = Path(args.data_dir).expanduser()
    if args.log_level:
        overrides["log_level"] = args.log_level.upper()
    return dataclasses.replace(config, **overrides)


async def _list_conversations(config: BridgeConfig) -> None:
    from pagebridge.shared.services.persistence import ConversationStore

    store = ConversationStore(config.data_dir)
    conversations = await store.list_all()
    if not conversations:
        print("No saved conversations.")
        return
    for conv in conversations:
        print(f"  {conv.id}  {conv.updated_at}  {conv.title}")


def main() -> None:
    import argparse

    parser = argparse.ArgumentParser(
        prog="pagebridge",
        description="pagebridge: relay page annotations to a local Claude Code agent",
    )
    parser.add_argument(
        "--host", metavar="HOST",
        help="Interface to bind (default: localhost)",
    )
    parser.add_argument(
        "--port", type=int, default=None,
        help="Server port (default: 3456, 0=random available port)",
    )
    parser.add_argument(
        "--config", metavar="PATH",
        help=f"YAML config file (default: {DEFAULT_CONFIG_PATH} if present)",
    )
    parser.add_argument(
        "--data-dir", metavar="PATH",
        help="Directory holding conversation JSON files",
    )
    parser.add_argument(
        "--log-level", metavar="LEVEL",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "debug", "info", "warning", "error"],
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--list", action="store_true",
        help="List stored conversations and exit",
    )
    args = parser.parse_args()

    try:
        config = load_config(args)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        print(f"pagebridge: cannot load config: {exc}", file=sys.stderr)
        sys.exit(2)

    if args.list:
        asyncio.run(_list_conversations(config))
        sys.exit(0)

    log_file = _configure_logging(config)
    logger = logging.getLogger(__name__)
    logger.info(
        "Starting pagebridge server cwd=%s host=%s port=%s data_dir=%s log=%s",
        Path.cwd(), config.host, config.port, config.data_dir, log_file,
    )

    from pagebridge.server.server import BridgeServer

    server = BridgeServer(config)
    if not server.sessions.provider_available():
        logger.warning(
            "'%s' not found on PATH; chat requests will fail with CLAUDE_NOT_FOUND",
            config.agent_command,
        )
    try:
        asyncio.run(server.start())
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()
