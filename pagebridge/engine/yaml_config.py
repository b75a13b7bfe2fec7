"""YAML configuration loader.

Loads a single YAML file layered over the environment-derived config.
Keys that are absent keep the value from ``base``.

Example YAML:
    server:
      host: localhost
      port: 3456

    agent:
      command: claude
      skip_permissions: true
      cwd: ~/projects/site
      max_line_bytes: 10485760
      terminate_timeout: 5

    storage:
      data_dir: ~/.pagebridge/conversations

    logging:
      level: DEBUG
      dir: ${HOME}/.pagebridge/logs
"""
from __future__ import annotations

import dataclasses
import logging
import os
from pathlib import Path
from typing import Any

import yaml

from .config import BridgeConfig

logger = logging.getLogger(__name__)

# section -> {yaml key: (BridgeConfig field, cast)}
_SECTIONS: dict[str, dict[str, tuple[str, Any]]] = {
    "server": {
        "host": ("host", str),
        "port": ("port", int),
    },
    "agent": {
        "command": ("agent_command", str),
        "skip_permissions": ("skip_permissions", bool),
        "cwd": ("agent_cwd", None),
        "max_line_bytes": ("max_line_bytes", int),
        "read_size": ("read_size", int),
        "terminate_timeout": ("terminate_timeout", float),
    },
    "storage": {
        "data_dir": ("data_dir", None),
    },
    "logging": {
        "level": ("log_level", str),
        "dir": ("log_dir", None),
    },
}

_PATH_FIELDS = {"data_dir", "log_dir"}


def _expand(value: str) -> str:
    return os.path.expanduser(os.path.expandvars(value))


def _coerce(field_name: str, cast: Any, value: Any) -> Any:
    if field_name in _PATH_FIELDS:
        return Path(_expand(str(value)))
    if field_name == "agent_cwd":
        return _expand(str(value)) if value else None
    if field_name == "log_level":
        return str(value).upper()
    if cast is bool and isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return cast(value)


def load_yaml_config(
    path: str | Path,
    base: BridgeConfig | None = None,
) -> BridgeConfig:
    """Load a YAML file and apply its sections over ``base``.

    ``base`` defaults to ``BridgeConfig.from_env()`` so YAML values take
    precedence over PAGEBRIDGE_* variables. Raises FileNotFoundError for
    a missing file, yaml.YAMLError for a malformed one, and ValueError
    when the document or a section is not a mapping or a value has the
    wrong type.
    """
    path = Path(path).expanduser()
    logger.info("load_yaml_config: loading %s (exists=%s)", path, path.exists())
    try:
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.error("load_yaml_config: config file not found at %s", path.absolute())
        raise
    except yaml.YAMLError as exc:
        logger.error("load_yaml_config: YAML parse error in %s: %s", path, exc)
        raise

    if not isinstance(raw, dict):
        raise ValueError(f"{path}: top level must be a mapping")

    config = base if base is not None else BridgeConfig.from_env()
    overrides: dict[str, Any] = {}
    for section, keys in _SECTIONS.items():
        body = raw.get(section)
        if body is None:
            continue
        if not isinstance(body, dict):
            raise ValueError(f"{path}: section '{section}' must be a mapping")
        for key, value in body.items():
            if key not in keys:
                logger.warning("load_yaml_config: unknown key %s.%s ignored", section, key)
                continue
            field_name, cast = keys[key]
            try:
                overrides[field_name] = _coerce(field_name, cast, value)
            except (TypeError, ValueError) as exc:
                raise ValueError(f"{path}: invalid value for {section}.{key}: {value!r}") from exc

    unknown = sorted(set(raw) - set(_SECTIONS))
    if unknown:
        logger.warning("load_yaml_config: unknown sections ignored: %s", ", ".join(unknown))

    logger.info(
        "Parsed YAML config %s, overrides: %s",
        path.name, ", ".join(sorted(overrides)) if overrides else "(none)",
    )
    return dataclasses.replace(config, **overrides)
