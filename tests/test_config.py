"""Tests for env, YAML and command-line configuration layering."""
from __future__ import annotations

import argparse
import os
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml

from pagebridge import app
from pagebridge.engine.config import BridgeConfig
from pagebridge.engine.yaml_config import load_yaml_config


def _clean_env(**extra):
    env = {k: v for k, v in os.environ.items() if not k.startswith("PAGEBRIDGE_")}
    env.update(extra)
    return patch.dict(os.environ, env, clear=True)


def test_defaults():
    config = BridgeConfig()
    assert config.host == "localhost"
    assert config.port == 3456
    assert config.agent_command == "claude"
    assert config.skip_permissions is True
    assert config.max_line_bytes == 10 * 1024 * 1024
    assert config.data_dir == Path.home() / ".pagebridge" / "conversations"


def test_from_env_overrides(tmp_path):
    with _clean_env(
        PAGEBRIDGE_PORT="4000",
        PAGEBRIDGE_AGENT_COMMAND="/opt/bin/claude",
        PAGEBRIDGE_SKIP_PERMISSIONS="false",
        PAGEBRIDGE_DATA_DIR=str(tmp_path),
        PAGEBRIDGE_LOG_LEVEL="debug",
        PAGEBRIDGE_TERMINATE_TIMEOUT="1.5",
    ):
        config = BridgeConfig.from_env()
    assert config.port == 4000
    assert config.agent_command == "/opt/bin/claude"
    assert config.skip_permissions is False
    assert config.data_dir == tmp_path
    assert config.log_level == "DEBUG"
    assert config.terminate_timeout == 1.5


def test_from_env_ignores_bad_numbers(caplog):
    with _clean_env(PAGEBRIDGE_PORT="eighty"):
        config = BridgeConfig.from_env()
    assert config.port == 3456
    assert "PAGEBRIDGE_PORT" in caplog.text


def test_yaml_sections(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "server:\n"
        "  port: 5000\n"
        "agent:\n"
        "  command: claude-dev\n"
        "  skip_permissions: 'no'\n"
        "  cwd: ~/site\n"
        "storage:\n"
        "  data_dir: ${PB_TEST_ROOT}/convs\n"
        "logging:\n"
        "  level: warning\n",
        encoding="utf-8",
    )
    with patch.dict(os.environ, {"PB_TEST_ROOT": str(tmp_path)}):
        config = load_yaml_config(path, base=BridgeConfig(host="0.0.0.0"))

    assert config.host == "0.0.0.0"
    assert config.port == 5000
    assert config.agent_command == "claude-dev"
    assert config.skip_permissions is False
    assert config.agent_cwd == str(Path.home() / "site")
    assert config.data_dir == tmp_path / "convs"
    assert config.log_level == "WARNING"


def test_yaml_unknown_keys_warn(tmp_path, caplog):
    path = tmp_path / "config.yaml"
    path.write_text("server:\n  colour: blue\nextras: {}\n", encoding="utf-8")
    config = load_yaml_config(path, base=BridgeConfig())
    assert config == BridgeConfig()
    assert "server.colour" in caplog.text
    assert "extras" in caplog.text


def test_yaml_empty_file_keeps_base(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("", encoding="utf-8")
    base = BridgeConfig(port=1)
    assert load_yaml_config(path, base=base) == base


def test_yaml_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_yaml_config(tmp_path / "nope.yaml", base=BridgeConfig())


@pytest.mark.parametrize(
    "text",
    ["- a\n- b\n", "server: 3\n", "server:\n  port: abc\n"],
)
def test_yaml_invalid_shapes(tmp_path, text):
    path = tmp_path / "config.yaml"
    path.write_text(text, encoding="utf-8")
    with pytest.raises(ValueError):
        load_yaml_config(path, base=BridgeConfig())


def test_yaml_parse_error(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("server: [unclosed\n", encoding="utf-8")
    with pytest.raises(yaml.YAMLError):
        load_yaml_config(path, base=BridgeConfig())


def _args(**kwargs):
    values = {"host": None, "port": None, "config": None, "data_dir": None, "log_level": None}
    values.update(kwargs)
    return argparse.Namespace(**values)


def test_load_config_precedence(tmp_path, monkeypatch):
    monkeypatch.setattr(app, "DEFAULT_CONFIG_PATH", tmp_path / "absent.yaml")
    path = tmp_path / "config.yaml"
    path.write_text("server:\n  host: 127.0.0.1\n  port: 5000\n", encoding="utf-8")

    with _clean_env(PAGEBRIDGE_PORT="4000", PAGEBRIDGE_AGENT_COMMAND="from-env"):
        config = app.load_config(_args(config=str(path), port=6000, log_level="debug"))

    assert config.agent_command == "from-env"
    assert config.host == "127.0.0.1"
    assert config.port == 6000
    assert config.log_level == "DEBUG"


def test_load_config_uses_default_path(tmp_path, monkeypatch):
    default = tmp_path / "config.yaml"
    default.write_text("server:\n  port: 7777\n", encoding="utf-8")
    monkeypatch.setattr(app, "DEFAULT_CONFIG_PATH", default)

    with _clean_env():
        config = app.load_config(_args(data_dir=str(tmp_path / "d")))

    assert config.port == 7777
    assert config.data_dir == tmp_path / "d"


def test_load_config_port_zero(tmp_path, monkeypatch):
    monkeypatch.setattr(app, "DEFAULT_CONFIG_PATH", tmp_path / "absent.yaml")
    with _clean_env():
        assert app.load_config(_args(port=0)).port == 0
