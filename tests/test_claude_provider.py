"""Tests for ClaudeProvider and AgentProcess."""
from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from fakes import FakeProc
from pagebridge.engine.errors import AgentExecutionError, AgentNotFoundError
from pagebridge.engine.providers.base import AgentProcess
from pagebridge.engine.providers.claude_provider import ClaudeProvider


def test_build_args_first_run():
    provider = ClaudeProvider(command="claude")
    assert provider.build_args("fix it") == [
        "claude", "-p", "fix it",
        "--output-format", "stream-json",
        "--verbose",
        "--dangerously-skip-permissions",
    ]


def test_build_args_resume():
    provider = ClaudeProvider(command="claude")
    args = provider.build_args("again", "sess-123")
    assert args[-2:] == ["--resume", "sess-123"]


def test_build_args_without_skip_permissions():
    provider = ClaudeProvider(command="claude", skip_permissions=False)
    assert "--dangerously-skip-permissions" not in provider.build_args("x")


def test_is_available():
    provider = ClaudeProvider(command="claude")
    with patch("shutil.which", return_value="/usr/local/bin/claude"):
        assert provider.is_available() is True
    with patch("shutil.which", return_value=None):
        assert provider.is_available() is False


@pytest.mark.asyncio
async def test_spawn_passes_argument_vector():
    provider = ClaudeProvider(command="claude", cwd="/tmp/project")
    mock_proc = AsyncMock()
    mock_proc.pid = 99
    mock_proc.stderr = None

    with patch("asyncio.create_subprocess_exec", return_value=mock_proc) as mock_exec:
        process = await provider.spawn("hello", "sess-1")

    args, kwargs = mock_exec.call_args
    assert args[:3] == ("claude", "-p", "hello")
    assert "--resume" in args
    assert kwargs["stdin"] == asyncio.subprocess.DEVNULL
    assert kwargs["stdout"] == asyncio.subprocess.PIPE
    assert kwargs["cwd"] == "/tmp/project"
    assert "shell" not in kwargs
    assert process.pid == 99


@pytest.mark.asyncio
async def test_spawn_missing_executable():
    provider = ClaudeProvider(command="definitely-not-claude")
    with patch("asyncio.create_subprocess_exec", side_effect=FileNotFoundError()):
        with pytest.raises(AgentNotFoundError) as excinfo:
            await provider.spawn("hi")
    assert excinfo.value.code == "CLAUDE_NOT_FOUND"


@pytest.mark.asyncio
async def test_spawn_other_os_error():
    provider = ClaudeProvider(command="claude")
    with patch("asyncio.create_subprocess_exec", side_effect=PermissionError("denied")):
        with pytest.raises(AgentExecutionError):
            await provider.spawn("hi")


@pytest.mark.asyncio
async def test_chunks_yield_until_eof():
    proc = FakeProc()
    process = AgentProcess(proc, terminate_timeout=0)
    proc.feed(b"abc")
    proc.feed(b"def")
    proc.finish(0)

    chunks = [c async for c in process.chunks(read_size=2)]
    assert b"".join(chunks) == b"abcdef"
    assert await process.wait() == 0


@pytest.mark.asyncio
async def test_abort_terminates_once():
    proc = FakeProc()
    process = AgentProcess(proc, terminate_timeout=0)

    assert process.abort() is True
    assert process.abort() is False
    assert proc.terminated == 1
    assert process.aborted is True


@pytest.mark.asyncio
async def test_abort_after_exit_is_noop():
    proc = FakeProc()
    process = AgentProcess(proc, terminate_timeout=0)
    proc.finish(0)
    await process.wait()

    assert process.abort() is False
    assert proc.terminated == 0


class _StubbornProc(FakeProc):
    """Ignores SIGTERM; only kill ends it."""

    def terminate(self) -> None:
        self.terminated += 1


@pytest.mark.asyncio
async def test_abort_escalates_to_kill():
    proc = _StubbornProc()
    process = AgentProcess(proc, terminate_timeout=0.05)

    assert process.abort() is True
    assert await asyncio.wait_for(process.wait(), timeout=2) == -9
    assert proc.killed == 1


@pytest.mark.asyncio
async def test_stderr_is_drained_and_logged(caplog):
    proc = FakeProc()
    proc.stderr = asyncio.StreamReader()
    proc.stderr.feed_data(b"warning: something odd\n")
    proc.stderr.feed_eof()
    process = AgentProcess(proc, label="Claude", terminate_timeout=0)
    proc.finish(0)

    await process.wait()
    assert any("something odd" in r.getMessage() for r in caplog.records)
