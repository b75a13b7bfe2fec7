"""Tests for AgentExecutor: outcomes, event order and abort races."""
from __future__ import annotations

import asyncio

import pytest

from fakes import (
    FakeProvider,
    init_record,
    line,
    result_record,
    text_record,
    tool_result_record,
    tool_use_record,
)
from pagebridge.adapters.events import FileOperationDetected, TextDelta
from pagebridge.engine.errors import AgentExecutionError, AgentNotFoundError, StreamOverflowError
from pagebridge.engine.executor import AgentExecutor, RunAborted, RunCompleted, RunErrored
from pagebridge.engine.stream_parser import StreamParser
from pagebridge.shared.models.conversation import FileOperationType


class _Recorder:
    def __init__(self):
        self.events = []

    async def __call__(self, event):
        self.events.append(event)


def _happy_chunks() -> list[bytes]:
    return [
        line(init_record("sess-9")),
        line(text_record("Reading ")),
        line(tool_use_record("tu-1", "Read", {"file_path": "/site/index.html"})),
        line(tool_result_record("tu-1", {"type": "text", "file": {"filePath": "/site/index.html"}})),
        line(text_record("done")),
        line(result_record("Final answer")),
    ]


@pytest.mark.asyncio
async def test_completed_run():
    recorder = _Recorder()
    provider = FakeProvider(_happy_chunks())
    executor = AgentExecutor(provider, event_callback=recorder)

    outcome = await executor.execute("prompt text", None)

    assert isinstance(outcome, RunCompleted)
    assert outcome.content == "Final answer"
    assert outcome.session_id == "sess-9"
    assert [op.type for op in outcome.file_operations] == [FileOperationType.READ]
    texts = [e.text for e in recorder.events if isinstance(e, TextDelta)]
    assert texts == ["Reading ", "done"]
    assert provider.calls == [("prompt text", None)]


@pytest.mark.asyncio
async def test_resume_token_is_passed():
    provider = FakeProvider([line(result_record("ok"))])
    await AgentExecutor(provider).execute("p", "sess-1")
    assert provider.calls == [("p", "sess-1")]


@pytest.mark.asyncio
async def test_nonzero_exit_is_error():
    provider = FakeProvider([line(text_record("partial"))], exit_code=1)
    outcome = await AgentExecutor(provider).execute("p")
    assert isinstance(outcome, RunErrored)
    assert isinstance(outcome.error, AgentExecutionError)
    assert outcome.error.exit_code == 1
    assert "exited with code 1" in str(outcome.error)


@pytest.mark.asyncio
async def test_spawn_failure_is_error():
    provider = FakeProvider(spawn_error=AgentNotFoundError("claude"))
    outcome = await AgentExecutor(provider).execute("p")
    assert isinstance(outcome, RunErrored)
    assert outcome.error.code == "CLAUDE_NOT_FOUND"


@pytest.mark.asyncio
async def test_overflow_fails_run_and_stops_process():
    provider = FakeProvider(hold=True)
    executor = AgentExecutor(provider, max_line_bytes=32)
    task = asyncio.create_task(executor.execute("p"))
    await provider.spawned.wait()
    proc = provider.procs[0]
    proc.feed(b"z" * 100)

    outcome = await asyncio.wait_for(task, timeout=2)
    assert isinstance(outcome, RunErrored)
    assert isinstance(outcome.error, StreamOverflowError)
    assert proc.terminated == 1


@pytest.mark.asyncio
async def test_callback_failure_does_not_break_run():
    async def broken(event):
        raise RuntimeError("boom")

    provider = FakeProvider(_happy_chunks())
    outcome = await AgentExecutor(provider, event_callback=broken).execute("p")
    assert isinstance(outcome, RunCompleted)


@pytest.mark.asyncio
async def test_abort_while_running():
    recorder = _Recorder()
    provider = FakeProvider(hold=True)
    executor = AgentExecutor(provider, event_callback=recorder)
    task = asyncio.create_task(executor.execute("p"))
    await provider.spawned.wait()
    proc = provider.procs[0]

    proc.feed(line(text_record("first")))
    for _ in range(20):
        if recorder.events:
            break
        await asyncio.sleep(0)

    assert executor.abort() is True
    assert executor.abort() is False

    outcome = await asyncio.wait_for(task, timeout=2)
    assert isinstance(outcome, RunAborted)
    assert proc.terminated == 1
    assert [e.text for e in recorder.events] == ["first"]


@pytest.mark.asyncio
async def test_no_events_after_abort_mid_chunk():
    recorder = _Recorder()
    executor = None

    async def abort_on_first(event):
        recorder.events.append(event)
        executor.abort()

    provider = FakeProvider(hold=True)
    executor = AgentExecutor(provider, event_callback=abort_on_first)
    task = asyncio.create_task(executor.execute("p"))
    await provider.spawned.wait()
    proc = provider.procs[0]
    proc.feed(
        line(text_record("one"))
        + line(tool_use_record("tu-1", "Bash", {"command": "rm old.txt"}))
        + line(tool_result_record("tu-1", {"stdout": ""}))
        + line(text_record("two"))
    )

    outcome = await asyncio.wait_for(task, timeout=2)
    assert isinstance(outcome, RunAborted)
    assert [type(e) for e in recorder.events] == [TextDelta]
    assert not any(isinstance(e, FileOperationDetected) for e in recorder.events)


@pytest.mark.asyncio
async def test_abort_before_spawn():
    provider = FakeProvider(hold=True)
    executor = AgentExecutor(provider)
    assert executor.abort() is True

    outcome = await asyncio.wait_for(executor.execute("p"), timeout=2)
    assert isinstance(outcome, RunAborted)
    assert provider.calls == []
    assert provider.procs == []


@pytest.mark.asyncio
async def test_abort_after_finish_returns_false():
    provider = FakeProvider([line(result_record("ok"))])
    executor = AgentExecutor(provider)
    outcome = await executor.execute("p")
    assert isinstance(outcome, RunCompleted)
    assert executor.abort() is False


@pytest.mark.asyncio
async def test_execute_is_single_use():
    provider = FakeProvider([line(result_record("ok"))])
    executor = AgentExecutor(provider)
    await executor.execute("p")
    with pytest.raises(RuntimeError):
        await executor.execute("p")


@pytest.mark.asyncio
async def test_unresolved_tool_uses_cleared_at_end(monkeypatch):
    chunks = [line(tool_use_record("tu-5", "Grep", {"pattern": "x"})), line(result_record("ok"))]
    parsers = []
    real_parser = StreamParser

    def tracking_parser(*args, **kwargs):
        parser = real_parser(*args, **kwargs)
        parsers.append(parser)
        return parser

    monkeypatch.setattr("pagebridge.engine.executor.StreamParser", tracking_parser)
    await AgentExecutor(FakeProvider(chunks)).execute("p")

    assert len(parsers) == 1
    assert len(parsers[0].correlator.pending) == 0
