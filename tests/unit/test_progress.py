"""Tests for the progress relay."""

import asyncio

import pytest

from copilot_mcp.progress import ProgressRelay, mcp_progress_sink


class RecordingSink:
    def __init__(self, fail_on=(), delay=0.0):
        self.messages = []
        self.fail_on = set(fail_on)
        self.delay = delay

    async def __call__(self, message):
        if self.delay:
            await asyncio.sleep(self.delay)
        if message in self.fail_on:
            raise ConnectionError("client went away")
        self.messages.append(message)


@pytest.mark.asyncio
async def test_delivers_in_order():
    sink = RecordingSink(delay=0.001)
    async with ProgressRelay(sink, keepalive_interval=None) as relay:
        for i in range(20):
            relay.emit(f"chunk {i}")
    assert sink.messages == [f"chunk {i}" for i in range(20)]
    assert relay.emitted == relay.delivered == 20


@pytest.mark.asyncio
async def test_all_chunks_flushed_before_close_returns():
    sink = RecordingSink(delay=0.01)
    relay = ProgressRelay(sink, keepalive_interval=None)
    relay.start()
    for i in range(5):
        relay.emit(str(i))
    assert sink.messages == []
    await relay.aclose()
    assert sink.messages == ["0", "1", "2", "3", "4"]


@pytest.mark.asyncio
async def test_sink_errors_are_swallowed():
    sink = RecordingSink(fail_on={"bad"})
    async with ProgressRelay(sink, keepalive_interval=None) as relay:
        relay.emit("one")
        relay.emit("bad")
        relay.emit("two")
    assert sink.messages == ["one", "two"]
    assert relay.failures == 1
    assert relay.delivered == 2


@pytest.mark.asyncio
async def test_emit_after_close_is_ignored():
    sink = RecordingSink()
    relay = ProgressRelay(sink, keepalive_interval=None)
    relay.start()
    await relay.aclose()
    relay.emit("late")
    relay.emit("")
    assert relay.emitted == 0
    assert sink.messages == []


@pytest.mark.asyncio
async def test_empty_chunks_are_skipped():
    sink = RecordingSink()
    async with ProgressRelay(sink, keepalive_interval=None) as relay:
        relay.emit("")
        relay.emit("data")
    assert sink.messages == ["data"]


@pytest.mark.asyncio
async def test_heartbeat_while_silent():
    sink = RecordingSink()
    async with ProgressRelay(sink, keepalive_interval=0.05, heartbeat_message="tick"):
        await asyncio.sleep(0.18)
    assert len(sink.messages) >= 2
    assert set(sink.messages) == {"tick"}


@pytest.mark.asyncio
async def test_mcp_progress_sink_counts_up():
    calls = []

    class FakeContext:
        async def report_progress(self, progress, total=None, message=None):
            calls.append((progress, message))

    sink = mcp_progress_sink(FakeContext())
    await sink("a")
    await sink("b")
    assert calls == [(1, "a"), (2, "b")]


class HungSink:
    def __init__(self):
        self.calls = 0

    async def __call__(self, message):
        self.calls += 1
        await asyncio.Event().wait()


@pytest.mark.asyncio
async def test_stalled_sink_does_not_hold_back_result():
    sink = HungSink()

    async def operation():
        async with ProgressRelay(
            sink, keepalive_interval=None, delivery_timeout=0.05, close_timeout=0.2
        ) as relay:
            relay.emit("chunk")
        return "done"

    assert await asyncio.wait_for(operation(), 2.0) == "done"
    assert sink.calls == 1


@pytest.mark.asyncio
async def test_slow_sink_calls_time_out_individually():
    sink = HungSink()
    relay = ProgressRelay(sink, keepalive_interval=None, delivery_timeout=0.02, close_timeout=1.0)
    relay.start()
    relay.emit("a")
    relay.emit("b")
    await relay.aclose()
    assert relay.failures == 2
    assert relay.delivered == 0
    assert relay.dropped == 0


@pytest.mark.asyncio
async def test_flush_deadline_drops_pending_chunks():
    sink = HungSink()
    relay = ProgressRelay(sink, keepalive_interval=None, delivery_timeout=10.0, close_timeout=0.05)
    relay.start()
    for i in range(4):
        relay.emit(str(i))
    await asyncio.wait_for(relay.aclose(), 2.0)
    assert sink.calls == 1
    assert relay.dropped == 3


@pytest.mark.asyncio
async def test_shared_sink_keeps_counting_across_relays():
    calls = []

    class FakeContext:
        async def report_progress(self, progress, total=None, message=None):
            await asyncio.sleep(0)
            calls.append(progress)

    sink = mcp_progress_sink(FakeContext())
    async with ProgressRelay(sink, keepalive_interval=None) as first:
        async with ProgressRelay(sink, keepalive_interval=None) as second:
            for i in range(3):
                first.emit(f"a{i}")
                second.emit(f"b{i}")
    assert calls == list(range(1, 7))
