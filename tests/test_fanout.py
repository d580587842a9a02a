from __future__ import annotations

import json

import pytest

from statusdeck.polling.fanout import QueueSink, SubscriberRegistry, format_sse


class _RecordingSink:
    def __init__(self, fail: bool = False) -> None:
        self.events: list[tuple[str, dict]] = []
        self.fail = fail

    async def __call__(self, event: str, payload: dict) -> None:
        if self.fail:
            raise ConnectionError("client went away")
        self.events.append((event, payload))


def test_format_sse() -> None:
    text = format_sse("status", {"1": "online"})
    assert text == 'event: status\ndata: {"1": "online"}\n\n'
    assert json.loads(text.split("data: ", 1)[1]) == {"1": "online"}


@pytest.mark.asyncio
async def test_register_sends_snapshot_first() -> None:
    registry = SubscriberRegistry()
    sink = _RecordingSink()
    assert await registry.register("a", sink, lambda: {"1": "online", "2": "warning"}) is True
    await registry.broadcast({"2": "offline"})
    assert sink.events == [("status", {"1": "online", "2": "warning"}), ("status", {"2": "offline"})]
    assert "a" in registry
    assert len(registry) == 1


@pytest.mark.asyncio
async def test_failed_snapshot_is_not_registered() -> None:
    registry = SubscriberRegistry()
    assert await registry.register("a", _RecordingSink(fail=True), dict) is False
    assert len(registry) == 0


@pytest.mark.asyncio
async def test_broadcast_drops_failing_subscribers() -> None:
    registry = SubscriberRegistry()
    good = _RecordingSink()
    bad = _RecordingSink()
    await registry.register("good", good, dict)
    await registry.register("bad", bad, dict)
    bad.fail = True

    assert await registry.broadcast({"3": "online"}) == 1
    assert "bad" not in registry
    assert "good" in registry
    assert await registry.unregister("bad") is False
    assert await registry.unregister("good") is True


@pytest.mark.asyncio
async def test_queue_sink_stream() -> None:
    sink = QueueSink()
    await sink("status", {"1": "online"})
    stream = sink.stream()
    assert await stream.__anext__() == 'event: status\ndata: {"1": "online"}\n\n'

    sink.close()
    with pytest.raises(StopAsyncIteration):
        await stream.__anext__()
    with pytest.raises(ConnectionError):
        await sink("status", {})


@pytest.mark.asyncio
async def test_full_queue_sink_is_dropped_and_its_stream_ends() -> None:
    registry = SubscriberRegistry()
    slow = QueueSink(maxsize=2)
    assert await registry.register("slow", slow, lambda: {"1": "online"}) is True
    assert await registry.broadcast({"1": "offline"}) == 1

    assert await registry.broadcast({"1": "online"}) == 0
    assert "slow" not in registry
    assert slow.closed is True

    frames = [frame async for frame in slow.stream()]
    assert frames == []
    with pytest.raises(ConnectionError):
        await slow("status", {})
