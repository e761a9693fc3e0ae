import asyncio

from crossplay.core.log_buffer import LOG_CAPACITY, LogBuffer
from crossplay.storage.models import LogCategory


def test_capacity_keeps_most_recent_entries():
    buffer = LogBuffer()

    for i in range(1500):
        buffer.add(f"line {i}")

    snapshot = buffer.snapshot()
    assert len(buffer) == LOG_CAPACITY == 1000
    assert len(snapshot) == 1000
    assert [e.message for e in snapshot] == [f"line {i}" for i in range(500, 1500)]
    assert [e.sequence for e in snapshot] == list(range(501, 1501))


def test_never_exceeds_capacity():
    buffer = LogBuffer(capacity=10)

    for i in range(25):
        buffer.add(str(i))
        assert len(buffer) <= 10


def test_add_builds_entries():
    buffer = LogBuffer()

    entry = buffer.add("shown", LogCategory.WARN, raw="raw text", source="stderr")

    assert entry.message == "shown"
    assert entry.category == LogCategory.WARN
    assert entry.raw == "raw text"
    assert entry.source == "stderr"
    assert buffer.last_sequence == 1


def test_replay_then_live_has_no_gap_or_duplicate():
    buffer = LogBuffer()
    for i in range(5):
        buffer.add(f"before {i}")

    async def scenario():
        replay, subscription = buffer.subscribe()
        for i in range(3):
            buffer.add(f"after {i}")
        live = [await subscription.get() for _ in range(3)]
        subscription.close()
        return replay, live

    replay, live = asyncio.run(scenario())

    sequences = [e.sequence for e in replay] + [e.sequence for e in live]
    assert sequences == list(range(1, 9))


def test_replay_and_live_compose_after_eviction():
    buffer = LogBuffer(capacity=3)
    for i in range(5):
        buffer.add(str(i))

    async def scenario():
        replay, subscription = buffer.subscribe()
        buffer.add("5")
        entry = await subscription.get()
        return replay, entry

    replay, entry = asyncio.run(scenario())

    assert [e.message for e in replay] == ["2", "3", "4"]
    assert entry.message == "5"


def test_async_iteration_ends_on_close():
    buffer = LogBuffer()

    async def scenario():
        _, subscription = buffer.subscribe()
        buffer.add("a")
        buffer.add("b")
        subscription.close()
        buffer.add("not delivered")
        return [e.message async for e in subscription]

    assert asyncio.run(scenario()) == ["a", "b"]
    assert buffer.subscriber_count == 0


def test_slow_subscriber_is_closed_instead_of_losing_entries():
    buffer = LogBuffer(capacity=3)

    async def scenario():
        _, subscription = buffer.subscribe()
        for i in range(5):
            buffer.add(str(i))
        received = [e.message async for e in subscription]
        return subscription, received

    subscription, received = asyncio.run(scenario())

    assert subscription.overflowed is True
    assert subscription.closed is True
    assert received == ["0", "1", "2"]


def test_multiple_subscribers_see_same_order():
    buffer = LogBuffer()

    async def scenario():
        _, first = buffer.subscribe()
        _, second = buffer.subscribe()
        for i in range(4):
            buffer.add(str(i))
        first.close()
        second.close()
        return [e.sequence async for e in first], [e.sequence async for e in second]

    first, second = asyncio.run(scenario())

    assert first == second == [1, 2, 3, 4]
