import asyncio
import logging
import sys

import pytest

from aiostreamer import AsyncStream, IteratorPool, pooled_iterator


def slow_range(n, delay):
    async def gen():
        for x in range(n):
            yield x
            await asyncio.sleep(delay)

    return gen


@pytest.mark.asyncio
async def test_collect():
    pool = IteratorPool(5, slow_range(10, 0.01))
    assert await pool.collect() == list(range(10))
    # The source is a factory, hence the pool can be consumed again.
    assert await pool.collect() == list(range(10))


@pytest.mark.asyncio
async def test_slow_consumer():
    result = []
    async for x in IteratorPool(5, slow_range(10, 0.001)):
        result.append(x)
        await asyncio.sleep(0.02)
    assert result == list(range(10))


@pytest.mark.asyncio
async def test_slow_producer():
    result = []
    async for x in IteratorPool(5, slow_range(10, 0.02)):
        result.append(x)
        await asyncio.sleep(0.001)
    assert result == list(range(10))


@pytest.mark.asyncio
async def test_producer_runs_ahead_by_size():
    produced = []

    async def gen():
        for x in range(10):
            yield x
            await asyncio.sleep(0.005)
            produced.append(x)

    it = IteratorPool(5, gen).make_iterator()
    assert await it.__anext__() == 0
    assert await it.__anext__() == 1
    await asyncio.sleep(0.3)
    # 2..6 fill the pool; 7 is held by the producer, waiting for room.
    assert produced == [0, 1, 2, 3, 4, 5, 6]
    await it.aclose()


@pytest.mark.asyncio
async def test_unbounded_size():
    produced = []

    async def gen():
        for x in range(10):
            yield x
            await asyncio.sleep(0.005)
            produced.append(x)

    it = IteratorPool(sys.maxsize, gen).make_iterator()
    assert await it.__anext__() == 0
    assert await it.__anext__() == 1
    await asyncio.sleep(0.3)
    assert produced == list(range(10))
    await it.aclose()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    'size,produce_delay,consume_delay',
    [(1, 0, 0.002), (3, 0, 0.002), (3, 0.002, 0), (4, 0.001, 0.001)],
)
async def test_backlog_bounded(size, produce_delay, consume_delay):
    produced = 0
    consumed = 0
    max_backlog = 0

    async def gen():
        nonlocal produced, max_backlog
        for x in range(30):
            if produce_delay:
                await asyncio.sleep(produce_delay)
            produced += 1
            max_backlog = max(max_backlog, produced - consumed)
            yield x

    result = []
    async for x in IteratorPool(size, gen):
        consumed += 1
        result.append(x)
        if consume_delay:
            await asyncio.sleep(consume_delay)
    assert result == list(range(30))
    # `size` items waiting in the pool plus the one the producer is holding.
    assert max_backlog <= size + 1
    if not produce_delay:
        assert max_backlog == size + 1


@pytest.mark.asyncio
async def test_early_close_stops_producer(caplog):
    closed = False

    async def gen():
        nonlocal closed
        try:
            for x in range(100):
                yield x
        finally:
            closed = True

    it = IteratorPool(10, gen()).make_iterator()
    assert await it.__anext__() == 0
    await asyncio.sleep(0.01)
    with caplog.at_level(logging.WARNING, logger='aiostreamer'):
        await it.aclose()
    assert closed
    assert 'abandoned' in caplog.text


@pytest.mark.asyncio
async def test_error_raise():
    async def gen():
        yield 1
        yield 2
        raise ValueError('source failed')

    got = []
    with pytest.raises(ValueError, match='source failed'):
        async for x in IteratorPool(5, gen()):
            got.append(x)
    assert got == [1, 2]


@pytest.mark.asyncio
async def test_error_log(caplog):
    async def gen():
        yield 1
        await asyncio.sleep(0.001)
        yield 2
        raise ValueError('source failed')

    with caplog.at_level(logging.ERROR, logger='aiostreamer'):
        assert await IteratorPool(5, gen(), on_error='log').collect() == [1, 2]
    assert "producer 'iterator-pool' failed" in caplog.text


@pytest.mark.asyncio
async def test_buffer():
    async def work(x):
        await asyncio.sleep(0.001)
        return x * 2

    s = AsyncStream(slow_range(20, 0.001)).buffer(4).map(work)
    assert await s.collect() == [x * 2 for x in range(20)]

    s = AsyncStream(range(5)).buffer()
    assert await s.collect() == [0, 1, 2, 3, 4]


def test_bad_args():
    with pytest.raises(AssertionError):
        IteratorPool(0, [1, 2])
    with pytest.raises(ValueError):
        IteratorPool(2, [1, 2], on_error='retry')


@pytest.mark.asyncio
async def test_pooled_iterator_deprecated():
    with pytest.warns(DeprecationWarning, match='IteratorPool'):
        pool = pooled_iterator(3, [1, 2, 3, 4])
    assert isinstance(pool, IteratorPool)
    assert await pool.collect() == [1, 2, 3, 4]
