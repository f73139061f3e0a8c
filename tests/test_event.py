import asyncio
import logging

import pytest

from aiostreamer import AsyncStream, EventIterator


@pytest.mark.asyncio
async def test_pushed_before_first_pull():
    def callback(push, stop):
        for x in range(5):
            push(x)
        stop('done')

    stream = EventIterator(callback)
    assert isinstance(stream, AsyncStream)
    assert stream.result is None
    assert await stream.collect() == [0, 1, 2, 3, 4]
    assert stream.result == 'done'


@pytest.mark.asyncio
async def test_async_callback():
    async def callback(push, stop):
        for x in range(10):
            await asyncio.sleep(0.001)
            push(x)
            if x % 3 == 0:
                push(-x)
        stop(10)

    stream = EventIterator(callback)
    got = []
    async for x in stream:
        got.append(x)
    assert got == [0, 0, 1, 2, 3, -3, 4, 5, 6, -6, 7, 8, 9, -9]
    assert stream.result == 10


@pytest.mark.asyncio
async def test_event_emitter():
    # Items arrive from callbacks registered elsewhere, after `callback` returns.
    loop = asyncio.get_running_loop()

    def callback(push, stop):
        for i in range(5):
            loop.call_later(0.001 * (i + 1), push, i)
        loop.call_later(0.01, stop)
        loop.call_later(0.02, push, 'too late')

    stream = EventIterator(callback)
    assert await stream.collect() == [0, 1, 2, 3, 4]
    assert stream.result is None
    await asyncio.sleep(0.02)


@pytest.mark.asyncio
async def test_stop_is_final():
    def callback(push, stop):
        push(1)
        stop('first')
        push(2)
        stop('second')

    stream = EventIterator(callback)
    assert await stream.collect() == [1]
    assert stream.result == 'first'


@pytest.mark.asyncio
async def test_operators_apply():
    async def callback(push, stop):
        for x in range(6):
            push(x)
            await asyncio.sleep(0)
        stop()

    stream = EventIterator(callback).map(lambda x: x * 2).filter(lambda x: x > 2)
    assert await stream.collect() == [4, 6, 8, 10]


@pytest.mark.asyncio
async def test_each_consumption_calls_back():
    n = 0

    def callback(push, stop):
        nonlocal n
        n += 1
        push(n)
        stop(n)

    stream = EventIterator(callback)
    assert await stream.collect() == [1]
    assert await stream.collect() == [2]
    assert stream.result == 2


@pytest.mark.asyncio
async def test_error_raise():
    async def callback(push, stop):
        push(1)
        push(2)
        await asyncio.sleep(0.001)
        raise ValueError('producer failed')

    stream = EventIterator(callback)
    got = []
    with pytest.raises(ValueError, match='producer failed'):
        async for x in stream:
            got.append(x)
    assert got == [1, 2]


@pytest.mark.asyncio
async def test_error_log(caplog):
    def callback(push, stop):
        push(1)
        raise ValueError('producer failed')

    stream = EventIterator(callback, on_error='log')
    with caplog.at_level(logging.ERROR, logger='aiostreamer'):
        assert await stream.collect() == [1]
    assert 'failed' in caplog.text
    assert any(r.exc_info and r.exc_info[0] is ValueError for r in caplog.records)


def test_bad_on_error():
    with pytest.raises(ValueError):
        EventIterator(lambda push, stop: None, on_error='ignore')


@pytest.mark.asyncio
async def test_close_cancels_producer():
    pushes = []
    cancelled = False

    async def callback(push, stop):
        nonlocal cancelled
        try:
            for x in range(1000):
                push(x)
                pushes.append(x)
                await asyncio.sleep(0.001)
        except asyncio.CancelledError:
            cancelled = True
            raise

    it = EventIterator(callback).make_iterator()
    assert await it.__anext__() == 0
    assert await it.__anext__() == 1
    await it.aclose()
    assert cancelled
    n = len(pushes)
    await asyncio.sleep(0.01)
    assert len(pushes) == n


@pytest.mark.asyncio
async def test_push_after_close_is_ignored():
    saved = {}

    def callback(push, stop):
        saved['push'] = push
        saved['stop'] = stop
        push('a')

    it = EventIterator(callback).make_iterator()
    assert await it.__anext__() == 'a'
    await it.aclose()
    saved['push']('b')
    saved['stop']('late')
