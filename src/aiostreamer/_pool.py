import asyncio
import logging
from collections.abc import AsyncIterable, AsyncIterator
from typing import Any

import asyncstdlib
from deprecation import deprecated

from ._common import ON_ERROR_RAISE, OnError, check_on_error, handle_producer_error
from ._signal import Signal
from ._source import as_source
from ._stream import AsyncStream

logger = logging.getLogger(__name__)


class _PoolRun:
    # One consumption of a `Pooler`: a producer task that pulls from the source
    # and a consumer generator (`deliver`) that hands items downstream.
    #
    # `_pool` belongs to the producer until the consumer takes it over
    # in one step (swap with a new empty list); there is no other sharing.

    def __init__(self, instream: AsyncIterable, size: int, on_error: str, name: str):
        self._instream = instream
        self._size = size
        self._on_error = on_error
        self._name = name
        self._pool: list = []
        self._in_hand = 0  # taken over by the consumer, not yet yielded
        self._done = False
        self._error: Exception | None = None

    def _start(self):
        self._ready: Signal[list] = Signal()
        self._drained: Signal[None] = Signal()
        self._producer = asyncio.create_task(self._produce(), name=self._name)

    @property
    def backlog(self) -> int:
        # Items produced but not yet delivered; never exceeds `self._size`.
        return len(self._pool) + self._in_hand

    async def _produce(self):
        logger.debug("producer '%s' started", self._name)
        try:
            async with asyncstdlib.scoped_iter(self._instream) as it:
                async for x in it:
                    while self.backlog >= self._size:
                        # A fresh signal per wait; a stale fired one would let us overrun.
                        self._drained = Signal()
                        await self._drained
                    self._pool.append(x)
                    self._ready.resolve(self._pool)
        except Exception as e:
            self._error = e
            self._done = True
            self._ready.reject(e)
        else:
            self._done = True
            self._ready.resolve([])
        logger.debug("producer '%s' finished", self._name)

    async def deliver(self) -> AsyncIterator:
        self._start()
        try:
            while True:
                try:
                    batch = await self._ready
                except Exception as e:
                    handle_producer_error(e, self._on_error, logger, self._name)
                    return
                self._ready = Signal()
                self._pool = []
                self._in_hand = len(batch)
                for x in batch:
                    self._in_hand -= 1
                    self._drained.resolve()
                    yield x
                if self._done and not self._pool:
                    if self._error is not None:
                        handle_producer_error(
                            self._error, self._on_error, logger, self._name
                        )
                    return
        finally:
            await self._finalize()

    async def _finalize(self):
        if not self._producer.done():
            self._producer.cancel()
        await asyncio.wait([self._producer])
        n = self.backlog
        if n:
            logger.warning(
                "iterator pool '%s' closed with %d items un-delivered and abandoned",
                self._name,
                n,
            )
        self._ready.discard()
        self._drained.discard()


class Pooler(AsyncIterable):
    """
    A lookahead buffer between ``instream`` and its consumer.

    A producer task reads ``instream`` ahead of the consumer and keeps
    the items in a pool, up to ``size`` items that have not been delivered yet.
    When the pool is full, the producer waits for the consumer to catch up
    (backpressure). The consumer takes over the whole pool each time it wakes up.

    The producer task lives only as long as the consumer's iteration:
    when the consumer finishes or abandons the iteration, the producer is cancelled
    and ``instream`` is closed.
    """

    def __init__(
        self,
        instream: AsyncIterable,
        /,
        size: int,
        *,
        on_error: OnError = ON_ERROR_RAISE,
        name: str = 'iterator-pool',
    ):
        assert size >= 1
        self._instream = instream
        self.size = size
        self._on_error = check_on_error(on_error)
        self._name = name

    def __aiter__(self) -> AsyncIterator:
        return _PoolRun(self._instream, self.size, self._on_error, self._name).deliver()


class IteratorPool(AsyncStream):
    """
    A stream that reads ``source`` ahead of its consumer, by up to ``size`` items.

    This is useful when producing an item and consuming an item both take time:
    the two sides overlap, while the amount of data held in memory stays bounded.
    Items come out in the order of ``source``.

    Parameters
    ----------
    size
        Max number of items that have been read from ``source`` but not yet
        delivered to the consumer.
    source
        Anything accepted by :func:`aiostreamer.as_source`. If it is reusable
        (e.g. an async generator function), the stream can be iterated more
        than once, each time with its own producer task.
    on_error
        What to do when reading ``source`` raises an exception. Items read before
        the failure are delivered first. Then, with ``'raise'`` (the default),
        the exception is raised to the consumer; with ``'log'``, the exception is
        logged and the stream ends normally.
    """

    def __init__(
        self,
        size: int,
        source: Any,
        /,
        *,
        on_error: OnError = ON_ERROR_RAISE,
        name: str = 'iterator-pool',
    ):
        super().__init__(Pooler(as_source(source), size, on_error=on_error, name=name))


@deprecated(details='use ``IteratorPool`` instead')
def pooled_iterator(size: int, source: Any) -> IteratorPool:
    """Function-style alias of :class:`IteratorPool` for code written against ``PoolledIterator``."""
    return IteratorPool(size, source)
