import asyncio
import inspect
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any, TypeVar

import asyncstdlib

from ._common import ON_ERROR_RAISE, OnError, check_on_error, handle_producer_error
from ._signal import Signal
from ._source import Factory
from ._stream import AsyncStream

logger = logging.getLogger(__name__)

Elem = TypeVar('Elem')

Push = Callable[[Elem], None]
Stop = Callable[..., None]


class _EventBridge:
    # One consumption of an `EventIterator`.
    #
    # The producer (the user callback, running in its own task) owns `_queue`
    # and appends to it; the consumer takes it over by swapping in an empty list
    # each time it is woken up by `_signal`.

    def __init__(self, callback, on_error: str, name: str):
        self._callback = callback
        self._on_error = on_error
        self._name = name
        self._queue: list[Elem] = []
        self._stopped = False
        self._closed = False
        self._error: Exception | None = None
        self.result: Any = None

    def push(self, item: Elem) -> None:
        if self._stopped or self._closed:
            return
        self._queue.append(item)
        self._signal.resolve()

    def stop(self, result: Any = None) -> None:
        if self._stopped or self._closed:
            return
        self._stopped = True
        self.result = result
        self._signal.resolve()

    async def _produce(self):
        logger.debug("producer '%s' started", self._name)
        try:
            z = self._callback(self.push, self.stop)
            if inspect.isawaitable(z):
                await z
        except Exception as e:
            if self._stopped or self._closed:
                raise
            self._error = e
            self._signal.reject(e)
        logger.debug("producer '%s' returned", self._name)

    async def deliver(self) -> AsyncIterator[Elem]:
        self._signal: Signal[None] = Signal()
        self._producer = asyncio.create_task(self._produce(), name=self._name)
        try:
            while True:
                error = None
                try:
                    await self._signal
                except Exception as e:
                    error = e
                self._signal = Signal()
                items, self._queue = self._queue, []
                for x in items:
                    yield x
                # Pushes made while the items above were being delivered
                # have fired the new signal; the next round picks them up.
                if error is None and not self._queue:
                    error = self._error
                if error is not None:
                    handle_producer_error(error, self._on_error, logger, self._name)
                    return
                if self._stopped and not self._queue:
                    return
        finally:
            await self._finalize()

    async def _finalize(self):
        self._closed = True
        if not self._producer.done():
            logger.debug("cancelling producer '%s'", self._name)
            self._producer.cancel()
        await asyncio.wait([self._producer])
        if not self._producer.cancelled() and self._producer.exception() is not None:
            # Raised after `stop`, or after the consumer went away.
            e = self._producer.exception()
            logger.warning(
                "producer '%s' raised after the stream ended: %r",
                self._name,
                e,
                exc_info=(type(e), e, e.__traceback__),
            )
        if self._queue:
            logger.warning(
                "event iterator '%s' closed with %d items un-delivered and abandoned",
                self._name,
                len(self._queue),
            )
        self._signal.discard()


class EventIterator(AsyncStream):
    """
    Turn a callback-style producer into a stream (a "push-to-pull" bridge).

    ``callback`` is called with two functions, ``push`` and ``stop``::

        def callback(push, stop):
            client.on('message', push)
            client.on('close', lambda: stop('closed'))

        async for msg in EventIterator(callback):
            ...

    ``push(item)`` queues ``item`` for the consumer and returns immediately.
    ``stop(result)`` ends the stream after the items already pushed have been
    delivered; ``result`` is then available as :attr:`result`.
    After ``stop``, further calls to ``push`` or ``stop`` are ignored.

    ``callback`` may be sync or async. It runs in its own task, which is started
    when iteration begins; every iteration of the stream calls ``callback`` anew.
    When the consumer stops iterating (e.g. breaks out of the loop and closes the
    iterator) the task is cancelled if it is still running, and ``push`` and
    ``stop`` become no-ops.

    Streams derived by operators, such as ``EventIterator(cb).map(f)``, record
    the stop value on the original ``EventIterator`` object.

    .. warning:: There is no backpressure: ``push`` never waits, hence the queue
        can grow without bound if the consumer is slower than the producer.

    Parameters
    ----------
    on_error
        What to do if ``callback`` raises before calling ``stop``.
        Items pushed before the failure are delivered first.
        Then, with ``'raise'`` (the default), the exception is raised to the consumer;
        with ``'log'``, it is logged and the stream ends normally.
    """

    def __init__(
        self,
        callback: Callable[[Push, Stop], Awaitable[None] | None],
        /,
        *,
        on_error: OnError = ON_ERROR_RAISE,
        name: str = 'event-iterator',
    ):
        self._callback = callback
        self._on_error = check_on_error(on_error)
        self._name = name
        self.result: Any = None
        super().__init__(Factory(self._run))

    async def _run(self):
        bridge = _EventBridge(self._callback, self._on_error, self._name)
        async with asyncstdlib.scoped_iter(bridge.deliver()) as it:
            async for x in it:
                yield x
        self.result = bridge.result
