# A "source" is whatever the user hands to ``AsyncStream``:
#
#   [1, 2, 3]                         materialized          -> Snapshot
#   fetch_rows()  (a coroutine)       deferred              -> Deferred
#   agen(), iter(x), AsyncStream(...) pull-based            -> Pull
#   agen, lambda: fetch_rows()        zero-arg factory      -> Factory
#
# The shape is classified once, when the stream is built, and each variant
# knows how to produce its elements as an async generator.
#
# Early termination by the consumer reaches the source through ``aclose()``:
# every upstream iterator is held by ``asyncstdlib.scoped_iter``, which closes
# it on exit, whatever the exit path.

import asyncio
import inspect
from collections.abc import (
    AsyncIterable,
    AsyncIterator,
    Awaitable,
    Sequence,
)
from typing import Any, TypeVar

import asyncstdlib

Elem = TypeVar('Elem')


def isiterable(x):
    try:
        iter(x)
        return True
    except (TypeError, AttributeError):
        return False


def isasynciterable(x):
    try:
        aiter(x)
        return True
    except (TypeError, AttributeError):
        return False


class Source(AsyncIterable[Elem]):
    reusable: bool = False
    """
    ``True`` if every consumption is guaranteed to start over from the first
    element. ``False`` means no such guarantee: a one-shot iterator yields
    nothing once consumed, whereas a re-iterable object (a set, say) or a
    :class:`Deferred` that resolves to a list is read again in full.
    """

    def __init__(self, instream, /):
        self._instream = instream

    def __aiter__(self) -> AsyncIterator[Elem]:
        raise NotImplementedError

    def __repr__(self):
        return f"{self.__class__.__name__}({self._instream!r})"


class Snapshot(Source):
    """An already materialized sequence."""

    reusable = True

    async def __aiter__(self):
        for x in self._instream:
            yield x


class Pull(Source):
    """
    A pull-based sequence: an async iterable or a sync iterable.

    ``aiter()`` (or ``iter()``) is called anew on each consumption, hence
    a re-iterable object is read from the start every time, whereas an iterator,
    such as a generator, is used up by the first consumption.
    """

    async def __aiter__(self):
        instream = self._instream
        if isasynciterable(instream):
            async with asyncstdlib.scoped_iter(instream) as it:
                async for x in it:
                    yield x
        else:
            # Sync iteration runs inline on the event loop.
            it = iter(instream)
            try:
                for x in it:
                    yield x
            finally:
                close = getattr(it, 'close', None)
                if close is not None:
                    close()


class Deferred(Source):
    """
    A pending computation (coroutine, future, task) that evaluates to a source.

    The awaitable is awaited once; concurrent or later consumptions share its
    outcome. The value it evaluates to is normalized by :func:`as_source`.
    A consumer that is cancelled while waiting does not cancel the shared
    computation.
    """

    def __init__(self, instream: Awaitable, /):
        super().__init__(instream)
        self._future: asyncio.Future | None = None

    async def evaluate(self) -> Source:
        if self._future is None:
            self._future = asyncio.ensure_future(self._instream)
        return as_source(await asyncio.shield(self._future))

    async def __aiter__(self):
        source = await self.evaluate()
        async with asyncstdlib.scoped_iter(source) as it:
            async for x in it:
                yield x


class Factory(Source):
    """
    A zero-argument callable that returns any kind of source.

    The callable is invoked on every consumption, hence a stream built on a
    factory can be consumed any number of times. An async generator function
    is the most common factory.
    """

    reusable = True

    async def __aiter__(self):
        source = as_source(self._instream())
        async with asyncstdlib.scoped_iter(source) as it:
            async for x in it:
                yield x


def as_source(instream: Any, /) -> Source:
    """
    Classify ``instream`` as one of the :class:`Source` variants.

    Order matters: a ``Sequence`` is also iterable, and some iterables are also callable.
    """
    if isinstance(instream, Source):
        return instream
    if isinstance(instream, Sequence):
        return Snapshot(instream)
    if isasynciterable(instream):
        # Before the awaitable check: an `AsyncStream` is also awaitable.
        return Pull(instream)
    if inspect.isawaitable(instream):
        # Before the iterable check: `asyncio.Future` defines `__iter__`.
        return Deferred(instream)
    if isiterable(instream):
        return Pull(instream)
    if callable(instream):
        return Factory(instream)
    raise TypeError(f"can not stream from object of type '{type(instream).__name__}'")
