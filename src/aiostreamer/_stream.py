import copy
import functools
import logging
from collections.abc import AsyncIterable, AsyncIterator, Awaitable, Callable
from typing import Any, TypeVar

import asyncstdlib.itertools
from typing_extensions import Self  # In 3.11, import this from `typing`

from ._common import DEFAULT_POOL_SIZE, ON_ERROR_RAISE, OnError
from ._parallel import call_maybe_async, parallel_each, parallel_flat_map, parallel_map
from ._source import as_source, isiterable

logger = logging.getLogger(__name__)

T = TypeVar('T')  # indicates input data element
TT = TypeVar('TT')  # indicates output after an op on `T`
Elem = TypeVar('Elem')


class AsyncStream(AsyncIterable[Elem]):
    """
    The class ``AsyncStream`` is a "container" for an async iterable,
    plus a chain of lazy operations on the elements that come out of it.

    The constructor takes anything accepted by :func:`aiostreamer.as_source`:
    a list or other sequence, a coroutine that returns one, an async or sync
    iterable, or a zero-argument function (such as an async generator function)
    that returns any of these. Nothing is read until the stream is iterated.

    Operators such as :meth:`map` and :meth:`filter` return a new stream,
    which is this stream's chain of stages ("streamlets") plus one more;
    the stream an operator is called on is left as it was. Hence one stream
    with a reusable source can feed several pipelines, and operators chain::

        data = await AsyncStream(rows).map(parse).filter(is_valid).parallel_map(8, enrich)

    Iterating over the stream (``async for``, :meth:`collect`, ``await``, ...)
    runs the whole chain, pulling one element at a time from the source.
    If the consumer stops early and closes its iterator, the close is forwarded
    stage by stage back to the source, so that cleanup code in any of them runs.

    Whether a stream can be iterated more than once depends on its source:
    a sequence or a factory is read anew every time, whereas a single-use
    iterator, such as an async generator object, is exhausted by the first pass.
    """

    def __init__(self, instream: Any, /):
        self.streamlets: list[AsyncIterable] = [as_source(instream)]

    def _then(self, streamlet: AsyncIterable) -> Self:
        # A shallow copy keeps the class (and attributes) of subclasses.
        stream = copy.copy(self)
        stream.streamlets = [*self.streamlets, streamlet]
        return stream

    def __aiter__(self) -> AsyncIterator[Elem]:
        return self.streamlets[-1].__aiter__()

    def make_iterator(self) -> AsyncIterator[Elem]:
        """
        Return a new async iterator over the stream, for step-by-step control
        with ``await it.__anext__()``. The iterator is an async generator;
        call its ``aclose()`` if it is abandoned before exhaustion.
        """
        return self.__aiter__()

    def __await__(self):
        return self.collect().__await__()

    async def drain(self) -> int:
        """
        Drain off the stream and return the number of elements processed.
        """
        n = 0
        async for _ in self:
            n += 1
        return n

    async def collect(self) -> list[Elem]:
        return [x async for x in self]

    async def for_each(self, func: Callable[[T], Any], /, **kwargs) -> None:
        """
        Call ``func`` on each element, one after another; each call
        (if async) is awaited before the next element is pulled.
        """
        if kwargs:
            func = functools.partial(func, **kwargs)
        async with asyncstdlib.scoped_iter(self) as it:
            async for x in it:
                await call_maybe_async(func, x)

    async def parallel_each(
        self, concurrency: int, func: Callable[[T], Any], /, **kwargs
    ) -> None:
        """
        Like :meth:`for_each`, but with up to ``concurrency`` calls in progress
        at the same time. See :func:`aiostreamer.parallel_map`.
        """
        await parallel_each(self.streamlets[-1], concurrency, func, **kwargs)

    def map(self, func: Callable[[T], Any], /, **kwargs) -> Self:
        """
        Transform each element by ``func``, which may be sync or async.
        ``kwargs`` are passed to ``func`` along with the element.
        """
        return self._then(Mapper(self.streamlets[-1], func, **kwargs))

    def filter(self, func: Callable[[T], bool], /, **kwargs) -> Self:
        """
        Keep the elements for which ``func`` returns true.
        """
        return self._then(Filter(self.streamlets[-1], func, **kwargs))

    def flat_map(self, func: Callable[[T], Any], /, **kwargs) -> Self:
        """
        ``func`` turns each element into a sub-sequence (anything accepted by
        :func:`aiostreamer.as_source`); the elements of the sub-sequences are
        yielded one after another.
        """
        return self._then(FlatMapper(self.streamlets[-1], func, **kwargs))

    def filter_exceptions(
        self,
        drop: type[BaseException] | tuple[type[BaseException], ...] = (),
        keep: type[BaseException] | tuple[type[BaseException], ...] = (),
    ) -> Self:
        """
        Deal with exception objects traveling in the stream, such as those put
        there by :meth:`parallel_map` with ``return_exceptions=True``.

        An exception object that is an instance of ``keep`` stays in the stream;
        otherwise, one that is an instance of ``drop`` is removed; any other is raised.
        Elements that are not exceptions pass through.
        """

        def passes(x):
            if not isinstance(x, BaseException):
                return True
            if isinstance(x, keep):
                return True
            if isinstance(x, drop):
                return False
            raise x

        return self.filter(passes)

    def peek(
        self,
        print_func: Callable[[str], None] | None = None,
        *,
        interval: int = 1,
        prefix: str = '',
    ) -> Self:
        """
        Report every ``interval``-th element, and every exception object,
        as it passes by; the elements themselves are not changed.

        Each report is a line ``f'{prefix}#{index}: {element!r}'``, where ``index``
        counts from 1 within one iteration of the stream. It goes to ``print_func``,
        by default ``logger.info`` of this module.
        """
        assert interval >= 1
        report = logger.info if print_func is None else print_func

        class Peeker(AsyncIterable):
            def __init__(self, instream):
                self._instream = instream

            async def __aiter__(self):
                idx = 0
                async with asyncstdlib.scoped_iter(self._instream) as it:
                    async for x in it:
                        idx += 1
                        if idx % interval == 0 or isinstance(x, BaseException):
                            report(f'{prefix}#{idx}: {x!r}')
                        yield x

        return self._then(Peeker(self.streamlets[-1]))

    def head(self, n: int) -> Self:
        """
        Take the first ``n`` elements and ignore the rest.
        The upstream is closed as soon as ``n`` elements have been taken.
        """
        return self._then(Header(self.streamlets[-1], n))

    def groupby(self, key: Callable[[T], Any], /, **kwargs) -> Self:
        """
        Group consecutive elements that have the same value of ``key(element)``.
        Each output element is a tuple ``(key_value, list_of_elements)``.
        ``key`` may be sync or async.
        """
        return self._then(Grouper(self.streamlets[-1], key, **kwargs))

    def batch(self, batch_size: int) -> Self:
        """
        Take elements from the stream and put them in lists of length
        ``batch_size``; the last list may be shorter.
        """
        return self._then(Batcher(self.streamlets[-1], batch_size))

    def unbatch(self) -> Self:
        """
        Reverse of :meth:`batch`: each element must be an iterable or
        an async iterable, whose members are yielded.
        """
        return self._then(Unbatcher(self.streamlets[-1]))

    def buffer(self, maxsize: int | None = None, *, on_error: OnError = ON_ERROR_RAISE) -> Self:
        """
        Read the stream ahead of the consumer, by up to ``maxsize`` elements,
        in a separate task. See :class:`aiostreamer.IteratorPool`.
        """
        from ._pool import Pooler

        return self._then(
            Pooler(
                self.streamlets[-1],
                maxsize or DEFAULT_POOL_SIZE,
                on_error=on_error,
                name='buffer',
            )
        )

    def parallel_map(
        self,
        concurrency: int,
        func: Callable[[T], TT | Awaitable[TT]],
        /,
        *,
        return_exceptions: bool = False,
        **kwargs,
    ) -> Self:
        """
        Transform each element by ``func`` with up to ``concurrency`` calls in
        progress, keeping the input order. See :func:`aiostreamer.parallel_map`.
        """
        return self._then(
            ParallelMapper(
                self.streamlets[-1],
                concurrency,
                func,
                return_exceptions=return_exceptions,
                **kwargs,
            )
        )

    def parallel_flat_map(
        self, concurrency: int, func: Callable[[T], Any], /, **kwargs
    ) -> Self:
        """
        Like :meth:`flat_map` with up to ``concurrency`` calls to ``func`` in progress.
        See :func:`aiostreamer.parallel_flat_map`.
        """
        return self._then(
            ParallelFlatMapper(self.streamlets[-1], concurrency, func, **kwargs)
        )


class Mapper(AsyncIterable):
    def __init__(self, instream: AsyncIterable, func: Callable[[T], Any], **kwargs):
        self._instream = instream
        if kwargs:
            func = functools.partial(func, **kwargs)
        self.func = func

    async def __aiter__(self):
        func = self.func
        async with asyncstdlib.scoped_iter(self._instream) as it:
            async for v in it:
                yield await call_maybe_async(func, v)


class Filter(AsyncIterable):
    def __init__(self, instream: AsyncIterable, func: Callable[[T], bool], **kwargs):
        self._instream = instream
        self.func = functools.partial(func, **kwargs) if kwargs else func

    async def __aiter__(self):
        func = self.func
        async with asyncstdlib.scoped_iter(self._instream) as it:
            async for v in it:
                if await call_maybe_async(func, v):
                    yield v


class FlatMapper(AsyncIterable):
    def __init__(self, instream: AsyncIterable, func: Callable[[T], Any], **kwargs):
        self._instream = instream
        self.func = functools.partial(func, **kwargs) if kwargs else func

    async def __aiter__(self):
        func = self.func
        async with asyncstdlib.scoped_iter(self._instream) as it:
            async for v in it:
                sub = as_source(await call_maybe_async(func, v))
                # The sub-sequence is closed, too, if iteration stops inside it.
                async with asyncstdlib.scoped_iter(sub) as subit:
                    async for y in subit:
                        yield y


class Header(AsyncIterable):
    def __init__(self, instream: AsyncIterable, /, n: int):
        assert n > 0
        self._instream = instream
        self.n = n

    async def __aiter__(self):
        n = 0
        async with asyncstdlib.scoped_iter(self._instream) as it:
            async for v in it:
                yield v
                n += 1
                if n >= self.n:
                    break


class Grouper(AsyncIterable):
    def __init__(
        self,
        instream: AsyncIterable,
        /,
        key: Callable[[T], Any] | Callable[[T], Awaitable[Any]],
        **kwargs,
    ):
        self._instream = instream
        if kwargs:
            key = functools.partial(key, **kwargs)
        self.key = key

    async def __aiter__(self):
        async with asyncstdlib.scoped_iter(
            asyncstdlib.itertools.groupby(self._instream, self.key)
        ) as it:
            async for k, group in it:
                yield k, [x async for x in group]


class Batcher(AsyncIterable):
    def __init__(self, instream: AsyncIterable, /, batch_size: int):
        self._instream = instream
        assert batch_size > 0
        self._batch_size = batch_size

    async def __aiter__(self):
        batch_size = self._batch_size
        batch = []
        async with asyncstdlib.scoped_iter(self._instream) as it:
            async for x in it:
                batch.append(x)
                if len(batch) == batch_size:
                    yield batch
                    batch = []
        if batch:
            yield batch


class Unbatcher(AsyncIterable):
    def __init__(self, instream: AsyncIterable, /):
        self._instream = instream

    async def __aiter__(self):
        async with asyncstdlib.scoped_iter(self._instream) as it:
            async for x in it:
                # `x` must be iterable or async iterable.
                if isiterable(x):
                    for y in x:
                        yield y
                else:
                    async with asyncstdlib.scoped_iter(x) as xit:
                        async for y in xit:
                            yield y


class ParallelMapper(AsyncIterable):
    def __init__(
        self,
        instream: AsyncIterable,
        concurrency: int,
        func: Callable[[T], TT | Awaitable[TT]],
        *,
        return_exceptions: bool = False,
        **kwargs,
    ):
        assert concurrency >= 1
        self._instream = instream
        self._concurrency = concurrency
        self._func = func
        self._return_exceptions = return_exceptions
        self._func_kwargs = kwargs

    def __aiter__(self):
        return parallel_map(
            self._instream,
            self._concurrency,
            self._func,
            return_exceptions=self._return_exceptions,
            **self._func_kwargs,
        )


class ParallelFlatMapper(AsyncIterable):
    def __init__(
        self,
        instream: AsyncIterable,
        concurrency: int,
        func: Callable[[T], Any],
        **kwargs,
    ):
        assert concurrency >= 1
        self._instream = instream
        self._concurrency = concurrency
        self._func = func
        self._func_kwargs = kwargs

    def __aiter__(self):
        return parallel_flat_map(
            self._instream, self._concurrency, self._func, **self._func_kwargs
        )
