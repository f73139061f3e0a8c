import asyncio
import functools
import inspect
import logging
from collections import deque
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any, TypeVar

import asyncstdlib

from ._source import as_source

logger = logging.getLogger(__name__)


T = TypeVar('T')  # indicates input data element
TT = TypeVar('TT')  # indicates output after an op on `T`


async def call_maybe_async(func: Callable[[T], TT | Awaitable[TT]], x: T) -> TT:
    # `func` may be a sync function, an async function, or a sync function
    # that returns an awaitable.
    z = func(x)
    if inspect.isawaitable(z):
        z = await z
    return z


async def _pop_result(window: deque, return_exceptions: bool = False):
    # The oldest task is removed from the window only after it has settled,
    # so that it is still found by `_settle_all` if this task is cancelled
    # while waiting on it.
    t = window[0]
    try:
        y = await t
    except Exception as e:
        window.popleft()
        if return_exceptions:
            return e
        raise
    window.popleft()
    return y


async def _settle_all(window: deque) -> None:
    if not window:
        return
    logger.debug('cancelling %d outstanding tasks', len(window))
    for t in window:
        t.cancel()
    # Outcomes are retrieved and discarded; only the error that
    # terminated the stream (if any) reaches the consumer.
    await asyncio.gather(*window, return_exceptions=True)
    window.clear()


async def parallel_map(
    instream: Any,
    concurrency: int,
    func: Callable[[T], TT | Awaitable[TT]],
    /,
    *,
    return_exceptions: bool = False,
    name: str = 'parallel-map',
    **kwargs,
) -> AsyncIterator[TT | Exception]:
    """
    Apply ``func`` to each element of ``instream`` with up to ``concurrency``
    calls in progress at any time, yielding results in the order of the input.

    An element is pulled from ``instream``; if ``concurrency`` calls are already
    outstanding, the oldest one is awaited and its result yielded *before*
    the call for the new element starts. Once ``instream`` is exhausted,
    the remaining calls are awaited oldest-first. Because results are always
    taken from the head of the window, the output order is the input order
    no matter in which order the calls finish.

    Parameters
    ----------
    instream
        Anything accepted by :func:`aiostreamer.as_source`.
    concurrency
        Max number of calls to ``func`` that have started but whose results
        have not been yielded.
    func
        Sync or async function taking an element as the first positional argument.
        Each call runs in its own ``asyncio`` task.
    return_exceptions
        If ``True``, an exception raised by ``func`` is yielded in place of
        the result; if ``False``, it is raised when its turn comes.
    name
        Prefix for the names of the tasks.
    **kwargs
        Additional keyword arguments to ``func``.

    Notes
    -----
    When iteration ends early, because of an error or because the consumer
    closed the generator, calls that are still outstanding are cancelled
    and awaited, their outcomes discarded.
    """
    assert concurrency >= 1
    if kwargs:
        func = functools.partial(func, **kwargs)
    window: deque[asyncio.Task] = deque()
    try:
        async with asyncstdlib.scoped_iter(as_source(instream)) as it:
            idx = 0
            async for x in it:
                if len(window) >= concurrency:
                    yield await _pop_result(window, return_exceptions)
                window.append(
                    asyncio.create_task(call_maybe_async(func, x), name=f"{name}-{idx}")
                )
                idx += 1
        while window:
            yield await _pop_result(window, return_exceptions)
    finally:
        await _settle_all(window)


async def parallel_flat_map(
    instream: Any,
    concurrency: int,
    func: Callable[[T], Any],
    /,
    *,
    name: str = 'parallel-flat-map',
    **kwargs,
) -> AsyncIterator:
    """
    Like :func:`parallel_map`, except that ``func`` returns a sub-sequence
    for each element (anything accepted by :func:`aiostreamer.as_source`, or an
    awaitable of that), and the elements of the sub-sequences are yielded.

    Up to ``concurrency`` calls to ``func`` run at the same time, but
    sub-sequences are flattened one after another: when the oldest call is taken
    off the window, its sub-sequence is drained completely before the next one.
    """
    assert concurrency >= 1
    if kwargs:
        func = functools.partial(func, **kwargs)
    window: deque[asyncio.Task] = deque()

    async def flatten():
        sub = await _pop_result(window)
        async with asyncstdlib.scoped_iter(as_source(sub)) as subit:
            async for y in subit:
                yield y

    try:
        async with asyncstdlib.scoped_iter(as_source(instream)) as it:
            idx = 0
            async for x in it:
                if len(window) >= concurrency:
                    async with asyncstdlib.scoped_iter(flatten()) as sub:
                        async for y in sub:
                            yield y
                window.append(
                    asyncio.create_task(call_maybe_async(func, x), name=f"{name}-{idx}")
                )
                idx += 1
        while window:
            async with asyncstdlib.scoped_iter(flatten()) as sub:
                async for y in sub:
                    yield y
    finally:
        await _settle_all(window)


async def parallel_each(
    instream: Any,
    concurrency: int,
    func: Callable[[T], Any],
    /,
    **kwargs,
) -> None:
    """
    Call ``func`` on every element for its side effect, with up to ``concurrency``
    calls in progress. Returns once all calls have finished; the first error
    (in input order) is raised.
    """
    async with asyncstdlib.scoped_iter(
        parallel_map(instream, concurrency, func, name='parallel-each', **kwargs)
    ) as it:
        async for _ in it:
            pass
