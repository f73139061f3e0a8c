import asyncio
from collections.abc import Generator
from typing import Any, Generic, TypeVar

from ._common import InvalidStateError

T = TypeVar('T')


class Signal(Generic[T]):
    """
    A single-shot synchronization cell between two tasks.

    Exactly one task awaits the signal; exactly one party fires it, either by
    :meth:`resolve` (with an optional value) or by :meth:`reject` (with an exception).
    Once fired, the signal is spent. The owner replaces it with a new ``Signal``
    before the next round; a ``Signal`` object is never reset.

    Firing an already-fired signal is a no-op, so a producer may call
    :meth:`resolve` once per item while the consumer wakes up only once.

    A ``Signal`` must be created while an event loop is running.
    """

    def __init__(self):
        self._future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._awaited = False

    @property
    def fired(self) -> bool:
        return self._future.done()

    def resolve(self, value: T = None) -> bool:
        """
        Return ``True`` if this call fired the signal, ``False`` if it had already fired.
        """
        if self._future.done():
            return False
        self._future.set_result(value)
        return True

    def reject(self, exc: BaseException) -> bool:
        if self._future.done():
            return False
        self._future.set_exception(exc)
        return True

    def discard(self) -> None:
        """
        Release the signal without waiting on it.

        A pending signal is cancelled. A rejected signal has its exception
        marked as retrieved, so that asyncio does not complain about it
        when the signal is garbage-collected.
        """
        fut = self._future
        if not fut.done():
            fut.cancel()
        elif not fut.cancelled():
            fut.exception()

    def __await__(self) -> Generator[Any, None, T]:
        if self._awaited:
            raise InvalidStateError(
                f"{self!r} has already been awaited; allocate a new Signal"
            )
        self._awaited = True
        return self._future.__await__()

    def __repr__(self):
        state = 'fired' if self._future.done() else 'pending'
        return f"<{self.__class__.__name__} {state}>"
