"""
The package ``aiostreamer`` provides utilities for processing streams of data with ``asyncio``.

An input data stream goes through a series of operations.
The output from one operation becomes the input to the next operation.
Some operations (calling a remote service, reading files) spend most of their
time waiting, hence can benefit from overlapping many calls on the event loop;
others are light weight, such as mapping, filtering, batching, grouping.

The main class is :class:`AsyncStream`. It wraps any kind of data source
(see :func:`as_source`), and its operators each add a lazy stage to the stream::

    stream = (
        AsyncStream(fetch_ids)                  # an async generator function
        .parallel_map(16, fetch_record)         # at most 16 requests in flight, order kept
        .filter(lambda r: r['status'] == 'ok')
        .batch(100)
    )
    async for batch in stream:
        ...

Two helpers bridge producers that do not fit the pull model:

- :class:`EventIterator` turns a callback that *pushes* items
  (e.g. handlers registered on an event emitter) into a stream.
- :class:`IteratorPool` runs a producer ahead of its consumer, by a bounded
  number of items, in a separate task.

All of this runs in a single thread; "parallel" means overlapping tasks
that are waiting, not using multiple cores.

To install, do

::

   python3 -m pip install aiostreamer
"""

__version__ = '0.3.0'


from ._common import (
    DEFAULT_POOL_SIZE,
    ON_ERROR_LOG,
    ON_ERROR_RAISE,
    InvalidStateError,
)
from ._event import EventIterator
from ._parallel import parallel_each, parallel_flat_map, parallel_map
from ._pool import IteratorPool, pooled_iterator
from ._signal import Signal
from ._source import Deferred, Factory, Pull, Snapshot, Source, as_source
from ._stream import AsyncStream

__all__ = [
    'AsyncStream',
    'EventIterator',
    'IteratorPool',
    'pooled_iterator',
    'parallel_map',
    'parallel_flat_map',
    'parallel_each',
    'Signal',
    'InvalidStateError',
    'Source',
    'Snapshot',
    'Deferred',
    'Pull',
    'Factory',
    'as_source',
    'DEFAULT_POOL_SIZE',
    'ON_ERROR_RAISE',
    'ON_ERROR_LOG',
]
