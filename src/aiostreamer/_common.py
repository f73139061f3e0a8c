import logging
from typing import Literal

ON_ERROR_RAISE = 'raise'
ON_ERROR_LOG = 'log'

OnError = Literal['raise', 'log']

DEFAULT_POOL_SIZE = 256
"""
Capacity of :meth:`aiostreamer.AsyncStream.buffer` if not specified.
"""


class InvalidStateError(RuntimeError):
    pass


def check_on_error(on_error: str) -> str:
    if on_error not in (ON_ERROR_RAISE, ON_ERROR_LOG):
        raise ValueError(
            f"`on_error` must be '{ON_ERROR_RAISE}' or '{ON_ERROR_LOG}'; got {on_error!r}"
        )
    return on_error


def handle_producer_error(
    error: BaseException, on_error: str, logger: logging.Logger, producer: str
) -> None:
    """
    Called by the consumer side of a detached producer task after the producer failed
    and everything it had produced has been delivered.

    With ``'raise'``, the producer's exception is raised in the consumer.
    With ``'log'``, it is logged along with its traceback, and the consumer
    ends its iteration normally.
    """
    if on_error == ON_ERROR_RAISE:
        raise error
    logger.error(
        "producer '%s' failed; ending the stream",
        producer,
        exc_info=(type(error), error, error.__traceback__),
    )
