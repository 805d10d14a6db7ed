"""
Execution-scoped guard that keeps rebalance writes from re-triggering rebalancing.

The flag lives in a ContextVar, so each thread and each asyncio task sees its
own value: a rebalance running in one task never silences the trigger for a
request handled by another.
"""

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

from tasktrack.logging_config import get_logger

logger = get_logger(__name__)

_rebalancing: ContextVar[bool] = ContextVar("tasktrack_rebalancing", default=False)


def is_rebalancing() -> bool:
    """
    Check whether the current execution context is inside a rebalance.

    Returns:
        True while a ``rebalancing()`` block is active in this context
    """
    return _rebalancing.get()


@contextmanager
def rebalancing() -> Iterator[None]:
    """
    Mark the current execution context as rebalancing for the duration of the block.

    The previous value is restored on exit, including when the block raises.
    Nested blocks are allowed.

    Example:
        with rebalancing():
            await write_positions(...)
    """
    token = _rebalancing.set(True)
    logger.debug("Rebalance guard activated")
    try:
        yield
    finally:
        _rebalancing.reset(token)
        logger.debug("Rebalance guard released")
