"""Correlation ID context for tracing one sync cycle through the logs.

Each cycle runs on the scheduler's worker thread under its own correlation
ID (``sync-20261019-140500``); every log entry and published event of that
cycle carries it. ContextVar storage keeps IDs from leaking between threads
and between the coroutines of a cycle.

Usage:
    from src.observability.context import correlation_id_context

    with correlation_id_context("sync-20261019-140500"):
        run_cycle()
"""

import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Generator, Optional

_correlation_id_var: ContextVar[Optional[str]] = ContextVar(
    "correlation_id", default=None
)


def get_correlation_id() -> Optional[str]:
    """Return the current correlation ID, or None outside a cycle."""
    return _correlation_id_var.get()


@contextmanager
def correlation_id_context(
    corr_id: Optional[str] = None,
) -> Generator[str, None, None]:
    """Scoped correlation ID; the previous value is restored on exit.

    Args:
        corr_id: Optional correlation ID. If None, generates a UUID4.

    Yields:
        The correlation ID in effect inside the block.
    """
    if corr_id is None:
        corr_id = str(uuid.uuid4())

    token = _correlation_id_var.set(corr_id)
    try:
        yield corr_id
    finally:
        _correlation_id_var.reset(token)
