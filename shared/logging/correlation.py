"""Correlation ids for tying together the log records of one operation.

Values live in structlog contextvars, so every logger in the current task
(and tasks spawned from it) picks them up through ``merge_contextvars``.
"""

from collections.abc import Iterator
from contextlib import contextmanager
import uuid

import structlog

CORRELATION_ID_LENGTH = 12


def new_correlation_id() -> str:
    return uuid.uuid4().hex[:CORRELATION_ID_LENGTH]


def set_correlation_id(correlation_id: str) -> None:
    structlog.contextvars.bind_contextvars(correlation_id=correlation_id)


def get_correlation_id() -> str | None:
    return structlog.contextvars.get_contextvars().get("correlation_id")


@contextmanager
def correlation_scope(correlation_id: str | None = None, **fields: str) -> Iterator[str]:
    """Bind a correlation id plus extra fields until the block exits.

    Previously bound values are restored afterwards. Yields the id in use.
    """
    correlation_id = correlation_id or new_correlation_id()
    with structlog.contextvars.bound_contextvars(correlation_id=correlation_id, **fields):
        yield correlation_id


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()
