from __future__ import annotations

import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar, Token

correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)


def set_correlation_id(value: str | None) -> Token[str | None]:
    return correlation_id_var.set(value)


def reset_correlation_id(token: Token[str | None]) -> None:
    correlation_id_var.reset(token)


def get_correlation_id() -> str | None:
    return correlation_id_var.get()


def new_correlation_id(prefix: str | None = None) -> str:
    value = str(uuid.uuid4())
    return f"{prefix}-{value}" if prefix else value


@contextmanager
def correlation_scope(value: str | None = None, *, prefix: str | None = None) -> Iterator[str]:
    """Bind a correlation id for the duration of the block.

    An id already bound by the caller is kept unless ``value`` overrides it,
    so work started inside a request logs under the request's id and work
    started from a shell gets a fresh one.
    """
    correlation_id = value or get_correlation_id() or new_correlation_id(prefix)
    token = set_correlation_id(correlation_id)
    try:
        yield correlation_id
    finally:
        reset_correlation_id(token)
