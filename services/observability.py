from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

from settings import settings


_operation_id: ContextVar[str | None] = ContextVar("operation_id", default=None)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s op=%(operation_id)s: %(message)s"


def get_operation_id() -> str | None:
    return _operation_id.get()


@contextmanager
def operation(name: str) -> Iterator[str]:
    """
    Scope a correlation id over one core operation (join, contribute, settle...).
    Nested operations keep the outer id.
    """
    current = _operation_id.get()
    if current is not None:
        yield current
        return
    op_id = f"{name}-{uuid.uuid4().hex[:8]}"
    token = _operation_id.set(op_id)
    try:
        yield op_id
    finally:
        _operation_id.reset(token)


class OperationIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.operation_id = get_operation_id() or "-"
        return True


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(level=(level or settings.LOG_LEVEL or "INFO").upper(), format=LOG_FORMAT)
    for handler in logging.getLogger().handlers:
        if not any(isinstance(f, OperationIdFilter) for f in handler.filters):
            handler.addFilter(OperationIdFilter())
