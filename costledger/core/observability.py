import json
import logging
from contextlib import contextmanager
from contextvars import ContextVar
from decimal import Decimal
from typing import Any, Iterator
from uuid import uuid4

from costledger.core.config import settings

correlation_id_ctx: ContextVar[str] = ContextVar("correlation_id", default="-")
logger = logging.getLogger("costledger.core")


def setup_observability() -> None:
    if logger.handlers:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    logger.setLevel(getattr(logging, settings.log_level, logging.INFO))
    logger.propagate = False


def get_correlation_id() -> str:
    return correlation_id_ctx.get()


@contextmanager
def correlation_scope(correlation_id: str | None = None) -> Iterator[str]:
    """Bind a correlation id to every ledger log line emitted inside the block.

    Host services pass their request id here so ledger events can be joined
    with their own request logs.
    """
    value = correlation_id or str(uuid4())
    token = correlation_id_ctx.set(value)
    try:
        yield value
    finally:
        correlation_id_ctx.reset(token)


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    return str(value)


def _emit(level: int, event: str, fields: dict[str, Any]) -> None:
    if not logger.isEnabledFor(level):
        return
    payload = {"event": event, "correlation_id": get_correlation_id(), **fields}
    logger.log(level, json.dumps(payload, default=_json_default))


def log_event(event: str, **fields: Any) -> None:
    _emit(logging.INFO, event, fields)


def log_warning(event: str, **fields: Any) -> None:
    _emit(logging.WARNING, event, fields)


def log_error(event: str, **fields: Any) -> None:
    _emit(logging.ERROR, event, fields)
