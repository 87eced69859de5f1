"""JSON logs carrying the correlation ids of the event or job being handled.

`log_context` binds ids for a block of work; every record emitted inside it
(from any logger) picks them up through `ContextFilter`.
"""

import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

from pythonjsonlogger.json import JsonFormatter

from notifyflow.common.config import settings


trace_id_ctx: ContextVar[str] = ContextVar("trace_id", default="")
event_id_ctx: ContextVar[str] = ContextVar("event_id", default="")
tenant_id_ctx: ContextVar[str] = ContextVar("tenant_id", default="")

_CONTEXT_FIELDS: dict[str, ContextVar[str]] = {
    "trace_id": trace_id_ctx,
    "event_id": event_id_ctx,
    "tenant_id": tenant_id_ctx,
}


@contextmanager
def log_context(**ids: str | None) -> Iterator[None]:
    """Bind correlation ids (`trace_id`, `event_id`, `tenant_id`) for the block."""

    tokens = [(_CONTEXT_FIELDS[name], _CONTEXT_FIELDS[name].set(value or "")) for name, value in ids.items()]
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


class ContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.service_name = settings.service_name
        for name, var in _CONTEXT_FIELDS.items():
            setattr(record, name, var.get())
        return True


def configure_logging(level: str | None = None) -> None:
    """Send JSON lines to stdout; replaces any handlers already installed."""

    fields = " ".join(f"%({name})s" for name in ("asctime", "levelname", "name", "service_name", *_CONTEXT_FIELDS))
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(ContextFilter())
    handler.setFormatter(
        JsonFormatter(f"{fields} %(message)s", rename_fields={"asctime": "ts", "levelname": "level", "name": "logger"})
    )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level or settings.log_level)


logger = logging.getLogger("notifyflow")
