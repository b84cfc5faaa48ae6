"""Structured JSON logging with request and tenant context.

Every record carries the current ``request_id`` and ``tenant_id``. Values
passed through ``extra=`` become top-level JSON keys, except for keys that may
hold patient data or credentials, which are redacted.
"""

from __future__ import annotations

import contextvars
import json
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any
from uuid import UUID

from wellovis.core.config import settings

request_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "request_id", default=None
)
tenant_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "tenant_id", default=None
)

REDACTED = "[redacted]"
SENSITIVE_KEYS = frozenset(
    {
        "access_token",
        "refresh_token",
        "token",
        "health_number",
        "date_of_birth",
        "body",
        "password",
        "secret",
        "authorization",
    }
)

# Attributes every LogRecord has; anything else came in through ``extra=``.
_RECORD_ATTRIBUTES = frozenset(vars(logging.makeLogRecord({}))) | {"message", "taskName"}

_NOISY_LOGGERS = {"httpx": logging.WARNING, "sqlalchemy.engine": logging.WARNING}
_REROUTED_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access", "celery")


class ContextFilter(logging.Filter):
    """Copy the request and tenant context variables onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get()
        record.tenant_id = tenant_id_var.get()
        return True


class JSONLogFormatter(logging.Formatter):
    def __init__(self) -> None:
        super().__init__(datefmt="%Y-%m-%dT%H:%M:%S%z")

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", None),
            "tenant_id": getattr(record, "tenant_id", None),
        }
        for key, value in record.__dict__.items():
            if key in entry or key.startswith("_") or key in _RECORD_ATTRIBUTES:
                continue
            entry[key] = REDACTED if key.lower() in SENSITIVE_KEYS else value

        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


_configured = False


def configure_logging(level: int | str | None = None) -> None:
    """Send every logger to stdout as JSON. Safe to call more than once."""

    global _configured
    if _configured:
        return

    if level is None:
        level = settings.log_level.upper()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONLogFormatter())
    handler.addFilter(ContextFilter())

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)

    for name in _REROUTED_LOGGERS:
        logger = logging.getLogger(name)
        logger.handlers = []
        logger.propagate = True
    for name, noisy_level in _NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(noisy_level)

    _configured = True


def set_tenant_context(tenant_id: UUID | str | None) -> None:
    tenant_id_var.set(str(tenant_id) if tenant_id is not None else None)


@contextmanager
def tenant_context(tenant_id: UUID | str | None) -> Iterator[None]:
    """Bind ``tenant_id`` for the duration of the block.

    Jobs and commands loop over tenants in one process. The previous
    binding is restored on exit.
    """

    token = tenant_id_var.set(str(tenant_id) if tenant_id is not None else None)
    try:
        yield
    finally:
        tenant_id_var.reset(token)


@contextmanager
def request_context(request_id: str, tenant_hint: str | None) -> Iterator[None]:
    request_token = request_id_var.set(request_id)
    tenant_token = tenant_id_var.set(tenant_hint)
    try:
        yield
    finally:
        request_id_var.reset(request_token)
        tenant_id_var.reset(tenant_token)


def get_current_tenant() -> str:
    return tenant_id_var.get() or "anonymous"


__all__ = [
    "configure_logging",
    "get_current_tenant",
    "request_context",
    "request_id_var",
    "set_tenant_context",
    "tenant_context",
    "tenant_id_var",
]
