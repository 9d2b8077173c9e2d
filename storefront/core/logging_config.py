"""Structured JSON logging configuration.

Two context variables ride along on every record:

- ``request_id``: set per request by the middleware in ``storefront.main``.
- ``subject``: the cart token or discount code the current request is acting
  on, so operators can grep one shopper's history across log lines.
"""

import contextvars
import logging
import uuid

from pythonjsonlogger.json import JsonFormatter

request_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("request_id", default="")
subject_var: contextvars.ContextVar[str] = contextvars.ContextVar("subject", default="")


class LogContextFilter(logging.Filter):
    """Inject request_id and subject into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get("")  # type: ignore[attr-defined]
        record.subject = subject_var.get("")  # type: ignore[attr-defined]
        return True


def setup_logging(*, debug: bool = False) -> None:
    """Configure root logger with JSON formatter and context filter."""
    handler = logging.StreamHandler()
    formatter = JsonFormatter(
        fmt="%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s %(subject)s",
        rename_fields={"asctime": "timestamp", "levelname": "level"},
    )
    handler.setFormatter(formatter)
    handler.addFilter(LogContextFilter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if debug else logging.INFO)

    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def generate_request_id() -> str:
    """Generate a new request ID."""
    return uuid.uuid4().hex[:16]


def bind_subject(subject: str) -> None:
    """Tag subsequent log records in this context with a token or code."""
    subject_var.set(subject)
