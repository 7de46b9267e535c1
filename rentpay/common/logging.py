"""JSON logging for the payments service.

Every record carries the request correlation id and, once known, the
Daraja `CheckoutRequestID`, so one push can be followed from initiation to
callback across log lines.
"""

import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

from pythonjsonlogger.json import JsonFormatter

from rentpay.common.config import settings


trace_id_ctx: ContextVar[str] = ContextVar("trace_id", default="")
checkout_request_id_ctx: ContextVar[str] = ContextVar("checkout_request_id", default="")

# httpx logs every request line (with URL) at INFO.
NOISY_LOGGERS = ("httpx", "httpcore")


class ContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.service_name = settings.service_name
        record.environment = settings.environment
        record.trace_id = trace_id_ctx.get()
        record.checkout_request_id = checkout_request_id_ctx.get()
        return True


@contextmanager
def bind_checkout_request_id(checkout_request_id: str) -> Iterator[None]:
    """Tag log records emitted inside the block with one checkout id."""

    token = checkout_request_id_ctx.set(checkout_request_id)
    try:
        yield
    finally:
        checkout_request_id_ctx.reset(token)


def configure_logging(level: str | None = None) -> None:
    """Route all loggers through one JSON stdout handler."""

    handler = logging.StreamHandler(sys.stdout)
    context_filter = ContextFilter()
    handler.addFilter(context_filter)
    handler.setFormatter(
        JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(service_name)s %(environment)s "
            "%(trace_id)s %(checkout_request_id)s %(message)s",
            rename_fields={"levelname": "level", "asctime": "timestamp"},
        )
    )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level or settings.log_level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


logger = logging.getLogger("rentpay")
