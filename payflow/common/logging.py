"""Structured JSON logging for the payment consumer and read API.

`PaymentService.on_message` binds the delivery's correlation id, event id and
order id; every record logged while that delivery is handled carries them.
"""

import logging
import sys
from contextvars import ContextVar

from pythonjsonlogger.json import JsonFormatter

from payflow.common.config import settings


correlation_id_ctx: ContextVar[str] = ContextVar("correlation_id", default="")
event_id_ctx: ContextVar[str] = ContextVar("event_id", default="")
order_id_ctx: ContextVar[str] = ContextVar("order_id", default="")


class ContextFilter(logging.Filter):
    """Copy the bound delivery identifiers onto each record (empty outside a delivery)."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.service_name = settings.service_name
        record.correlation_id = correlation_id_ctx.get()
        record.event_id = event_id_ctx.get()
        record.order_id = order_id_ctx.get()
        return True


def configure_logging() -> None:
    """Route all logging to stdout as JSON at `LOG_LEVEL`; call once at process start."""

    handler = logging.StreamHandler(sys.stdout)
    context_filter = ContextFilter()
    handler.addFilter(context_filter)
    formatter = JsonFormatter(
        "%(asctime)s %(levelname)s %(service_name)s %(correlation_id)s %(event_id)s %(order_id)s %(message)s"
    )
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(settings.log_level)
    root.addFilter(context_filter)


logger = logging.getLogger("payflow")
