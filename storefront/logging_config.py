"""Structured logging configuration."""
import logging
import sys
from typing import IO, Optional

from opentelemetry import trace
from pythonjsonlogger import jsonlogger

from storefront.config import ENVIRONMENT, LOG_LEVEL, SERVICE_NAME

NOISY_LOGGERS = ("uvicorn.access", "sqlalchemy.engine")


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON records tagged with service, environment and the active span."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        ctx = trace.get_current_span().get_span_context()
        if ctx.is_valid:
            log_record["trace_id"] = trace.format_trace_id(ctx.trace_id)
            log_record["span_id"] = trace.format_span_id(ctx.span_id)

        log_record["service"] = SERVICE_NAME
        log_record["environment"] = ENVIRONMENT
        log_record["msg"] = log_record.pop("message", record.getMessage())


def setup_logging(level: str = LOG_LEVEL, stream: Optional[IO[str]] = None) -> None:
    """Route all logging through one JSON handler on ``stream`` (stdout by default)."""
    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(CustomJsonFormatter(
        "%(asctime)s %(levelname)s %(name)s %(message)s",
        rename_fields={"levelname": "level", "asctime": "timestamp"}
    ))

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
