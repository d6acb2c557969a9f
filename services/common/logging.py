import logging
from typing import Literal

from opentelemetry import trace

from .config import ServiceSettings


_TRACE_PLACEHOLDER = "-"
_LOG_FORMAT = (
    "%(asctime)s | %(levelname)s | %(service)s | %(name)s "
    "| trace_id=%(trace_id)s span_id=%(span_id)s | %(message)s"
)
# Chatty third-party loggers kept at WARNING unless the service runs in DEBUG.
_QUIET_LOGGERS = ("aiosqlite", "httpx", "httpcore", "sqlalchemy.engine")


def _format_trace_id(value: int, length: int) -> str:
    return format(value, f"0{length}x")


class TraceContextFilter(logging.Filter):
    """Stamp records with the service name and the active trace/span identifiers."""

    def __init__(self, service_name: str) -> None:
        super().__init__()
        self.service_name = service_name

    def filter(self, record: logging.LogRecord) -> bool:
        record.service = self.service_name
        span = trace.get_current_span()
        span_context = span.get_span_context() if span is not None else None
        if span_context is not None and span_context.is_valid:
            record.trace_id = _format_trace_id(span_context.trace_id, 32)
            record.span_id = _format_trace_id(span_context.span_id, 16)
        else:
            record.trace_id = _TRACE_PLACEHOLDER
            record.span_id = _TRACE_PLACEHOLDER
        return True


def configure_logging(settings: ServiceSettings) -> None:
    """Configure root logging level, format and trace correlation."""

    logging_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = settings.log_level
    logging.basicConfig(level=logging_level, format=_LOG_FORMAT)
    root_logger = logging.getLogger()
    context_filter = next(
        (f for f in root_logger.filters if isinstance(f, TraceContextFilter)),
        None,
    )
    if context_filter is None:
        context_filter = TraceContextFilter(settings.app_name)
        root_logger.addFilter(context_filter)
    else:
        context_filter.service_name = settings.app_name
    for handler in root_logger.handlers:
        if not any(isinstance(f, TraceContextFilter) for f in handler.filters):
            handler.addFilter(context_filter)

    quiet_level = logging.DEBUG if logging_level == "DEBUG" else logging.WARNING
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)
