import logging

from opentelemetry import trace

from .config import ServiceSettings


_NO_TRACE = "-"
_LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | trace_id=%(trace_id)s span_id=%(span_id)s | %(message)s"
# Driver and client chatter that drowns out stock movement logs below DEBUG.
_NOISY_LOGGERS = ("sqlalchemy.engine", "aiosqlite", "httpx")


class TraceContextFilter(logging.Filter):
    """Stamp ``trace_id``/``span_id`` on every record, ``-`` outside a span."""

    def filter(self, record: logging.LogRecord) -> bool:
        context = trace.get_current_span().get_span_context()
        if context.is_valid:
            record.trace_id = format(context.trace_id, "032x")
            record.span_id = format(context.span_id, "016x")
        else:
            record.trace_id = _NO_TRACE
            record.span_id = _NO_TRACE
        return True


def _attach(target: logging.Filterer, context_filter: TraceContextFilter) -> None:
    if not any(isinstance(existing, TraceContextFilter) for existing in target.filters):
        target.addFilter(context_filter)


def configure_logging(settings: ServiceSettings) -> None:
    """Configure root logging; safe to call once per app and again per script run."""

    logging.basicConfig(level=settings.log_level, format=_LOG_FORMAT)
    root_logger = logging.getLogger()
    context_filter = TraceContextFilter()
    _attach(root_logger, context_filter)
    for handler in root_logger.handlers:
        _attach(handler, context_filter)
    if settings.log_level != "DEBUG":
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
