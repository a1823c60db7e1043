"""
Shared logging configuration for svckit consumers.
"""

import sys
import structlog
import logging
import logging.handlers
import uuid
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple
from contextvars import ContextVar

from opentelemetry import trace

from .config import LogConfig

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

# Rotation policy for file outputs
ROTATE_MAX_BYTES = 50 * 1024 * 1024
ROTATE_BACKUP_COUNT = 7

DEFAULT_CONTEXT_KEYS: Tuple[str, ...] = ("request_id", "user_id", "tenant_id")

DEVELOPMENT_ENVS = ("", "development", "local")

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

# Request-scoped fields, copied on write so tasks never share a dict
context_fields_var: ContextVar[Dict[str, Any]] = ContextVar("svckit_log_context", default={})

_service_name: Optional[str] = None
_context_keys: Tuple[str, ...] = DEFAULT_CONTEXT_KEYS
_file_handlers: list = []


def get_level(level: Optional[str]) -> int:
    """Map a configured level name to a logging level, defaulting to error."""
    return _LEVELS.get((level or "").lower(), logging.ERROR)


def configure_logging(
    service_name: str,
    env: str = "local",
    config: Optional[LogConfig] = None,
    context_keys: Iterable[str] = DEFAULT_CONTEXT_KEYS,
) -> None:
    """Configure structured logging for a service."""
    global _service_name, _context_keys

    config = config or LogConfig()
    _service_name = service_name
    _context_keys = tuple(context_keys)
    level = get_level(config.level)

    if (env or "").lower() in DEVELOPMENT_ENVS:
        renderer: Any = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt=TIMESTAMP_FORMAT),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            add_service_context,
            add_trace_context,
            add_correlation_context,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    root = logging.getLogger()
    for handler in _file_handlers:
        root.removeHandler(handler)
        handler.close()
    _file_handlers.clear()

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=level,
        force=True,
    )

    if config.stdout_file:
        _file_handlers.append(_rotating_handler(config.stdout_file, logging.DEBUG))
    if config.stderr_file:
        _file_handlers.append(_rotating_handler(config.stderr_file, logging.ERROR))
    for handler in _file_handlers:
        root.addHandler(handler)


def _rotating_handler(path: str, level: int) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path,
        maxBytes=ROTATE_MAX_BYTES,
        backupCount=ROTATE_BACKUP_COUNT,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(message)s"))
    return handler


def add_service_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add service context to log events."""
    if _service_name:
        event_dict.setdefault("service", _service_name)
    return event_dict


def add_trace_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add trace context to log events."""
    current_span = trace.get_current_span()
    if current_span and current_span.is_recording():
        span_context = current_span.get_span_context()
        if span_context.trace_id != 0:
            event_dict["trace_id"] = f"{span_context.trace_id:032x}"
        if span_context.span_id != 0:
            event_dict["span_id"] = f"{span_context.span_id:016x}"

    return event_dict


def add_correlation_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add registered request-scoped fields to log events."""
    fields = context_fields_var.get()
    for key in _context_keys:
        value = fields.get(key)
        if value is not None:
            event_dict.setdefault(key, value)

    return event_dict


def bind_context(**fields: Any) -> Dict[str, Any]:
    """Merge fields into the request-scoped logging context."""
    merged = {**context_fields_var.get(), **fields}
    context_fields_var.set(merged)
    return merged


def set_request_id(request_id: Optional[str] = None) -> str:
    """Set request ID in context."""
    if request_id is None:
        request_id = str(uuid.uuid4())
    bind_context(request_id=request_id)
    return request_id


def set_user_context(user_id: Optional[str] = None, tenant_id: Optional[str] = None):
    """Set user context in logging."""
    if user_id:
        bind_context(user_id=user_id)
    if tenant_id:
        bind_context(tenant_id=tenant_id)


def clear_context():
    """Clear all context variables."""
    context_fields_var.set({})


def get_context_keys() -> Tuple[str, ...]:
    return _context_keys


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


def with_field(key: str, value: Any, logger: Optional[Any] = None) -> Any:
    """Return a logger carrying one extra field."""
    return (logger or structlog.get_logger()).bind(**{key: value})


def with_fields(fields: Mapping[str, Any], logger: Optional[Any] = None) -> Any:
    """Return a logger carrying the given fields."""
    return (logger or structlog.get_logger()).bind(**dict(fields))


def with_context(logger: Optional[Any] = None) -> Any:
    """
    Return a logger bound to a snapshot of the current context fields.

    Useful when handing a logger to work that outlives the current task's
    context. Only registered context keys are copied.
    """
    fields = context_fields_var.get()
    snapshot = {key: fields[key] for key in _context_keys if fields.get(key) is not None}
    return (logger or structlog.get_logger()).bind(**snapshot)
