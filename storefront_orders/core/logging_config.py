"""
Structured logging configuration for the orders service.

Every record is emitted as one JSON object carrying the service identity,
the request trace context (request id, correlation id, user id) and any
``extra_fields`` passed by the caller.
"""

import json
import logging
import logging.handlers
import os
import re
import sys
import time
import traceback
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

# Request-scoped trace context, set by the middleware and the auth dependency
request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
correlation_id_var: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)
user_id_var: ContextVar[Optional[str]] = ContextVar('user_id', default=None)

TRACE_VARS = (
    ("request_id", request_id_var),
    ("correlation_id", correlation_id_var),
    ("user_id", user_id_var),
)

REDACTED = "***REDACTED***"


def request_context() -> Dict[str, str]:
    """Trace values set for the current request, without the empty ones"""
    return {key: var.get() for key, var in TRACE_VARS if var.get()}


class StructuredFormatter(logging.Formatter):
    """One JSON document per record, ready for ELK or CloudWatch Insights"""

    def __init__(self, service_name: Optional[str] = None, version: Optional[str] = None):
        super().__init__()
        self.service_name = service_name or os.getenv('SERVICE_NAME', 'storefront-orders')
        self.version = version or os.getenv('SERVICE_VERSION', '1.0.0')

    def format(self, record: logging.LogRecord) -> str:
        doc: Dict[str, Any] = {
            "@timestamp": datetime.fromtimestamp(record.created, timezone.utc)
            .isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
            "version": self.version,
            "environment": os.getenv('ENVIRONMENT', 'development'),
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        trace = request_context()
        if trace:
            doc["trace"] = trace
        if getattr(record, 'extra_fields', None):
            doc["custom"] = record.extra_fields
        if hasattr(record, 'duration_ms'):
            doc["performance"] = {"duration_ms": round(record.duration_ms, 2)}
        if record.exc_info:
            exc_type, exc, tb = record.exc_info
            doc["error"] = {
                "type": exc_type.__name__,
                "message": str(exc),
                "stacktrace": traceback.format_exception(exc_type, exc, tb),
            }
        return json.dumps(doc, default=str, ensure_ascii=False)


class PerformanceFilter(logging.Filter):
    """Turn a ``duration`` extra (seconds) into ``duration_ms``"""

    def filter(self, record: logging.LogRecord) -> bool:
        duration = getattr(record, 'duration', None)
        if duration is not None:
            record.duration_ms = duration * 1000
        return True


class SecurityFilter(logging.Filter):
    """Redact credential-looking values from messages and extra fields"""

    SENSITIVE_FIELDS = ('password', 'api_key', 'secret', 'authorization', 'bearer')
    # keyword, optional separator, then the value to hide
    PATTERN = re.compile(
        r"(\b(?:" + "|".join(SENSITIVE_FIELDS) + r")\b\s*[:=]?\s*)((?:bearer\s+)?\S+)", re.IGNORECASE
    )

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self.PATTERN.sub(r"\1" + REDACTED, record.msg)
        fields = getattr(record, 'extra_fields', None)
        if isinstance(fields, dict):
            record.extra_fields = {
                key: REDACTED if key.lower() in self.SENSITIVE_FIELDS else value
                for key, value in fields.items()
            }
        return True


def _handler(handler: logging.Handler, formatter: logging.Formatter) -> logging.Handler:
    handler.setFormatter(formatter)
    handler.addFilter(PerformanceFilter())
    handler.addFilter(SecurityFilter())
    return handler


def setup_logging(
    service_name: str,
    level: str = "INFO",
    version: Optional[str] = None,
    log_file: Optional[str] = None,
) -> None:
    """
    Route the root logger through JSON handlers.

    Args:
        service_name: Name reported in every record
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        version: Service version reported in every record
        log_file: Also write to this rotating file when given
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Replace only our own handlers; pytest and uvicorn install theirs
    for existing in list(root.handlers):
        if isinstance(existing.formatter, StructuredFormatter):
            root.removeHandler(existing)

    formatter = StructuredFormatter(service_name, version)
    root.addHandler(_handler(logging.StreamHandler(sys.stdout), formatter))
    if log_file:
        rotating = logging.handlers.RotatingFileHandler(log_file, maxBytes=10 * 1024 * 1024, backupCount=5)
        root.addHandler(_handler(rotating, formatter))

    for noisy in ('uvicorn.access', 'sqlalchemy.engine', 'httpx', 'aiosmtplib'):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    root.info(
        "Logging initialized",
        extra={'extra_fields': {'service': service_name, 'level': level, 'log_file': log_file}},
    )


class LoggerAdapter(logging.LoggerAdapter):
    """Merge fields bound at creation into each record's ``extra_fields``"""

    def process(self, msg, kwargs):
        if self.extra:
            extra = dict(kwargs.get('extra') or {})
            extra['extra_fields'] = {**self.extra, **(extra.get('extra_fields') or {})}
            kwargs['extra'] = extra
        return msg, kwargs


def get_logger(name: str, **bound: Any) -> LoggerAdapter:
    """Module logger; keyword arguments are attached to every record it emits"""
    return LoggerAdapter(logging.getLogger(name), bound)


def set_request_context(
    request_id: Optional[str] = None,
    correlation_id: Optional[str] = None,
    user_id: Optional[str] = None,
) -> None:
    values = {"request_id": request_id, "correlation_id": correlation_id, "user_id": user_id}
    for key, var in TRACE_VARS:
        if values[key]:
            var.set(values[key])


def clear_request_context() -> None:
    for _, var in TRACE_VARS:
        var.set(None)


def generate_request_id() -> str:
    return uuid.uuid4().hex


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log each request with its id and duration; echo X-Request-ID back"""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get('X-Request-ID') or generate_request_id()
        clear_request_context()
        set_request_context(request_id=request_id, correlation_id=request.headers.get('X-Correlation-ID'))

        logger = get_logger(__name__, method=request.method, path=request.url.path)
        label = f"{request.method} {request.url.path}"
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            logger.error(f"Request failed: {label}", exc_info=True,
                         extra={'duration': time.perf_counter() - started})
            raise

        logger.info(
            f"Request completed: {label} {response.status_code}",
            extra={
                'duration': time.perf_counter() - started,
                'extra_fields': {'status_code': response.status_code},
            },
        )
        response.headers['X-Request-ID'] = request_id
        return response
