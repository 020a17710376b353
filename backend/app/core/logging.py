"""
Logging Configuration Module

This module provides the logging setup with:
- Structured JSON logging with request context
- Request-scoped correlation tracking
- Masking of provider credentials and signatures
- Exception rendering with full tracebacks
- Operation timing helpers
"""

import contextlib
import logging
import logging.config
import sys
import time
import traceback
from contextvars import ContextVar
from datetime import datetime, timezone
from logging import LogRecord
from typing import Any, Dict, Iterator, Optional, Set

from pythonjsonlogger import jsonlogger

from app.core.settings import AppSettings

# Context variables for request-scoped data
correlation_id: ContextVar[str] = ContextVar('correlation_id', default='')

# Fields that must never reach log sinks in clear text
SENSITIVE_FIELDS: Set[str] = {
    'password', 'token', 'secret', 'authorization', 'api_key', 'signature'
}

MASK = '***MASKED***'


class ContextualJsonFormatter(jsonlogger.JsonFormatter):
    """
    JSON formatter that adds request context and masks sensitive data.
    """

    def __init__(
        self,
        *args: Any,
        environment: str = "development",
        sensitive_fields: Optional[Set[str]] = None,
        **kwargs: Any
    ) -> None:
        super().__init__(*args, **kwargs)
        self.environment = environment
        self.sensitive_fields = sensitive_fields or SENSITIVE_FIELDS

    def add_fields(
        self,
        log_record: Dict[str, Any],
        record: LogRecord,
        message_dict: Dict[str, Any]
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record['timestamp'] = datetime.fromtimestamp(record.created, timezone.utc).isoformat()
        log_record['level'] = record.levelname
        log_record['logger'] = record.name
        log_record['environment'] = self.environment

        cid = correlation_id.get()
        if cid:
            log_record['correlation_id'] = cid

        if hasattr(record, 'duration_ms'):
            log_record['duration_ms'] = record.duration_ms

        if record.exc_info:
            exc_type, exc_value, exc_tb = record.exc_info
            log_record['exception'] = {
                'type': exc_type.__name__,
                'message': str(exc_value),
                'traceback': traceback.format_exception(exc_type, exc_value, exc_tb)
            }
            log_record.pop('exc_info', None)

        mask_sensitive(log_record, self.sensitive_fields)


def mask_sensitive(data: Dict[str, Any], sensitive_fields: Set[str] = SENSITIVE_FIELDS) -> Dict[str, Any]:
    """
    Recursively mask values whose key names a secret.

    Args:
        data: Dictionary to mask in place
        sensitive_fields: Key fragments considered sensitive

    Returns:
        The same dictionary, masked
    """
    for key, value in data.items():
        if isinstance(key, str) and any(field in key.lower() for field in sensitive_fields):
            data[key] = MASK
        elif isinstance(value, dict):
            mask_sensitive(value, sensitive_fields)
        elif isinstance(value, list):
            for item in value:
                if isinstance(item, dict):
                    mask_sensitive(item, sensitive_fields)
    return data


@contextlib.contextmanager
def log_duration(logger: logging.Logger, operation: str, **context: Any) -> Iterator[None]:
    """
    Context manager to log operation duration.
    """
    start_time = time.perf_counter()
    try:
        yield
    finally:
        duration = (time.perf_counter() - start_time) * 1000
        logger.debug(
            f"{operation} completed",
            extra={'duration_ms': round(duration, 2), 'operation': operation, **context}
        )


def setup_logging(settings: AppSettings) -> None:
    """
    Configure logging with the JSON formatter and a stdout handler.

    Args:
        settings: Application settings providing level and environment
    """
    formatter: Dict[str, Any]
    if settings.logging.JSON_LOGS:
        formatter = {
            '()': ContextualJsonFormatter,
            'fmt': '%(timestamp)s %(level)s %(name)s %(message)s',
            'environment': settings.app.ENVIRONMENT,
            'json_ensure_ascii': False
        }
    else:
        formatter = {
            'format': '%(asctime)s %(levelname)s [%(name)s] %(message)s'
        }

    logging.config.dictConfig({
        'version': 1,
        'disable_existing_loggers': False,
        'formatters': {'default': formatter},
        'handlers': {
            'console': {
                'class': 'logging.StreamHandler',
                'stream': sys.stdout,
                'formatter': 'default'
            }
        },
        'root': {
            'level': settings.logging.LEVEL,
            'handlers': ['console']
        },
        'loggers': {
            'uvicorn.access': {'level': 'WARNING'},
            'sqlalchemy.engine': {'level': 'WARNING'},
            'httpx': {'level': 'WARNING'}
        }
    })

    get_logger(__name__).info(
        "Logging configured",
        extra={
            'environment': settings.app.ENVIRONMENT,
            'log_level': settings.logging.LEVEL
        }
    )


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with the given name.

    Args:
        name: The name of the logger (typically __name__)

    Returns:
        A logger instance
    """
    return logging.getLogger(name)
