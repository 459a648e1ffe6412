"""
Structured logging for the Syncora API.

Every record carries the request id of the HTTP request (or WebSocket
session) that produced it. Production emits one JSON object per line;
other environments emit a compact human-readable line.
"""
import asyncio
import json
import logging
import time
import uuid
from contextvars import ContextVar
from functools import wraps
from typing import Any, Dict, Optional

from app.core.config import settings

request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
request_start_var: ContextVar[Optional[float]] = ContextVar('request_start', default=None)


def get_request_id() -> Optional[str]:
    return request_id_var.get()


def set_request_id(request_id: str) -> None:
    request_id_var.set(request_id)


def generate_request_id() -> str:
    return uuid.uuid4().hex[:12]


class StructuredLogger:
    """Thin wrapper over a stdlib logger that renders structured records."""

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)
        self.name = name

    @property
    def _is_json(self) -> bool:
        return settings.APP_ENV == 'production'

    def _build_record(
        self,
        level: str,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        error: Optional[BaseException] = None,
    ) -> Dict[str, Any]:
        record: Dict[str, Any] = {
            'timestamp': time.strftime('%Y-%m-%dT%H:%M:%S%z'),
            'level': level,
            'logger': self.name,
            'message': message,
            'env': settings.APP_ENV,
        }

        request_id = get_request_id()
        if request_id:
            record['request_id'] = request_id

        if context:
            duration = context.pop('duration_ms', None)
            if duration is not None:
                record['duration_ms'] = duration
            if context:
                record['context'] = context

        if error is not None:
            record['error'] = {'type': type(error).__name__, 'message': str(error)}

        return record

    def _render(self, record: Dict[str, Any]) -> str:
        if self._is_json:
            return json.dumps(record, default=str)

        parts = [f"[{record.get('request_id', '-')}]", record['message']]
        context = record.get('context')
        if context:
            parts.append('| ' + ' '.join(f"{k}={v}" for k, v in context.items()))
        if 'error' in record:
            parts.append(f"| error={record['error']['type']}: {record['error']['message']}")
        if 'duration_ms' in record:
            parts.append(f"| {record['duration_ms']}ms")
        return ' '.join(parts)

    def _emit(self, level: int, message: str, context: Dict[str, Any], error: Optional[BaseException] = None, exc_info: bool = False):
        if not self.logger.isEnabledFor(level):
            return
        record = self._build_record(logging.getLevelName(level), message, context or None, error)
        self.logger.log(level, self._render(record), exc_info=exc_info)

    def debug(self, message: str, **context):
        self._emit(logging.DEBUG, message, context)

    def info(self, message: str, **context):
        self._emit(logging.INFO, message, context)

    def warning(self, message: str, **context):
        self._emit(logging.WARNING, message, context)

    def error(self, message: str, error: Optional[BaseException] = None, **context):
        self._emit(logging.ERROR, message, context, error)

    def exception(self, message: str, **context):
        """Log at error level with the active traceback attached."""
        self._emit(logging.ERROR, message, context, exc_info=True)

    def critical(self, message: str, error: Optional[BaseException] = None, **context):
        self._emit(logging.CRITICAL, message, context, error)


def get_logger(name: str = 'syncora') -> StructuredLogger:
    return StructuredLogger(name)


# Domain loggers
api_logger = get_logger('syncora.api')
permissions_logger = get_logger('syncora.permissions')
realtime_logger = get_logger('syncora.realtime')
ai_logger = get_logger('syncora.ai')
storage_logger = get_logger('syncora.storage')
db_logger = get_logger('syncora.database')


def log_operation(operation: str, logger: Optional[StructuredLogger] = None):
    """
    Log entry, completion time and failure of the wrapped callable.

    Usage:
        @log_operation("create_group", api_logger)
        async def create_group(...):
            ...
    """
    def decorator(func):
        log = logger or api_logger

        @wraps(func)
        async def async_wrapper(*args, **kwargs):
            start = time.perf_counter()
            log.debug(f"{operation} started")
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                log.error(f"{operation} failed", error=e, duration_ms=_elapsed_ms(start))
                raise
            log.info(f"{operation} completed", duration_ms=_elapsed_ms(start))
            return result

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            start = time.perf_counter()
            log.debug(f"{operation} started")
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                log.error(f"{operation} failed", error=e, duration_ms=_elapsed_ms(start))
                raise
            log.info(f"{operation} completed", duration_ms=_elapsed_ms(start))
            return result

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)
