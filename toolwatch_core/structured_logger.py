"""Structured JSON logging for ToolWatch Core

Provides structured logging with:
- JSON output format for log aggregation systems (Loki, ELK, etc.)
- Request context correlation across an evaluation
- Context variables that follow execution flow, including into the
  worker thread an evaluation runs on

Usage:
    from toolwatch_core.structured_logger import get_logger, request_context

    with request_context(request_id="abc123", environment="prod"):
        logger = get_logger("toolwatch.api")
        logger.info("Evaluation finished", hosts=120)
        # Output: {"timestamp": "...", "level": "INFO", "message": "...",
        #          "request_id": "abc123", "environment": "prod", "extra": {"hosts": 120}}
"""

import json
import logging
import sys
import traceback
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union


# Context variables for request correlation
_request_id: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
_client_ip: ContextVar[Optional[str]] = ContextVar('client_ip', default=None)
_environment: ContextVar[Optional[str]] = ContextVar('environment', default=None)

_CONTEXT_VARS = {
    "request_id": _request_id,
    "client_ip": _client_ip,
    "environment": _environment,
}

# Standard LogRecord attributes, never treated as extra data
_STANDARD_FIELDS = {
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname',
    'filename', 'module', 'exc_info', 'exc_text', 'stack_info',
    'lineno', 'funcName', 'created', 'msecs', 'relativeCreated',
    'thread', 'threadName', 'processName', 'process', 'message',
    'asctime', 'taskName',
}


class JSONFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Example output:
        {
            "timestamp": "2026-02-17T16:45:00.123Z",
            "level": "INFO",
            "logger": "toolwatch.engine",
            "message": "Evaluated 120 hosts over 30 days",
            "request_id": "abc123",
            "extra": {"hosts": 120}
        }
    """

    def __init__(self, include_context: bool = True, flatten_extra: bool = False):
        super().__init__()
        self.include_context = include_context
        self.flatten_extra = flatten_extra

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON"""
        log_data: Dict[str, Any] = {
            "timestamp": self._format_timestamp(record.created),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.levelno >= logging.WARNING:
            log_data["source"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }

        if self.include_context:
            log_data.update(get_current_context(skip_empty=True))

        extra_data = self._extract_extra_data(record)
        if extra_data:
            if self.flatten_extra:
                log_data.update(extra_data)
            else:
                log_data["extra"] = extra_data

        if record.exc_info:
            log_data["exception"] = self._format_exception(record.exc_info)

        return json.dumps(log_data, default=str)

    def _format_timestamp(self, timestamp: float) -> str:
        dt = datetime.fromtimestamp(timestamp, tz=timezone.utc)
        return dt.isoformat().replace("+00:00", "Z")

    def _extract_extra_data(self, record: logging.LogRecord) -> Dict[str, Any]:
        return {
            key: value for key, value in record.__dict__.items()
            if key not in _STANDARD_FIELDS and not key.startswith('_')
        }

    def _format_exception(self, exc_info) -> Dict[str, Any]:
        return {
            "type": exc_info[0].__name__ if exc_info[0] else None,
            "message": str(exc_info[1]) if exc_info[1] else None,
            "traceback": traceback.format_exception(*exc_info),
        }


class ConsoleFormatter(logging.Formatter):
    """Human-readable console formatter for development"""

    # ANSI color codes
    COLORS = {
        'DEBUG': '\033[36m',      # Cyan
        'INFO': '\033[32m',       # Green
        'WARNING': '\033[33m',    # Yellow
        'ERROR': '\033[31m',      # Red
        'CRITICAL': '\033[35m',   # Magenta
        'RESET': '\033[0m',
    }

    def __init__(self, use_colors: bool = True, include_context: bool = True):
        super().__init__(
            fmt='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        self.use_colors = use_colors and sys.stdout.isatty()
        self.include_context = include_context

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)

        if self.include_context:
            context_parts = []
            req_id = _request_id.get()
            if req_id:
                context_parts.append(f"req:{req_id}")
            env = _environment.get()
            if env:
                context_parts.append(f"env:{env}")

            if context_parts:
                context_str = " [" + ", ".join(context_parts) + "]"
                parts = message.rsplit(' - ', 1)
                if len(parts) == 2:
                    message = f"{parts[0]}{context_str} - {parts[1]}"

        if self.use_colors:
            color = self.COLORS.get(record.levelname, self.COLORS['RESET'])
            message = f"{color}{message}{self.COLORS['RESET']}"

        return message


class StructuredLogger:
    """
    Wrapper around a standard logger that accepts structured fields as
    keyword arguments.

    Example:
        logger = StructuredLogger("toolwatch.api")
        logger.info("Evaluation finished", hosts=120, duration_ms=43.2)
    """

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)
        self.name = name

    def _log(self, level: int, message: str, exc_info: bool = False, **kwargs):
        if not self.logger.isEnabledFor(level):
            return
        record = self.logger.makeRecord(
            self.name, level, "(unknown file)", 0, message, (),
            sys.exc_info() if exc_info else None,
        )
        for key, value in kwargs.items():
            setattr(record, key, value)
        self.logger.handle(record)

    def debug(self, message: str, **kwargs):
        self._log(logging.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs):
        self._log(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs):
        self._log(logging.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs):
        self._log(logging.ERROR, message, **kwargs)

    def exception(self, message: str, **kwargs):
        self._log(logging.ERROR, message, exc_info=True, **kwargs)

    def log_request(
        self,
        method: str,
        path: str,
        status_code: int,
        duration_ms: float,
        **kwargs
    ):
        """Log HTTP request with standard fields"""
        level = logging.INFO if status_code < 400 else logging.WARNING
        if status_code >= 500:
            level = logging.ERROR

        self._log(
            level,
            f"{method} {path} - {status_code}",
            method=method,
            path=path,
            status_code=status_code,
            duration_ms=round(duration_ms, 2),
            **kwargs
        )

    def log_evaluation(
        self,
        window_days: int,
        hosts: int,
        excluded: int,
        duration_ms: float,
        **kwargs
    ):
        """Log a finished analytics evaluation with standard fields"""
        self._log(
            logging.INFO,
            f"Evaluation over {window_days} days: {hosts} hosts, {excluded} excluded",
            window_days=window_days,
            hosts=hosts,
            excluded=excluded,
            duration_ms=round(duration_ms, 2),
            **kwargs
        )


class request_context:
    """
    Context manager for setting request correlation context.

    Usage:
        with request_context(request_id=request.headers.get("X-Request-ID"),
                             client_ip=request.client.host):
            logger.info("Processing request")
    """

    def __init__(
        self,
        request_id: Optional[str] = None,
        client_ip: Optional[str] = None,
        environment: Optional[str] = None,
    ):
        self.values = {
            "request_id": request_id or str(uuid.uuid4())[:8],
            "client_ip": client_ip,
            "environment": environment,
        }
        self.tokens = []

    @property
    def request_id(self) -> str:
        return self.values["request_id"]

    def __enter__(self):
        for name, value in self.values.items():
            if value:
                var = _CONTEXT_VARS[name]
                self.tokens.append((var, var.set(value)))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        for var, token in reversed(self.tokens):
            var.reset(token)
        self.tokens.clear()


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger instance"""
    return StructuredLogger(name)


def configure_logging(
    level: Union[int, str] = logging.INFO,
    json_format: bool = False,
    include_context: bool = True
):
    """
    Configure root logging with structured formatters.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: JSON output for production, console output otherwise
        include_context: Include request context in logs
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)

    if json_format:
        formatter = JSONFormatter(include_context=include_context)
    else:
        formatter = ConsoleFormatter(include_context=include_context)

    handler.setFormatter(formatter)
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # Request logging middleware already covers access logs
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def get_current_context(skip_empty: bool = False) -> Dict[str, Optional[str]]:
    """Get current request context"""
    context = {name: var.get() for name, var in _CONTEXT_VARS.items()}
    if skip_empty:
        return {k: v for k, v in context.items() if v}
    return context
