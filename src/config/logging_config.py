"""
Logging configuration for the notification pipeline.

Provides structured logging with:
- JSON formatting for production workers
- Human-readable formatting for development
- Event correlation through a context variable
"""

import logging
import json
import sys
import time
from datetime import datetime, timezone
from typing import Optional, Dict, Callable
from functools import wraps
from pathlib import Path
from contextvars import ContextVar

# Context variable for correlating log lines with a class event
event_id_var: ContextVar[Optional[int]] = ContextVar('event_id', default=None)


class JsonFormatter(logging.Formatter):
    """
    JSON log formatter for structured logging.

    Outputs logs as JSON objects for easy parsing by log aggregators.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        event_id = event_id_var.get()
        if event_id is not None:
            log_data["event_id"] = event_id

        if hasattr(record, 'extra_data'):
            log_data.update(record.extra_data)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class ReadableFormatter(logging.Formatter):
    """
    Human-readable log formatter for development.
    """

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
        'RESET': '\033[0m',
    }

    def format(self, record: logging.LogRecord) -> str:
        """Format log record for human readability."""
        color = self.COLORS.get(record.levelname, self.COLORS['RESET'])
        reset = self.COLORS['RESET']

        timestamp = datetime.now().strftime('%H:%M:%S.%f')[:-3]
        level = f"{color}{record.levelname:8s}{reset}"

        message = f"{timestamp} {level} [{record.name}] {record.getMessage()}"

        if hasattr(record, 'extra_data') and record.extra_data:
            extras = ' | '.join(f"{k}={v}" for k, v in record.extra_data.items())
            message += f" | {extras}"

        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)

        return message


class ContextLogger(logging.LoggerAdapter):
    """
    Logger adapter that folds its bound context into ``extra_data``.
    """

    def process(self, msg: str, kwargs: Dict) -> tuple:
        extra = kwargs.get('extra', {})

        if 'extra_data' not in extra:
            extra['extra_data'] = {}

        event_id = event_id_var.get()
        if event_id is not None:
            extra['extra_data'].setdefault('event_id', event_id)

        extra['extra_data'].update(self.extra)

        kwargs['extra'] = extra
        return msg, kwargs


def configure_logging(
    level: str = "INFO",
    json_output: bool = False,
    log_file: Optional[Path] = None
) -> None:
    """
    Configure application logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: If True, output JSON formatted logs
        log_file: Optional file path for log output
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    root_logger.handlers.clear()

    if json_output:
        formatter = JsonFormatter()
    else:
        formatter = ReadableFormatter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(JsonFormatter())
        root_logger.addHandler(file_handler)

    # Set levels for noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)


def get_logger(name: str, **extra) -> ContextLogger:
    """
    Get a context-aware logger.

    Args:
        name: Logger name (typically __name__)
        **extra: Additional context to include in all logs

    Returns:
        ContextLogger instance
    """
    base_logger = logging.getLogger(name)
    return ContextLogger(base_logger, extra)


def log_performance(name: Optional[str] = None) -> Callable:
    """
    Decorator to log coroutine duration.

    Args:
        name: Optional name override for the log entry

    Returns:
        Decorator function
    """
    def decorator(func: Callable) -> Callable:
        func_name = name or func.__name__

        @wraps(func)
        async def wrapper(*args, **kwargs):
            logger = get_logger("performance")
            start = time.time()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                duration_ms = int((time.time() - start) * 1000)
                logger.error(
                    f"{func_name} failed",
                    extra={'extra_data': {'duration_ms': duration_ms, 'error': str(e)}}
                )
                raise
            duration_ms = int((time.time() - start) * 1000)
            logger.info(
                f"{func_name} completed",
                extra={'extra_data': {'duration_ms': duration_ms}}
            )
            return result

        return wrapper

    return decorator
