"""
Structured logging utilities for the property access engine.

JSON log lines carry the caller of the engine call that emitted them.
"""

import logging
import json
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional

# Caller of the engine call currently running, as "kind:id"
current_caller: ContextVar[Optional[str]] = ContextVar('current_caller', default=None)


@contextmanager
def caller_context(caller: Any) -> Iterator[None]:
    """
    Bind a caller to every log record emitted inside the block.

    Usage:
        with caller_context(Caller.plugin("plugin1")):
            logger.info("Updating field")  # carries caller=plugin:plugin1
    """
    token = current_caller.set(str(caller))
    try:
        yield
    finally:
        current_caller.reset(token)


STANDARD_ATTRS = {
    'name', 'msg', 'args', 'created', 'filename', 'funcName',
    'levelname', 'levelno', 'lineno', 'module', 'msecs',
    'pathname', 'process', 'processName', 'relativeCreated',
    'stack_info', 'exc_info', 'exc_text', 'thread', 'threadName',
    'message', 'taskName'
}


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Output format:
    {
        "timestamp": "2026-01-22T12:00:00.000000+00:00",
        "level": "INFO",
        "logger": "property-access.write",
        "message": "Denied user:u1 to modify protected field ...",
        "caller": "user:u1",
        "extra": {"field_id": "...", "source_plugin_id": "plugin1"}
    }
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        caller = current_caller.get()
        if caller:
            log_data["caller"] = caller

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        extras = {
            k: v for k, v in record.__dict__.items()
            if k not in STANDARD_ATTRS and not k.startswith('_')
        }
        if extras:
            log_data["extra"] = extras

        return json.dumps(log_data, default=str, ensure_ascii=False)


class PrettyFormatter(logging.Formatter):
    """
    Human-readable formatter for development.

    Output format:
    2026-01-22 12:00:00 [INFO] property-access.engine: Created field ... [plugin:plugin1]
    """

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
    }
    RESET = '\033[0m'

    def __init__(self, use_color: bool = True):
        super().__init__()
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')
        color = self.COLORS.get(record.levelname, '') if self.use_color else ''
        level = f"{color}[{record.levelname}]{self.RESET}" if color else f"[{record.levelname}]"

        caller = current_caller.get()
        caller_part = f" [{caller}]" if caller else ""

        message = f"{timestamp} {level} {record.name}: {record.getMessage()}{caller_part}"

        if record.exc_info:
            message += '\n' + self.formatException(record.exc_info)

        return message


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: Optional[str] = None
) -> None:
    """
    Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON format (True for production, False for development)
        log_file: Optional file path to write logs to
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    formatter = StructuredFormatter() if json_format else PrettyFormatter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(StructuredFormatter())  # Always JSON for files
        root_logger.addHandler(file_handler)

    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
