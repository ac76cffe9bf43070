# hls_runner/core/setup_logging.py
"""
Logging configuration module for HLS Runner.

Every logger of the package lives under the ``hls_runner`` logger: service
modules call ``setup_default_logging()`` to get it with its handlers, library
modules (``hls_runner.encoding.*``) log through ``logging.getLogger(__name__)``
and their records reach the same handlers.

Conversion context (conversion id, pipeline, rendition) is attached to
records through ``extra=`` or ``LogContext`` and rendered by both formatters.
"""

import json
import logging
import os
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler, SysLogHandler
from typing import Any, Dict, List, Optional, Union

from hls_runner.core.config import config

ROOT_LOGGER_NAME = "hls_runner"

# Record attributes describing which conversion a message belongs to
CONTEXT_FIELDS = ("conversion_id", "pipeline", "rendition")

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

SYSLOG_ADDRESS = "/dev/log"


def _context_of(record: logging.LogRecord) -> Dict[str, Any]:
    return {
        field: getattr(record, field)
        for field in CONTEXT_FIELDS
        if getattr(record, field, None) is not None
    }


class JSONFormatter(logging.Formatter):
    """
    One JSON object per record, for log shippers.

    Conversion context fields are copied to the top level when present.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        entry.update(_context_of(record))

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, ensure_ascii=False)


class ContextTextFormatter(logging.Formatter):
    """Plain text format with a ``[conversion_id/pipeline/rendition]`` prefix when known."""

    def __init__(self):
        super().__init__(TEXT_FORMAT, datefmt=DATE_FORMAT)

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        context = _context_of(record)
        if not context:
            return text
        return f"[{'/'.join(str(value) for value in context.values())}] {text}"


def _build_handlers(
    log_path: str,
    console_level: int,
    file_level: int,
    max_bytes: int,
    backup_count: int,
) -> List[logging.Handler]:
    console = logging.StreamHandler()
    console.setLevel(console_level)

    try:
        log_file = RotatingFileHandler(
            filename=log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        )
    except PermissionError as e:
        raise PermissionError(f"Cannot write to log file {log_path}: {e}")
    log_file.setLevel(file_level)

    handlers: List[logging.Handler] = [console, log_file]

    # Syslog is only used on hosts exposing the local socket
    if os.path.exists(SYSLOG_ADDRESS):
        try:
            handlers.append(SysLogHandler(address=SYSLOG_ADDRESS))
        except OSError as e:
            logging.getLogger(__name__).warning(f"Syslog handler could not be configured: {e}")

    return handlers


def setup_logging(
    name: str,
    log_file: Optional[str] = None,
    json_format: bool = False,
    log_level: Union[int, str] = logging.INFO,
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
) -> logging.Logger:
    """
    Configure a named logger with console, rotating file and syslog handlers.

    Calling it again for the same name replaces the handlers, so modules may
    call it at import time without stacking output.

    Args:
        name: Logger name; also gives the default file name
        log_file: File name inside LOG_DIRECTORY (``<name>.log`` by default)
        json_format: Use ``JSONFormatter`` instead of the text format
        log_level: Level of the logger itself
        console_level: Level of the console handler
        file_level: Level of the file handler

    Returns:
        logging.Logger: Configured logger instance

    Raises:
        OSError: If the log directory cannot be created
        PermissionError: If the log file cannot be written
    """
    log_dir = config.LOG_DIRECTORY
    try:
        os.makedirs(log_dir, exist_ok=True)
    except OSError as e:
        raise OSError(f"Failed to create log directory {log_dir}: {e}")

    if log_file is None:
        log_file = f'{name.lower().replace(" ", "_")}.log'

    logger = logging.getLogger(name)
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()
    logger.propagate = False
    logger.setLevel(log_level)

    formatter: logging.Formatter = JSONFormatter() if json_format else ContextTextFormatter()
    for handler in _build_handlers(
        os.path.join(log_dir, log_file),
        console_level,
        file_level,
        config.LOG_MAX_BYTES,
        config.LOG_BACKUP_COUNT,
    ):
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger


class LogContext(logging.Filter):
    """
    Fill in conversion context on records reaching ``logger``'s handlers while active.

    Fields already set on a record (through ``extra=``) are left untouched.

    Example:
        with LogContext(logger, conversion_id="c0ffee", pipeline="video"):
            logger.info("Encoding started")
    """

    def __init__(self, logger: logging.Logger, **context_fields: Any):
        super().__init__()
        self.logger = logger
        self.context_fields = context_fields
        self._handlers: List[logging.Handler] = []

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in self.context_fields.items():
            if getattr(record, key, None) is None:
                setattr(record, key, value)
        return True

    def __enter__(self) -> "LogContext":
        self._handlers = list(self.logger.handlers)
        for handler in self._handlers:
            handler.addFilter(self)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        for handler in self._handlers:
            handler.removeFilter(self)
        self._handlers = []


def setup_default_logging(
    json_format: Optional[bool] = None, log_level: Optional[str] = None
) -> logging.Logger:
    """Configure and return the ``hls_runner`` logger from LOG_JSON and LOG_LEVEL."""
    return setup_logging(
        name=ROOT_LOGGER_NAME,
        json_format=config.LOG_JSON if json_format is None else json_format,
        log_level=log_level or config.LOG_LEVEL,
    )


def get_uvicorn_log_config(json_format: bool = False) -> dict:
    """
    Build the uvicorn ``log_config`` writing next to the runner logs.

    Args:
        json_format: Whether to use JSON formatting

    Returns:
        dict: dictConfig-style configuration for uvicorn
    """
    formatter = "json" if json_format else "default"
    loggers = {
        "uvicorn": ["default", "file"],
        "uvicorn.error": ["default", "file"],
        "uvicorn.access": ["access", "file"],
    }

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "()": "uvicorn.logging.DefaultFormatter",
                "fmt": TEXT_FORMAT,
                "datefmt": DATE_FORMAT,
            },
            "access": {
                "()": "uvicorn.logging.AccessFormatter",
                "fmt": '%(asctime)s - %(name)s - %(levelname)s - %(client_addr)s - "%(request_line)s" %(status_code)s',
                "datefmt": DATE_FORMAT,
            },
            "json": {"()": JSONFormatter},
        },
        "handlers": {
            "default": {
                "formatter": formatter,
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stderr",
            },
            "access": {
                "formatter": "json" if json_format else "access",
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stdout",
            },
            "file": {
                "formatter": formatter,
                "class": "logging.handlers.RotatingFileHandler",
                "filename": os.path.join(config.LOG_DIRECTORY, "uvicorn.log"),
                "maxBytes": config.LOG_MAX_BYTES,
                "backupCount": config.LOG_BACKUP_COUNT,
                "encoding": "utf-8",
            },
        },
        "loggers": {
            name: {"handlers": handlers, "level": "INFO", "propagate": False}
            for name, handlers in loggers.items()
        },
    }
