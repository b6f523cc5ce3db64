"""
dbpulse Logging Configuration
Rich console output for operators, JSON lines on disk for log shippers.
"""

import json
import logging
import logging.handlers
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from rich.console import Console
from rich.logging import RichHandler

from dbpulse.core.config import settings


LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5

# Attributes every LogRecord carries; anything else came in through ``extra=``
_RECORD_ATTRIBUTES = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}

# Chatty third-party loggers capped at WARNING
_QUIET_LOGGERS = ("sqlalchemy.engine", "sqlalchemy.pool", "aiomysql", "httpx", "httpcore")


class JSONFormatter(logging.Formatter):
    """
    One JSON object per record.

    Context passed with ``extra=`` (alert ids, thresholds, probe counts) lands
    under ``context``; ``log_with_context`` data lands under ``extra``.
    """

    def __init__(self, service_name: str, environment: str):
        super().__init__()
        self.service_name = service_name
        self.environment = environment

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "service": self.service_name,
            "environment": self.environment,
            "logger": record.name,
            "message": record.getMessage(),
            "function": record.funcName,
            "line": record.lineno,
        }

        context = {
            key: value for key, value in vars(record).items()
            if key not in _RECORD_ATTRIBUTES and key != "extra_data"
        }
        if context:
            entry["context"] = context
        if getattr(record, "extra_data", None):
            entry["extra"] = record.extra_data
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, ensure_ascii=False, default=str)


class DbPulseLogger:
    """
    Process-wide handler setup for the command line entry point.

    Importing dbpulse never touches the root logger; applications embedding
    the monitor keep their own handlers.
    """

    def __init__(self, level: Optional[int] = None):
        self.console = Console(stderr=True)
        self.level = level if level is not None else getattr(logging, settings.LOG_LEVEL, logging.INFO)

    def _file_handler(self, filename: str, level: int) -> logging.Handler:
        handler = logging.handlers.RotatingFileHandler(
            settings.LOG_DIR / filename,
            maxBytes=LOG_FILE_MAX_BYTES,
            backupCount=LOG_FILE_BACKUPS,
            encoding="utf-8",
        )
        handler.setLevel(level)
        handler.setFormatter(JSONFormatter(settings.SERVICE_NAME, settings.ENVIRONMENT))
        return handler

    def setup_logging(self) -> None:
        root = logging.getLogger()
        root.setLevel(self.level)
        for handler in list(root.handlers):
            root.removeHandler(handler)

        console_handler = RichHandler(
            console=self.console,
            rich_tracebacks=True,
            show_path=False,
            markup=False,
        )
        root.addHandler(console_handler)

        if settings.LOG_FILE_ENABLED:
            settings.LOG_DIR.mkdir(parents=True, exist_ok=True)
            # All monitor activity, then errors alone for quick triage
            root.addHandler(self._file_handler("dbpulse.log", logging.INFO))
            root.addHandler(self._file_handler("error.log", logging.ERROR))

        for name in _QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


_logger_instance: Optional[DbPulseLogger] = None


def setup_logging(level: Optional[int] = None) -> DbPulseLogger:
    """
    Install console and file handlers once per process
    """
    global _logger_instance

    if _logger_instance is None:
        _logger_instance = DbPulseLogger(level)
        _logger_instance.setup_logging()
    elif level is not None:
        logging.getLogger().setLevel(level)

    return _logger_instance


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class LoggerMixin:
    """
    Gives monitor components a ``logger`` named after their class
    """

    @property
    def logger(self) -> logging.Logger:
        return get_logger(f"{self.__class__.__module__}.{self.__class__.__name__}")

    def log_with_context(
        self,
        level: int,
        message: str,
        extra_data: Optional[Dict[str, Any]] = None
    ) -> None:
        """
        Log ``message`` with structured data rendered under ``extra`` in JSON logs
        """
        logger = self.logger
        if not logger.isEnabledFor(level):
            return
        logger.log(level, message, extra={"extra_data": extra_data or {}}, stacklevel=2)
