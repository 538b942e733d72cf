"""
Centralized Logging Service

Provides console logging, optional file rotation and structured JSON output.
All flow runner components should use this service for consistent logging.

This is diagnostic logging for operators. The per-run log a flow author
sees lives in ExecutionContext.logs and is fed through engine callbacks.
"""

import os
import json
import logging
import threading
from typing import Optional
from logging.handlers import RotatingFileHandler

from flowrunner.utils.time import now_utc


class LogLevel:
    """Log level constants."""
    DEBUG = 'DEBUG'
    INFO = 'INFO'
    WARNING = 'WARNING'
    ERROR = 'ERROR'
    CRITICAL = 'CRITICAL'


class LogSource:
    """Log source/component constants."""
    ENGINE = 'engine'
    EXECUTOR = 'executor'
    HTTP = 'http'
    SCRIPT = 'script'
    COORDINATOR = 'coordinator'
    CLI = 'cli'
    SYSTEM = 'system'


_EXTRA_KEYS = ('flow_id', 'run_id', 'node_id', 'node_type',
               'duration_ms', 'status_code', 'details')


class JSONFormatter(logging.Formatter):
    """Format log records as JSON for structured logging."""

    def format(self, record):
        log_data = {
            'timestamp': now_utc().isoformat(),
            'level': record.levelname,
            'source': getattr(record, 'source', LogSource.SYSTEM),
            'category': getattr(record, 'category', None),
            'message': record.getMessage(),
            'logger': record.name,
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        # Add extra fields
        for key in _EXTRA_KEYS:
            value = getattr(record, key, None)
            if value is not None:
                log_data[key] = value

        # Add exception info if present
        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class LoggingService:
    """
    Centralized logging service for the flow runner.

    Provides:
    - Console output (text or JSON)
    - Optional rotating text + JSON log files
    - Component-specific loggers
    """

    _instance = None
    _lock = threading.Lock()

    def __new__(cls):
        """Singleton pattern."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self._initialized = True
        self._loggers = {}

    def initialize(self, log_level: str = 'INFO', log_dir: Optional[str] = None,
                   json_console: bool = False):
        """
        Initialize the logging service.

        Args:
            log_level: Minimum log level
            log_dir: Directory for log files (no files when None)
            json_console: Emit JSON lines on the console instead of text
        """
        numeric_level = getattr(logging, log_level.upper(), logging.INFO)

        # Configure root logger
        root_logger = logging.getLogger()
        root_logger.setLevel(numeric_level)

        # Remove existing handlers
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)

        text_format = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

        console_handler = logging.StreamHandler()
        console_handler.setLevel(numeric_level)
        console_handler.setFormatter(JSONFormatter() if json_console else text_format)
        root_logger.addHandler(console_handler)

        if log_dir:
            os.makedirs(log_dir, exist_ok=True)

            # JSON file handler for structured logs
            json_handler = RotatingFileHandler(
                os.path.join(log_dir, 'flowrunner.json.log'),
                maxBytes=10 * 1024 * 1024,  # 10MB
                backupCount=10,
                encoding='utf-8'
            )
            json_handler.setLevel(numeric_level)
            json_handler.setFormatter(JSONFormatter())
            root_logger.addHandler(json_handler)

            # Standard text file handler
            text_handler = RotatingFileHandler(
                os.path.join(log_dir, 'flowrunner.log'),
                maxBytes=10 * 1024 * 1024,  # 10MB
                backupCount=10,
                encoding='utf-8'
            )
            text_handler.setLevel(numeric_level)
            text_handler.setFormatter(text_format)
            root_logger.addHandler(text_handler)

        root_logger.info(
            "Logging service initialized",
            extra={'source': LogSource.SYSTEM, 'category': 'startup'}
        )

    def initialize_from_settings(self, settings):
        """Initialize using a Settings instance."""
        self.initialize(
            log_level=settings.log_level,
            log_dir=settings.log_dir,
            json_console=settings.log_json,
        )

    def get_logger(self, name: str, source: str = LogSource.SYSTEM) -> 'ComponentLogger':
        """
        Get a component-specific logger.

        Args:
            name: Logger name (typically __name__)
            source: Component source identifier

        Returns:
            ComponentLogger instance
        """
        key = f"{source}:{name}"
        if key not in self._loggers:
            self._loggers[key] = ComponentLogger(name, source)
        return self._loggers[key]


class ComponentLogger:
    """
    Logger wrapper for a specific component.
    Automatically adds source and provides convenience methods.
    """

    def __init__(self, name: str, source: str):
        self.logger = logging.getLogger(name)
        self.source = source

    def _log(self, level: int, message: str, **kwargs):
        """Internal log method with extra context."""
        extra = {
            'source': self.source,
            'category': kwargs.pop('category', None),
        }
        for key in _EXTRA_KEYS:
            extra[key] = kwargs.pop(key, None)
        self.logger.log(level, message, extra=extra, **kwargs)

    def debug(self, message: str, **kwargs):
        self._log(logging.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs):
        self._log(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs):
        self._log(logging.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs):
        self._log(logging.ERROR, message, **kwargs)

    def critical(self, message: str, **kwargs):
        self._log(logging.CRITICAL, message, **kwargs)

    def exception(self, message: str, **kwargs):
        """Log an exception with traceback."""
        kwargs['exc_info'] = True
        self._log(logging.ERROR, message, **kwargs)


# Global singleton instance
logging_service = LoggingService()


def get_logger(name: str, source: str = LogSource.SYSTEM) -> ComponentLogger:
    """Convenience function to get a component logger."""
    return logging_service.get_logger(name, source)
