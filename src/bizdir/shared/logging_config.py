"""
Logging configuration for the business directory services.

Provides structured logging with correlation IDs, centralized configuration,
and multiple output formats for different environments.
"""

import logging
import json
import sys
from datetime import datetime, timezone
from typing import Dict, Any, Optional, Union, TYPE_CHECKING
from uuid import uuid4
import traceback
from contextvars import ContextVar
from pathlib import Path

if TYPE_CHECKING:
    from .config import Settings


# Context variables for correlation tracking
correlation_id: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)
user_id: ContextVar[Optional[str]] = ContextVar('user_id', default=None)

# Attributes owned by logging.LogRecord; metadata using these names is prefixed
_RESERVED_RECORD_ATTRS = frozenset(
    logging.LogRecord('', 0, '', 0, '', (), None).__dict__.keys()
) | {'message', 'asctime'}


class CorrelationFilter(logging.Filter):
    """Add correlation IDs and context to log records."""

    def filter(self, record):
        record.correlation_id = correlation_id.get() or 'unknown'
        record.user_id = user_id.get() or 'anonymous'
        record.component = getattr(record, 'component', 'unknown')
        record.operation = getattr(record, 'operation', 'unknown')
        return True


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def __init__(self, include_extra=True):
        super().__init__()
        self.include_extra = include_extra

    def format(self, record):
        """Format log record as JSON."""
        log_entry = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'correlation_id': getattr(record, 'correlation_id', 'unknown'),
            'user_id': getattr(record, 'user_id', 'anonymous'),
            'component': getattr(record, 'component', 'unknown'),
            'operation': getattr(record, 'operation', 'unknown'),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        if record.exc_info:
            log_entry['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': str(record.exc_info[1]),
                'traceback': traceback.format_exception(*record.exc_info)
            }

        if self.include_extra:
            for key, value in record.__dict__.items():
                if key in log_entry or key in _RESERVED_RECORD_ATTRS or key.startswith('_'):
                    continue
                try:
                    json.dumps(value)
                    log_entry[key] = value
                except (TypeError, ValueError):
                    log_entry[key] = str(value)

        return json.dumps(log_entry, default=str)


class ColoredFormatter(logging.Formatter):
    """Colored formatter for console output."""

    COLORS = {
        'DEBUG': '\033[36m',      # Cyan
        'INFO': '\033[32m',       # Green
        'WARNING': '\033[33m',    # Yellow
        'ERROR': '\033[31m',      # Red
        'CRITICAL': '\033[35m',   # Magenta
    }
    RESET = '\033[0m'

    def format(self, record):
        color = self.COLORS.get(record.levelname, '')
        formatted = super().format(record)
        component = getattr(record, 'component', None)
        prefix = f"[{component}] " if component and component != 'unknown' else ''
        correlation_info = f"[{getattr(record, 'correlation_id', 'unknown')[:8]}]"
        return f"{color}{prefix}{formatted}{self.RESET} {correlation_info}"


class ServiceLogger:
    """Component-tagged logger used as the diagnostics sink.

    Metadata is passed as keyword arguments and attached to the record.
    Logging here must never raise into the caller.
    """

    def __init__(self, name: str, component: str = None):
        self.logger = logging.getLogger(name)
        self.component = component or name.split('.')[-1]

    def _build_extra(self, operation: Optional[str], metadata: Dict[str, Any]) -> Dict[str, Any]:
        extra = {
            'component': self.component,
            'operation': operation or 'unknown',
        }
        for key, value in metadata.items():
            if key in _RESERVED_RECORD_ATTRS or key in extra:
                key = f"meta_{key}"
            extra[key] = value
        return extra

    def _log(self, log_level: int, message: str, operation: str = None, exc_info=None, **metadata):
        try:
            self.logger.log(log_level, message, exc_info=exc_info,
                            extra=self._build_extra(operation, metadata))
        except Exception:  # noqa: BLE001 - the sink is fire-and-forget
            pass

    def debug(self, message: str, operation: str = None, **metadata):
        self._log(logging.DEBUG, message, operation, **metadata)

    def info(self, message: str, operation: str = None, **metadata):
        self._log(logging.INFO, message, operation, **metadata)

    def warning(self, message: str, operation: str = None, **metadata):
        self._log(logging.WARNING, message, operation, **metadata)

    # spelled the way the browser console does
    warn = warning

    def error(self, message: str, operation: str = None, **metadata):
        self._log(logging.ERROR, message, operation, **metadata)

    def critical(self, message: str, operation: str = None, **metadata):
        self._log(logging.CRITICAL, message, operation, **metadata)

    def exception(self, message: str, operation: str = None, **metadata):
        """Log an error with the active exception's traceback."""
        self._log(logging.ERROR, message, operation or 'exception', exc_info=True, **metadata)


class LoggingConfig:
    """Centralized logging configuration."""

    DEFAULT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

    COMPONENT_LOGGERS = ('bizdir',)

    THIRD_PARTY_LOGGERS = {
        'aiohttp': logging.WARNING,
        'asyncio': logging.WARNING,
        'urllib3': logging.WARNING,
    }

    @classmethod
    def setup_logging(
        cls,
        level: Union[str, int] = logging.INFO,
        format_type: str = 'json',
        log_file: Optional[str] = None,
        console_output: bool = True,
        correlation_tracking: bool = True
    ):
        """
        Setup logging configuration.

        Args:
            level: Logging level
            format_type: 'json', 'colored', or 'standard'
            log_file: Optional log file path
            console_output: Enable console output
            correlation_tracking: Enable correlation ID tracking
        """
        if log_file:
            Path(log_file).parent.mkdir(parents=True, exist_ok=True)

        root_logger = logging.getLogger()
        root_logger.setLevel(level)
        root_logger.handlers.clear()

        correlation_filter = CorrelationFilter() if correlation_tracking else None

        if console_output:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(level)
            console_handler.setFormatter(cls._build_formatter(format_type))
            if correlation_filter:
                console_handler.addFilter(correlation_filter)
            root_logger.addHandler(console_handler)

        if log_file:
            file_handler = logging.FileHandler(log_file)
            file_handler.setLevel(level)
            file_handler.setFormatter(JSONFormatter())  # Always use JSON for files
            if correlation_filter:
                file_handler.addFilter(correlation_filter)
            root_logger.addHandler(file_handler)

        for component in cls.COMPONENT_LOGGERS:
            logging.getLogger(component).setLevel(level)
        for logger_name, third_party_level in cls.THIRD_PARTY_LOGGERS.items():
            logging.getLogger(logger_name).setLevel(third_party_level)

        logger = ServiceLogger(__name__, 'logging_config')
        logger.info(
            "Logging system initialized",
            operation="setup_logging",
            level=level,
            format_type=format_type,
            log_file=log_file,
        )

    @classmethod
    def _build_formatter(cls, format_type: str) -> logging.Formatter:
        if format_type == 'json':
            return JSONFormatter()
        if format_type == 'colored':
            return ColoredFormatter(cls.DEFAULT_FORMAT)
        return logging.Formatter(cls.DEFAULT_FORMAT)


class CorrelationContext:
    """Context manager for correlation tracking."""

    def __init__(self, correlation_id_value: str = None, user_id_value: str = None):
        self.correlation_id_value = correlation_id_value or str(uuid4())
        self.user_id_value = user_id_value
        self.correlation_token = None
        self.user_token = None

    def __enter__(self):
        self.correlation_token = correlation_id.set(self.correlation_id_value)
        if self.user_id_value:
            self.user_token = user_id.set(self.user_id_value)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.correlation_token:
            correlation_id.reset(self.correlation_token)
        if self.user_token:
            user_id.reset(self.user_token)


def get_logger(name: str, component: str = None) -> ServiceLogger:
    """Get a component-tagged logger instance."""
    return ServiceLogger(name, component)


def get_correlation_id() -> Optional[str]:
    """Get current correlation ID."""
    return correlation_id.get()


def initialize_logging(settings: "Settings") -> None:
    """Configure logging from application settings."""
    monitoring = settings.monitoring
    format_type = 'json' if settings.is_production() else monitoring.log_format
    LoggingConfig.setup_logging(
        level=monitoring.log_level.value,
        format_type=format_type,
        log_file=monitoring.log_file,
        console_output=True,
        correlation_tracking=True
    )
