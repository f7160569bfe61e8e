"""
Logging for HubProbe

All HubProbe loggers live under the 'hubprobe' namespace and propagate to the
root logger, so pytest's log capture sees them without extra setup. Calling
initialize_logging adds an optional rotating file and a console handler on
top of that, per-component levels, and a structlog pipeline for the
per-scenario summary events.
"""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog

NAMESPACE = 'hubprobe'

# Third-party loggers that drown out round-trip output at DEBUG
QUIET_LOGGERS = (
    'paho',
    'paho.mqtt.client',
    'asyncio',
    'aiohttp.access',
    'aiohttp.client',
)

_SIZE_UNITS = {'KB': 1024, 'MB': 1024 ** 2, 'GB': 1024 ** 3}


def _level(name: Any) -> int:
    return getattr(logging, str(name).upper())


def parse_size(size: Any) -> int:
    """Parse '10MB' style sizes into bytes; bare numbers are bytes."""
    text = str(size).strip().upper()
    for unit, factor in _SIZE_UNITS.items():
        if text.endswith(unit):
            return int(text[:-len(unit)]) * factor
    return int(text)


class HubProbeLogger:
    """
    Owns the handlers attached to the 'hubprobe' logger.

    Args:
        config: Full configuration dict; only the 'logging' section is read
    """

    FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

    def __init__(self, config: Dict):
        self.config = config
        self.settings = config.get('logging', {})
        self.level = _level(self.settings.get('level', 'INFO'))
        self.loggers: Dict[str, logging.Logger] = {}
        self.handlers: List[logging.Handler] = []

        self._configure_structlog()
        self._attach_handlers()
        self._apply_component_levels()
        self._quiet_third_party()

    def _configure_structlog(self):
        structlog.configure(
            processors=[
                structlog.stdlib.filter_by_level,
                structlog.stdlib.add_logger_name,
                structlog.stdlib.add_log_level,
                structlog.processors.TimeStamper(fmt="ISO"),
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer()
            ],
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )

    def _attach_handlers(self):
        namespace_logger = logging.getLogger(NAMESPACE)
        namespace_logger.setLevel(self.level)
        self._detach(namespace_logger)

        log_file = self.settings.get('file')
        if log_file:
            self.handlers.append(self._file_handler(log_file))
        if self.settings.get('console', True):
            self.handlers.append(self._console_handler())

        for handler in self.handlers:
            namespace_logger.addHandler(handler)

    def _file_handler(self, log_file: str) -> logging.Handler:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.handlers.RotatingFileHandler(
            path,
            maxBytes=parse_size(self.settings.get('max_size', '10MB')),
            backupCount=self.settings.get('backup_count', 5),
            encoding='utf-8'
        )
        handler.setFormatter(logging.Formatter(self.FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
        handler.setLevel(self.level)
        return handler

    def _console_handler(self) -> logging.Handler:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(self.FORMAT, datefmt='%H:%M:%S'))
        handler.setLevel(_level(self.settings.get('console_level', logging.getLevelName(self.level))))
        return handler

    def _apply_component_levels(self):
        # e.g. {"verifier": "DEBUG", "mqtt_device": "WARNING"}
        for component, level in self.settings.get('components', {}).items():
            logging.getLogger(f'{NAMESPACE}.{component}').setLevel(_level(level))

    def _quiet_third_party(self):
        for name in QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    @staticmethod
    def _detach(logger: logging.Logger):
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()

    def get_logger(self, name: str) -> logging.Logger:
        """Logger for one component, e.g. 'verifier' -> 'hubprobe.verifier'"""
        if name not in self.loggers:
            full_name = name if name.startswith(NAMESPACE) else f'{NAMESPACE}.{name}'
            self.loggers[name] = logging.getLogger(full_name)
        return self.loggers[name]

    def close(self):
        """Flush and remove the handlers this instance attached."""
        namespace_logger = logging.getLogger(NAMESPACE)
        for handler in self.handlers:
            handler.flush()
            namespace_logger.removeHandler(handler)
            handler.close()
        self.handlers.clear()


_logger_instance: Optional[HubProbeLogger] = None


def initialize_logging(config: Dict) -> HubProbeLogger:
    """Configure logging for the process, replacing any earlier setup."""
    global _logger_instance
    if _logger_instance is not None:
        _logger_instance.close()
    _logger_instance = HubProbeLogger(config)
    return _logger_instance


def shutdown_logging() -> None:
    """Undo initialize_logging; later loggers fall back to plain propagation."""
    global _logger_instance
    if _logger_instance is not None:
        _logger_instance.close()
        _logger_instance = None
    structlog.reset_defaults()


def get_logger(name: str) -> logging.Logger:
    if _logger_instance is None:
        return logging.getLogger(f'{NAMESPACE}.{name}')
    return _logger_instance.get_logger(name)


def get_structured_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    structlog logger over the stdlib 'hubprobe.<name>' logger.

    Before initialize_logging this uses structlog's stdlib defaults, so events
    still reach the standard logging tree.
    """
    if _logger_instance is None and not structlog.is_configured():
        structlog.configure(
            processors=[
                structlog.stdlib.add_log_level,
                structlog.processors.TimeStamper(fmt="ISO"),
                structlog.processors.JSONRenderer()
            ],
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
        )
    return structlog.get_logger(f'{NAMESPACE}.{name}')


class LogContext:
    """Bind key/value context to a structured logger for a block."""

    def __init__(self, logger: structlog.stdlib.BoundLogger, **context):
        self.logger = logger
        self.context = context
        self.bound_logger = None

    def __enter__(self):
        self.bound_logger = self.logger.bind(**self.context)
        return self.bound_logger

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.bound_logger = None
        return False
