"""
Logging setup for the MentorConnect relay.

Modules log through plain ``logging.getLogger(__name__)``; this package only
decides where records go:
- coloured console output
- rotating log files (everything + errors only)
- per-component levels for noisy libraries (websockets, uvicorn)
- presets per environment, selected with MENTORCONNECT_ENV

Usage:
    from MentorConnect.core.logging import auto_configure, get_logger

    auto_configure("development")
    logger = get_logger(__name__)
"""

import logging
import logging.handlers
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Union


@dataclass
class LogConfig:
    """
    Configuration for the logging system.

    Attributes:
        level: Minimum log level name
        log_dir: Directory for log files
        console_output: Whether to log to stdout
        file_output: Whether to log to rotating files
        max_bytes: Size at which a log file is rotated
        backup_count: Rotated files to keep
        format_string: Overrides the default record format
        date_format: strftime format for timestamps
        component_levels: Logger name -> level name
    """
    level: str = "INFO"
    log_dir: str = "./logs"
    console_output: bool = True
    file_output: bool = True
    max_bytes: int = 10 * 1024 * 1024
    backup_count: int = 5
    format_string: Optional[str] = None
    date_format: str = "%Y-%m-%d %H:%M:%S"
    component_levels: Dict[str, str] = field(default_factory=dict)


class ColoredFormatter(logging.Formatter):
    """Console formatter that colours the level name."""

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
    }
    RESET = '\033[0m'

    def __init__(self, fmt: str, datefmt: Optional[str] = None, use_colors: bool = True):
        super().__init__(fmt, datefmt)
        self.use_colors = use_colors and sys.platform != 'win32'

    def format(self, record: logging.LogRecord) -> str:
        if not self.use_colors or record.levelname not in self.COLORS:
            return super().format(record)
        original = record.levelname
        record.levelname = f"{self.COLORS[original]}{original}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = original


def get_default_format() -> str:
    return "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def get_detailed_format() -> str:
    return (
        "%(asctime)s - %(name)s - %(levelname)s - "
        "[%(filename)s:%(lineno)d - %(funcName)s] - %(message)s"
    )


def _level(name: Union[str, int]) -> int:
    if isinstance(name, int):
        return name
    return getattr(logging, name.upper())


class LoggingManager:
    """
    Process-wide owner of the root logger's handlers.

    A singleton so repeated configuration (tests, reloads) replaces handlers
    instead of stacking them.
    """

    _instance: Optional['LoggingManager'] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return
        self._config: Optional[LogConfig] = None
        self._handlers: List[logging.Handler] = []
        self._initialized = True

    @property
    def config(self) -> Optional[LogConfig]:
        return self._config

    def configure(self, config: LogConfig) -> None:
        """
        Install handlers described by ``config`` on the root logger.

        Args:
            config: Logging configuration
        """
        self._config = config
        level = _level(config.level)

        root_logger = logging.getLogger()
        root_logger.setLevel(level)
        for handler in self._handlers:
            root_logger.removeHandler(handler)
            handler.close()
        self._handlers = []

        if config.console_output:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(level)
            console_handler.setFormatter(
                ColoredFormatter(config.format_string or get_default_format(), config.date_format)
            )
            self.add_handler(console_handler)

        if config.file_output:
            Path(config.log_dir).mkdir(parents=True, exist_ok=True)
            file_formatter = logging.Formatter(
                config.format_string or get_detailed_format(), config.date_format
            )

            file_handler = logging.handlers.RotatingFileHandler(
                os.path.join(config.log_dir, "mentorconnect.log"),
                maxBytes=config.max_bytes,
                backupCount=config.backup_count,
                encoding='utf-8'
            )
            file_handler.setLevel(level)
            file_handler.setFormatter(file_formatter)
            self.add_handler(file_handler)

            error_handler = logging.handlers.RotatingFileHandler(
                os.path.join(config.log_dir, "mentorconnect_errors.log"),
                maxBytes=config.max_bytes,
                backupCount=config.backup_count,
                encoding='utf-8'
            )
            error_handler.setLevel(logging.ERROR)
            error_handler.setFormatter(file_formatter)
            self.add_handler(error_handler)

        for component, component_level in config.component_levels.items():
            logging.getLogger(component).setLevel(_level(component_level))

        logging.getLogger(__name__).info("Logging configured with level: %s", config.level)

    def add_handler(self, handler: logging.Handler) -> None:
        logging.getLogger().addHandler(handler)
        self._handlers.append(handler)

    def set_level(self, level: Union[str, int]) -> None:
        """Change the root level and every installed handler's level."""
        level = _level(level)
        logging.getLogger().setLevel(level)
        for handler in self._handlers:
            handler.setLevel(level)

    def shutdown(self) -> None:
        logging.getLogger(__name__).info("Shutting down logging system")
        logging.shutdown()


_logging_manager = LoggingManager()


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def configure_logging(config: LogConfig) -> None:
    _logging_manager.configure(config)


def get_logging_manager() -> LoggingManager:
    return _logging_manager


def create_development_config() -> LogConfig:
    return LogConfig(
        level="DEBUG",
        log_dir="./logs/dev",
        max_bytes=5 * 1024 * 1024,
        backup_count=3,
        format_string=get_detailed_format(),
        component_levels={
            "websockets": "WARNING",
            "uvicorn.access": "WARNING",
        }
    )


def create_production_config() -> LogConfig:
    return LogConfig(
        level="INFO",
        log_dir="./logs/prod",
        console_output=False,
        max_bytes=50 * 1024 * 1024,
        backup_count=10,
        format_string=get_detailed_format(),
        component_levels={
            "websockets": "ERROR",
            "uvicorn.access": "ERROR",
        }
    )


def create_testing_config() -> LogConfig:
    return LogConfig(
        level="DEBUG",
        file_output=False,
        format_string="%(levelname)s - %(name)s - %(message)s",
        component_levels={
            "websockets": "ERROR",
        }
    )


def auto_configure(env: Optional[str] = None) -> str:
    """
    Configure logging from a named preset.

    Args:
        env: development, production or testing (short forms accepted).
             Read from MENTORCONNECT_ENV when omitted.

    Returns:
        The environment name that was applied.
    """
    if env is None:
        env = os.environ.get("MENTORCONNECT_ENV", "development")
    env = env.lower()

    presets = {
        "development": create_development_config,
        "dev": create_development_config,
        "production": create_production_config,
        "prod": create_production_config,
        "testing": create_testing_config,
        "test": create_testing_config,
    }
    configure_logging(presets.get(env, create_development_config)())
    get_logger(__name__).info("Logging auto-configured for environment: %s", env)
    return env


__all__ = [
    'LogConfig',
    'LoggingManager',
    'ColoredFormatter',
    'get_logger',
    'configure_logging',
    'get_logging_manager',
    'create_development_config',
    'create_production_config',
    'create_testing_config',
    'auto_configure',
    'get_default_format',
    'get_detailed_format',
]
