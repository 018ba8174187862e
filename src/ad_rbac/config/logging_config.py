"""Logging configuration for ad-rbac.

Builds a ``dictConfig`` from environment variables so the embedding service
controls how chatty the permission engine is:

- ``LOG_LEVEL``: explicit level; wins over ``LOG_VERBOSITY`` when set.
- ``LOG_VERBOSITY``: QUIET, NORMAL, VERBOSE or DEBUG.
- ``LOG_FORMAT``: simple, detailed or json.
- ``ENABLE_SQL_LOGGING`` / ``ENABLE_CACHE_LOGGING``: let the driver loggers
  through at the effective level.
"""

import logging
import logging.config
import os
from enum import Enum
from typing import Any, Dict, Optional


class LogLevel(str, Enum):
    """Supported log levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogVerbosity(str, Enum):
    """Log verbosity modes."""
    QUIET = "QUIET"      # errors only
    NORMAL = "NORMAL"    # warnings and above
    VERBOSE = "VERBOSE"  # info
    DEBUG = "DEBUG"


class LogFormat(str, Enum):
    """Log format options."""
    SIMPLE = "simple"
    DETAILED = "detailed"
    JSON = "json"


_FORMATS = {
    LogFormat.SIMPLE: "%(asctime)s - %(levelname)s - %(message)s",
    LogFormat.DETAILED: "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s",
    LogFormat.JSON: '{"time":"%(asctime)s","level":"%(levelname)s","module":"%(name)s","message":"%(message)s"}',
}


def get_log_level_from_verbosity(verbosity: str) -> str:
    """Map verbosity mode to log level."""
    verbosity_map = {
        LogVerbosity.QUIET: LogLevel.ERROR.value,
        LogVerbosity.NORMAL: LogLevel.WARNING.value,
        LogVerbosity.VERBOSE: LogLevel.INFO.value,
        LogVerbosity.DEBUG: LogLevel.DEBUG.value,
    }
    try:
        return verbosity_map[LogVerbosity(verbosity.upper())]
    except ValueError:
        return LogLevel.WARNING.value


class LoggingConfig:
    """Logging configuration manager."""

    # Third-party loggers clamped unless explicitly enabled
    DRIVER_MODULES = {
        "asyncpg": "ENABLE_SQL_LOGGING",
        "redis": "ENABLE_CACHE_LOGGING",
    }

    # Always clamped to WARNING
    QUIET_MODULES = [
        "httpx",
        "httpcore",
        "asyncio",
    ]

    @classmethod
    def build(cls, env: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """Build the ``dictConfig`` mapping from an environment mapping."""
        env = os.environ if env is None else env

        explicit_level = env.get("LOG_LEVEL")
        if explicit_level and explicit_level.upper() in LogLevel.__members__:
            effective_log_level = explicit_level.upper()
        else:
            effective_log_level = get_log_level_from_verbosity(env.get("LOG_VERBOSITY", "NORMAL"))

        try:
            log_format = LogFormat(env.get("LOG_FORMAT", "simple").lower())
        except ValueError:
            log_format = LogFormat.SIMPLE

        logging_config: Dict[str, Any] = {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {
                    "format": _FORMATS[log_format],
                    "datefmt": "%Y-%m-%d %H:%M:%S",
                },
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "level": effective_log_level,
                    "formatter": "default",
                    "stream": "ext://sys.stdout",
                },
            },
            "root": {
                "level": effective_log_level,
                "handlers": ["console"],
            },
            "loggers": {},
        }

        for module in cls.QUIET_MODULES:
            logging_config["loggers"][module] = {
                "level": "WARNING",
                "handlers": ["console"],
                "propagate": False,
            }

        for module, flag in cls.DRIVER_MODULES.items():
            if env.get(flag, "false").lower() == "true":
                continue
            logging_config["loggers"][module] = {
                "level": "WARNING",
                "handlers": ["console"],
                "propagate": False,
            }

        return logging_config

    @classmethod
    def configure(cls) -> None:
        """Configure logging based on environment variables."""
        logging_config = cls.build()
        logging.config.dictConfig(logging_config)

        logger = logging.getLogger(__name__)
        logger.debug(f"Logging configured: level={logging_config['root']['level']}")

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        """Get a logger for the given module name."""
        return logging.getLogger(name)

    @classmethod
    def set_module_level(cls, module_name: str, level: str) -> None:
        """Set log level for a specific module."""
        logging.getLogger(module_name).setLevel(getattr(logging, level.upper()))


def setup_logging() -> None:
    """Setup logging configuration from environment variables.

    Call once at application startup.
    """
    LoggingConfig.configure()


def get_logger(name: str) -> logging.Logger:
    return LoggingConfig.get_logger(name)
