"""
Logging configuration for Bank Nifty Tracker.
Supports both JSON and text logging formats.
"""

import logging
import logging.config
import sys
from typing import Dict, Any, Optional
from pythonjsonlogger import jsonlogger

from .config import Settings, settings as default_settings


def setup_logging(settings: Optional[Settings] = None) -> None:
    """Setup structured logging for the application."""
    settings = settings or default_settings

    if settings.log_format == "json":
        logging_config = get_json_logging_config(settings.log_level)
    else:
        logging_config = get_text_logging_config(settings.log_level)

    logging.config.dictConfig(logging_config)

    # Set log level for the root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.log_level))

    # Reduce noise from external libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("yfinance").setLevel(logging.WARNING)
    logging.getLogger("redis").setLevel(logging.WARNING)


def _console_handler(log_level: str, formatter: str) -> Dict[str, Any]:
    return {
        "class": "logging.StreamHandler",
        "level": log_level,
        "formatter": formatter,
        "stream": sys.stdout
    }


def _loggers(log_level: str) -> Dict[str, Any]:
    return {
        "": {
            "handlers": ["console"],
            "level": log_level,
            "propagate": False
        },
        "app": {
            "handlers": ["console"],
            "level": log_level,
            "propagate": False
        }
    }


def get_json_logging_config(log_level: str) -> Dict[str, Any]:
    """Get JSON logging configuration."""
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {
                "()": jsonlogger.JsonFormatter,
                "format": "%(asctime)s %(name)s %(levelname)s %(message)s %(module)s %(funcName)s %(lineno)d",
                "datefmt": "%Y-%m-%d %H:%M:%S"
            }
        },
        "handlers": {
            "console": _console_handler(log_level, "json")
        },
        "loggers": _loggers(log_level)
    }


def get_text_logging_config(log_level: str) -> Dict[str, Any]:
    """Get text logging configuration."""
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s (%(filename)s:%(lineno)d)",
                "datefmt": "%Y-%m-%d %H:%M:%S"
            },
            "detailed": {
                "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s [in %(pathname)s:%(lineno)d]",
                "datefmt": "%Y-%m-%d %H:%M:%S"
            }
        },
        "handlers": {
            "console": _console_handler(log_level, "standard" if log_level == "INFO" else "detailed")
        },
        "loggers": _loggers(log_level)
    }


def create_logger(module_name: str) -> logging.Logger:
    """Create a logger for a specific module."""
    return logging.getLogger(f"app.{module_name}")
