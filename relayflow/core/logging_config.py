"""
Logging Configuration Module.

This module provides centralized logging configuration for relayflow.
It sets up console and optional file logging with per-module levels.

Features:
- Configurable log levels per module
- Console and file logging
- Structured logging with JSON format support
- Plugin loggers bound to the plugin and definition they serve
"""

import logging
from pathlib import Path
from typing import Any, MutableMapping, Optional

# Define log formats
SIMPLE_FORMAT = "%(levelname)s - %(name)s - %(message)s"

DETAILED_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(funcName)s() - %(message)s"

JSON_FORMAT = (
    '{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", '
    '"module": "%(filename)s", "function": "%(funcName)s", "line": %(lineno)d, '
    '"message": "%(message)s"}'
)

LOG_FILE_NAME = "relayflow.log"

# Module-specific log levels
MODULE_LOG_LEVELS = {
    "relayflow": "DEBUG",
    "relayflow.runtime": "DEBUG",
    "relayflow.queue": "INFO",
    "relayflow.plugins": "INFO",
    "relayflow.repos": "INFO",
    # Third-party libraries (reduce noise)
    "sqlalchemy": "WARNING",
    "sqlalchemy.engine": "WARNING",
    "sqlalchemy.pool": "WARNING",
    "aiosqlite": "WARNING",
    "asyncio": "WARNING",
}


def _format_for(name: str) -> str:
    if name == "json":
        return JSON_FORMAT
    if name == "simple":
        return SIMPLE_FORMAT
    return DETAILED_FORMAT


def setup_logging(
    log_level: Optional[str] = None,
    log_format: Optional[str] = None,
    enable_file: Optional[bool] = None,
    log_file_dir: Optional[str] = None,
) -> None:
    """
    Configure logging for the process.

    Values that are not passed explicitly come from ``Settings``.

    Args:
        log_level: Override console log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Override format (simple, detailed, json)
        enable_file: Whether to enable file logging
        log_file_dir: Directory for the log file
    """
    from relayflow.core.config import get_settings

    cfg = get_settings().logging
    level = (log_level or cfg.level).upper()
    fmt = log_format or cfg.format
    to_file = cfg.enable_file if enable_file is None else enable_file
    file_dir = log_file_dir or cfg.file_dir

    formatter = logging.Formatter(_format_for(fmt), datefmt="%Y-%m-%d %H:%M:%S")

    # Configure root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)  # Capture all levels, filter at handler level

    # Remove existing handlers to avoid duplicates
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if to_file:
        Path(file_dir).mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(Path(file_dir) / LOG_FILE_NAME)
        file_handler.setLevel(logging.DEBUG)  # Always log DEBUG to file
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    for module_name, module_level in MODULE_LOG_LEVELS.items():
        logging.getLogger(module_name).setLevel(module_level)

    root_logger.info(f"Logging configured: level={level}, format={fmt}, file_logging={to_file}")


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a module.

    Args:
        name: The module name (typically __name__)

    Returns:
        A configured logger instance
    """
    return logging.getLogger(name)


class PluginLogger(logging.LoggerAdapter):
    """Logger handed to plugin runtimes.

    Every record carries the plugin name (and the definition id when the
    runtime serves one) in ``extra`` so sinks can filter per plugin.
    """

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        extra = dict(self.extra or {})
        extra.update(kwargs.get("extra") or {})
        kwargs["extra"] = extra
        return f"[{extra.get('plugin_name')}] {msg}", kwargs


def create_plugin_logger(plugin_name: str, definition_id: Optional[str] = None) -> PluginLogger:
    """Create a ``PluginLogger`` under the ``relayflow.plugins`` namespace."""
    extra: dict[str, Any] = {"plugin_name": plugin_name}
    if definition_id is not None:
        extra["definition_id"] = definition_id
    return PluginLogger(logging.getLogger(f"relayflow.plugins.{plugin_name}"), extra)
