"""Unified logging infrastructure for devbridge.

This module provides:
1. Centralized logging configuration for the ``devbridge`` logger namespace
2. Debug mode via DEVBRIDGE_DEBUG env var or programmatic flag
3. Log levels via DEVBRIDGE_LOG_LEVEL env var
4. Dual output: Rich console for CLI, rotating file for debugging
5. Daemon mode: stderr handler for the long-running gateway process

Usage:
    from devbridge.utils.logging import get_logger, configure_logging

    # In the CLI entry point:
    configure_logging(debug=debug, daemon=True)

    # In server modules the stdlib logger is enough:
    logger = logging.getLogger(__name__)

    # For user-facing CLI output:
    out = get_logger(__name__)
    out.success("Gateway listening")

Environment Variables:
    DEVBRIDGE_DEBUG=1          Enable debug mode (verbose output)
    DEVBRIDGE_LOG_LEVEL=DEBUG  Set log level (DEBUG, INFO, WARNING, ERROR)
    DEVBRIDGE_LOG_FILE=/path   Override log file location
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from rich.console import Console

from devbridge.paths import HostPaths

# Global state
_configured = False
_debug_mode = False
_daemon_mode = False
_log_file: Optional[Path] = None

# Shared Rich console instance
console = Console()

# Custom log level for success messages
SUCCESS_LEVEL = 25
logging.addLevelName(SUCCESS_LEVEL, "SUCCESS")


def _get_log_file() -> Path:
    """Get the log file path, creating its directory if needed."""
    global _log_file
    if _log_file:
        return _log_file

    env_log_file = os.environ.get("DEVBRIDGE_LOG_FILE")
    if env_log_file:
        _log_file = Path(env_log_file)
    else:
        _log_file = HostPaths.log_file()

    _log_file.parent.mkdir(parents=True, exist_ok=True)
    return _log_file


def is_debug_mode() -> bool:
    """Check if debug mode is enabled."""
    return _debug_mode or os.environ.get("DEVBRIDGE_DEBUG", "").lower() in ("1", "true", "yes")


def configure_logging(
    debug: bool = False,
    daemon: bool = False,
    log_level: Optional[str] = None,
    log_file: Optional[Path] = None,
) -> None:
    """Configure the logging system.

    Should be called once at startup. Later calls are ignored.

    Args:
        debug: Enable debug mode (verbose output)
        daemon: Daemon mode (stderr handler, no Rich formatting)
        log_level: Override log level (DEBUG, INFO, WARNING, ERROR)
        log_file: Override log file path
    """
    global _configured, _debug_mode, _daemon_mode, _log_file

    if _configured:
        return

    _debug_mode = debug or is_debug_mode()
    _daemon_mode = daemon

    if log_file:
        _log_file = Path(log_file)

    if log_level:
        level_name = log_level.upper()
    else:
        level_name = os.environ.get(
            "DEVBRIDGE_LOG_LEVEL", "DEBUG" if _debug_mode else "INFO"
        ).upper()

    level = getattr(logging, level_name, logging.INFO)

    root_logger = logging.getLogger("devbridge")
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    # File handler with rotation (captures everything)
    try:
        file_handler = RotatingFileHandler(
            _get_log_file(),
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        root_logger.addHandler(file_handler)
    except (OSError, PermissionError):
        # Can't write log file, continue without it
        pass

    if _daemon_mode:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setLevel(level)
        stderr_handler.setFormatter(
            logging.Formatter("%(asctime)s %(name)s: %(levelname)s: %(message)s")
        )
        root_logger.addHandler(stderr_handler)

    _configured = True

    root_logger.debug(
        f"Logging configured: level={level_name}, debug={_debug_mode}, daemon={_daemon_mode}"
    )


class DevbridgeLogger:
    """Logger with Rich console output for CLI-facing messages.

    Server modules log through plain ``logging.getLogger(__name__)``; this
    wrapper is for messages a person at the terminal should see.
    """

    def __init__(self, name: str):
        self.name = name
        self.logger = logging.getLogger(name)
        self.console = console

    def success(self, message: str, console_output: bool = True) -> None:
        """Log success message (green output)."""
        self.logger.log(SUCCESS_LEVEL, message)
        if console_output:
            self.console.print(f"[green]✓ {message}[/green]")

    def warning(self, message: str, console_output: bool = True) -> None:
        self.logger.warning(message)
        if console_output:
            self.console.print(f"[yellow]⚠ {message}[/yellow]")

    def print(self, message: str, style: Optional[str] = None) -> None:
        """Print to console without logging."""
        if style:
            self.console.print(f"[{style}]{message}[/{style}]")
        else:
            self.console.print(message)


def get_logger(name: str) -> DevbridgeLogger:
    """Get a console-aware logger for a module.

    Args:
        name: Module name (typically __name__)

    Returns:
        DevbridgeLogger instance
    """
    if not name.startswith("devbridge"):
        name = f"devbridge.{name}"

    return DevbridgeLogger(name)
