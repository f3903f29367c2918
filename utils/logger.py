"""
============================================================================
PULSE ENGINE - LOGGING UTILITY
============================================================================
Loguru based logging with console, rotating file and error sinks.

Author: Professional Development Team
Version: 1.0.0
License: MIT
============================================================================
"""

import sys
import time
import inspect
from functools import wraps
from typing import Optional, TYPE_CHECKING

from loguru import logger

if TYPE_CHECKING:
    from config.settings import Settings


CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[name]}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)

FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | "
    "{extra[name]}:{function}:{line} - {message}"
)

# Records logged through the bare loguru logger still need a name.
logger.configure(extra={"name": "pulse"})


# ============================================================================
# LOGGER CONFIGURATION
# ============================================================================

def setup_logging(settings: "Settings") -> None:
    """
    Configure logging sinks from the LOG_* settings.

    Removes every previously installed sink first, so calling it again
    (for example from tests) replaces the configuration.

    Args:
        settings: Application settings
    """
    log_settings = settings.logging

    logger.remove()

    log_level = log_settings.level.value

    # Console Handler
    if log_settings.console_enabled:
        logger.add(
            sys.stdout,
            format=CONSOLE_FORMAT,
            level=log_level,
            colorize=log_settings.colorize,
            backtrace=True,
            diagnose=settings.debug,
        )

    # File Handler
    if log_settings.file_enabled:
        log_settings.file_path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_settings.file_path,
            format=FILE_FORMAT,
            level=log_level,
            rotation=log_settings.file_rotation,
            retention=log_settings.file_retention,
            compression="zip",
            serialize=log_settings.json_enabled,
            enqueue=True,
            backtrace=True,
            diagnose=settings.debug,
        )

    # Error log file (separate file for errors)
    if log_settings.error_file_enabled:
        log_settings.error_file_path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_settings.error_file_path,
            format=FILE_FORMAT,
            level="ERROR",
            rotation="1 day",
            retention=log_settings.file_retention,
            compression="zip",
            enqueue=True,
            backtrace=True,
            diagnose=settings.debug,
        )

    log = get_logger("Logging")
    log.info("Logging system initialized")
    log.info(f"Log level: {log_level}")
    log.debug(f"Console logging: {log_settings.console_enabled}")
    log.debug(f"File logging: {log_settings.file_enabled}")


def get_logger(name: Optional[str] = None):
    """
    Get logger instance with optional name.

    Args:
        name: Logger name, shown in the record's ``name`` column

    Returns:
        Logger instance
    """
    if name:
        return logger.bind(name=name)
    return logger


# ============================================================================
# LOG DECORATORS
# ============================================================================

def log_execution_time(func):
    """
    Decorator to log coroutine execution time at DEBUG level.

    Args:
        func: Coroutine function to decorate

    Returns:
        Decorated function
    """
    if not inspect.iscoroutinefunction(func):
        raise TypeError("log_execution_time expects a coroutine function")

    @wraps(func)
    async def wrapper(*args, **kwargs):
        start_time = time.perf_counter()
        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            elapsed = time.perf_counter() - start_time
            logger.debug(
                f"Function {func.__qualname__} failed after {elapsed:.4f} seconds: {e}"
            )
            raise
        elapsed = time.perf_counter() - start_time
        logger.debug(
            f"Function {func.__qualname__} executed in {elapsed:.4f} seconds"
        )
        return result

    return wrapper


# ============================================================================
# END OF LOGGER MODULE
# ============================================================================
