"""
Logging utilities for the Amplicon Workflow Router.

This module provides centralized logging configuration using loguru
and performance monitoring.
"""

import functools
import sys
import time
from pathlib import Path
from typing import Any, Dict, Optional

from loguru import logger


DEFAULT_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
    "{level: <8} | "
    "{name}:{function}:{line} | "
    "{message}"
)


def setup_logging(
    level: str = "INFO",
    log_file: Optional[Path] = None,
    format_string: Optional[str] = None,
    enable_json: bool = False,
    rotation: str = "1 week",
    retention: str = "1 month",
    compression: str = "gz",
) -> None:
    """
    Setup centralized logging configuration.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path to log file
        format_string: Custom format string
        enable_json: Enable JSON structured logging
        rotation: Log rotation interval
        retention: Log retention period
        compression: Compression format for rotated logs
    """
    logger.remove()

    if format_string is None:
        format_string = "{message}" if enable_json else DEFAULT_FORMAT

    logger.add(
        sys.stderr,
        format=format_string,
        level=level,
        colorize=True,
        serialize=enable_json,
    )

    if log_file:
        log_file = Path(log_file)
        logger.add(
            log_file,
            format=format_string,
            level=level,
            rotation=rotation,
            retention=retention,
            compression=compression,
            serialize=enable_json,
        )
        error_file = log_file.parent / f"{log_file.stem}_errors.log"
        logger.add(
            error_file,
            format=format_string,
            level="ERROR",
            rotation=rotation,
            retention=retention,
            compression=compression,
        )

    logger.debug("Logging system initialized")


def log_performance(func_name: str, execution_time: float, **metrics: Any) -> None:
    """
    Log performance metrics.

    Args:
        func_name: Name of the function
        execution_time: Execution time in seconds
        **metrics: Additional performance metrics
    """
    logger.bind(execution_time=execution_time, metrics=metrics).info(
        f"Performance: {func_name} executed in {execution_time:.3f}s"
    )


def log_error_with_context(
    error: Exception,
    context: Dict[str, Any],
    operation: Optional[str] = None,
) -> None:
    """Log an error with its context bound as extra fields."""
    logger.bind(
        error_type=type(error).__name__,
        context=context,
    ).error(f"Error in {operation or 'operation'}: {error}")


class LoggerMixin:
    """Mixin class to add logging capabilities to any class."""

    @property
    def logger(self):
        """Get logger instance with class name."""
        return logger.bind(class_name=self.__class__.__name__)

    def log_error(self, error: Exception, method_name: str, **context: Any) -> None:
        """Log error with method context."""
        self.logger.bind(
            method_name=method_name,
            error_type=type(error).__name__,
            context=context,
        ).error(f"Error in {method_name}: {error}")


def performance_monitor(func):
    """
    Decorator to monitor function performance.

    Args:
        func: Function to monitor

    Returns:
        Wrapped function with performance monitoring
    """

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        start_time = time.time()
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            log_error_with_context(
                e,
                {
                    "function": func.__name__,
                    "execution_time": time.time() - start_time,
                },
                operation=func.__name__,
            )
            raise
        log_performance(func.__name__, time.time() - start_time)
        return result

    return wrapper
