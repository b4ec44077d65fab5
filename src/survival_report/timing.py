"""Timing utilities for performance logging.

Provides a decorator and a context manager to measure and log execution
times of report stages.

Example:
    >>> from survival_report.timing import log_execution_time, Timer
    >>>
    >>> @log_execution_time()
    ... def fit_everything(df):
    ...     ...
    >>> with Timer(logger, "Kaplan-Meier curves"):
    ...     km = fit_kaplan_meier(df, "trt")
"""
import time
import functools
import logging
from typing import Callable, Optional

from survival_report.logging_config import log_performance, get_logger


def log_execution_time(logger: Optional[logging.Logger] = None):
    """Decorator to log function execution time.

    If the function succeeds, logs a performance record with timing. If it
    fails, logs an ERROR with the exception trace and re-raises.

    Args:
        logger: Logger instance (uses a child of the package logger if None)

    Returns:
        Decorated function that logs its execution time

    Example:
        >>> @log_execution_time()
        ... def run_report(config):
        ...     ...
        INFO     | Completed: run_report | duration_sec=8.3
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            nonlocal logger
            if logger is None:
                logger = get_logger(func.__module__.rsplit(".", 1)[-1])

            start_time = time.time()
            logger.info(f"Starting: {func.__name__}")

            try:
                result = func(*args, **kwargs)
            except Exception as e:
                duration = time.time() - start_time
                logger.error(
                    f"{func.__name__} failed after {duration:.2f}s: {str(e)}",
                    exc_info=True
                )
                raise

            duration = time.time() - start_time
            log_performance(
                logger,
                f"Completed: {func.__name__}",
                duration_sec=round(duration, 2)
            )
            return result

        return wrapper
    return decorator


class Timer:
    """Context manager for timing code blocks.

    Measures the duration of a code block and logs it as a performance metric.

    Args:
        logger: Logger instance
        description: Description of the operation being timed

    Example:
        >>> with Timer(logger, "Schoenfeld residual test"):
        ...     ph = check_proportional_hazards(cox)
        INFO     | Starting: Schoenfeld residual test
        INFO     | Completed: Schoenfeld residual test | duration_sec=0.21
    """

    def __init__(self, logger: logging.Logger, description: str):
        self.logger = logger
        self.description = description
        self.start_time = None
        self.duration = None

    def __enter__(self):
        """Start timing when entering context."""
        self.start_time = time.time()
        self.logger.info(f"Starting: {self.description}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Stop timing when exiting context and log duration."""
        self.duration = time.time() - self.start_time

        if exc_type is None:
            log_performance(
                self.logger,
                f"Completed: {self.description}",
                duration_sec=round(self.duration, 2)
            )
        else:
            self.logger.error(
                f"{self.description} failed after {self.duration:.2f}s: {exc_val}"
            )

        # Don't suppress exception
        return False

    def elapsed(self) -> float:
        """Get elapsed time in seconds (during execution).

        Returns:
            Elapsed time in seconds since entering the context
        """
        if self.start_time is None:
            return 0.0
        return time.time() - self.start_time
