"""Centralized logging configuration for the survival report.

This module provides:
- A package logger with console and per-run log files
- Performance metric logging with timing data
- Capture and categorization of library warnings (lifelines, pandas, matplotlib)

Example:
    >>> from survival_report.logging_config import setup_logging, log_performance
    >>> logger = setup_logging(output_dir="data/outputs/report")
    >>> logger.info("Loading cohort")
    >>> log_performance(logger, "Cox model fitted", duration_sec=0.4, aic=1427.0)
"""
import logging
import sys
import warnings
from pathlib import Path
from datetime import datetime
from contextlib import contextmanager


LOGGER_NAME = "survival_report"


class PerformanceFilter(logging.Filter):
    """Filter to capture only performance-related messages.

    Messages tagged with 'is_performance' attribute will pass through.
    """

    def filter(self, record):
        """Check if record is a performance metric."""
        return hasattr(record, 'is_performance') and record.is_performance


class WarningErrorFilter(logging.Filter):
    """Filter to capture only warnings and errors."""

    def filter(self, record):
        """Check if record is WARNING level or above."""
        return record.levelno >= logging.WARNING


def setup_logging(
    output_dir: str = "data/outputs/report",
    log_level: int = logging.INFO,
    console_output: bool = True
) -> logging.Logger:
    """Setup logging for a report run.

    Creates log files in {output_dir}/logs/:
    - main_{timestamp}.log: All log messages
    - performance_{timestamp}.log: Performance metrics only
    - warnings_{timestamp}.log: Warnings and errors only

    Args:
        output_dir: Root output directory of the run
        log_level: Minimum console log level (DEBUG=10, INFO=20, WARNING=30)
        console_output: Whether to output logs to console (default: True)

    Returns:
        Configured package logger

    Example:
        >>> logger = setup_logging("data/outputs/report", log_level=logging.DEBUG)
        >>> logger.info("Pipeline started")
    """
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_dir = Path(output_dir) / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)  # Capture everything, filter at handlers

    # Clear any existing handlers to avoid duplicates on repeated runs
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()
    logger.propagate = False

    detailed_formatter = logging.Formatter(
        fmt='%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    performance_formatter = logging.Formatter(
        fmt='%(asctime)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    simple_formatter = logging.Formatter(
        fmt='%(levelname)-8s | %(message)s'
    )

    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(log_level)
        console_handler.setFormatter(simple_formatter)
        logger.addHandler(console_handler)

    main_handler = logging.FileHandler(
        log_dir / f"main_{timestamp}.log",
        mode='w',
        encoding='utf-8'
    )
    main_handler.setLevel(logging.DEBUG)
    main_handler.setFormatter(detailed_formatter)
    logger.addHandler(main_handler)

    perf_handler = logging.FileHandler(
        log_dir / f"performance_{timestamp}.log",
        mode='w',
        encoding='utf-8'
    )
    perf_handler.setLevel(logging.INFO)
    perf_handler.setFormatter(performance_formatter)
    perf_handler.addFilter(PerformanceFilter())
    logger.addHandler(perf_handler)

    warning_handler = logging.FileHandler(
        log_dir / f"warnings_{timestamp}.log",
        mode='w',
        encoding='utf-8'
    )
    warning_handler.setLevel(logging.WARNING)
    warning_handler.setFormatter(detailed_formatter)
    warning_handler.addFilter(WarningErrorFilter())
    logger.addHandler(warning_handler)

    logger.info("Logging initialized")
    logger.info(f"Log directory: {log_dir.absolute()}")

    return logger


def get_logger(name: str = None) -> logging.Logger:
    """Return the package logger or one of its children.

    Args:
        name: Child name, e.g. "models" -> "survival_report.models"

    Returns:
        Logger instance
    """
    if not name:
        return logging.getLogger(LOGGER_NAME)
    return logging.getLogger(f"{LOGGER_NAME}.{name}")


def log_performance(logger: logging.Logger, message: str, **kwargs):
    """Log a performance-related message with timing data.

    This creates entries in both the main log and the dedicated performance log.

    Args:
        logger: Logger instance
        message: Performance message description
        **kwargs: Additional context (duration, aic, p-values, etc.)

    Example:
        >>> log_performance(logger, "Backward elimination finished",
        ...                 duration_sec=3.1, steps=4, aic=1420.7)
        # Output: "Backward elimination finished | duration_sec=3.1 | steps=4 | aic=1420.7"
    """
    extra = {'is_performance': True}

    if kwargs:
        metrics_str = " | ".join(f"{k}={v}" for k, v in kwargs.items())
        full_message = f"{message} | {metrics_str}"
    else:
        full_message = message

    logger.info(full_message, extra=extra)


class WarningLogger:
    """Captures warnings and categorizes them for analysis.

    Categories:
    - convergence: Solver convergence issues
    - numerical: Overflow, underflow, invalid values
    - data: Data quality issues (low variance, missing values)
    - statistical: Statistical warnings (Hessian, variance matrix problems)
    - other: Uncategorized warnings
    """

    WARNING_CATEGORIES = {
        'convergence': ['ConvergenceWarning', 'did not converge', 'converge', 'maximum iterations'],
        'numerical': ['overflow', 'underflow', 'invalid value', 'divide by zero'],
        'data': ['low variance', 'missing values', 'complete separation'],
        'statistical': ['Hessian', 'variance_matrix', 'covariance'],
    }

    def __init__(self, logger: logging.Logger):
        """Initialize warning logger.

        Args:
            logger: Logger instance to send warnings to
        """
        self.logger = logger
        self.warning_counts = {cat: 0 for cat in self.WARNING_CATEGORIES}
        self.warning_counts['other'] = 0

    def categorize_warning(self, message: str) -> str:
        """Categorize a warning message based on keywords.

        Args:
            message: Warning message text

        Returns:
            Category name (convergence, numerical, data, statistical, other)
        """
        message_lower = message.lower()
        for category, keywords in self.WARNING_CATEGORIES.items():
            if any(kw.lower() in message_lower for kw in keywords):
                return category
        return 'other'

    def log_warning(self, message: str, category: str = None):
        """Log a warning with category tag.

        Args:
            message: Warning message
            category: Category name (auto-detected if None)
        """
        if category is None:
            category = self.categorize_warning(message)

        self.warning_counts[category] += 1
        self.logger.warning(f"[{category.upper()}] {message}")

    def summary(self) -> dict:
        """Return summary of warnings by category.

        Returns:
            Dictionary of {category: count} for categories with warnings
        """
        return {k: v for k, v in self.warning_counts.items() if v > 0}


@contextmanager
def capture_warnings(logger: logging.Logger):
    """Context manager to capture and log warnings from libraries.

    Redirects Python warnings to the logging system, categorizes them,
    and logs a summary at the end. Warnings escalated to errors by an
    inner ``warnings.simplefilter("error", ...)`` still raise.

    Args:
        logger: Logger instance

    Yields:
        WarningLogger instance for accessing warning counts

    Example:
        >>> with capture_warnings(logger) as warning_logger:
        ...     plot_scatter_matrix(df, "scatter.png")
        >>> print(warning_logger.summary())
        {'other': 1}
    """
    warning_logger = WarningLogger(logger)

    def warning_handler(message, category, filename, lineno, file=None, line=None):
        """Custom warning handler that logs to our logger."""
        warning_logger.log_warning(f"{category.__name__}: {message}")

    old_showwarning = warnings.showwarning
    warnings.showwarning = warning_handler

    try:
        yield warning_logger
    finally:
        warnings.showwarning = old_showwarning

        summary = warning_logger.summary()
        if summary:
            summary_str = ", ".join(f"{k}={v}" for k, v in summary.items())
            logger.info(f"Warning summary: {summary_str}")
