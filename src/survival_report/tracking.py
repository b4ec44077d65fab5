from __future__ import annotations
import os
import math
import logging
from typing import Dict, Any, Optional
import mlflow
import mlflow.exceptions

EXPERIMENT_NAME = "survival_report"


def start_run(run_name: str, tracking_uri: Optional[str] = None, tags: Dict[str, str] | None = None):
    """Start an MLflow run under the survival_report experiment.

    Args:
        run_name: Name identifier for this run
        tracking_uri: Optional tracking URI (e.g. "file:./data/outputs/report/mlruns")
        tags: Optional dictionary of key-value tags to attach to the run

    Returns:
        Active MLflow run context manager

    Example:
        >>> with start_run("veteran_report", tags={"dataset": "veteran"}):
        ...     safe_log_metrics({"full_aic": 1014.0})
    """
    if tracking_uri:
        mlflow.set_tracking_uri(tracking_uri)
    mlflow.set_experiment(EXPERIMENT_NAME)
    return mlflow.start_run(run_name=run_name, tags=tags)


def _warn(logger: Optional[logging.Logger], message: str, unexpected: bool = False):
    if logger is None:
        return
    if unexpected:
        logger.error(message, extra={"category": "mlflow_error"})
    else:
        logger.warning(message, extra={"category": "mlflow_error"})


def safe_log_metrics(
    metrics: Dict[str, float],
    step: Optional[int] = None,
    logger: Optional[logging.Logger] = None
) -> bool:
    """Log metrics to MLflow, logging a warning instead of failing.

    Non-finite values (e.g. an infinite median) are skipped.

    Returns:
        True if logging succeeded, False if it failed

    Example:
        >>> safe_log_metrics({"logrank_trt_p": 0.928, "full_cindex": 0.736}, logger=logger)
        True
    """
    finite = {k: float(v) for k, v in metrics.items() if v is not None and math.isfinite(v)}
    try:
        mlflow.log_metrics(finite, step=step)
        return True
    except mlflow.exceptions.MlflowException as e:
        _warn(logger, f"MLflow metrics logging failed: {e}")
        return False
    except Exception as e:
        _warn(logger, f"Unexpected error in MLflow metrics logging: {e}", unexpected=True)
        return False


def safe_log_params(
    params: Dict[str, Any],
    logger: Optional[logging.Logger] = None
) -> bool:
    """Log parameters to MLflow; sequences are stored as comma-joined strings.

    Returns:
        True if logging succeeded, False if it failed
    """
    flat = {
        k: ", ".join(map(str, v)) if isinstance(v, (list, tuple)) else v
        for k, v in params.items()
    }
    try:
        mlflow.log_params(flat)
        return True
    except mlflow.exceptions.MlflowException as e:
        _warn(logger, f"MLflow params logging failed: {e}")
        return False
    except Exception as e:
        _warn(logger, f"Unexpected error in MLflow params logging: {e}", unexpected=True)
        return False


def safe_log_artifact(
    path: str,
    logger: Optional[logging.Logger] = None
) -> bool:
    """Log a file (the rendered report, a table) to MLflow with error handling.

    Returns:
        True if logging succeeded, False if it failed
    """
    if not os.path.exists(path):
        if logger:
            logger.warning(f"Artifact not found, skipping: {path}")
        return False

    try:
        mlflow.log_artifact(path)
        return True
    except mlflow.exceptions.MlflowException as e:
        _warn(logger, f"MLflow artifact logging failed for {path}: {e}")
        return False
    except Exception as e:
        _warn(logger, f"Unexpected error in MLflow artifact logging for {path}: {e}", unexpected=True)
        return False
