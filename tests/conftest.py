"""Pytest configuration and shared fixtures for survival report tests.

Provides the reference veteran cohort, small raw cohorts for loader tests,
simulated cohorts and temporary output directories.
"""
import pytest
import pandas as pd
import numpy as np

import matplotlib
matplotlib.use("Agg")

from survival_report.data import load_veteran_dataset
from survival_report.simulation import simulate_cohort


@pytest.fixture(scope="session")
def veteran():
    """Normalized Veterans' Administration lung cancer cohort (137 subjects).

    Returns:
        pd.DataFrame: Canonical cohort, treat as read-only
    """
    return load_veteran_dataset()


@pytest.fixture
def raw_veteran_rows():
    """A few raw rows spelled the way R's ``veteran`` data frame spells them.

    Returns:
        pd.DataFrame: Raw cohort with coded trt (1/2), prior (0/10) and status (0/1)
    """
    return pd.DataFrame({
        "trt": [1, 1, 2, 2, 1],
        "celltype": ["squamous", "smallcell", "adeno", "large", "squamous"],
        "time": [72, 411, 228, 126, 118],
        "status": [1, 1, 0, 1, 1],
        "karno": [60, 70, 60, 60, 70],
        "diagtime": [7, 5, 3, 9, 11],
        "age": [69, 64, 38, 63, 65],
        "prior": [0, 10, 0, 10, 10],
    })


@pytest.fixture
def tie_cohort():
    """Small cohort with tied event and censoring times.

    At t=3 two deaths and one censoring occur; the censored subject is
    still at risk at t=3.

    Returns:
        pd.DataFrame: Columns time, status
    """
    return pd.DataFrame({
        "time": [1.0, 3.0, 3.0, 3.0, 5.0, 8.0],
        "status": [True, True, True, False, True, False],
    })


@pytest.fixture(scope="session")
def synthetic_cohort():
    """Simulated cohort with a strong karno effect and a celltype effect.

    Returns:
        pd.DataFrame: 300 subjects in the canonical schema
    """
    return simulate_cohort(
        300,
        effects={"karno": -0.03, "celltype_smallcell": 0.6},
        random_state=2024,
    )


@pytest.fixture
def noise_cohort():
    """Simulated cohort whose covariates are independent of survival."""
    return simulate_cohort(137, effects=None, random_state=np.random.default_rng(11))


@pytest.fixture
def temp_output_dir(tmp_path):
    """Create temporary report output directory.

    Args:
        tmp_path: Pytest temporary directory fixture

    Returns:
        Path: Temporary output directory
    """
    output_dir = tmp_path / "report"
    output_dir.mkdir(exist_ok=True)
    return output_dir


@pytest.fixture(autouse=True)
def cleanup_mlflow_runs():
    """End any MLflow run a test left open and reset the tracking URI."""
    import mlflow
    yield
    if mlflow.active_run() is not None:
        mlflow.end_run()
    mlflow.set_tracking_uri(None)
