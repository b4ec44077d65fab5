"""Synthetic cohorts and calibration checks for the report's tests.

Cohorts follow the patient schema of the reference trial. Event times are
exponential with rate ``baseline_hazard * exp(lp)``, where ``lp`` combines
the mean-centred design columns named in ``effects``; times are rounded up
to whole days and censored by an independent uniform follow-up time.
"""
from __future__ import annotations
from typing import Dict, Optional
import logging
import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from scipy.stats import kstest

from survival_report.data import (
    CATEGORICAL_LEVELS, TIME_COL, EVENT_COL, REQUIRED_COLS, make_design_matrix,
)
from survival_report.kaplan_meier import logrank_test
from survival_report.models import CoxModelSpec
from survival_report.selection import backward_elimination

logger = logging.getLogger(__name__)

FULL_COVARIATES = ("trt", "celltype", "age", "prior", "diagtime", "karno")
# Histology mix of the reference trial (35/48/27/27 of 137)
CELLTYPE_PROBS = (0.255, 0.350, 0.197, 0.198)


def simulate_cohort(
    n: int = 137,
    effects: Optional[Dict[str, float]] = None,
    baseline_hazard: float = 1.0 / 120.0,
    censor_max: float = 600.0,
    random_state=None,
) -> pd.DataFrame:
    """Simulate a normalized cohort with proportional hazards.

    Args:
        n: Number of subjects
        effects: Log hazard ratio per design column (e.g. {"karno": -0.03,
            "celltype_smallcell": 0.7}); None or {} makes every covariate noise
        baseline_hazard: Daily hazard at the covariate means
        censor_max: Upper bound of the uniform censoring time, in days
        random_state: Seed or numpy Generator

    Returns:
        DataFrame with the canonical columns, ready for the analysis functions

    Raises:
        KeyError: If an effect names an unknown design column

    Example:
        >>> df = simulate_cohort(200, effects={"karno": -0.03}, random_state=1)
        >>> df["status"].mean()
    """
    rng = np.random.default_rng(random_state)

    trt = np.array(["standard"] * (n // 2) + ["test"] * (n - n // 2))
    rng.shuffle(trt)
    cohort = pd.DataFrame({
        TIME_COL: np.ones(n),
        EVENT_COL: np.ones(n, dtype=bool),
        "trt": pd.Categorical(trt, categories=CATEGORICAL_LEVELS["trt"]),
        "celltype": pd.Categorical(
            rng.choice(CATEGORICAL_LEVELS["celltype"], size=n, p=CELLTYPE_PROBS),
            categories=CATEGORICAL_LEVELS["celltype"],
        ),
        "age": rng.integers(35, 82, size=n),
        "diagtime": rng.integers(1, 30, size=n).astype(float),
        "karno": rng.choice(np.arange(10, 100, 10), size=n),
        "prior": pd.Categorical(
            rng.choice(CATEGORICAL_LEVELS["prior"], size=n, p=(0.7, 0.3)),
            categories=CATEGORICAL_LEVELS["prior"],
        ),
    })

    lp = np.zeros(n)
    if effects:
        design = make_design_matrix(cohort, FULL_COVARIATES).frame
        unknown = [c for c in effects if c not in design.columns]
        if unknown:
            raise KeyError(f"Unknown design columns in effects: {unknown}")
        for column, beta in effects.items():
            values = design[column].to_numpy(dtype=float)
            lp += beta * (values - values.mean())

    event_time = np.ceil(rng.exponential(1.0 / (baseline_hazard * np.exp(lp))))
    censor_time = np.ceil(rng.uniform(1.0, censor_max, size=n))
    event_time = np.maximum(event_time, 1.0)

    cohort[TIME_COL] = np.minimum(event_time, censor_time)
    cohort[EVENT_COL] = event_time <= censor_time
    return cohort[REQUIRED_COLS]


def _replicate_seeds(n_replicates: int, random_state):
    return np.random.SeedSequence(random_state).spawn(n_replicates)


def _logrank_null_p(seed, n_subjects: int) -> float:
    cohort = simulate_cohort(n_subjects, effects=None, random_state=np.random.default_rng(seed))
    return logrank_test(cohort, "trt").p_value


def logrank_null_pvalues(
    n_replicates: int = 200,
    n_subjects: int = 137,
    random_state: Optional[int] = 42,
    n_jobs: int = 1,
) -> np.ndarray:
    """Log-rank p-values comparing two identically distributed arms.

    Under the null these should look Uniform(0, 1).

    Example:
        >>> p = logrank_null_pvalues(500, random_state=7, n_jobs=-1)
        >>> (p < 0.05).mean()
    """
    seeds = _replicate_seeds(n_replicates, random_state)
    pvalues = Parallel(n_jobs=n_jobs)(
        delayed(_logrank_null_p)(seed, n_subjects) for seed in seeds
    )
    logger.info(f"Log-rank null calibration: {n_replicates} replicates of {n_subjects} subjects")
    return np.asarray(pvalues, dtype=float)


def _noise_trial(seed, n_subjects: int, covariates) -> Dict[str, object]:
    cohort = simulate_cohort(n_subjects, effects=None, random_state=np.random.default_rng(seed))
    selection = backward_elimination(cohort, CoxModelSpec("noise", covariates))
    retained = selection.final.spec.covariates
    return {"retained": ", ".join(retained), "n_retained": len(retained)}


def noise_elimination_trials(
    n_replicates: int = 50,
    n_subjects: int = 137,
    random_state: Optional[int] = 42,
    n_jobs: int = 1,
    covariates=FULL_COVARIATES,
) -> pd.DataFrame:
    """Backward elimination on cohorts whose covariates are pure noise.

    Returns:
        DataFrame with one row per replicate: replicate, retained (comma
        separated terms) and n_retained
    """
    seeds = _replicate_seeds(n_replicates, random_state)
    rows = Parallel(n_jobs=n_jobs)(
        delayed(_noise_trial)(seed, n_subjects, tuple(covariates)) for seed in seeds
    )
    trials = pd.DataFrame(rows, columns=["retained", "n_retained"])
    trials.insert(0, "replicate", np.arange(n_replicates))
    logger.info(
        f"Noise elimination: {n_replicates} replicates, mean retained terms "
        f"{trials['n_retained'].mean():.2f}, null model in {(trials['n_retained'] == 0).mean():.0%}"
    )
    return trials


def calibration_summary(pvalues: np.ndarray, trials: pd.DataFrame, alpha: float = 0.05) -> pd.DataFrame:
    """Summary rows for the simulation appendix of the report."""
    ks = kstest(pvalues, "uniform")
    rows = [
        {"check": "log-rank null: replicates", "value": float(len(pvalues))},
        {"check": f"log-rank null: rejection rate at {alpha}", "value": float((pvalues < alpha).mean())},
        {"check": "log-rank null: KS p-value vs Uniform(0,1)", "value": float(ks.pvalue)},
        {"check": "noise elimination: replicates", "value": float(len(trials))},
        {"check": "noise elimination: mean retained terms", "value": float(trials["n_retained"].mean())},
        {"check": "noise elimination: share reduced to null model",
         "value": float((trials["n_retained"] == 0).mean())},
    ]
    return pd.DataFrame(rows)
