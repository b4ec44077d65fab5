"""Proportional-hazards diagnostics based on scaled Schoenfeld residuals.

The per-covariate statistics come from lifelines' ``proportional_hazard_test``;
the global statistic combines the same residuals and time transform:

    T = (g' S) V^-1 (S' g) / (d * sum(g^2))

with g the centred transformed event times, S the scaled Schoenfeld
residuals, V the coefficient covariance matrix and d the number of events.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import List
import logging
import numpy as np
import pandas as pd
from scipy.stats import chi2, rankdata
from lifelines import KaplanMeierFitter
from lifelines.statistics import proportional_hazard_test

from survival_report.models import CoxResult
from survival_report.data import TIME_COL, EVENT_COL

logger = logging.getLogger(__name__)

TIME_TRANSFORMS = ("km", "rank", "identity", "log")


@dataclass
class PHTestResult:
    """Outcome of the proportional-hazards test for one fitted model.

    Attributes:
        model_name: Name of the tested model
        table: Rows per design column plus "GLOBAL"; columns chisq, df, p
        residuals: Scaled Schoenfeld residuals, one row per event, one column per covariate
        event_times: Observed time of each residual row
        transformed_times: Transformed time of each residual row
        coefficients: Fitted coefficients, used as the plotting reference line
        time_transform: Name of the time transform
    """
    model_name: str
    table: pd.DataFrame
    residuals: pd.DataFrame
    event_times: pd.Series
    transformed_times: pd.Series
    coefficients: pd.Series
    time_transform: str

    @property
    def global_p(self) -> float:
        return float(self.table.loc["GLOBAL", "p"])


def transform_times(durations: pd.Series, events: pd.Series, kind: str = "km") -> pd.Series:
    """Transform follow-up times for the Schoenfeld residual test.

    Args:
        durations: Observed times of all subjects
        events: Event indicators of all subjects
        kind: "km" (1 - KM estimate at t), "rank", "identity" or "log"

    Returns:
        Series aligned with durations
    """
    if kind == "km":
        kmf = KaplanMeierFitter().fit(durations, event_observed=events)
        survival = kmf.survival_function_.iloc[:, 0]
        values = 1.0 - survival.loc[durations.to_numpy()].to_numpy()
    elif kind == "rank":
        values = rankdata(durations.to_numpy())
    elif kind == "identity":
        values = durations.to_numpy(dtype=float)
    elif kind == "log":
        values = np.log(durations.to_numpy(dtype=float))
    else:
        raise ValueError(f"Unknown time transform '{kind}'. Choose one of {TIME_TRANSFORMS}")
    return pd.Series(values, index=durations.index, name=f"{kind}(time)")


def global_ph_statistic(
    residuals: pd.DataFrame,
    transformed_times: pd.Series,
    variance: pd.DataFrame,
) -> float:
    """Global Schoenfeld chi-square across all covariates."""
    g = transformed_times.to_numpy(dtype=float)
    g = g - g.mean()
    S = residuals.to_numpy(dtype=float)
    u = g @ S
    V = variance.loc[residuals.columns, residuals.columns].to_numpy()
    return float(u @ np.linalg.solve(V, u) / (len(g) * (g ** 2).sum()))


def check_proportional_hazards(result: CoxResult, time_transform: str = "km") -> PHTestResult:
    """Test the constant-hazard-ratio assumption of a fitted Cox model.

    Null hypothesis: the scaled Schoenfeld residuals of a covariate do not
    trend with (transformed) time, i.e. its hazard ratio is constant.

    Args:
        result: Fitted Cox model (not the null model)
        time_transform: One of "km", "rank", "identity", "log"

    Returns:
        PHTestResult with per-covariate and global chi-square tests and the
        residual series for plotting

    Raises:
        ValueError: For the null model or an unknown time transform

    Example:
        >>> ph = check_proportional_hazards(full)
        >>> ph.table.loc[["karno", "GLOBAL"]]
    """
    if result.is_null:
        raise ValueError(f"{result.spec.name}: the null model has no covariates to test")
    if time_transform not in TIME_TRANSFORMS:
        raise ValueError(f"Unknown time transform '{time_transform}'. Choose one of {TIME_TRANSFORMS}")

    frame = result.design.frame
    columns = result.design.columns
    training = frame[[TIME_COL, EVENT_COL] + columns + list(result.spec.strata)]

    residuals = result.fitter.compute_residuals(training, kind="scaled_schoenfeld")
    residuals = residuals[columns]

    per_covariate = proportional_hazard_test(
        result.fitter,
        training,
        time_transform=time_transform,
        precomputed_residuals=residuals,
    ).summary

    transformed = transform_times(frame[TIME_COL], frame[EVENT_COL].astype(bool), time_transform)
    event_index = residuals.index
    transformed_events = transformed.loc[event_index]
    global_stat = global_ph_statistic(residuals, transformed_events, result.fitter.variance_matrix_)
    k = len(columns)

    rows = pd.DataFrame({
        "chisq": per_covariate.loc[columns, "test_statistic"].to_numpy(dtype=float),
        "df": 1,
        "p": per_covariate.loc[columns, "p"].to_numpy(dtype=float),
    }, index=columns)
    overall = pd.DataFrame(
        {"chisq": [global_stat], "df": [k], "p": [float(chi2.sf(global_stat, k))]},
        index=["GLOBAL"],
    )
    table = pd.concat([rows, overall])
    table.index.name = "covariate"

    logger.info(
        f"{result.spec.name}: PH test ({time_transform}) global chisq={global_stat:.2f} "
        f"on {k} df, p={table.loc['GLOBAL', 'p']:.3g}"
    )

    return PHTestResult(
        model_name=result.spec.name,
        table=table,
        residuals=residuals,
        event_times=frame.loc[event_index, TIME_COL],
        transformed_times=transformed_events,
        coefficients=result.params,
        time_transform=time_transform,
    )


def violating_terms(ph: PHTestResult, alpha: float = 0.05) -> List[str]:
    """Covariates whose PH test p-value is below alpha (GLOBAL excluded)."""
    rows = ph.table.drop(index="GLOBAL")
    return rows.index[rows["p"] < alpha].tolist()


def plot_schoenfeld_residuals(ph: PHTestResult, path: str, dpi: int = 150) -> str:
    """Plot scaled Schoenfeld residuals against time, one panel per covariate.

    Each panel shows the residuals, a lowess smooth (an estimate of beta(t))
    and the fitted constant coefficient as a dashed reference line.

    Args:
        ph: Result of ``check_proportional_hazards``
        path: Output PNG path
        dpi: Figure resolution

    Returns:
        The output path
    """
    import matplotlib
    matplotlib.use("Agg")
    import matplotlib.pyplot as plt
    from statsmodels.nonparametric.smoothers_lowess import lowess

    covariates = list(ph.residuals.columns)
    n_cols = min(3, len(covariates))
    n_rows = int(np.ceil(len(covariates) / n_cols))
    fig, axes = plt.subplots(n_rows, n_cols, figsize=(5 * n_cols, 3.8 * n_rows), squeeze=False)

    times = ph.event_times.to_numpy(dtype=float)
    for ax, cov in zip(axes.flat, covariates):
        resid = ph.residuals[cov].to_numpy(dtype=float)
        ax.scatter(times, resid, s=12, alpha=0.5, color="tab:blue")
        smooth = lowess(resid, times, frac=0.6)
        ax.plot(smooth[:, 0], smooth[:, 1], color="tab:red", linewidth=2)
        ax.axhline(ph.coefficients[cov], color="black", linestyle="--", linewidth=1)
        p = ph.table.loc[cov, "p"]
        ax.set_title(f"{cov} (PH p={p:.3g})", fontsize=10)
        ax.set_xlabel("Time (days)")
        ax.set_ylabel(f"Beta(t) for {cov}")
        ax.grid(True, alpha=0.3)

    for ax in list(axes.flat)[len(covariates):]:
        ax.set_visible(False)

    fig.suptitle(f"Scaled Schoenfeld residuals: {ph.model_name}")
    fig.tight_layout()
    fig.savefig(path, dpi=dpi)
    plt.close(fig)
    return path
