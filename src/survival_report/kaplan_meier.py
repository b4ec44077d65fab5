"""Kaplan-Meier survival curves and log-rank comparisons.

Ties follow the product-limit convention: at each distinct event time the
survival estimate is multiplied by (1 - d/n), where n counts every subject
still under observation, including those censored at exactly that time.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence
import logging
import numpy as np
import pandas as pd
from lifelines import KaplanMeierFitter
from lifelines.statistics import multivariate_logrank_test

from survival_report.data import TIME_COL, EVENT_COL

logger = logging.getLogger(__name__)

ALL_SUBJECTS = "all"


@dataclass
class LogRankResult:
    """Log-rank test of identical hazards across groups."""
    group_col: str
    statistic: float
    df: int
    p_value: float
    groups: List[str] = field(default_factory=list)

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            [{"grouping": self.group_col, "chisq": self.statistic, "df": self.df, "p": self.p_value}]
        )


@dataclass
class KaplanMeierResult:
    """Product-limit estimates per group.

    Attributes:
        group_col: Grouping column, or None for a single curve
        fitters: Fitted KaplanMeierFitter per group label
        survival: Wide step-function table, index = timeline starting at 0,
            one column per group (forward filled between event times)
        medians: Median survival time per group (inf if never reached)
        logrank: Log-rank result when grouped
    """
    group_col: Optional[str]
    fitters: Dict[str, KaplanMeierFitter]
    survival: pd.DataFrame
    medians: pd.Series
    logrank: Optional[LogRankResult] = None

    @property
    def groups(self) -> List[str]:
        return list(self.fitters)

    def summary_table(self) -> pd.DataFrame:
        """Subjects, events and median survival per group."""
        rows = []
        for label, kmf in self.fitters.items():
            table = kmf.event_table
            rows.append({
                "group": label,
                "n": int(table["entrance"].sum()),
                "events": int(table["observed"].sum()),
                "median": float(self.medians[label]),
            })
        return pd.DataFrame(rows).set_index("group")


def _group_frames(df: pd.DataFrame, group_col: Optional[str]):
    if group_col is None:
        return [(ALL_SUBJECTS, df)]
    if group_col not in df.columns:
        raise KeyError(f"Grouping column '{group_col}' not found")
    column = df[group_col]
    if isinstance(column.dtype, pd.CategoricalDtype):
        labels = [c for c in column.cat.categories if (column == c).any()]
    else:
        labels = sorted(column.unique())
    return [(str(label), df[column == label]) for label in labels]


def fit_kaplan_meier(df: pd.DataFrame, group_col: Optional[str] = None) -> KaplanMeierResult:
    """Fit product-limit survival curves, one per group.

    Args:
        df: Normalized cohort
        group_col: Optional grouping column (e.g. "trt"); None fits one curve

    Returns:
        KaplanMeierResult. When grouped with at least two non-empty groups,
        ``logrank`` holds the log-rank test.

    Example:
        >>> km = fit_kaplan_meier(df, "trt")
        >>> km.medians["standard"]
        103.0
    """
    fitters: Dict[str, KaplanMeierFitter] = {}
    for label, part in _group_frames(df, group_col):
        kmf = KaplanMeierFitter(label=label)
        kmf.fit(part[TIME_COL], event_observed=part[EVENT_COL].astype(bool), label=label)
        fitters[label] = kmf

    timeline = np.unique(np.concatenate([[0.0], df[TIME_COL].to_numpy(dtype=float)]))
    survival = pd.DataFrame(
        {label: kmf.survival_function_at_times(timeline).to_numpy() for label, kmf in fitters.items()},
        index=pd.Index(timeline, name="timeline"),
    )
    medians = pd.Series(
        {label: float(kmf.median_survival_time_) for label, kmf in fitters.items()},
        name="median",
    )

    logrank = None
    if group_col is not None and len(fitters) >= 2:
        logrank = logrank_test(df, group_col)

    logger.info(
        f"Kaplan-Meier: {len(fitters)} curve(s) by {group_col or 'none'}, "
        f"medians {medians.round(1).to_dict()}"
    )
    return KaplanMeierResult(
        group_col=group_col,
        fitters=fitters,
        survival=survival,
        medians=medians,
        logrank=logrank,
    )


def logrank_test(df: pd.DataFrame, group_col: str) -> LogRankResult:
    """Log-rank test comparing survival across the levels of group_col.

    Null hypothesis: all groups share the same hazard function. The
    statistic is chi-square with (groups - 1) degrees of freedom.

    Raises:
        ValueError: If fewer than two non-empty groups are present

    Example:
        >>> round(logrank_test(df, "celltype").statistic, 1)
        25.4
    """
    frames = _group_frames(df, group_col)
    if len(frames) < 2:
        raise ValueError(f"Log-rank test needs at least two groups in '{group_col}', got {len(frames)}")

    labels = df[group_col].astype(str)
    outcome = multivariate_logrank_test(
        df[TIME_COL], labels, event_observed=df[EVENT_COL].astype(bool)
    )
    result = LogRankResult(
        group_col=group_col,
        statistic=float(outcome.test_statistic),
        df=int(outcome.degrees_of_freedom),
        p_value=float(outcome.p_value),
        groups=[label for label, _ in frames],
    )
    logger.debug(
        f"Log-rank by {group_col}: chisq={result.statistic:.2f} on {result.df} df, p={result.p_value:.3g}"
    )
    return result


def survival_at(km: KaplanMeierResult, times: Sequence[float]) -> pd.DataFrame:
    """Survival probability per group at chosen time horizons.

    Example:
        >>> survival_at(km, [30, 90, 180]).shape
        (3, 2)
    """
    times = [float(t) for t in times]
    table = pd.DataFrame(
        {label: kmf.survival_function_at_times(times).to_numpy() for label, kmf in km.fitters.items()},
        index=pd.Index(times, name=TIME_COL),
    )
    return table


def plot_survival_curves(
    km: KaplanMeierResult,
    path: str,
    title: Optional[str] = None,
    dpi: int = 150,
) -> str:
    """Plot survival curves with 95% confidence bands and censoring ticks.

    Args:
        km: Result of ``fit_kaplan_meier``
        path: Output PNG path
        title: Optional figure title
        dpi: Figure resolution

    Returns:
        The output path
    """
    import matplotlib
    matplotlib.use("Agg")
    import matplotlib.pyplot as plt

    fig, ax = plt.subplots(figsize=(8, 5))
    for kmf in km.fitters.values():
        kmf.plot_survival_function(ax=ax, ci_show=True, show_censors=True,
                                   censor_styles={"ms": 5, "marker": "|"})

    if km.logrank is not None:
        ax.text(
            0.98, 0.95,
            f"Log-rank p = {km.logrank.p_value:.3g}",
            transform=ax.transAxes, ha="right", va="top",
        )
    ax.set_xlabel("Time (days)")
    ax.set_ylabel("Survival probability")
    ax.set_ylim(0, 1.05)
    ax.set_title(title or (f"Kaplan-Meier estimate by {km.group_col}" if km.group_col else "Kaplan-Meier estimate"))
    ax.grid(True, alpha=0.3)

    fig.tight_layout()
    fig.savefig(path, dpi=dpi)
    plt.close(fig)
    return path
