"""Descriptive statistics and exploratory figures for the cohort."""
from __future__ import annotations
from typing import Dict, Optional, Sequence
import logging
import numpy as np
import pandas as pd

from survival_report.data import TIME_COL, EVENT_COL, CAT_COLS, QUANT_COLS

logger = logging.getLogger(__name__)

LABELS = {
    "time": "Survival time (days)",
    "age": "Age (years)",
    "diagtime": "Months from diagnosis",
    "karno": "Karnofsky score",
}


def _pyplot():
    import matplotlib
    matplotlib.use("Agg")
    import matplotlib.pyplot as plt
    return plt


def describe_quantitative(df: pd.DataFrame, columns: Sequence[str] = QUANT_COLS) -> pd.DataFrame:
    """Count, mean, sd, min, quartiles and max per quantitative column.

    Example:
        >>> describe_quantitative(df).loc["karno", "mean"]
        58.57
    """
    table = df[list(columns)].astype(float).describe().T
    table = table.rename(columns={"std": "sd", "25%": "q1", "50%": "median", "75%": "q3"})
    table["count"] = table["count"].astype(int)
    table.index.name = "variable"
    return table


def frequency_tables(df: pd.DataFrame, columns: Sequence[str] = (EVENT_COL,) + tuple(CAT_COLS)) -> Dict[str, pd.DataFrame]:
    """Count and percent per level of each categorical column.

    Every declared level is listed, including levels with no subjects.

    Returns:
        Mapping column -> DataFrame indexed by level with columns count, percent
    """
    tables = {}
    for col in columns:
        series = df[col]
        counts = series.value_counts(sort=False, dropna=False)
        if isinstance(series.dtype, pd.CategoricalDtype):
            counts = counts.reindex(series.cat.categories, fill_value=0)
        else:
            counts = counts.sort_index()
        table = pd.DataFrame({
            "count": counts.astype(int),
            "percent": 100.0 * counts / max(len(series), 1),
        })
        table.index = table.index.astype(str)
        table.index.name = col
        tables[col] = table
    return tables


def group_summary(df: pd.DataFrame, group_col: str) -> pd.DataFrame:
    """Subjects, deaths and observed-time statistics per group.

    Args:
        df: Normalized cohort
        group_col: Grouping column (e.g. "trt" or "celltype")

    Returns:
        DataFrame indexed by group with columns n_subjects, n_events,
        event_rate, median_time, mean_time, min_time, max_time

    Example:
        >>> group_summary(df, "trt")[["n_subjects", "n_events"]]
                  n_subjects  n_events
        trt
        standard          69        64
        test              68        64
    """
    work = pd.DataFrame({
        "group": df[group_col],
        "event": df[EVENT_COL].astype(int),
        "time": df[TIME_COL].astype(float),
    })
    summary = work.groupby("group", observed=False).agg(
        n_subjects=("event", "count"),
        n_events=("event", "sum"),
        median_time=("time", "median"),
        mean_time=("time", "mean"),
        min_time=("time", "min"),
        max_time=("time", "max"),
    )
    summary["event_rate"] = summary["n_events"] / summary["n_subjects"].replace(0, np.nan)
    summary = summary[
        ["n_subjects", "n_events", "event_rate", "median_time", "mean_time", "min_time", "max_time"]
    ]
    summary.index = summary.index.astype(str)
    summary.index.name = group_col
    return summary


def correlation_matrix(
    df: pd.DataFrame,
    columns: Sequence[str] = QUANT_COLS,
    method: str = "pearson",
) -> pd.DataFrame:
    """Pairwise correlations between quantitative fields."""
    return df[list(columns)].astype(float).corr(method=method)


def plot_boxplots(
    df: pd.DataFrame,
    path: str,
    group_col: Optional[str] = None,
    columns: Sequence[str] = QUANT_COLS,
    dpi: int = 150,
) -> str:
    """Boxplots of the quantitative fields, optionally split by a group."""
    import seaborn as sns
    plt = _pyplot()

    columns = list(columns)
    fig, axes = plt.subplots(1, len(columns), figsize=(4 * len(columns), 4), squeeze=False)
    for ax, col in zip(axes.flat, columns):
        if group_col is None:
            sns.boxplot(y=df[col].astype(float), ax=ax, color="tab:blue")
        else:
            sns.boxplot(x=df[group_col].astype(str), y=df[col].astype(float), ax=ax)
            ax.set_xlabel(group_col)
        ax.set_ylabel(LABELS.get(col, col))
        ax.grid(True, axis="y", alpha=0.3)

    fig.suptitle(f"Quantitative fields by {group_col}" if group_col else "Quantitative fields")
    fig.tight_layout()
    fig.savefig(path, dpi=dpi)
    plt.close(fig)
    return path


def plot_histograms(
    df: pd.DataFrame,
    path: str,
    columns: Sequence[str] = QUANT_COLS,
    dpi: int = 150,
) -> str:
    """Histogram with a kernel density estimate per quantitative field."""
    import seaborn as sns
    plt = _pyplot()

    columns = list(columns)
    n_cols = 2
    n_rows = int(np.ceil(len(columns) / n_cols))
    fig, axes = plt.subplots(n_rows, n_cols, figsize=(10, 3.5 * n_rows), squeeze=False)
    for ax, col in zip(axes.flat, columns):
        sns.histplot(x=df[col].astype(float), kde=True, ax=ax)
        ax.set_xlabel(LABELS.get(col, col))
    for ax in list(axes.flat)[len(columns):]:
        ax.set_visible(False)

    fig.tight_layout()
    fig.savefig(path, dpi=dpi)
    plt.close(fig)
    return path


def plot_correlation_heatmap(corr: pd.DataFrame, path: str, dpi: int = 150) -> str:
    """Annotated heatmap of a correlation matrix."""
    import seaborn as sns
    plt = _pyplot()

    fig, ax = plt.subplots(figsize=(6, 5))
    sns.heatmap(corr, annot=True, fmt=".2f", cmap="coolwarm", vmin=-1, vmax=1, center=0, ax=ax)
    ax.set_title("Correlation matrix")
    fig.tight_layout()
    fig.savefig(path, dpi=dpi)
    plt.close(fig)
    return path


def plot_scatter_matrix(
    df: pd.DataFrame,
    path: str,
    columns: Sequence[str] = QUANT_COLS,
    dpi: int = 150,
) -> str:
    """Pairwise scatter plots with histograms on the diagonal."""
    from pandas.plotting import scatter_matrix
    plt = _pyplot()

    axes = scatter_matrix(df[list(columns)].astype(float), figsize=(8, 8), alpha=0.6, diagonal="hist")
    fig = axes[0, 0].get_figure()
    fig.suptitle("Scatter matrix of quantitative fields")
    fig.savefig(path, dpi=dpi)
    plt.close(fig)
    return path
