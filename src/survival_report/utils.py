from __future__ import annotations
import os
import math
import pandas as pd


def ensure_dir(path: str):
    """Create directory if it doesn't exist.

    Creates the specified directory path, including any necessary parent
    directories. Does nothing if the directory already exists.

    Args:
        path: Directory path to create

    Example:
        >>> ensure_dir("data/outputs/report/figures")
    """
    os.makedirs(path, exist_ok=True)


def save_table(df: pd.DataFrame, outdir: str, name: str, index: bool = True) -> str:
    """Save a report table to CSV.

    Every table that goes into the rendered document is also written as a
    CSV side artifact so the numbers can be checked without opening Word.

    Args:
        df: Table to save
        outdir: Output directory path (created if missing)
        name: Base filename without extension
        index: Whether to write the row index. Defaults to True

    Returns:
        Full path to the saved CSV file

    Example:
        >>> path = save_table(cox.summary, "data/outputs/report/tables", "cox_full")
        >>> print(path)
        data/outputs/report/tables/cox_full.csv
    """
    ensure_dir(outdir)
    path = os.path.join(outdir, f"{name}.csv")
    df.to_csv(path, index=index)
    return path


def get_output_paths(output_dir: str = "data/outputs/report") -> dict:
    """Get standardized output directory paths for a report run.

    Args:
        output_dir: Root output directory of the run

    Returns:
        Dictionary with keys:
        - base_dir: Root output directory
        - figures: Directory for PNG figures
        - tables: Directory for CSV tables
        - logs: Directory for log files
        - mlruns: Directory for MLflow tracking

    Notes:
        - All paths are created if they don't exist
    """
    paths = {
        "base_dir": output_dir,
        "figures": os.path.join(output_dir, "figures"),
        "tables": os.path.join(output_dir, "tables"),
        "logs": os.path.join(output_dir, "logs"),
        "mlruns": os.path.join(output_dir, "mlruns"),
    }

    for path in paths.values():
        ensure_dir(path)

    return paths


def format_p_value(p: float, digits: int = 2) -> str:
    """Format a p-value the way statistical software prints it.

    Args:
        p: p-value in [0, 1] (NaN allowed)
        digits: Significant digits to keep. Defaults to 2

    Returns:
        "<2e-16" below machine precision, scientific notation below 1e-4,
        fixed notation otherwise, "NA" for NaN

    Example:
        >>> format_p_value(2.6e-09)
        '2.6e-09'
        >>> format_p_value(0.1562)
        '0.16'
    """
    if p is None or (isinstance(p, float) and math.isnan(p)):
        return "NA"
    if p < 2e-16:
        return "<2e-16"
    if p < 1e-4:
        return f"{p:.{digits - 1}e}"
    return f"{p:.{digits}g}" if p < 0.1 else f"{p:.{digits}f}"
