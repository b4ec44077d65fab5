"""Reproducible survival-analysis report for two-arm clinical trial cohorts."""

__version__ = "0.1.0"
