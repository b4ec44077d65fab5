"""Unit tests for survival_report.descriptive module."""
import pytest
import numpy as np
import pandas as pd
from survival_report.descriptive import (
    describe_quantitative,
    frequency_tables,
    group_summary,
    correlation_matrix,
    plot_boxplots,
    plot_histograms,
    plot_correlation_heatmap,
    plot_scatter_matrix,
)


class TestTables:
    """Tests for the descriptive tables."""

    def test_describe_quantitative(self, veteran):
        """Test summary statistics of the quantitative fields."""
        table = describe_quantitative(veteran)

        assert table.index.tolist() == ["time", "age", "diagtime", "karno"]
        assert {"count", "mean", "sd", "min", "q1", "median", "q3", "max"} <= set(table.columns)
        assert (table["count"] == 137).all()
        assert table.loc["karno", "mean"] == pytest.approx(veteran["karno"].mean())

    def test_frequency_tables_list_all_levels(self, veteran):
        """Test that every declared level appears, empty ones included."""
        subset = veteran[veteran["celltype"] != "large"]
        tables = frequency_tables(subset, ["celltype", "trt"])

        celltype = tables["celltype"]
        assert celltype.index.tolist() == ["squamous", "smallcell", "adeno", "large"]
        assert celltype.loc["large", "count"] == 0
        assert celltype["percent"].sum() == pytest.approx(100.0)

    def test_frequency_of_status(self, veteran):
        """Test counts for the event indicator."""
        table = frequency_tables(veteran, ["status"])["status"]

        assert table.loc["True", "count"] == 128
        assert table.loc["False", "count"] == 9

    def test_group_summary(self, veteran):
        """Test per-arm subject and event counts."""
        summary = group_summary(veteran, "trt")

        assert summary.index.tolist() == ["standard", "test"]
        assert summary["n_subjects"].sum() == 137
        assert summary["n_events"].sum() == 128
        assert ((summary["event_rate"] > 0) & (summary["event_rate"] <= 1)).all()
        assert (summary["min_time"] <= summary["median_time"]).all()

    def test_correlation_matrix(self, veteran):
        """Test that the correlation matrix is symmetric with unit diagonal."""
        corr = correlation_matrix(veteran)

        assert corr.shape == (4, 4)
        np.testing.assert_allclose(np.diag(corr), 1.0)
        np.testing.assert_allclose(corr.to_numpy(), corr.to_numpy().T)
        assert corr.loc["time", "karno"] > 0


class TestFigures:
    """Tests that the figures are written as PNG files."""

    def test_plot_boxplots(self, veteran, tmp_path):
        path = plot_boxplots(veteran, str(tmp_path / "box.png"), group_col="trt")
        assert (tmp_path / "box.png").stat().st_size > 0
        assert path.endswith("box.png")

    def test_plot_histograms(self, veteran, tmp_path):
        plot_histograms(veteran, str(tmp_path / "hist.png"))
        assert (tmp_path / "hist.png").exists()

    def test_plot_correlation_heatmap(self, veteran, tmp_path):
        plot_correlation_heatmap(correlation_matrix(veteran), str(tmp_path / "heat.png"))
        assert (tmp_path / "heat.png").exists()

    def test_plot_scatter_matrix(self, veteran, tmp_path):
        plot_scatter_matrix(veteran, str(tmp_path / "scatter.png"))
        assert (tmp_path / "scatter.png").exists()
