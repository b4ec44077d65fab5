"""Unit tests for survival_report.utils module.

Tests directory management, table export and p-value formatting.
"""
import pytest
import os
import pandas as pd
import numpy as np
from survival_report.utils import (
    ensure_dir,
    save_table,
    get_output_paths,
    format_p_value,
)


class TestEnsureDir:
    """Tests for ensure_dir function."""

    def test_create_new_directory(self, tmp_path):
        """Test creating a new directory."""
        new_dir = tmp_path / "test_dir"
        assert not new_dir.exists()

        ensure_dir(str(new_dir))

        assert new_dir.is_dir()

    def test_existing_directory(self, tmp_path):
        """Test with existing directory (should not raise error)."""
        existing_dir = tmp_path / "existing"
        existing_dir.mkdir()

        ensure_dir(str(existing_dir))

        assert existing_dir.exists()

    def test_nested_directories(self, tmp_path):
        """Test creating nested directories."""
        nested_dir = tmp_path / "level1" / "level2" / "level3"

        ensure_dir(str(nested_dir))

        assert nested_dir.is_dir()


class TestSaveTable:
    """Tests for save_table function."""

    def test_writes_csv_with_index(self, tmp_path):
        """Test that the table round-trips with its index."""
        table = pd.DataFrame({"coef": [-0.0328, 0.295]}, index=pd.Index(["karno", "trt_test"], name="covariate"))

        path = save_table(table, str(tmp_path / "tables"), "cox_full")

        assert path.endswith("cox_full.csv")
        loaded = pd.read_csv(path, index_col=0)
        assert loaded.index.tolist() == ["karno", "trt_test"]
        assert loaded["coef"].iloc[0] == pytest.approx(-0.0328)

    def test_without_index(self, tmp_path):
        """Test writing without the index."""
        table = pd.DataFrame({"test": ["Wald"], "chisq": [62.4]})

        path = save_table(table, str(tmp_path), "tests", index=False)

        assert list(pd.read_csv(path).columns) == ["test", "chisq"]


class TestGetOutputPaths:
    """Tests for get_output_paths function."""

    def test_creates_all_directories(self, tmp_path):
        """Test that every output directory exists afterwards."""
        paths = get_output_paths(str(tmp_path / "report"))

        assert set(paths) == {"base_dir", "figures", "tables", "logs", "mlruns"}
        for path in paths.values():
            assert os.path.isdir(path)


class TestFormatPValue:
    """Tests for format_p_value function."""

    @pytest.mark.parametrize("p,expected", [
        (0.1562, "0.16"),
        (0.5, "0.50"),
        (0.0123, "0.012"),
        (2.6e-09, "2.6e-09"),
        (1e-20, "<2e-16"),
    ])
    def test_formats(self, p, expected):
        """Test fixed, significant-digit and scientific notation."""
        assert format_p_value(p) == expected

    def test_nan(self):
        """Test that NaN is rendered as NA."""
        assert format_p_value(np.nan) == "NA"
