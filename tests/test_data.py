"""Unit tests for survival_report.data module.

Tests cohort loading, code normalization, schema validation and design
matrix construction.
"""
import pytest
import numpy as np
import pandas as pd
from survival_report.data import (
    load_data,
    prepare_dataset,
    add_grouped_covariate,
    make_design_matrix,
    SchemaError,
    REQUIRED_COLS,
)


class TestPrepareDataset:
    """Tests for prepare_dataset function."""

    def test_recodes_r_style_codes(self, raw_veteran_rows):
        """Test that R's trt/prior/status codes become canonical values."""
        df = prepare_dataset(raw_veteran_rows)

        assert list(df.columns) == REQUIRED_COLS
        assert df["trt"].tolist() == ["standard", "standard", "test", "test", "standard"]
        assert df["prior"].tolist() == ["no", "yes", "no", "yes", "yes"]
        assert df["status"].dtype == bool
        assert df["status"].tolist() == [True, True, False, True, True]

    def test_categorical_levels_keep_reference_first(self, raw_veteran_rows):
        """Test that categorical columns carry fixed level order."""
        df = prepare_dataset(raw_veteran_rows)

        assert list(df["trt"].cat.categories) == ["standard", "test"]
        assert list(df["celltype"].cat.categories) == ["squamous", "smallcell", "adeno", "large"]
        assert list(df["prior"].cat.categories) == ["no", "yes"]
        assert not any(df[col].cat.ordered for col in ("trt", "celltype", "prior"))

    def test_accepts_scikit_survival_column_names(self, raw_veteran_rows):
        """Test alias renaming (case-insensitive) for scikit-survival spellings."""
        raw = raw_veteran_rows.rename(columns={
            "trt": "Treatment", "celltype": "Celltype", "time": "Survival_in_days",
            "status": "Status", "karno": "Karnofsky_score",
            "diagtime": "Months_from_Diagnosis", "age": "Age_in_years", "prior": "Prior_therapy",
        })
        df = prepare_dataset(raw)

        assert list(df.columns) == REQUIRED_COLS
        assert len(df) == 5

    def test_does_not_modify_input(self, raw_veteran_rows):
        """Test that the raw frame is left untouched."""
        before = raw_veteran_rows.copy()
        prepare_dataset(raw_veteran_rows)
        pd.testing.assert_frame_equal(raw_veteran_rows, before)

    def test_missing_column_raises(self, raw_veteran_rows):
        """Test that a missing required column fails fast."""
        with pytest.raises(SchemaError, match="Missing required columns"):
            prepare_dataset(raw_veteran_rows.drop(columns=["karno"]))

    def test_missing_value_raises(self, raw_veteran_rows):
        """Test that a missing value aborts the load."""
        raw = raw_veteran_rows.astype({"age": float})
        raw.loc[2, "age"] = np.nan
        with pytest.raises(SchemaError, match="Missing values"):
            prepare_dataset(raw)

    def test_unknown_code_raises(self, raw_veteran_rows):
        """Test that an unknown treatment code is rejected."""
        raw = raw_veteran_rows.copy()
        raw.loc[0, "trt"] = 3
        with pytest.raises(SchemaError, match="unknown codes"):
            prepare_dataset(raw)

    @pytest.mark.parametrize("column,value,message", [
        ("time", 0, "time must be > 0"),
        ("karno", 120, "karno must be within"),
        ("age", -4, "age must be > 0"),
        ("diagtime", 0, "diagtime must be > 0"),
    ])
    def test_invariant_violations_raise(self, raw_veteran_rows, column, value, message):
        """Test that each record-level invariant is enforced."""
        raw = raw_veteran_rows.copy()
        raw.loc[1, column] = value
        with pytest.raises(SchemaError, match=message):
            prepare_dataset(raw)

    def test_schema_error_is_value_error(self):
        """Test that SchemaError can be caught as ValueError."""
        assert issubclass(SchemaError, ValueError)


class TestLoadData:
    """Tests for load_data and the bundled reference cohort."""

    def test_load_csv(self, raw_veteran_rows, tmp_path):
        """Test loading a CSV file."""
        path = tmp_path / "veteran.csv"
        raw_veteran_rows.to_csv(path, index=False)

        df = load_data(str(path))

        assert df.shape == (5, 8)

    def test_load_pickle(self, raw_veteran_rows, tmp_path):
        """Test loading a pickle file."""
        path = tmp_path / "veteran.pkl"
        raw_veteran_rows.to_pickle(path)

        assert len(load_data(str(path))) == 5

    def test_missing_file_raises(self, tmp_path):
        """Test that a missing file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            load_data(str(tmp_path / "missing.csv"))

    def test_unsupported_extension_raises(self, tmp_path):
        """Test that an unsupported format raises ValueError."""
        path = tmp_path / "veteran.xlsx"
        path.write_text("not a cohort")
        with pytest.raises(ValueError, match="Unsupported file format"):
            load_data(str(path))

    def test_veteran_reference_cohort(self, veteran):
        """Test shape and known counts of the bundled reference cohort."""
        assert veteran.shape == (137, 8)
        assert int(veteran["status"].sum()) == 128
        assert veteran["trt"].value_counts()["standard"] == 69
        assert veteran["celltype"].value_counts().to_dict() == {
            "squamous": 35, "smallcell": 48, "adeno": 27, "large": 27,
        }
        assert veteran["prior"].value_counts()["yes"] == 40
        assert veteran["karno"].between(0, 100).all()
        assert (veteran["time"] > 0).all()


class TestAddGroupedCovariate:
    """Tests for add_grouped_covariate function."""

    def test_left_closed_bins(self, veteran):
        """Test binning of karno into left-closed intervals."""
        df = add_grouped_covariate(veteran, "karno", bins=(0, 40, 70, 101), labels=["low", "mid", "high"])

        assert "karno_group" in df.columns
        assert "karno_group" not in veteran.columns
        assert (df.loc[df["karno"] == 40, "karno_group"] == "mid").all()
        assert list(df["karno_group"].cat.categories) == ["low", "mid", "high"]

    def test_values_outside_bins_raise(self, veteran):
        """Test that uncovered values are rejected."""
        with pytest.raises(SchemaError):
            add_grouped_covariate(veteran, "karno", bins=(50, 101))


class TestMakeDesignMatrix:
    """Tests for make_design_matrix function."""

    def test_reference_level_coding(self, veteran):
        """Test that categoricals expand against their first level."""
        dm = make_design_matrix(veteran, ["trt", "celltype", "karno"])

        assert dm.columns == [
            "trt_test", "celltype_smallcell", "celltype_adeno", "celltype_large", "karno",
        ]
        assert dm.terms["celltype"] == ["celltype_smallcell", "celltype_adeno", "celltype_large"]
        expected = (veteran["celltype"] == "adeno").astype(float).to_numpy()
        np.testing.assert_array_equal(dm.frame["celltype_adeno"].to_numpy(), expected)

    def test_log_transform(self, veteran):
        """Test log-transformed covariate naming and values."""
        dm = make_design_matrix(veteran, ["age", "karno"], log_covariates=["karno"])

        assert dm.columns == ["age", "log_karno"]
        np.testing.assert_allclose(dm.frame["log_karno"], np.log(veteran["karno"]))

    def test_strata_carried_as_labels(self, veteran):
        """Test that strata are plain labels, not design columns."""
        dm = make_design_matrix(veteran, ["trt", "karno"], strata=["celltype"])

        assert "celltype" in dm.frame.columns
        assert "celltype" not in dm.columns
        assert dm.strata == ("celltype",)
        assert set(dm.frame["celltype"]) == {"squamous", "smallcell", "adeno", "large"}

    def test_event_and_time_columns(self, veteran):
        """Test the outcome columns of the model frame."""
        dm = make_design_matrix(veteran, ["karno"])

        assert dm.frame["status"].dtype.kind == "i"
        assert dm.frame["time"].dtype.kind == "f"
        assert len(dm.frame) == len(veteran)

    def test_covariate_and_stratum_overlap_raises(self, veteran):
        """Test that a column cannot be covariate and stratum at once."""
        with pytest.raises(ValueError, match="both covariates and strata"):
            make_design_matrix(veteran, ["celltype", "karno"], strata=["celltype"])

    def test_log_of_non_positive_raises(self, veteran):
        """Test that log-transforming a column with zeros is rejected."""
        df = veteran.copy()
        df.loc[0, "karno"] = 0
        with pytest.raises(SchemaError, match="must be > 0"):
            make_design_matrix(df, ["karno"], log_covariates=["karno"])

    def test_log_of_categorical_raises(self, veteran):
        """Test that a categorical cannot enter on the log scale."""
        with pytest.raises(ValueError, match="cannot be log-transformed"):
            make_design_matrix(veteran, ["celltype"], log_covariates=["celltype"])

    def test_does_not_modify_cohort(self, veteran):
        """Test that the cohort is left untouched."""
        before = veteran.copy()
        make_design_matrix(veteran, ["trt", "karno"], log_covariates=["karno"], strata=["celltype"])
        pd.testing.assert_frame_equal(veteran, before)
