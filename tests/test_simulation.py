"""Unit tests for survival_report.simulation module."""
import pytest
import numpy as np
import pandas as pd
from scipy.stats import kstest
from survival_report.data import REQUIRED_COLS
from survival_report.models import CoxModelSpec, fit_cox
from survival_report.simulation import (
    simulate_cohort,
    logrank_null_pvalues,
    noise_elimination_trials,
    calibration_summary,
)


class TestSimulateCohort:
    """Tests for simulate_cohort function."""

    def test_schema(self):
        """Test that simulated cohorts use the canonical schema."""
        df = simulate_cohort(120, random_state=1)

        assert list(df.columns) == REQUIRED_COLS
        assert len(df) == 120
        assert df["status"].dtype == bool
        assert (df["time"] >= 1).all()
        assert df["karno"].between(0, 100).all()
        assert df["trt"].value_counts().tolist() == [60, 60]

    def test_reproducible_from_seed(self):
        pd.testing.assert_frame_equal(simulate_cohort(50, random_state=3), simulate_cohort(50, random_state=3))

    def test_effect_is_recovered(self, synthetic_cohort):
        """Test that a Cox fit recovers the simulated karno effect."""
        result = fit_cox(synthetic_cohort, CoxModelSpec("sim", ["celltype", "karno"]))
        coef = result.summary.loc["karno", "coef"]

        assert coef == pytest.approx(-0.03, abs=0.012)
        assert result.summary.loc["karno", "p"] < 1e-4

    def test_unknown_effect_raises(self):
        with pytest.raises(KeyError):
            simulate_cohort(20, effects={"weight": 0.1}, random_state=0)


class TestCalibration:
    """Tests for the calibration helpers."""

    def test_logrank_null_uniform(self):
        """Test that null log-rank p-values are compatible with Uniform(0, 1)."""
        pvalues = logrank_null_pvalues(n_replicates=100, n_subjects=100, random_state=5)

        assert pvalues.shape == (100,)
        assert ((pvalues >= 0) & (pvalues <= 1)).all()
        assert kstest(pvalues, "uniform").pvalue > 0.01

    def test_logrank_null_reproducible(self):
        a = logrank_null_pvalues(n_replicates=5, n_subjects=60, random_state=9)
        b = logrank_null_pvalues(n_replicates=5, n_subjects=60, random_state=9)
        np.testing.assert_array_equal(a, b)

    def test_calibration_summary(self):
        """Test the appendix rows built from p-values and elimination trials."""
        pvalues = np.array([0.01, 0.2, 0.5, 0.8])
        trials = pd.DataFrame({"replicate": [0, 1], "retained": ["", "karno"], "n_retained": [0, 1]})

        summary = calibration_summary(pvalues, trials, alpha=0.05).set_index("check")["value"]

        assert summary["log-rank null: replicates"] == 4
        assert summary["log-rank null: rejection rate at 0.05"] == pytest.approx(0.25)
        assert summary["noise elimination: mean retained terms"] == pytest.approx(0.5)
        assert summary["noise elimination: share reduced to null model"] == pytest.approx(0.5)

    @pytest.mark.slow
    def test_noise_trials_parallel_matches_serial(self):
        serial = noise_elimination_trials(n_replicates=4, n_subjects=80, random_state=2, n_jobs=1)
        parallel = noise_elimination_trials(n_replicates=4, n_subjects=80, random_state=2, n_jobs=2)
        pd.testing.assert_frame_equal(serial, parallel)
