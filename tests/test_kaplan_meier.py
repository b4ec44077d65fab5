"""Unit tests for survival_report.kaplan_meier module."""
import pytest
import numpy as np
import pandas as pd
from sksurv.nonparametric import kaplan_meier_estimator

from survival_report.kaplan_meier import (
    fit_kaplan_meier,
    logrank_test,
    survival_at,
    plot_survival_curves,
)


class TestFitKaplanMeier:
    """Tests for fit_kaplan_meier function."""

    def test_step_function_properties(self, veteran):
        """Test that each curve starts at 1, stays in [0, 1] and never increases."""
        km = fit_kaplan_meier(veteran, "trt")

        assert list(km.survival.columns) == ["standard", "test"]
        assert km.survival.index[0] == 0
        for col in km.survival.columns:
            curve = km.survival[col].to_numpy()
            assert curve[0] == 1.0
            assert ((curve >= 0) & (curve <= 1)).all()
            assert (np.diff(curve) <= 1e-12).all()

    def test_tied_times_keep_censored_at_risk(self, tie_cohort):
        """Test the product-limit tie convention.

        Deaths at t=1 (1 of 6) and t=3 (2 of 5, the subject censored at 3
        still at risk) give S(1)=5/6 and S(3)=5/6 * 3/5 = 0.5.
        """
        km = fit_kaplan_meier(tie_cohort)
        curve = km.survival["all"]

        assert curve.loc[1.0] == pytest.approx(5 / 6)
        assert curve.loc[3.0] == pytest.approx(0.5)
        assert curve.loc[5.0] == pytest.approx(0.25)
        assert curve.loc[8.0] == pytest.approx(0.25)
        assert km.medians["all"] == pytest.approx(3.0)

    def test_matches_scikit_survival(self, veteran):
        """Test agreement with scikit-survival's product-limit estimator."""
        km = fit_kaplan_meier(veteran)
        times, prob = kaplan_meier_estimator(veteran["status"].to_numpy(), veteran["time"].to_numpy())

        np.testing.assert_allclose(km.survival["all"].loc[times].to_numpy(), prob, atol=1e-10)

    def test_logrank_attached_when_grouped(self, veteran):
        """Test that grouped fits carry the log-rank test."""
        assert fit_kaplan_meier(veteran, "celltype").logrank is not None
        assert fit_kaplan_meier(veteran).logrank is None

    def test_summary_table(self, veteran):
        """Test subject and event counts per arm."""
        table = fit_kaplan_meier(veteran, "trt").summary_table()

        assert table.loc["standard", "n"] == 69
        assert table.loc["test", "n"] == 68
        assert table["events"].sum() == 128

    def test_does_not_modify_cohort(self, veteran):
        before = veteran.copy()
        fit_kaplan_meier(veteran, "trt")
        pd.testing.assert_frame_equal(veteran, before)


class TestLogrankTest:
    """Tests for logrank_test function."""

    def test_treatment_not_significant(self, veteran):
        """Test that the treatment arms do not differ on the reference data."""
        result = logrank_test(veteran, "trt")

        assert result.df == 1
        assert result.p_value > 0.5
        assert result.groups == ["standard", "test"]

    def test_celltype_significant(self, veteran):
        """Test that survival differs by histology."""
        result = logrank_test(veteran, "celltype")

        assert result.df == 3
        assert result.p_value < 1e-3
        assert result.statistic > 15

    def test_single_group_raises(self, veteran):
        """Test that one non-empty group is rejected."""
        with pytest.raises(ValueError, match="at least two groups"):
            logrank_test(veteran[veteran["trt"] == "standard"], "trt")


class TestSurvivalAt:
    """Tests for survival_at function."""

    def test_horizons(self, veteran):
        """Test survival probabilities at fixed horizons."""
        km = fit_kaplan_meier(veteran, "trt")
        table = survival_at(km, [30, 90, 180, 365])

        assert table.shape == (4, 2)
        assert (table.diff().dropna() <= 0).all().all()
        assert ((table > 0) & (table < 1)).all().all()


class TestPlotSurvivalCurves:
    """Tests for plot_survival_curves function."""

    def test_writes_png(self, veteran, tmp_path):
        km = fit_kaplan_meier(veteran, "trt")
        path = plot_survival_curves(km, str(tmp_path / "km.png"))

        assert (tmp_path / "km.png").stat().st_size > 0
        assert path.endswith("km.png")
