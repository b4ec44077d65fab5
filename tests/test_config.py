"""Unit tests for survival_report.config module."""
import json
import pytest
from survival_report.config import (
    DataConfig,
    ModelConfig,
    SimulationConfig,
    ReportConfig,
)


class TestDefaults:
    """Tests for the default configuration."""

    def test_default_analysis(self):
        config = ReportConfig()

        assert config.data.input_file is None
        assert config.data.group_column == "trt"
        assert config.model.covariates == ("trt", "celltype", "age", "prior", "diagtime", "karno")
        assert config.model.refit_log_covariates == ("karno",)
        assert config.model.refit_strata == ("celltype",)
        assert config.model.time_transform == "km"
        assert config.simulation.n_replicates == 0

    def test_lists_become_tuples(self):
        config = ModelConfig(covariates=["karno", "trt"])
        assert config.covariates == ("karno", "trt")


class TestValidation:
    """Tests for configuration validation."""

    def test_unknown_time_transform(self):
        with pytest.raises(ValueError, match="time_transform"):
            ModelConfig(time_transform="sqrt")

    @pytest.mark.parametrize("alpha", [0.0, 1.0, 1.5])
    def test_alpha_out_of_range(self, alpha):
        with pytest.raises(ValueError, match="alpha"):
            ModelConfig(alpha=alpha)

    def test_empty_covariates(self):
        with pytest.raises(ValueError, match="at least one covariate"):
            ModelConfig(covariates=())

    def test_simulation_values(self):
        with pytest.raises(ValueError, match="n_replicates"):
            SimulationConfig(n_replicates=-1)
        with pytest.raises(ValueError, match="n_jobs"):
            SimulationConfig(n_jobs=0)


class TestSerialization:
    """Tests for JSON save and load."""

    def test_round_trip(self, tmp_path):
        """Test that a saved configuration loads back identically."""
        config = ReportConfig(
            data=DataConfig(group_column="celltype", extra_logrank_columns=("trt",)),
            model=ModelConfig(time_transform="rank", alpha=0.01),
            simulation=SimulationConfig(n_replicates=20, n_jobs=-1),
            output_dir=str(tmp_path / "out"),
        )
        path = tmp_path / "configs" / "report.json"

        config.save(str(path))
        loaded = ReportConfig.load(str(path))

        assert loaded == config

    def test_json_uses_lists(self, tmp_path):
        path = tmp_path / "report.json"
        ReportConfig().save(str(path))

        with open(path) as f:
            data = json.load(f)
        assert data["model"]["covariates"][0] == "trt"
        assert isinstance(data["data"]["extra_logrank_columns"], list)

    def test_partial_dict_uses_defaults(self):
        config = ReportConfig.from_dict({"model": {"alpha": 0.1}, "figure_dpi": 100})

        assert config.model.alpha == 0.1
        assert config.model.time_transform == "km"
        assert config.figure_dpi == 100
        assert config.data == DataConfig()


class TestGroupingColumns:
    """Tests for grouping-column validation."""

    def test_unknown_group_column(self):
        with pytest.raises(ValueError, match="Unknown grouping columns"):
            DataConfig(group_column="histology")

    def test_unknown_extra_logrank_column(self):
        with pytest.raises(ValueError, match="Unknown grouping columns"):
            DataConfig(extra_logrank_columns=("celltype", "weight"))

    def test_time_is_not_a_grouping(self):
        with pytest.raises(ValueError):
            DataConfig(group_column="time")

    def test_validate_after_mutation(self):
        config = DataConfig()
        config.group_column = "stage"
        with pytest.raises(ValueError):
            config.validate()
