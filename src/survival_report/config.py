"""Configuration for the survival report.

All tunable choices of a report run live in dataclasses that serialize to
and from JSON, so a report can be reproduced from its saved configuration.

Example:
    >>> config = ReportConfig()
    >>> config.model.covariates
    ('trt', 'celltype', 'age', 'prior', 'diagtime', 'karno')
    >>> config.save("configs/veteran.json")
    >>> config = ReportConfig.load("configs/veteran.json")
"""
from __future__ import annotations
import os
import json
import logging
from dataclasses import dataclass, field, asdict
from typing import Optional

from survival_report.data import REQUIRED_COLS, TIME_COL
from survival_report.diagnostics import TIME_TRANSFORMS

logger = logging.getLogger(__name__)


# ============================================================================
# Data Configuration
# ============================================================================

@dataclass
class DataConfig:
    """Input cohort settings.

    Attributes:
        input_file: CSV/pickle/parquet cohort; None uses the bundled
            Veterans' Administration lung cancer data
        group_column: Grouping variable for Kaplan-Meier curves and the
            primary log-rank test
        extra_logrank_columns: Further grouping variables tested with log-rank
    """
    input_file: Optional[str] = None
    group_column: str = "trt"
    extra_logrank_columns: tuple[str, ...] = ("celltype", "prior")

    def __post_init__(self):
        self.extra_logrank_columns = tuple(self.extra_logrank_columns)
        self.validate()

    def validate(self):
        """Check that every grouping column is a cohort column other than time."""
        allowed = [c for c in REQUIRED_COLS if c != TIME_COL]
        unknown = [c for c in (self.group_column,) + self.extra_logrank_columns if c not in allowed]
        if unknown:
            raise ValueError(f"Unknown grouping columns {unknown}. Choose from {allowed}")


# ============================================================================
# Model Configuration
# ============================================================================

@dataclass
class ModelConfig:
    """Cox model settings.

    Attributes:
        covariates: Terms of the full model
        refit_log_covariates: Covariates entered on the log scale in the refit
        refit_strata: Stratification columns of the refit (removed from its
            covariates)
        time_transform: Time transform for the Schoenfeld residual test
        alpha: Significance level used in narrative text and PH flags
    """
    covariates: tuple[str, ...] = ("trt", "celltype", "age", "prior", "diagtime", "karno")
    refit_log_covariates: tuple[str, ...] = ("karno",)
    refit_strata: tuple[str, ...] = ("celltype",)
    time_transform: str = "km"
    alpha: float = 0.05

    def __post_init__(self):
        self.covariates = tuple(self.covariates)
        self.refit_log_covariates = tuple(self.refit_log_covariates)
        self.refit_strata = tuple(self.refit_strata)
        if self.time_transform not in TIME_TRANSFORMS:
            raise ValueError(
                f"time_transform must be one of {TIME_TRANSFORMS}, got '{self.time_transform}'"
            )
        if not 0 < self.alpha < 1:
            raise ValueError(f"alpha must be in (0, 1), got {self.alpha}")
        if not self.covariates:
            raise ValueError("The full model needs at least one covariate")


# ============================================================================
# Simulation Configuration
# ============================================================================

@dataclass
class SimulationConfig:
    """Calibration simulations shown in the report appendix.

    Attributes:
        n_replicates: Replicates per check; 0 skips the appendix
        n_subjects: Subjects per simulated cohort
        random_state: Seed of the replicate seed sequence
        n_jobs: joblib workers (-1 = all cores)
    """
    n_replicates: int = 0
    n_subjects: int = 137
    random_state: int = 42
    n_jobs: int = 1

    def __post_init__(self):
        if self.n_replicates < 0:
            raise ValueError(f"n_replicates must be >= 0, got {self.n_replicates}")
        if self.n_jobs == 0 or self.n_jobs < -1:
            raise ValueError(f"n_jobs must be -1 or positive, got {self.n_jobs}")


# ============================================================================
# Master Configuration
# ============================================================================

@dataclass
class ReportConfig:
    """Master configuration of a report run.

    Attributes:
        data: Input settings
        model: Cox model settings
        simulation: Appendix simulation settings
        output_dir: Directory receiving the report, tables, figures and logs
        report_name: File name of the rendered document
        title: Document title
        figure_dpi: Resolution of PNG figures
        track_mlflow: Log parameters, metrics and the report to MLflow
    """
    data: DataConfig = field(default_factory=DataConfig)
    model: ModelConfig = field(default_factory=ModelConfig)
    simulation: SimulationConfig = field(default_factory=SimulationConfig)
    output_dir: str = "data/outputs/report"
    report_name: str = "survival_report.docx"
    title: str = "Survival analysis of the Veterans' Administration lung cancer trial"
    figure_dpi: int = 150
    track_mlflow: bool = False

    def to_dict(self) -> dict:
        """Convert configuration to a JSON-ready dictionary.

        Example:
            >>> ReportConfig().to_dict()["model"]["time_transform"]
            'km'
        """
        def _lists(obj):
            if isinstance(obj, dict):
                return {k: _lists(v) for k, v in obj.items()}
            if isinstance(obj, tuple):
                return list(obj)
            return obj

        return _lists(asdict(self))

    def save(self, path: str) -> None:
        """Save configuration to a JSON file."""
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

        logger.info(f"Configuration saved to {path}")

    @classmethod
    def from_dict(cls, data: dict) -> "ReportConfig":
        top = {k: v for k, v in data.items() if k not in ("data", "model", "simulation")}
        return cls(
            data=DataConfig(**data.get("data", {})),
            model=ModelConfig(**data.get("model", {})),
            simulation=SimulationConfig(**data.get("simulation", {})),
            **top,
        )

    @classmethod
    def load(cls, path: str) -> "ReportConfig":
        """Load configuration from a JSON file.

        Missing sections and keys fall back to their defaults.
        """
        with open(path) as f:
            data = json.load(f)
        return cls.from_dict(data)
