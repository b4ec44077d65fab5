from __future__ import annotations
from dataclasses import dataclass, field, replace
from typing import Dict, Optional, Sequence, Tuple
import logging
import warnings
import numpy as np
import pandas as pd
from scipy.stats import chi2
from lifelines import CoxPHFitter
from lifelines.exceptions import ConvergenceError, ConvergenceWarning

from survival_report.data import DesignMatrix, make_design_matrix, TIME_COL, EVENT_COL
from survival_report.metrics import compute_cindex, efron_null_statistics, score_test_statistic

logger = logging.getLogger(__name__)

# lifelines maximizes Efron's approximation of the partial likelihood for tied
# event times; the null log-likelihood and score test below use the same method.
TIE_METHOD = "efron"

SUMMARY_COLUMNS = ["coef", "exp(coef)", "se(coef)", "coef lower 95%", "coef upper 95%", "z", "p"]


class ModelFitError(RuntimeError):
    """Raised when the Cox partial-likelihood maximization does not converge."""


@dataclass(frozen=True)
class CoxModelSpec:
    """Immutable description of a Cox model.

    Attributes:
        name: Short identifier used in tables and logs
        covariates: Model terms (input columns) in display order
        log_covariates: Subset of covariates entering on the log scale
        strata: Columns defining separate baseline hazards

    Example:
        >>> spec = CoxModelSpec("refit", ("trt", "age", "karno"), log_covariates=("karno",),
        ...                     strata=("celltype",))
        >>> spec.formula
        'Surv(time, status) ~ trt + age + log(karno) + strata(celltype)'
    """
    name: str
    covariates: Tuple[str, ...] = ()
    log_covariates: Tuple[str, ...] = ()
    strata: Tuple[str, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "covariates", tuple(self.covariates))
        object.__setattr__(self, "log_covariates", tuple(self.log_covariates))
        object.__setattr__(self, "strata", tuple(self.strata))

    @property
    def is_null(self) -> bool:
        return len(self.covariates) == 0

    @property
    def formula(self) -> str:
        """R-style formula, used as a human-readable model label."""
        terms = [f"log({c})" if c in self.log_covariates else c for c in self.covariates]
        terms += [f"strata({s})" for s in self.strata]
        rhs = " + ".join(terms) if terms else "1"
        return f"Surv({TIME_COL}, {EVENT_COL}) ~ {rhs}"

    def without(self, term: str, name: Optional[str] = None) -> "CoxModelSpec":
        """Return this spec with one term removed.

        Raises:
            KeyError: If term is not a covariate of the model
        """
        if term not in self.covariates:
            raise KeyError(f"'{term}' is not a term of model {self.name}")
        return replace(
            self,
            name=name or f"{self.name}-{term}",
            covariates=tuple(c for c in self.covariates if c != term),
            log_covariates=tuple(c for c in self.log_covariates if c != term),
        )


@dataclass
class GlobalTest:
    """Overall test of beta = 0."""
    name: str
    statistic: float
    df: int
    p_value: float


@dataclass
class CoxResult:
    """Fitted Cox model and everything the report needs from it.

    Attributes:
        spec: Model description
        design: Model frame the model was fitted on
        fitter: Fitted lifelines CoxPHFitter (None for the null model)
        summary: Coefficient table, one row per design column
        log_likelihood: Maximized log partial likelihood
        null_log_likelihood: Log partial likelihood at beta = 0
        tests: Global Wald, likelihood-ratio and score tests
        concordance: Harrell's C (within strata for stratified models)
    """
    spec: CoxModelSpec
    design: DesignMatrix
    fitter: Optional[CoxPHFitter]
    summary: pd.DataFrame
    log_likelihood: float
    null_log_likelihood: float
    n_subjects: int
    n_events: int
    tests: Dict[str, GlobalTest] = field(default_factory=dict)
    concordance: float = float("nan")

    @property
    def n_params(self) -> int:
        return len(self.summary)

    @property
    def aic(self) -> float:
        """-2 * log partial likelihood + 2 * number of parameters."""
        return -2.0 * self.log_likelihood + 2.0 * self.n_params

    @property
    def is_null(self) -> bool:
        return self.fitter is None

    @property
    def params(self) -> pd.Series:
        return self.summary["coef"]

    def tests_table(self) -> pd.DataFrame:
        """Global tests as a table with columns test, chisq, df, p."""
        rows = [
            {"test": t.name, "chisq": t.statistic, "df": t.df, "p": t.p_value}
            for t in self.tests.values()
        ]
        return pd.DataFrame(rows, columns=["test", "chisq", "df", "p"])


def _strata_labels(frame: pd.DataFrame, strata: Sequence[str]):
    if not strata:
        return None
    return frame[list(strata)].astype(str).agg("|".join, axis=1).to_numpy()


def fit_cox(df: pd.DataFrame, spec: CoxModelSpec) -> CoxResult:
    """Fit a Cox proportional-hazards model.

    Categorical covariates are expanded against their reference level,
    requested covariates are log-transformed, and strata get their own
    baseline hazard with shared coefficients. Tied event times use Efron's
    approximation.

    Args:
        df: Normalized cohort (not modified)
        spec: Model description. A spec without covariates is the null model.

    Returns:
        CoxResult with coefficient table, log-likelihoods, AIC, global
        Wald / likelihood-ratio / score tests and concordance

    Raises:
        ModelFitError: If lifelines reports non-convergence (separation,
            collinearity, near-constant columns)

    Example:
        >>> full = fit_cox(df, CoxModelSpec("full", ("trt", "celltype", "age", "prior", "diagtime", "karno")))
        >>> full.summary.loc["karno", ["coef", "p"]]
        coef   -3.28e-02
        p       2.55e-09
    """
    design = make_design_matrix(df, spec.covariates, spec.log_covariates, spec.strata)
    frame = design.frame
    columns = design.columns
    strata_labels = _strata_labels(frame, spec.strata)

    X = frame[columns].to_numpy() if columns else None
    null_ll, score, information = efron_null_statistics(
        X, frame[TIME_COL], frame[EVENT_COL], strata_labels
    )
    n_subjects = len(frame)
    n_events = int(frame[EVENT_COL].sum())

    if not columns:
        logger.debug(f"{spec.name}: null model, loglik={null_ll:.3f}")
        return CoxResult(
            spec=spec,
            design=design,
            fitter=None,
            summary=pd.DataFrame(columns=SUMMARY_COLUMNS, dtype=float),
            log_likelihood=null_ll,
            null_log_likelihood=null_ll,
            n_subjects=n_subjects,
            n_events=n_events,
        )

    fitter = CoxPHFitter()
    fit_frame = frame[[TIME_COL, EVENT_COL] + columns + list(spec.strata)]
    with warnings.catch_warnings():
        warnings.simplefilter("error", ConvergenceWarning)
        try:
            fitter.fit(
                fit_frame,
                duration_col=TIME_COL,
                event_col=EVENT_COL,
                strata=list(spec.strata) or None,
            )
        except (ConvergenceError, ConvergenceWarning) as exc:
            raise ModelFitError(
                f"{spec.name}: Cox partial likelihood did not converge ({spec.formula}): {exc}"
            ) from exc

    summary = fitter.summary.loc[columns, SUMMARY_COLUMNS].copy()
    summary.index.name = "covariate"

    beta = fitter.params_.loc[columns].to_numpy()
    variance = fitter.variance_matrix_.loc[columns, columns].to_numpy()
    k = len(columns)
    log_likelihood = float(fitter.log_likelihood_)

    wald = float(beta @ np.linalg.solve(variance, beta))
    lr = 2.0 * (log_likelihood - null_ll)
    sc = score_test_statistic(score, information)
    tests = {
        "wald": GlobalTest("Wald", wald, k, float(chi2.sf(wald, k))),
        "likelihood_ratio": GlobalTest("Likelihood ratio", lr, k, float(chi2.sf(lr, k))),
        "score": GlobalTest("Score (log-rank)", sc, k, float(chi2.sf(sc, k))),
    }

    concordance = compute_cindex(
        frame[EVENT_COL].to_numpy(), frame[TIME_COL].to_numpy(), X @ beta, strata_labels
    )

    result = CoxResult(
        spec=spec,
        design=design,
        fitter=fitter,
        summary=summary,
        log_likelihood=log_likelihood,
        null_log_likelihood=null_ll,
        n_subjects=n_subjects,
        n_events=n_events,
        tests=tests,
        concordance=concordance,
    )
    logger.debug(
        f"{spec.name}: fitted {spec.formula} | n={n_subjects}, events={n_events}, "
        f"loglik={log_likelihood:.3f}, AIC={result.aic:.2f}, C={concordance:.3f}"
    )
    return result
