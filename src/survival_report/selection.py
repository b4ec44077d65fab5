"""Model comparison: likelihood-ratio tests, deviance tables and AIC-driven
backward elimination of Cox model terms."""
from __future__ import annotations
from dataclasses import dataclass, replace
from typing import Optional
import logging
import numpy as np
import pandas as pd
from scipy.stats import chi2

from survival_report.models import CoxModelSpec, CoxResult, fit_cox

logger = logging.getLogger(__name__)


@dataclass
class LRTest:
    """Likelihood-ratio comparison of two nested Cox models."""
    reduced: str
    full: str
    statistic: float
    df: int
    p_value: float
    aic_reduced: float
    aic_full: float

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame([{
            "reduced": self.reduced,
            "full": self.full,
            "chisq": self.statistic,
            "df": self.df,
            "p": self.p_value,
            "AIC reduced": self.aic_reduced,
            "AIC full": self.aic_full,
        }])


@dataclass
class EliminationResult:
    """Outcome of backward elimination.

    Attributes:
        final: Fit of the selected model (possibly the null model)
        history: One row per accepted step: step, dropped, terms, loglik, AIC
        trace: Every candidate removal evaluated: step, candidate, AIC, delta_AIC
    """
    final: CoxResult
    history: pd.DataFrame
    trace: pd.DataFrame


def _check_nested(reduced: CoxResult, full: CoxResult) -> None:
    missing = [c for c in reduced.design.columns if c not in full.design.columns]
    if missing:
        raise ValueError(
            f"{reduced.spec.name} is not nested in {full.spec.name}: columns {missing} absent from the larger model"
        )
    if tuple(reduced.spec.strata) != tuple(full.spec.strata):
        raise ValueError(
            f"{reduced.spec.name} and {full.spec.name} use different strata "
            f"({list(reduced.spec.strata)} vs {list(full.spec.strata)})"
        )
    if reduced.n_subjects != full.n_subjects:
        raise ValueError(
            f"{reduced.spec.name} and {full.spec.name} were fitted on different cohorts "
            f"({reduced.n_subjects} vs {full.n_subjects} subjects)"
        )


def likelihood_ratio_test(reduced: CoxResult, full: CoxResult) -> LRTest:
    """Likelihood-ratio test of a reduced model against a model containing it.

    The statistic 2 * (loglik_full - loglik_reduced) is chi-square with df
    equal to the difference in parameter counts.

    Raises:
        ValueError: If the models are not nested or have the same number of
            parameters

    Example:
        >>> lr = likelihood_ratio_test(reduced, full)
        >>> print(f"chisq={lr.statistic:.2f} on {lr.df} df, p={lr.p_value:.3f}")
    """
    _check_nested(reduced, full)
    df = full.n_params - reduced.n_params
    if df <= 0:
        raise ValueError(
            f"{full.spec.name} must have more parameters than {reduced.spec.name} (got df={df})"
        )
    statistic = 2.0 * (full.log_likelihood - reduced.log_likelihood)
    return LRTest(
        reduced=reduced.spec.name,
        full=full.spec.name,
        statistic=float(statistic),
        df=int(df),
        p_value=float(chi2.sf(statistic, df)),
        aic_reduced=reduced.aic,
        aic_full=full.aic,
    )


def anova_table(*results: CoxResult) -> pd.DataFrame:
    """Analysis-of-deviance table for a sequence of nested models.

    Each row after the first is compared with the previous one; models may
    be listed from smallest to largest or the reverse.

    Returns:
        DataFrame indexed by model name with columns formula, loglik, AIC,
        Chisq, Df, P(>|Chi|)

    Example:
        >>> anova_table(selected, full)
    """
    if len(results) < 2:
        raise ValueError("anova_table needs at least two models")

    rows = []
    previous: Optional[CoxResult] = None
    for result in results:
        row = {
            "model": result.spec.name,
            "formula": result.spec.formula,
            "loglik": result.log_likelihood,
            "AIC": result.aic,
            "Chisq": np.nan,
            "Df": np.nan,
            "P(>|Chi|)": np.nan,
        }
        if previous is not None:
            small, large = (previous, result) if previous.n_params <= result.n_params else (result, previous)
            test = likelihood_ratio_test(small, large)
            row.update({"Chisq": test.statistic, "Df": test.df, "P(>|Chi|)": test.p_value})
        rows.append(row)
        previous = result

    return pd.DataFrame(rows).set_index("model")


def backward_elimination(
    df: pd.DataFrame,
    spec: CoxModelSpec,
    log: Optional[logging.Logger] = None,
) -> EliminationResult:
    """Stepwise backward elimination of model terms by AIC.

    At each step every single-term removal is fitted; the removal with the
    lowest AIC is accepted if it is strictly lower than the current AIC.
    Categorical terms are dropped as a whole. Strata are never removed.

    Args:
        df: Normalized cohort
        spec: Starting model
        log: Optional logger for step messages (module logger by default)

    Returns:
        EliminationResult with the final fit, accepted steps and every
        candidate evaluated

    Example:
        >>> sel = backward_elimination(df, CoxModelSpec("full", covariates))
        >>> sel.final.spec.covariates
        ('celltype', 'karno')
    """
    log = log or logger
    current = fit_cox(df, spec)
    history = [{
        "step": 0,
        "dropped": "",
        "terms": ", ".join(current.spec.covariates) or "(none)",
        "loglik": current.log_likelihood,
        "AIC": current.aic,
    }]
    trace = []
    step = 0

    while current.spec.covariates:
        step += 1
        candidates = {}
        for term in current.spec.covariates:
            reduced_spec = current.spec.without(term, name=f"{spec.name}-step{step}-{term}")
            candidates[term] = fit_cox(df, reduced_spec)
            trace.append({
                "step": step,
                "candidate": term,
                "AIC": candidates[term].aic,
                "delta_AIC": candidates[term].aic - current.aic,
            })

        best_term = min(candidates, key=lambda t: candidates[t].aic)
        best = candidates[best_term]
        if best.aic >= current.aic:
            log.info(
                f"Backward elimination stops at step {step}: best removal ({best_term}) "
                f"AIC {best.aic:.2f} >= {current.aic:.2f}"
            )
            break

        log.info(f"Step {step}: drop {best_term} (AIC {current.aic:.2f} -> {best.aic:.2f})")
        current = best
        history.append({
            "step": step,
            "dropped": best_term,
            "terms": ", ".join(current.spec.covariates) or "(none)",
            "loglik": current.log_likelihood,
            "AIC": current.aic,
        })

    final_spec = CoxModelSpec(
        f"{spec.name}-selected",
        covariates=current.spec.covariates,
        log_covariates=current.spec.log_covariates,
        strata=current.spec.strata,
    )
    final = replace(current, spec=final_spec)

    return EliminationResult(
        final=final,
        history=pd.DataFrame(history),
        trace=pd.DataFrame(trace, columns=["step", "candidate", "AIC", "delta_AIC"]),
    )
