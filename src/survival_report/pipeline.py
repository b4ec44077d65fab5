"""Straight-line report driver.

load -> describe -> Kaplan-Meier -> full Cox -> PH test -> refit (log /
strata) -> PH test -> backward elimination -> nested comparisons ->
optional simulation appendix -> render.

Every table placed in the document is also written under
``<output_dir>/tables`` as CSV and every figure under ``<output_dir>/figures``.
"""
from __future__ import annotations
import os
import logging
from contextlib import nullcontext
from dataclasses import dataclass, field
from typing import Dict, Optional

import pandas as pd
import lifelines
from mlflow.exceptions import MlflowException

from survival_report import __version__
from survival_report.config import ReportConfig
from survival_report.data import load_data, load_veteran_dataset, TIME_COL, EVENT_COL
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
from survival_report.kaplan_meier import (
    KaplanMeierResult, fit_kaplan_meier, logrank_test, survival_at, plot_survival_curves,
)
from survival_report.models import TIE_METHOD, CoxModelSpec, CoxResult, fit_cox
from survival_report.diagnostics import (
    PHTestResult, check_proportional_hazards, violating_terms, plot_schoenfeld_residuals,
)
from survival_report.selection import (
    EliminationResult, likelihood_ratio_test, anova_table, backward_elimination,
)
from survival_report.simulation import (
    logrank_null_pvalues, noise_elimination_trials, calibration_summary,
)
from survival_report.render import ReportDocument
from survival_report.tracking import start_run, safe_log_params, safe_log_metrics, safe_log_artifact
from survival_report.logging_config import get_logger, capture_warnings
from survival_report.timing import Timer, log_execution_time
from survival_report.utils import get_output_paths, save_table, format_p_value

SURVIVAL_HORIZONS = (30, 90, 180, 365)


@dataclass
class ReportOutputs:
    """Paths and fitted results of one report run."""
    report_path: str
    tables: Dict[str, str] = field(default_factory=dict)
    figures: Dict[str, str] = field(default_factory=dict)
    cohort: Optional[pd.DataFrame] = None
    km: Optional[KaplanMeierResult] = None
    full: Optional[CoxResult] = None
    full_ph: Optional[PHTestResult] = None
    refit: Optional[CoxResult] = None
    refit_ph: Optional[PHTestResult] = None
    selection: Optional[EliminationResult] = None


class _Artifacts:
    """Writes tables/figures to disk and into the document in one call."""

    def __init__(self, report: ReportDocument, paths: dict, outputs: ReportOutputs, dpi: int):
        self.report = report
        self.paths = paths
        self.outputs = outputs
        self.dpi = dpi

    def table(self, df: pd.DataFrame, name: str, caption: str, index: bool = True, float_format: str = "{:.3f}"):
        self.outputs.tables[name] = save_table(df, self.paths["tables"], name, index=index)
        self.report.add_table(df, caption=f"Table {self.report.n_tables + 1}. {caption}",
                              index=index, float_format=float_format)

    def figure(self, plot, name: str, caption: str, *args, **kwargs):
        path = os.path.join(self.paths["figures"], f"{name}.png")
        plot(*args, path=path, dpi=self.dpi, **kwargs)
        self.outputs.figures[name] = path
        self.report.add_figure(path, caption=f"Figure {self.report.n_figures + 1}. {caption}")


def build_model_specs(config: ReportConfig):
    """Full and refitted model descriptions from the configuration.

    The refit moves ``refit_strata`` from covariates to strata and enters
    ``refit_log_covariates`` on the log scale.
    """
    model = config.model
    full = CoxModelSpec("full", model.covariates)
    refit_covariates = tuple(c for c in model.covariates if c not in model.refit_strata)
    refit = CoxModelSpec(
        "refit",
        refit_covariates,
        log_covariates=tuple(c for c in model.refit_log_covariates if c in refit_covariates),
        strata=model.refit_strata,
    )
    return full, refit


def _coef_sentence(result: CoxResult, term: str, alpha: float) -> str:
    rows = result.summary.loc[result.design.terms.get(term, [])]
    parts = []
    for name, row in rows.iterrows():
        verdict = "significant" if row["p"] < alpha else "not significant"
        parts.append(
            f"`{name}`: coef {row['coef']:.4f}, hazard ratio {row['exp(coef)']:.3f}, "
            f"p = {format_p_value(row['p'])} ({verdict} at {alpha})"
        )
    return "; ".join(parts)


def _add_cox_section(art: _Artifacts, result: CoxResult, key: str, alpha: float):
    report = art.report
    report.add_paragraph(
        f"Model `{result.spec.formula}` on {result.n_subjects} subjects with {result.n_events} deaths. "
        f"Log partial likelihood {result.log_likelihood:.2f}, AIC {result.aic:.2f}, "
        f"concordance {result.concordance:.3f}."
    )
    art.table(result.summary, f"cox_{key}_coefficients", f"Coefficients of the {key} Cox model", float_format="{:.4f}")
    art.table(result.tests_table(), f"cox_{key}_global_tests",
              f"Global tests of beta = 0 ({key} model)", index=False, float_format="{:.2f}")
    for term in result.spec.covariates:
        report.add_bullets([f"**{term}**: {_coef_sentence(result, term, alpha)}"])


def _add_ph_section(art: _Artifacts, ph: PHTestResult, key: str, alpha: float):
    flagged = violating_terms(ph, alpha)
    art.report.add_paragraph(
        f"Scaled Schoenfeld residual test ({ph.time_transform} time transform). Global p = "
        f"{format_p_value(ph.global_p)}. "
        + (f"Terms with p < {alpha}: {', '.join(f'`{t}`' for t in flagged)}."
           if flagged else f"No term has p < {alpha}.")
    )
    art.table(ph.table, f"ph_{key}", f"Proportional-hazards test ({key} model)", float_format="{:.3f}")
    art.figure(plot_schoenfeld_residuals, f"schoenfeld_{key}",
               f"Scaled Schoenfeld residuals against time ({key} model)", ph)


@log_execution_time()
def run_report(config: Optional[ReportConfig] = None, cohort: Optional[pd.DataFrame] = None) -> ReportOutputs:
    """Run the analysis once and render the report.

    Args:
        config: Report configuration (defaults reproduce the reference report)
        cohort: Already normalized cohort; overrides ``config.data.input_file``

    Returns:
        ReportOutputs with the document path, CSV/PNG side artifacts and the
        fitted results

    Raises:
        FileNotFoundError, SchemaError: Input problems
        ModelFitError: A Cox fit did not converge

    Example:
        >>> outputs = run_report(ReportConfig(output_dir="data/outputs/veteran"))
        >>> outputs.report_path
        'data/outputs/veteran/survival_report.docx'
    """
    config = config or ReportConfig()
    logger = get_logger("pipeline")
    paths = get_output_paths(config.output_dir)

    tracking, tracked = nullcontext(), False
    if config.track_mlflow:
        try:
            tracking = start_run(
                run_name=os.path.splitext(config.report_name)[0],
                tracking_uri=f"file:{os.path.abspath(paths['mlruns'])}",
            )
            tracked = True
        except MlflowException as e:
            logger.warning(f"MLflow tracking unavailable, continuing without it: {e}",
                           extra={"category": "mlflow_error"})

    with tracking, capture_warnings(logger):
        outputs = _run(config, cohort, paths, logger)
        if tracked:
            _track(config, outputs, logger)
    return outputs


def _run(config: ReportConfig, cohort: Optional[pd.DataFrame], paths: dict, logger: logging.Logger) -> ReportOutputs:
    alpha = config.model.alpha
    group_col = config.data.group_column

    with Timer(logger, "Data loading"):
        if cohort is None:
            cohort = load_data(config.data.input_file) if config.data.input_file else load_veteran_dataset()
    source = config.data.input_file or "scikit-survival bundled veterans_lung_cancer"

    report = ReportDocument(config.title, subtitle=f"Generated by survival_report {__version__}")
    outputs = ReportOutputs(report_path=os.path.join(paths["base_dir"], config.report_name), cohort=cohort)
    art = _Artifacts(report, paths, outputs, config.figure_dpi)
    n_events = int(cohort[EVENT_COL].sum())

    report.add_heading("1. Data", level=1)
    report.add_paragraph(
        f"Source: `{source}`. {len(cohort)} subjects, {n_events} deaths and "
        f"{len(cohort) - n_events} censored observations."
    )
    with Timer(logger, "Descriptive statistics"):
        art.table(describe_quantitative(cohort), "quantitative_summary", "Quantitative fields", float_format="{:.2f}")
        for col, freq in frequency_tables(cohort).items():
            art.table(freq, f"frequency_{col}", f"Frequencies of {col}", float_format="{:.1f}")
        art.table(group_summary(cohort, group_col), f"group_summary_{group_col}",
                  f"Follow-up by {group_col}", float_format="{:.2f}")
        art.figure(plot_boxplots, "boxplots", f"Quantitative fields by {group_col}", cohort, group_col=group_col)
        art.figure(plot_histograms, "histograms", "Distributions of the quantitative fields", cohort)
        corr = correlation_matrix(cohort)
        art.table(corr, "correlations", "Pearson correlations", float_format="{:.2f}")
        art.figure(plot_correlation_heatmap, "correlation_heatmap", "Correlation heatmap", corr)
        art.figure(plot_scatter_matrix, "scatter_matrix", "Scatter matrix of the quantitative fields", cohort)

    report.page_break()
    report.add_heading("2. Kaplan-Meier estimates", level=1)
    with Timer(logger, "Kaplan-Meier"):
        overall = fit_kaplan_meier(cohort)
        km = fit_kaplan_meier(cohort, group_col)
        outputs.km = km
        art.figure(plot_survival_curves, "km_all", "Kaplan-Meier estimate, all subjects", overall)
        art.table(km.summary_table(), f"km_{group_col}", f"Median survival by {group_col}", float_format="{:.1f}")
        art.table(survival_at(km, SURVIVAL_HORIZONS), f"km_{group_col}_horizons",
                  f"Survival probability by {group_col} at selected days")
        art.figure(plot_survival_curves, f"km_{group_col}", f"Kaplan-Meier estimate by {group_col}", km)

        logranks = [km.logrank] if km.logrank is not None else []
        for col in config.data.extra_logrank_columns:
            logranks.append(logrank_test(cohort, col))
            art.figure(plot_survival_curves, f"km_{col}", f"Kaplan-Meier estimate by {col}",
                       fit_kaplan_meier(cohort, col))
        if logranks:
            table = pd.concat([lr.to_frame() for lr in logranks], ignore_index=True)
            art.table(table, "logrank_tests", "Log-rank tests of equal survival", index=False, float_format="{:.2f}")
            for lr in logranks:
                logger.info(f"Log-rank {lr.group_col}: chisq={lr.statistic:.2f}, p={lr.p_value:.3g}")

    full_spec, refit_spec = build_model_specs(config)

    report.page_break()
    report.add_heading("3. Cox proportional-hazards model", level=1)
    with Timer(logger, "Full Cox model"):
        full = fit_cox(cohort, full_spec)
        outputs.full = full
        _add_cox_section(art, full, "full", alpha)
        logger.info(f"Full model: AIC={full.aic:.2f}, C={full.concordance:.3f}")

    report.add_heading("3.1 Proportional-hazards check", level=2)
    with Timer(logger, "PH test (full model)"):
        outputs.full_ph = check_proportional_hazards(full, config.model.time_transform)
        _add_ph_section(art, outputs.full_ph, "full", alpha)

    report.page_break()
    report.add_heading("4. Refitted model", level=1)
    report.add_paragraph(
        f"Covariates on the log scale: {', '.join(refit_spec.log_covariates) or 'none'}. "
        f"Strata: {', '.join(refit_spec.strata) or 'none'}."
    )
    with Timer(logger, "Refitted Cox model"):
        refit = fit_cox(cohort, refit_spec)
        outputs.refit = refit
        _add_cox_section(art, refit, "refit", alpha)
        if not refit.is_null:
            outputs.refit_ph = check_proportional_hazards(refit, config.model.time_transform)
            _add_ph_section(art, outputs.refit_ph, "refit", alpha)

    report.page_break()
    report.add_heading("5. Model selection", level=1)
    with Timer(logger, "Backward elimination"):
        selection = backward_elimination(cohort, full_spec, log=logger)
        outputs.selection = selection
        selected = selection.final
        report.add_paragraph(
            f"Backward elimination by AIC from the full model retained: "
            f"{', '.join(f'`{t}`' for t in selected.spec.covariates) or 'no terms (null model)'}."
        )
        art.table(selection.history, "elimination_history", "Backward elimination steps",
                  index=False, float_format="{:.2f}")
        art.table(selection.trace, "elimination_candidates", "AIC of every candidate removal",
                  index=False, float_format="{:.2f}")
        if not selected.is_null:
            art.table(selected.summary, "cox_selected_coefficients", "Coefficients of the selected model",
                      float_format="{:.4f}")

    report.add_heading("5.1 Nested model comparisons", level=2)
    with Timer(logger, "Model comparison"):
        if selected.n_params < full.n_params:
            art.table(anova_table(selected, full), "anova_selected_full",
                      "Analysis of deviance: selected vs full model", float_format="{:.3f}")
        comparisons = []
        for term in full_spec.covariates:
            lr = likelihood_ratio_test(fit_cox(cohort, full_spec.without(term)), full)
            comparisons.append(lr.to_frame().assign(term=term))
        lr_table = pd.concat(comparisons, ignore_index=True)[
            ["term", "chisq", "df", "p", "AIC reduced", "AIC full"]
        ]
        art.table(lr_table, "lr_term_tests", "Likelihood-ratio test of each term in the full model",
                  index=False, float_format="{:.2f}")

    if config.simulation.n_replicates > 0:
        sim = config.simulation
        report.page_break()
        report.add_heading("Appendix: calibration simulations", level=1)
        with Timer(logger, "Calibration simulations"):
            pvalues = logrank_null_pvalues(sim.n_replicates, sim.n_subjects, sim.random_state, sim.n_jobs)
            trials = noise_elimination_trials(
                sim.n_replicates, sim.n_subjects, sim.random_state, sim.n_jobs, covariates=full_spec.covariates
            )
            report.add_paragraph(
                f"{sim.n_replicates} simulated cohorts of {sim.n_subjects} subjects with covariates "
                f"independent of survival."
            )
            art.table(calibration_summary(pvalues, trials, alpha), "calibration", "Calibration checks",
                      index=False, float_format="{:.3f}")

    report.add_heading("Methods", level=1)
    report.add_bullets([
        "Kaplan-Meier product-limit estimator; subjects censored at an event time are at risk at that time.",
        f"Cox partial likelihood with the **{TIME_COL}**/**{EVENT_COL}** outcome; tied event times use "
        f"the `{TIE_METHOD}` approximation.",
        f"Proportional-hazards test on scaled Schoenfeld residuals, `{config.model.time_transform}` time transform.",
        "Backward elimination drops one term (all its levels) at a time while AIC strictly decreases; "
        "strata are never removed.",
        f"Software: lifelines {lifelines.__version__}, pandas {pd.__version__}.",
    ])

    with Timer(logger, "Rendering"):
        report.save(outputs.report_path)
    return outputs


def _track(config: ReportConfig, outputs: ReportOutputs, logger: logging.Logger) -> None:
    safe_log_params({
        "input_file": config.data.input_file or "veteran",
        "covariates": config.model.covariates,
        "refit_log_covariates": config.model.refit_log_covariates,
        "refit_strata": config.model.refit_strata,
        "time_transform": config.model.time_transform,
        "tie_method": TIE_METHOD,
    }, logger=logger)
    metrics = {
        "full_aic": outputs.full.aic,
        "full_cindex": outputs.full.concordance,
        "full_ph_global_p": outputs.full_ph.global_p,
        "refit_aic": outputs.refit.aic,
        "selected_aic": outputs.selection.final.aic,
        "selected_n_terms": len(outputs.selection.final.spec.covariates),
    }
    if outputs.km is not None and outputs.km.logrank is not None:
        metrics[f"logrank_{outputs.km.group_col}_p"] = outputs.km.logrank.p_value
    if outputs.refit_ph is not None:
        metrics["refit_ph_global_p"] = outputs.refit_ph.global_p
    safe_log_metrics(metrics, logger=logger)
    safe_log_artifact(outputs.report_path, logger=logger)
