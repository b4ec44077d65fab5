from __future__ import annotations
from typing import Optional, Tuple
import numpy as np
from sksurv.metrics import concordance_index_censored


def compute_cindex(event, time, risk_scores, groups=None) -> float:
    """Calculate Harrell's concordance index, optionally within strata.

    For stratified Cox models only pairs inside the same stratum are
    comparable, so concordant/discordant/tied counts are accumulated per
    stratum and combined.

    Args:
        event: Boolean array of shape (n,), True where the event was observed
        time: Array of shape (n,) with observed times
        risk_scores: Array of shape (n,); higher values mean higher risk
        groups: Optional array of shape (n,) with stratum labels

    Returns:
        Concordance index between 0 and 1 (0.5 = random ordering)

    Example:
        >>> cindex = compute_cindex(df["status"], df["time"], linear_predictor)
        >>> print(f"C-index: {cindex:.3f}")
        C-index: 0.736
    """
    event = np.asarray(event, dtype=bool)
    time = np.asarray(time, dtype=float)
    risk_scores = np.asarray(risk_scores, dtype=float)

    if groups is None:
        groups = np.zeros(len(event))
    groups = np.asarray(groups)

    concordant = discordant = tied_risk = 0
    for label in np.unique(groups):
        mask = groups == label
        if not event[mask].any():
            continue
        # concordance_index_censored returns (cindex, concordant, discordant, tied_risk, tied_time)
        _, conc, disc, tied, _ = concordance_index_censored(
            event[mask], time[mask], risk_scores[mask]
        )
        concordant += conc
        discordant += disc
        tied_risk += tied

    comparable = concordant + discordant + tied_risk
    if comparable == 0:
        return float("nan")
    return float((concordant + 0.5 * tied_risk) / comparable)


def efron_null_statistics(
    X: Optional[np.ndarray],
    time,
    event,
    strata=None,
) -> Tuple[float, np.ndarray, np.ndarray]:
    """Efron partial-likelihood quantities evaluated at beta = 0.

    At each distinct event time with d deaths and n subjects at risk
    (subjects censored at that time included), Efron's approximation uses
    the d denominators n - l for l = 0..d-1 when all risks equal one.

    Args:
        X: Design matrix of shape (n, p), or None for the log-likelihood only
        time: Observed times, shape (n,)
        event: Event indicators, shape (n,)
        strata: Optional stratum labels, shape (n,)

    Returns:
        Tuple of (log partial likelihood, score vector (p,), information
        matrix (p, p)) at beta = 0

    Example:
        >>> loglik0, U, I = efron_null_statistics(X, t, e)
        >>> score_chisq = U @ np.linalg.solve(I, U)
    """
    time = np.asarray(time, dtype=float)
    event = np.asarray(event, dtype=bool)
    n = len(time)
    if X is None:
        X = np.zeros((n, 0))
    X = np.asarray(X, dtype=float)
    p = X.shape[1]
    if strata is None:
        strata = np.zeros(n)
    strata = np.asarray(strata)

    loglik = 0.0
    score = np.zeros(p)
    information = np.zeros((p, p))

    for label in np.unique(strata):
        in_stratum = strata == label
        x, t, e = X[in_stratum], time[in_stratum], event[in_stratum]

        for event_time in np.unique(t[e]):
            at_risk = t >= event_time
            dead = (t == event_time) & e
            d = int(dead.sum())
            n_risk = int(at_risk.sum())

            sx_risk = x[at_risk].sum(axis=0)
            sxx_risk = x[at_risk].T @ x[at_risk]
            sx_dead = x[dead].sum(axis=0)
            sxx_dead = x[dead].T @ x[dead]

            score += sx_dead
            for l in range(d):
                frac = l / d
                denom = n_risk - frac * d
                mean = (sx_risk - frac * sx_dead) / denom
                score -= mean
                information += (sxx_risk - frac * sxx_dead) / denom - np.outer(mean, mean)
                loglik -= np.log(denom)

    return float(loglik), score, information


def score_test_statistic(score: np.ndarray, information: np.ndarray) -> float:
    """Score (log-rank) chi-square U' I^-1 U."""
    if score.size == 0:
        return 0.0
    return float(score @ np.linalg.solve(information, score))
