"""
Variance estimation, aggregation over repeated cross-fitting, multiplier bootstrap and confidence intervals.
"""

import logging
from typing import List, Optional, Tuple

import numpy as np
import pandas as pd
from scipy import stats

from ..config import BOOTSTRAP_METHODS
from ..exceptions import ConfigurationError


logger = logging.getLogger(__name__)


def var_dml2(psi: np.ndarray, psi_a: np.ndarray) -> float:
    """
    Asymptotic variance of the pooled estimator: mean(psi^2) / J^2 / n with J = mean(psi_a).

    Args:
        psi: Score evaluated at the estimate, held-out observations only
        psi_a: Score derivative, same observations
    """
    n = len(psi)
    jacobian = np.mean(psi_a)
    return float(np.mean(psi ** 2) / jacobian ** 2 / n)


def var_dml1(psi: np.ndarray, psi_a: np.ndarray, test_folds: List[np.ndarray]) -> float:
    """
    Asymptotic variance of the fold-averaged estimator.

    The fold-wise variance terms mean_k(psi^2) / J_k^2 are averaged and scaled
    by the total number of held-out observations.
    """
    n = sum(len(test) for test in test_folds)
    terms = [np.mean(psi[test] ** 2) / np.mean(psi_a[test]) ** 2 for test in test_folds]
    return float(np.mean(terms) / n)


def aggregate_repetitions(thetas: np.ndarray, ses: np.ndarray) -> Tuple[float, float]:
    """
    Combine estimates from repeated sample splits.

    The point estimate is the median over repetitions. The standard error adds
    the dispersion of the repetition estimates around that median before taking
    the median: se = sqrt(median(se_r^2 + (theta_r - theta)^2)).
    """
    thetas = np.asarray(thetas, dtype=float)
    ses = np.asarray(ses, dtype=float)
    theta = float(np.median(thetas))
    se = float(np.sqrt(np.median(ses ** 2 + (thetas - theta) ** 2)))
    return theta, se


def t_stat_and_pval(coef: np.ndarray, se: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    t_stat = np.asarray(coef) / np.asarray(se)
    pval = 2 * stats.norm.cdf(-np.abs(t_stat))
    return t_stat, pval


def draw_weights(method: str, n_rep_boot: int, n_obs: int, rng: np.random.Generator) -> np.ndarray:
    """
    Multiplier weights with mean zero and unit variance.

    Args:
        method: 'normal' (standard normal), 'wild' (Rademacher +/-1) or
            'Bayes' (n * Dirichlet(1, ..., 1) - 1)
        n_rep_boot: Number of bootstrap draws
        n_obs: Number of scored observations
        rng: Random generator

    Returns:
        Array of shape (n_rep_boot, n_obs)
    """
    if method == 'normal':
        return rng.standard_normal(size=(n_rep_boot, n_obs))
    if method == 'wild':
        return rng.choice(np.array([-1.0, 1.0]), size=(n_rep_boot, n_obs))
    if method == 'Bayes':
        return n_obs * rng.dirichlet(np.ones(n_obs), size=n_rep_boot) - 1.0
    raise ConfigurationError(
        f"Invalid bootstrap method {method!r}. Valid methods are {', '.join(BOOTSTRAP_METHODS)}."
    )


def boot_dml2(
    psi: np.ndarray,
    psi_a: np.ndarray,
    se: float,
    weights: np.ndarray
) -> Tuple[np.ndarray, np.ndarray]:
    """Bootstrapped coefficients and t statistics for the pooled estimator."""
    n = len(psi)
    jacobian = np.mean(psi_a)
    boot_coef = weights @ psi / (n * jacobian)
    return boot_coef, boot_coef / se


def boot_dml1(
    psi: np.ndarray,
    psi_a: np.ndarray,
    se: float,
    weights: np.ndarray,
    test_folds: List[np.ndarray],
    positions: List[np.ndarray]
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Bootstrapped coefficients and t statistics for the fold-averaged estimator.

    Args:
        psi, psi_a: Score and derivative indexed by observation
        se: Standard error of the repetition estimate
        weights: Multiplier weights, columns aligned with the concatenated test folds
        test_folds: Held-out observation indices per fold
        positions: Column positions in ``weights`` of each fold's observations
    """
    fold_coefs = np.column_stack([
        weights[:, pos] @ psi[test] / (len(test) * np.mean(psi_a[test]))
        for test, pos in zip(test_folds, positions)
    ])
    boot_coef = fold_coefs.mean(axis=1)
    return boot_coef, boot_coef / se


def pointwise_confint(coef: np.ndarray, se: np.ndarray, level: float, names: List[str]) -> pd.DataFrame:
    """Normal-approximation intervals coef +/- z * se for each coefficient."""
    check_level(level)
    alpha = 1 - level
    quantiles = np.array([alpha / 2, 1 - alpha / 2])
    crit = stats.norm.ppf(quantiles)
    bounds = np.asarray(coef).reshape(-1, 1) + np.asarray(se).reshape(-1, 1) * crit
    return pd.DataFrame(bounds, index=names, columns=percent_labels(quantiles))


def joint_confint(
    coef: np.ndarray,
    se: np.ndarray,
    boot_t_stat: np.ndarray,
    level: float,
    names: List[str]
) -> pd.DataFrame:
    """
    Simultaneous intervals from the bootstrap distribution of max_j |t_j|.

    Args:
        boot_t_stat: Bootstrapped t statistics of shape (n_rep_boot, n_treat, n_rep)
    """
    check_level(level)
    alpha = 1 - level
    max_abs_t = np.abs(boot_t_stat).max(axis=1).ravel()
    crit = np.quantile(max_abs_t, level)
    coef = np.asarray(coef)
    se = np.asarray(se)
    bounds = np.column_stack([coef - crit * se, coef + crit * se])
    return pd.DataFrame(bounds, index=names, columns=percent_labels(np.array([alpha / 2, 1 - alpha / 2])))


def check_level(level: float) -> None:
    if not (0 < level < 1):
        raise ConfigurationError(f"level must be in (0, 1), got {level}")


def percent_labels(quantiles: np.ndarray) -> List[str]:
    # 0.025 -> '2.5 %', 0.975 -> '97.5 %'
    return [f"{round(100 * q, 10):g} %" for q in quantiles]


def bootstrap_seed_sequence(random_state: Optional[int], n_rep: int) -> List[np.random.Generator]:
    """Independent generators per repetition derived from one seed."""
    seeds = np.random.SeedSequence(random_state).spawn(n_rep)
    return [np.random.default_rng(s) for s in seeds]
