"""
Orthogonal score functions and the two DML solving procedures for the partially linear model.

Every score is linear in the causal parameter,

    psi(W; theta, eta) = psi_a(W; eta) * theta + psi_b(W; eta),

so the estimate solves mean(psi_a) * theta + mean(psi_b) = 0 either once over
all held-out observations (dml2) or separately in every fold (dml1).
"""

import numpy as np
from typing import Dict, List, Tuple

from ..exceptions import DegenerateFoldError


def partialling_out_elements(
    y: np.ndarray,
    d: np.ndarray,
    predictions: Dict[str, np.ndarray]
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Score elements for the partialling-out score.

    psi_a = -(D - m(X))^2 and psi_b = (D - m(X)) (Y - l(X)).
    """
    d_res = d - predictions['ml_m']
    y_res = y - predictions['ml_l']
    return -d_res * d_res, d_res * y_res


def iv_type_elements(
    y: np.ndarray,
    d: np.ndarray,
    predictions: Dict[str, np.ndarray]
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Score elements for the IV-type score.

    psi_a = -(D - m(X)) D and psi_b = (D - m(X)) (Y - g(X)).
    """
    d_res = d - predictions['ml_m']
    return -d_res * d, d_res * (y - predictions['ml_g'])


def preliminary_theta(y: np.ndarray, d: np.ndarray, predictions: Dict[str, np.ndarray], idx: np.ndarray) -> float:
    """Pooled partialling-out estimate used to build the target of ml_g."""
    psi_a, psi_b = partialling_out_elements(y[idx], d[idx], {k: v[idx] for k, v in predictions.items()})
    return _solve(psi_a, psi_b, 'the pooled sample')


def _solve(psi_a: np.ndarray, psi_b: np.ndarray, where: str) -> float:
    jacobian = np.mean(psi_a)
    if not np.isfinite(jacobian) or np.isclose(jacobian, 0.0, rtol=0.0, atol=1e-12):
        raise DegenerateFoldError(
            f"Empirical Jacobian of the score is zero in {where}; the treatment carries "
            f"no variation after partialling out the covariates"
        )
    return float(-np.mean(psi_b) / jacobian)


def solve_dml1(psi_a: np.ndarray, psi_b: np.ndarray, test_folds: List[np.ndarray]) -> Tuple[float, np.ndarray]:
    """
    Solve the moment equation fold by fold and average the estimates.

    Args:
        psi_a: Score element multiplying theta, one value per observation
        psi_b: Score element not depending on theta
        test_folds: Held-out indices of each fold

    Returns:
        The averaged estimate and the per-fold estimates
    """
    thetas = np.array([
        _solve(psi_a[test], psi_b[test], f"fold {i_fold}")
        for i_fold, test in enumerate(test_folds)
    ])
    return float(np.mean(thetas)), thetas


def solve_dml2(psi_a: np.ndarray, psi_b: np.ndarray, test_folds: List[np.ndarray]) -> float:
    """Solve the moment equation once, pooled over the held-out observations of all folds."""
    idx = np.concatenate(test_folds)
    return _solve(psi_a[idx], psi_b[idx], 'the pooled sample')


def score_values(psi_a: np.ndarray, psi_b: np.ndarray, theta: float) -> np.ndarray:
    return psi_a * theta + psi_b
