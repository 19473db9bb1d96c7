"""
Simulated data from the partially linear model.
"""

import numpy as np
import pandas as pd
from typing import Optional, Union

from .dml_data import DMLData


def _logistic(z: np.ndarray) -> np.ndarray:
    return np.exp(z) / (1 + np.exp(z))


def make_plr_data(
    n_obs: int = 500,
    dim_x: int = 20,
    theta: float = 0.5,
    confounding: bool = True,
    binary_treatment: bool = False,
    random_state: Optional[int] = None,
    return_type: str = 'DMLData'
) -> Union[DMLData, pd.DataFrame]:
    """
    Draw data from the design of Chernozhukov et al. (2018).

    X ~ N(0, S) with S_kj = 0.7^|j-k|,
    D = m0(X) + V with m0(X) = X1 + 0.25 * logistic(X3),
    Y = theta * D + g0(X) + zeta with g0(X) = logistic(X1) + 0.25 * X3,
    V, zeta ~ N(0, 1).

    Args:
        n_obs: Number of observations
        dim_x: Number of covariates (at least 3)
        theta: True treatment effect
        confounding: If False, D = V does not depend on the covariates
        binary_treatment: Draw D ~ Bernoulli(logistic(m0(X))) instead
        random_state: Seed
        return_type: 'DMLData' or 'DataFrame'

    Returns:
        Simulated observation set with columns X1..Xp, y and d
    """
    if dim_x < 3:
        raise ValueError("dim_x must be at least 3")
    if return_type not in ('DMLData', 'DataFrame'):
        raise ValueError(f"Invalid return_type {return_type!r}")

    rng = np.random.default_rng(random_state)
    cov = 0.7 ** np.abs(np.subtract.outer(np.arange(dim_x), np.arange(dim_x)))
    x = rng.multivariate_normal(np.zeros(dim_x), cov, size=n_obs)

    m0 = x[:, 0] + 0.25 * _logistic(x[:, 2]) if confounding else np.zeros(n_obs)
    if binary_treatment:
        d = rng.binomial(1, _logistic(m0)).astype(float)
    else:
        d = m0 + rng.standard_normal(n_obs)

    g0 = _logistic(x[:, 0]) + 0.25 * x[:, 2]
    y = theta * d + g0 + rng.standard_normal(n_obs)

    df = pd.DataFrame(x, columns=[f"X{i + 1}" for i in range(dim_x)])
    df['y'] = y
    df['d'] = d

    if return_type == 'DataFrame':
        return df
    return DMLData(df, y_col='y', d_cols='d')
