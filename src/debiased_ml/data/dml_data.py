"""
Data backend for Double Machine Learning models.
"""

import numpy as np
import pandas as pd
from typing import List, Optional, Union
import logging

from ..exceptions import DataError


logger = logging.getLogger(__name__)


class DMLData:
    """
    Holds the outcome, treatment(s), covariates and optional cluster ids of an observation set.
    """

    def __init__(
        self,
        data: pd.DataFrame,
        y_col: str,
        d_cols: Union[str, List[str]],
        x_cols: Optional[List[str]] = None,
        cluster_col: Optional[str] = None,
        missing: str = 'raise'
    ):
        """
        Initialize the data backend.

        Args:
            data: Observation set, one row per subject
            y_col: Name of the outcome column
            d_cols: Name(s) of the treatment column(s)
            x_cols: Covariate columns. If None, all columns not used as outcome,
                treatment or cluster are used
            cluster_col: Optional column with cluster ids, used for cluster-respecting splits
            missing: 'raise' to reject missing or infinite values, 'drop' for listwise deletion

        Raises:
            DataError: If columns are missing, roles overlap or values are invalid
        """
        if not isinstance(data, pd.DataFrame):
            raise DataError(f"data must be a pandas DataFrame, got {type(data).__name__}")
        if missing not in ('raise', 'drop'):
            raise DataError(f"missing must be 'raise' or 'drop', got {missing!r}")

        if isinstance(d_cols, str):
            d_cols = [d_cols]
        d_cols = list(d_cols)
        if len(d_cols) == 0:
            raise DataError("At least one treatment column is required")

        reserved = [y_col] + d_cols + ([cluster_col] if cluster_col is not None else [])
        if x_cols is None:
            x_cols = [col for col in data.columns if col not in reserved]
        x_cols = list(x_cols)

        self._check_columns(data, y_col, d_cols, x_cols, cluster_col)

        used_cols = reserved + x_cols
        subset = data[used_cols]
        numeric_cols = [col for col in used_cols if col != cluster_col]
        non_numeric = [col for col in numeric_cols if not pd.api.types.is_numeric_dtype(subset[col])]
        if non_numeric:
            raise DataError(f"Columns must be numeric, encode them first: {non_numeric}")

        invalid = subset[numeric_cols].apply(lambda col: ~np.isfinite(col.astype(float)))
        if cluster_col is not None:
            invalid[cluster_col] = subset[cluster_col].isna()
        invalid_rows = invalid.any(axis=1)

        n_invalid = int(invalid_rows.sum())
        if n_invalid > 0:
            if missing == 'raise':
                bad_cols = [col for col in invalid.columns if invalid[col].any()]
                raise DataError(
                    f"{n_invalid} rows contain missing or infinite values in columns {bad_cols}. "
                    f"Clean the data or pass missing='drop' for listwise deletion."
                )
            logger.warning(f"Dropping {n_invalid} rows with missing or infinite values (listwise deletion)")
            subset = subset.loc[~invalid_rows]

        self.data = subset.reset_index(drop=True)
        self.y_col = y_col
        self.d_cols = d_cols
        self.x_cols = x_cols
        self.cluster_col = cluster_col

        logger.info(f"DMLData with {self.n_obs} observations, {len(self.x_cols)} covariates, "
                    f"treatment(s): {self.d_cols}, outcome: {self.y_col}")

    @staticmethod
    def _check_columns(
        data: pd.DataFrame,
        y_col: str,
        d_cols: List[str],
        x_cols: List[str],
        cluster_col: Optional[str]
    ) -> None:
        """Validate presence and disjointness of the column roles."""
        required = [y_col] + d_cols + x_cols + ([cluster_col] if cluster_col is not None else [])
        absent = [col for col in required if col not in data.columns]
        if absent:
            raise DataError(f"Columns not found in data: {absent}")

        if len(x_cols) == 0:
            raise DataError("At least one covariate column is required")
        if len(set(d_cols)) != len(d_cols):
            raise DataError(f"Duplicate treatment columns: {d_cols}")
        if len(set(x_cols)) != len(x_cols):
            raise DataError("Duplicate covariate columns")
        if y_col in d_cols:
            raise DataError(f"{y_col} cannot be both outcome and treatment")

        overlap = set(x_cols) & (set(d_cols) | {y_col})
        if overlap:
            raise DataError(f"Covariates must not include outcome or treatment columns: {sorted(overlap)}")
        if cluster_col is not None and cluster_col in set(x_cols) | set(d_cols) | {y_col}:
            raise DataError(f"Cluster column {cluster_col} must not be used in another role")

    @classmethod
    def from_arrays(
        cls,
        x: np.ndarray,
        y: np.ndarray,
        d: np.ndarray,
        cluster_ids: Optional[np.ndarray] = None,
        missing: str = 'raise'
    ) -> 'DMLData':
        """
        Build a data backend from numpy arrays.

        Columns are named X1..Xp, y and d (or d1..dk for several treatments).
        """
        x = np.asarray(x, dtype=float)
        if x.ndim == 1:
            x = x.reshape(-1, 1)
        y = np.asarray(y, dtype=float).ravel()
        d = np.asarray(d, dtype=float)
        if d.ndim == 1:
            d = d.reshape(-1, 1)

        if not (x.shape[0] == y.shape[0] == d.shape[0]):
            raise DataError(
                f"Array length mismatch: x={x.shape[0]}, y={y.shape[0]}, d={d.shape[0]}"
            )

        x_cols = [f"X{i + 1}" for i in range(x.shape[1])]
        d_cols = ['d'] if d.shape[1] == 1 else [f"d{i + 1}" for i in range(d.shape[1])]

        df = pd.DataFrame(x, columns=x_cols)
        df['y'] = y
        for i, col in enumerate(d_cols):
            df[col] = d[:, i]

        cluster_col = None
        if cluster_ids is not None:
            cluster_ids = np.asarray(cluster_ids).ravel()
            if cluster_ids.shape[0] != y.shape[0]:
                raise DataError("cluster_ids must have one entry per observation")
            df['cluster'] = cluster_ids
            cluster_col = 'cluster'

        return cls(df, y_col='y', d_cols=d_cols, x_cols=x_cols, cluster_col=cluster_col, missing=missing)

    @property
    def n_obs(self) -> int:
        return len(self.data)

    @property
    def n_treat(self) -> int:
        return len(self.d_cols)

    @property
    def x(self) -> np.ndarray:
        return self.data[self.x_cols].to_numpy(dtype=float)

    @property
    def y(self) -> np.ndarray:
        return self.data[self.y_col].to_numpy(dtype=float)

    @property
    def d(self) -> np.ndarray:
        """Treatment matrix of shape (n_obs, n_treat)."""
        return self.data[self.d_cols].to_numpy(dtype=float)

    @property
    def cluster_ids(self) -> Optional[np.ndarray]:
        if self.cluster_col is None:
            return None
        return self.data[self.cluster_col].to_numpy()

    def xd(self, treatment_idx: int) -> np.ndarray:
        """
        Covariates for nuisance learning of one treatment.

        The remaining treatment columns enter as additional covariates.
        """
        others = [col for i, col in enumerate(self.d_cols) if i != treatment_idx]
        return self.data[self.x_cols + others].to_numpy(dtype=float)

    def is_binary_treatment(self, treatment_idx: int) -> bool:
        values = np.unique(self.d[:, treatment_idx])
        return bool(np.all(np.isin(values, [0.0, 1.0])))

    def __repr__(self) -> str:
        return (f"DMLData(n_obs={self.n_obs}, y_col={self.y_col!r}, d_cols={self.d_cols}, "
                f"n_covariates={len(self.x_cols)}, cluster_col={self.cluster_col!r})")
