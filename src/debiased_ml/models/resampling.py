"""
Sample splitting for cross-fitting.
"""

import numpy as np
from typing import List, Optional, Tuple
import logging

from sklearn.model_selection import KFold

from ..exceptions import ConfigurationError


logger = logging.getLogger(__name__)


Split = Tuple[np.ndarray, np.ndarray]


class DMLResampling:
    """
    Draws repeated K-fold partitions of the observation indices.

    Each repetition is an independent shuffle; with cluster ids whole clusters
    are assigned to folds so that no cluster is split between training and
    held-out samples.
    """

    def __init__(
        self,
        n_folds: int,
        n_rep: int,
        n_obs: int,
        cluster_ids: Optional[np.ndarray] = None,
        random_state: Optional[int] = None
    ):
        """
        Initialize the splitter.

        Args:
            n_folds: Number of folds K (at least 2)
            n_rep: Number of repetitions R (at least 1)
            n_obs: Number of observations N
            cluster_ids: Optional cluster id per observation
            random_state: Seed for reproducible partitions
        """
        if n_folds < 2:
            raise ConfigurationError(f"n_folds must be at least 2 for sample splitting, got {n_folds}")
        if n_rep < 1:
            raise ConfigurationError(f"n_rep must be at least 1, got {n_rep}")
        if n_folds > n_obs:
            raise ConfigurationError(
                f"n_folds ({n_folds}) cannot exceed the number of observations ({n_obs})"
            )

        if cluster_ids is not None:
            cluster_ids = np.asarray(cluster_ids)
            if cluster_ids.shape[0] != n_obs:
                raise ConfigurationError("cluster_ids must have one entry per observation")
            n_clusters = len(np.unique(cluster_ids))
            if n_folds > n_clusters:
                raise ConfigurationError(
                    f"Cannot split {n_clusters} clusters into {n_folds} folds without breaking clusters"
                )

        self.n_folds = n_folds
        self.n_rep = n_rep
        self.n_obs = n_obs
        self.cluster_ids = cluster_ids
        self.random_state = random_state

    def split_samples(self) -> List[List[Split]]:
        """
        Draw the partitions.

        Returns:
            One list of (train_idx, test_idx) pairs per repetition
        """
        rng = np.random.default_rng(self.random_state)
        all_smpls = []
        for _ in range(self.n_rep):
            seed = int(rng.integers(0, 2**31 - 1))
            kf = KFold(n_splits=self.n_folds, shuffle=True, random_state=seed)
            if self.cluster_ids is None:
                smpls = [(train, test) for train, test in kf.split(np.zeros((self.n_obs, 1)))]
            else:
                smpls = self._split_clusters(kf)
            all_smpls.append(smpls)

        logger.info(f"Drew {self.n_rep} sample split(s) with {self.n_folds} folds for {self.n_obs} observations")
        return all_smpls

    def _split_clusters(self, kf: KFold) -> List[Split]:
        clusters = np.unique(self.cluster_ids)
        smpls = []
        for train_clusters, test_clusters in kf.split(clusters.reshape(-1, 1)):
            test_mask = np.isin(self.cluster_ids, clusters[test_clusters])
            smpls.append((np.flatnonzero(~test_mask), np.flatnonzero(test_mask)))
        return smpls


def no_split(n_obs: int) -> List[List[Split]]:
    """Single 'fold' using the full sample for training and evaluation."""
    idx = np.arange(n_obs)
    return [[(idx, idx)]]


def check_partition(smpls: List[List[Split]], n_obs: int, apply_cross_fitting: bool = True) -> None:
    """
    Validate externally supplied sample splits.

    Args:
        smpls: One list of (train_idx, test_idx) pairs per repetition
        n_obs: Number of observations
        apply_cross_fitting: If True, the test folds of each repetition must partition all indices

    Raises:
        ConfigurationError: If the splits are malformed
    """
    if len(smpls) == 0:
        raise ConfigurationError("At least one repetition of sample splits is required")

    full = np.arange(n_obs)
    for i_rep, rep in enumerate(smpls):
        if len(rep) == 0:
            raise ConfigurationError(f"Repetition {i_rep} contains no folds")
        for train, test in rep:
            train = np.asarray(train)
            test = np.asarray(test)
            if len(test) == 0 or len(train) == 0:
                raise ConfigurationError(f"Repetition {i_rep} contains an empty training or test set")
            if train.min() < 0 or test.min() < 0 or train.max() >= n_obs or test.max() >= n_obs:
                raise ConfigurationError(f"Repetition {i_rep} contains indices outside [0, {n_obs})")
            if len(rep) > 1 and np.intersect1d(train, test).size > 0:
                raise ConfigurationError(f"Repetition {i_rep} has overlapping training and test indices")

        if apply_cross_fitting and len(rep) > 1:
            tests = np.concatenate([np.asarray(test) for _, test in rep])
            if len(tests) != n_obs or not np.array_equal(np.sort(tests), full):
                raise ConfigurationError(
                    f"Test folds of repetition {i_rep} do not partition the {n_obs} observations"
                )


def _is_index_vector(obj) -> bool:
    if isinstance(obj, np.ndarray):
        return obj.ndim == 1
    return isinstance(obj, (list, tuple)) and all(np.isscalar(i) for i in obj)


def _is_pair(obj) -> bool:
    return (isinstance(obj, (list, tuple)) and len(obj) == 2
            and _is_index_vector(obj[0]) and _is_index_vector(obj[1]))


def normalize_splits(all_smpls) -> List[List[Split]]:
    """
    Bring user-supplied folds into the internal layout.

    Accepts a list of repetitions, each a list of (train_idx, test_idx) pairs, or
    a single repetition given as a bare list of pairs. Pairs may be tuples or
    lists of index sequences.

    Raises:
        ConfigurationError: If the nesting or index types are malformed
    """
    if not isinstance(all_smpls, (list, tuple)) or len(all_smpls) == 0:
        raise ConfigurationError("Sample splits must be a non-empty list of (train_idx, test_idx) pairs")
    if _is_pair(all_smpls[0]):
        all_smpls = [all_smpls]

    normalized = []
    for i_rep, rep in enumerate(all_smpls):
        if not isinstance(rep, (list, tuple)) or not all(_is_pair(fold) for fold in rep):
            raise ConfigurationError(
                f"Repetition {i_rep} must be a list of (train_idx, test_idx) pairs of index sequences"
            )
        folds = []
        for train, test in rep:
            train, test = np.asarray(train), np.asarray(test)
            for idx in (train, test):
                if idx.size > 0 and not np.issubdtype(idx.dtype, np.integer):
                    raise ConfigurationError(f"Repetition {i_rep} contains non-integer indices")
            folds.append((train.astype(int), test.astype(int)))
        normalized.append(folds)
    return normalized
