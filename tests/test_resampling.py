"""
Unit tests for sample splitting.
"""

import unittest
import numpy as np
import sys
from pathlib import Path

# Add src to path
sys.path.append(str(Path(__file__).parent.parent / "src"))

from debiased_ml.models.resampling import DMLResampling, check_partition, no_split, normalize_splits
from debiased_ml.exceptions import ConfigurationError


class TestDMLResampling(unittest.TestCase):
    """Test cases for repeated K-fold splitting."""

    def test_partition(self):
        """Each repetition's held-out folds partition the observations."""
        smpls = DMLResampling(n_folds=5, n_rep=3, n_obs=103, random_state=1).split_samples()

        self.assertEqual(len(smpls), 3)
        for rep in smpls:
            self.assertEqual(len(rep), 5)
            tests = np.concatenate([test for _, test in rep])
            np.testing.assert_array_equal(np.sort(tests), np.arange(103))
            for train, test in rep:
                self.assertEqual(np.intersect1d(train, test).size, 0)
                self.assertEqual(len(train) + len(test), 103)

    def test_fold_sizes_differ_by_at_most_one(self):
        smpls = DMLResampling(n_folds=4, n_rep=1, n_obs=10, random_state=0).split_samples()
        sizes = [len(test) for _, test in smpls[0]]
        self.assertLessEqual(max(sizes) - min(sizes), 1)

    def test_reproducible(self):
        first = DMLResampling(n_folds=3, n_rep=2, n_obs=30, random_state=42).split_samples()
        second = DMLResampling(n_folds=3, n_rep=2, n_obs=30, random_state=42).split_samples()
        for rep_a, rep_b in zip(first, second):
            for (_, test_a), (_, test_b) in zip(rep_a, rep_b):
                np.testing.assert_array_equal(test_a, test_b)

    def test_repetitions_differ(self):
        smpls = DMLResampling(n_folds=2, n_rep=2, n_obs=50, random_state=0).split_samples()
        self.assertFalse(np.array_equal(smpls[0][0][1], smpls[1][0][1]))

    def test_invalid_settings(self):
        with self.assertRaises(ConfigurationError):
            DMLResampling(n_folds=1, n_rep=1, n_obs=10)
        with self.assertRaises(ConfigurationError):
            DMLResampling(n_folds=2, n_rep=0, n_obs=10)
        with self.assertRaises(ConfigurationError):
            DMLResampling(n_folds=11, n_rep=1, n_obs=10)

    def test_cluster_splits_keep_clusters_together(self):
        cluster_ids = np.repeat(np.arange(12), 5)
        smpls = DMLResampling(n_folds=3, n_rep=2, n_obs=60, cluster_ids=cluster_ids,
                              random_state=0).split_samples()

        for rep in smpls:
            tests = np.concatenate([test for _, test in rep])
            np.testing.assert_array_equal(np.sort(tests), np.arange(60))
            for train, test in rep:
                self.assertEqual(np.intersect1d(cluster_ids[train], cluster_ids[test]).size, 0)

    def test_too_few_clusters(self):
        with self.assertRaises(ConfigurationError):
            DMLResampling(n_folds=5, n_rep=1, n_obs=40, cluster_ids=np.repeat(np.arange(4), 10))


class TestPartitionChecks(unittest.TestCase):
    """Test cases for externally supplied splits."""

    def test_no_split(self):
        smpls = no_split(6)
        self.assertEqual(len(smpls), 1)
        train, test = smpls[0][0]
        np.testing.assert_array_equal(train, test)

    def test_valid_partition(self):
        idx = np.arange(6)
        check_partition([[(idx[3:], idx[:3]), (idx[:3], idx[3:])]], n_obs=6)

    def test_incomplete_partition(self):
        idx = np.arange(6)
        with self.assertRaises(ConfigurationError):
            check_partition([[(idx[3:], idx[:2]), (idx[:3], idx[3:])]], n_obs=6)

    def test_incomplete_partition_without_cross_fitting(self):
        idx = np.arange(6)
        check_partition([[(idx[3:], idx[:2]), (idx[:3], idx[3:])]], n_obs=6, apply_cross_fitting=False)

    def test_overlap(self):
        idx = np.arange(6)
        with self.assertRaises(ConfigurationError):
            check_partition([[(idx[2:], idx[:3]), (idx[:3], idx[3:])]], n_obs=6)

    def test_normalize_single_repetition(self):
        idx = np.arange(6)
        smpls = normalize_splits([(idx[3:], idx[:3]), [[0, 1, 2], [3, 4, 5]]])

        self.assertEqual(len(smpls), 1)
        self.assertEqual(len(smpls[0]), 2)
        np.testing.assert_array_equal(smpls[0][1][1], [3, 4, 5])

    def test_normalize_repetitions(self):
        idx = np.arange(6)
        rep = [(idx[3:], idx[:3]), (idx[:3], idx[3:])]
        self.assertEqual(len(normalize_splits([rep, rep])), 2)

    def test_normalize_malformed(self):
        with self.assertRaises(ConfigurationError):
            normalize_splits([[[0, 1], [2, 3], [4, 5]]])
        with self.assertRaises(ConfigurationError):
            normalize_splits([[0.5, 1.5], [2.5, 3.5]])
        with self.assertRaises(ConfigurationError):
            normalize_splits("folds")

    def test_out_of_range(self):
        with self.assertRaises(ConfigurationError):
            check_partition([[(np.array([0, 1, 2]), np.array([3, 4, 9]))]], n_obs=6)


if __name__ == '__main__':
    unittest.main()
