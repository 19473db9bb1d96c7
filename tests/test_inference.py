"""
Unit tests for score functions, variance estimation and bootstrap helpers.
"""

import unittest
import numpy as np
import sys
from pathlib import Path

# Add src to path
sys.path.append(str(Path(__file__).parent.parent / "src"))

from debiased_ml.models.scores import (
    partialling_out_elements, iv_type_elements, preliminary_theta, solve_dml1, solve_dml2, score_values
)
from debiased_ml.models.inference import (
    aggregate_repetitions, boot_dml1, boot_dml2, draw_weights, joint_confint, percent_labels,
    pointwise_confint, t_stat_and_pval, var_dml1, var_dml2
)
from debiased_ml.exceptions import ConfigurationError, DegenerateFoldError


class TestScores(unittest.TestCase):
    """Test cases for the orthogonal scores and solving procedures."""

    def setUp(self):
        self.y = np.array([1.0, 2.0, 0.5, 3.0])
        self.d = np.array([0.0, 1.0, 0.0, 1.0])
        self.preds = {
            'ml_l': np.array([1.0, 1.5, 1.0, 2.0]),
            'ml_m': np.array([0.5, 0.5, 0.5, 0.5]),
            'ml_g': np.array([0.8, 1.0, 0.8, 1.2]),
        }

    def test_partialling_out_elements(self):
        psi_a, psi_b = partialling_out_elements(self.y, self.d, self.preds)
        np.testing.assert_allclose(psi_a, [-0.25, -0.25, -0.25, -0.25])
        np.testing.assert_allclose(psi_b, [0.0, 0.25, 0.25, 0.5])

    def test_iv_type_elements(self):
        psi_a, psi_b = iv_type_elements(self.y, self.d, self.preds)
        np.testing.assert_allclose(psi_a, [0.0, -0.5, 0.0, -0.5])
        np.testing.assert_allclose(psi_b, [-0.1, 0.5, 0.15, 0.9])

    def test_dml2_solution_zeroes_mean_score(self):
        psi_a, psi_b = partialling_out_elements(self.y, self.d, self.preds)
        folds = [np.array([0, 1]), np.array([2, 3])]
        theta = solve_dml2(psi_a, psi_b, folds)

        self.assertAlmostEqual(theta, 1.0)
        self.assertAlmostEqual(np.mean(score_values(psi_a, psi_b, theta)), 0.0)

    def test_dml1_averages_fold_solutions(self):
        psi_a, psi_b = partialling_out_elements(self.y, self.d, self.preds)
        folds = [np.array([0, 1]), np.array([2, 3])]
        theta, fold_thetas = solve_dml1(psi_a, psi_b, folds)

        np.testing.assert_allclose(fold_thetas, [0.5, 1.5])
        self.assertAlmostEqual(theta, 1.0)

    def test_single_fold_procedures_agree(self):
        rng = np.random.default_rng(0)
        psi_a = -rng.uniform(0.5, 1.5, 50)
        psi_b = rng.normal(size=50)
        folds = [np.arange(50)]
        self.assertAlmostEqual(solve_dml1(psi_a, psi_b, folds)[0], solve_dml2(psi_a, psi_b, folds))

    def test_zero_jacobian(self):
        psi_a = np.zeros(4)
        psi_b = np.ones(4)
        with self.assertRaises(DegenerateFoldError):
            solve_dml2(psi_a, psi_b, [np.arange(4)])
        with self.assertRaises(DegenerateFoldError):
            solve_dml1(psi_a, psi_b, [np.arange(2), np.arange(2, 4)])

    def test_preliminary_theta(self):
        theta = preliminary_theta(self.y, self.d, self.preds, np.arange(4))
        self.assertAlmostEqual(theta, 1.0)


class TestVariance(unittest.TestCase):
    """Test cases for variance estimation and aggregation."""

    def test_var_dml2(self):
        psi = np.array([1.0, -1.0, 2.0, -2.0])
        psi_a = np.full(4, -0.5)
        # mean(psi^2) = 2.5, J^2 = 0.25, n = 4
        self.assertAlmostEqual(var_dml2(psi, psi_a), 2.5)

    def test_var_dml1_matches_dml2_with_equal_jacobians(self):
        rng = np.random.default_rng(1)
        psi = rng.normal(size=40)
        psi_a = np.full(40, -2.0)
        folds = [np.arange(20), np.arange(20, 40)]
        self.assertAlmostEqual(var_dml1(psi, psi_a, folds), var_dml2(psi, psi_a))

    def test_aggregate_single_repetition(self):
        theta, se = aggregate_repetitions(np.array([0.7]), np.array([0.2]))
        self.assertAlmostEqual(theta, 0.7)
        self.assertAlmostEqual(se, 0.2)

    def test_aggregate_adds_dispersion(self):
        theta, se = aggregate_repetitions(np.array([1.0, 2.0, 3.0]), np.array([0.1, 0.1, 0.1]))
        self.assertAlmostEqual(theta, 2.0)
        # median(0.01 + [1, 0, 1]) = 1.01
        self.assertAlmostEqual(se, np.sqrt(1.01))

    def test_t_stat_and_pval(self):
        t_stat, pval = t_stat_and_pval(np.array([1.96, 0.0]), np.array([1.0, 1.0]))
        np.testing.assert_allclose(t_stat, [1.96, 0.0])
        np.testing.assert_allclose(pval, [0.05, 1.0], atol=1e-3)


class TestBootstrap(unittest.TestCase):
    """Test cases for multiplier weights and bootstrap statistics."""

    def setUp(self):
        self.rng = np.random.default_rng(123)

    def test_weight_moments(self):
        for method in ('normal', 'wild', 'Bayes'):
            weights = draw_weights(method, 2000, 200, self.rng)
            self.assertEqual(weights.shape, (2000, 200))
            self.assertAlmostEqual(weights.mean(), 0.0, delta=0.02)
            self.assertAlmostEqual(weights.var(), 1.0, delta=0.05)

    def test_wild_weights_are_rademacher(self):
        weights = draw_weights('wild', 10, 30, self.rng)
        self.assertTrue(np.all(np.isin(weights, [-1.0, 1.0])))

    def test_bayes_weights_sum_to_zero(self):
        weights = draw_weights('Bayes', 10, 30, self.rng)
        np.testing.assert_allclose(weights.sum(axis=1), 0.0, atol=1e-9)
        self.assertTrue(np.all(weights >= -1.0))

    def test_invalid_method(self):
        with self.assertRaises(ConfigurationError):
            draw_weights('poisson', 10, 10, self.rng)

    def test_boot_dml2(self):
        psi = np.array([1.0, -1.0, 0.5, -0.5])
        psi_a = np.full(4, -1.0)
        weights = np.array([[1.0, 1.0, 1.0, 1.0], [1.0, -1.0, 1.0, -1.0]])
        coef, t_stat = boot_dml2(psi, psi_a, 0.5, weights)
        np.testing.assert_allclose(coef, [0.0, -0.75])
        np.testing.assert_allclose(t_stat, [0.0, -1.5])

    def test_boot_dml1_single_fold_matches_dml2(self):
        psi = self.rng.normal(size=20)
        psi_a = -self.rng.uniform(0.5, 1.5, 20)
        weights = draw_weights('normal', 50, 20, self.rng)
        coef1, _ = boot_dml1(psi, psi_a, 1.0, weights, [np.arange(20)], [np.arange(20)])
        coef2, _ = boot_dml2(psi, psi_a, 1.0, weights)
        np.testing.assert_allclose(coef1, coef2)


class TestConfidenceIntervals(unittest.TestCase):
    """Test cases for pointwise and joint intervals."""

    def test_percent_labels(self):
        self.assertEqual(percent_labels(np.array([0.025, 0.975])), ['2.5 %', '97.5 %'])
        self.assertEqual(percent_labels(np.array([0.05, 0.95])), ['5 %', '95 %'])

    def test_pointwise(self):
        ci = pointwise_confint(np.array([1.0]), np.array([0.5]), 0.95, ['d'])
        self.assertEqual(list(ci.columns), ['2.5 %', '97.5 %'])
        self.assertAlmostEqual(ci.loc['d', '2.5 %'], 1.0 - 1.959964 * 0.5, places=5)
        self.assertAlmostEqual(ci.loc['d', '97.5 %'], 1.0 + 1.959964 * 0.5, places=5)

    def test_invalid_level(self):
        with self.assertRaises(ConfigurationError):
            pointwise_confint(np.array([1.0]), np.array([0.5]), 1.5, ['d'])

    def test_joint_single_treatment_close_to_pointwise(self):
        rng = np.random.default_rng(0)
        boot_t = rng.standard_normal((20000, 1, 1))
        joint = joint_confint(np.array([0.0]), np.array([1.0]), boot_t, 0.95, ['d'])
        pointwise = pointwise_confint(np.array([0.0]), np.array([1.0]), 0.95, ['d'])
        np.testing.assert_allclose(joint.to_numpy(), pointwise.to_numpy(), atol=0.05)

    def test_joint_wider_for_several_treatments(self):
        rng = np.random.default_rng(0)
        boot_t = rng.standard_normal((5000, 3, 1))
        coef, se = np.zeros(3), np.ones(3)
        joint = joint_confint(coef, se, boot_t, 0.95, ['d1', 'd2', 'd3'])
        pointwise = pointwise_confint(coef, se, 0.95, ['d1', 'd2', 'd3'])
        self.assertTrue(np.all(joint['97.5 %'] > pointwise['97.5 %']))


if __name__ == '__main__':
    unittest.main()
