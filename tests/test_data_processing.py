"""
Unit tests for data loading, preprocessing and the DML data backend.
"""

import unittest
import pandas as pd
import numpy as np
from unittest.mock import patch
import sys
from pathlib import Path

# Add src to path
sys.path.append(str(Path(__file__).parent.parent / "src"))

from debiased_ml.data.loader import JobTrainingDataLoader, COLUMNS
from debiased_ml.data.preprocessor import JobTrainingPreprocessor
from debiased_ml.data.dml_data import DMLData
from debiased_ml.data.simulation import make_plr_data
from debiased_ml.exceptions import DataError


def _raw_frame(treat, n, seed=0):
    rng = np.random.default_rng(seed)
    return pd.DataFrame({
        'treat': [treat] * n,
        'age': rng.integers(17, 55, n),
        'educ': rng.integers(4, 16, n),
        'black': rng.integers(0, 2, n),
        'hisp': rng.integers(0, 2, n),
        'married': rng.integers(0, 2, n),
        'nodegree': rng.integers(0, 2, n),
        're74': np.where(rng.random(n) < 0.4, 0.0, rng.gamma(2.0, 5000.0, n)),
        're75': np.where(rng.random(n) < 0.4, 0.0, rng.gamma(2.0, 5000.0, n)),
        're78': rng.gamma(2.0, 5000.0, n),
    })[COLUMNS]


class TestJobTrainingDataLoader(unittest.TestCase):
    """Test cases for JobTrainingDataLoader."""

    def setUp(self):
        """Set up test fixtures."""
        self.loader = JobTrainingDataLoader(comparison_group='psid')

    def test_initialization(self):
        """Test loader initialization."""
        self.assertEqual(self.loader.comparison_group, 'psid')
        self.assertIsNone(self.loader._raw_data)
        self.assertIsNone(self.loader.get_sample_sizes())

    def test_invalid_comparison_group(self):
        with self.assertRaises(DataError):
            JobTrainingDataLoader(comparison_group='nlsy')

    @patch('debiased_ml.data.loader.pd.read_csv')
    def test_load_data_basic(self, mock_read):
        """Test basic data loading functionality."""
        mock_read.side_effect = [_raw_frame(1, 5, seed=1), _raw_frame(0, 8, seed=2)]

        result = self.loader.load_data()

        self.assertEqual(len(result), 13)
        self.assertEqual(int(result['treat'].sum()), 5)
        self.assertIn('sample', result.columns)
        self.assertEqual(self.loader.get_sample_sizes(), {'psid': 8, 'nsw_treated': 5})

        sources = [call.args[0] for call in mock_read.call_args_list]
        self.assertTrue(sources[0].endswith('nswre74_treated.txt'))
        self.assertTrue(sources[1].endswith('psid_controls.txt'))
        self.assertTrue(sources[0].startswith('https://'))

    @patch('debiased_ml.data.loader.pd.read_csv')
    def test_local_directory(self, mock_read):
        mock_read.side_effect = [_raw_frame(1, 3), _raw_frame(0, 3)]
        loader = JobTrainingDataLoader(comparison_group='cps', data_dir='/tmp/nsw/')

        loader.load_data()

        sources = [call.args[0] for call in mock_read.call_args_list]
        self.assertEqual(sources, ['/tmp/nsw/nswre74_treated.txt', '/tmp/nsw/cps_controls.txt'])

    @patch('debiased_ml.data.loader.pd.read_csv')
    def test_controls_are_untreated(self, mock_read):
        """Comparison rows are coded as untreated whatever the file says."""
        mock_read.side_effect = [_raw_frame(1, 4), _raw_frame(1, 6)]

        result = self.loader.load_data()

        self.assertEqual(int(result['treat'].sum()), 4)
        self.assertTrue((result.loc[result['sample'] == 'psid', 'treat'] == 0).all())

    @patch('debiased_ml.data.loader.pd.read_csv')
    def test_load_data_with_duplicates(self, mock_read):
        """Test data loading with duplicate removal."""
        treated = _raw_frame(1, 3)
        treated = pd.concat([treated, treated.iloc[[0]]], ignore_index=True)
        mock_read.side_effect = [treated, _raw_frame(0, 4)]

        result = self.loader.load_data(remove_duplicates=True)

        self.assertEqual(len(result), 7)
        self.assertEqual(int(result['treat'].sum()), 3)


class TestJobTrainingPreprocessor(unittest.TestCase):
    """Test cases for JobTrainingPreprocessor."""

    def setUp(self):
        """Set up test fixtures."""
        self.preprocessor = JobTrainingPreprocessor()
        self.sample_data = pd.DataFrame({
            'treat': [1, 0, 0],
            'age': [20, 30, 40],
            'educ': [10, 12, 8],
            'black': [1, 0, 0],
            'hisp': [0, 1, 0],
            'married': [0, 1, 1],
            'nodegree': [1, 0, 1],
            're74': [0.0, 1000.0, 2500.0],
            're75': [500.0, 0.0, 0.0],
            're78': [9000.0, 4000.0, 0.0],
            'sample': ['nsw_treated', 'psid', 'psid']
        })

    def test_preprocess_derived_covariates(self):
        result = self.preprocessor.preprocess(self.sample_data)

        self.assertEqual(result['age2'].tolist(), [400, 900, 1600])
        self.assertEqual(result['age3'].iloc[0], 8000)
        self.assertEqual(result['educ2'].iloc[1], 144)
        self.assertEqual(result['u74'].tolist(), [1, 0, 0])
        self.assertEqual(result['u75'].tolist(), [0, 1, 1])
        self.assertEqual(result['educ_re74'].iloc[2], 8 * 2500.0)

    def test_preprocess_removes_columns(self):
        result = self.preprocessor.preprocess(self.sample_data)

        self.assertNotIn('sample', result.columns)
        self.assertNotIn('log_re74', result.columns)
        # All remaining columns are numeric
        self.assertEqual(len(result.select_dtypes(include=[np.number]).columns), len(result.columns))

    def test_log_earnings(self):
        result = JobTrainingPreprocessor(log_earnings=True).preprocess(self.sample_data)

        self.assertAlmostEqual(result['log_re74'].iloc[1], np.log1p(1000.0))
        self.assertEqual(result['log_re75'].iloc[1], 0.0)
        self.assertNotIn('log_re78', result.columns)

    def test_missing_columns(self):
        with self.assertRaises(DataError):
            self.preprocessor.preprocess(self.sample_data.drop(columns=['re75']))

    def test_get_feature_groups(self):
        """Test feature grouping functionality."""
        processed_data = self.preprocessor.preprocess(self.sample_data)
        feature_groups = self.preprocessor.get_feature_groups(processed_data)

        for group in ['demographics', 'education', 'earnings_history']:
            self.assertIn(group, feature_groups)
            self.assertIsInstance(feature_groups[group], list)
        self.assertIn('u74', feature_groups['earnings_history'])
        flat = [col for cols in feature_groups.values() for col in cols]
        self.assertNotIn('re78', flat)
        self.assertNotIn('treat', flat)


class TestDMLData(unittest.TestCase):
    """Test cases for the DML data backend."""

    def setUp(self):
        rng = np.random.default_rng(0)
        self.df = pd.DataFrame({
            'x1': rng.normal(size=20),
            'x2': rng.normal(size=20),
            'd': rng.integers(0, 2, 20).astype(float),
            'y': rng.normal(size=20),
        })

    def test_default_covariates(self):
        data = DMLData(self.df, y_col='y', d_cols='d')

        self.assertEqual(data.x_cols, ['x1', 'x2'])
        self.assertEqual(data.d_cols, ['d'])
        self.assertEqual(data.n_obs, 20)
        self.assertEqual(data.n_treat, 1)
        self.assertEqual(data.x.shape, (20, 2))
        self.assertEqual(data.d.shape, (20, 1))
        self.assertTrue(data.is_binary_treatment(0))
        self.assertIsNone(data.cluster_ids)

    def test_missing_column(self):
        with self.assertRaises(DataError):
            DMLData(self.df, y_col='y', d_cols='treat')

    def test_overlapping_roles(self):
        with self.assertRaises(DataError):
            DMLData(self.df, y_col='y', d_cols='d', x_cols=['x1', 'd'])
        with self.assertRaises(DataError):
            DMLData(self.df, y_col='d', d_cols='d')

    def test_no_covariates(self):
        with self.assertRaises(DataError):
            DMLData(self.df[['d', 'y']], y_col='y', d_cols='d')

    def test_non_numeric_column(self):
        df = self.df.assign(x3=['a'] * 20)
        with self.assertRaises(DataError):
            DMLData(df, y_col='y', d_cols='d')

    def test_missing_values_raise(self):
        df = self.df.copy()
        df.loc[3, 'x1'] = np.nan
        df.loc[5, 'y'] = np.inf
        with self.assertRaises(DataError) as ctx:
            DMLData(df, y_col='y', d_cols='d')
        self.assertIn('2 rows', str(ctx.exception))

    def test_missing_values_drop(self):
        df = self.df.copy()
        df.loc[3, 'x1'] = np.nan
        df.loc[5, 'y'] = np.inf

        with self.assertLogs('debiased_ml.data.dml_data', level='WARNING'):
            data = DMLData(df, y_col='y', d_cols='d', missing='drop')

        self.assertEqual(data.n_obs, 18)
        self.assertTrue(np.all(np.isfinite(data.x)))

    def test_multiple_treatments(self):
        df = self.df.assign(d2=np.arange(20, dtype=float))
        data = DMLData(df, y_col='y', d_cols=['d', 'd2'])

        self.assertEqual(data.n_treat, 2)
        self.assertFalse(data.is_binary_treatment(1))
        # The other treatment enters as covariate
        np.testing.assert_array_equal(data.xd(0)[:, -1], df['d2'].to_numpy())
        self.assertEqual(data.xd(1).shape, (20, 3))

    def test_from_arrays(self):
        rng = np.random.default_rng(1)
        data = DMLData.from_arrays(rng.normal(size=(30, 3)), rng.normal(size=30),
                                   rng.normal(size=30), cluster_ids=np.repeat(np.arange(10), 3))

        self.assertEqual(data.x_cols, ['X1', 'X2', 'X3'])
        self.assertEqual(data.y_col, 'y')
        self.assertEqual(data.d_cols, ['d'])
        self.assertEqual(len(np.unique(data.cluster_ids)), 10)

    def test_from_arrays_length_mismatch(self):
        with self.assertRaises(DataError):
            DMLData.from_arrays(np.zeros((10, 2)), np.zeros(9), np.zeros(10))


class TestSimulation(unittest.TestCase):
    """Test cases for the simulated partially linear data."""

    def test_shapes_and_columns(self):
        data = make_plr_data(n_obs=100, dim_x=5, random_state=3)

        self.assertIsInstance(data, DMLData)
        self.assertEqual(data.n_obs, 100)
        self.assertEqual(data.x_cols, ['X1', 'X2', 'X3', 'X4', 'X5'])

    def test_reproducible(self):
        df1 = make_plr_data(n_obs=50, dim_x=4, random_state=7, return_type='DataFrame')
        df2 = make_plr_data(n_obs=50, dim_x=4, random_state=7, return_type='DataFrame')
        pd.testing.assert_frame_equal(df1, df2)

    def test_binary_treatment(self):
        data = make_plr_data(n_obs=200, dim_x=4, binary_treatment=True, random_state=0)
        self.assertTrue(data.is_binary_treatment(0))

    def test_invalid_arguments(self):
        with self.assertRaises(ValueError):
            make_plr_data(dim_x=2)
        with self.assertRaises(ValueError):
            make_plr_data(return_type='array')


class TestDataIntegration(unittest.TestCase):
    """Integration tests for data loading and preprocessing."""

    @patch('debiased_ml.data.loader.pd.read_csv')
    def test_full_pipeline(self, mock_read):
        """Test the complete data loading and preprocessing pipeline."""
        mock_read.side_effect = [_raw_frame(1, 40, seed=3), _raw_frame(0, 60, seed=4)]

        loader = JobTrainingDataLoader()
        raw_data = loader.load_data()

        preprocessor = JobTrainingPreprocessor()
        processed_data = preprocessor.preprocess(raw_data)

        self.assertEqual(len(processed_data), 100)
        self.assertIn('u74', processed_data.columns)
        self.assertTrue(processed_data['treat'].dtype in [np.int64, np.int32, int])
        self.assertEqual(processed_data.isnull().sum().sum(), 0)

        data = DMLData(processed_data, y_col='re78', d_cols='treat')
        self.assertEqual(data.n_obs, 100)
        self.assertNotIn('re78', data.x_cols)


if __name__ == '__main__':
    unittest.main()
