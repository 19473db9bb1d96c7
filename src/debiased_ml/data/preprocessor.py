"""
Feature derivation for the job-training analysis.
"""

import pandas as pd
import numpy as np
from typing import Dict, List
import logging

from ..exceptions import DataError


logger = logging.getLogger(__name__)


class JobTrainingPreprocessor:
    """Derives the covariates used by Dehejia and Wahba from the raw NSW/PSID/CPS columns."""

    def __init__(self, log_earnings: bool = False):
        """
        Initialize the preprocessor.

        Args:
            log_earnings: Also add log(1 + earnings) for the pre-treatment years
        """
        self.log_earnings = log_earnings
        self.required_columns = [
            'treat', 'age', 'educ', 'black', 'hisp', 'married', 'nodegree', 're74', 're75', 're78'
        ]
        self.columns_to_drop = ['sample']

    def preprocess(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Apply feature derivation to the dataset.

        Args:
            df: Raw job-training dataset

        Returns:
            Dataset with derived covariates, all columns numeric
        """
        missing = [col for col in self.required_columns if col not in df.columns]
        if missing:
            raise DataError(f"Missing required columns: {missing}")

        logger.info("Starting data preprocessing")
        df_processed = df.copy()

        # Polynomial terms in age and education
        df_processed['age2'] = df_processed['age'] ** 2
        df_processed['age3'] = df_processed['age'] ** 3
        df_processed['educ2'] = df_processed['educ'] ** 2

        # Unemployment indicators (zero earnings) in the pre-treatment years
        df_processed['u74'] = (df_processed['re74'] == 0).astype(int)
        df_processed['u75'] = (df_processed['re75'] == 0).astype(int)

        df_processed['educ_re74'] = df_processed['educ'] * df_processed['re74']

        if self.log_earnings:
            for col in ['re74', 're75']:
                df_processed[f"log_{col}"] = np.log1p(df_processed[col])

        df_processed = df_processed.drop(
            columns=[col for col in self.columns_to_drop if col in df_processed.columns]
        )

        logger.info(f"Preprocessing complete. Final dataset shape: {df_processed.shape}")
        return df_processed

    def get_feature_groups(self, df: pd.DataFrame) -> Dict[str, List[str]]:
        """
        Categorize features into groups for analysis.

        Args:
            df: Preprocessed dataset

        Returns:
            Dictionary mapping feature group names to column lists
        """
        demographics = ['age', 'age2', 'age3', 'black', 'hisp', 'married']

        education = ['educ', 'educ2', 'nodegree']

        earnings_history = ['re74', 're75', 'u74', 'u75', 'educ_re74'] + [
            col for col in df.columns if col.startswith('log_re7') and col != 'log_re78'
        ]

        groups = {
            'demographics': demographics,
            'education': education,
            'earnings_history': earnings_history
        }
        return {name: [col for col in cols if col in df.columns] for name, cols in groups.items()}
