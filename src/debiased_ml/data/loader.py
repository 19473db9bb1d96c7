"""
Data loading module for the NSW job-training datasets (Dehejia and Wahba, 1999).
"""

import pandas as pd
from typing import Dict, Optional
import logging

from ..exceptions import DataError


logger = logging.getLogger(__name__)


BASE_URL = "https://users.nber.org/~rdehejia/data"

COLUMNS = ['treat', 'age', 'educ', 'black', 'hisp', 'married', 'nodegree', 're74', 're75', 're78']

DATA_FILES = {
    'nsw_treated': 'nswre74_treated.txt',
    'nsw_control': 'nswre74_control.txt',
    'psid': 'psid_controls.txt',
    'cps': 'cps_controls.txt',
}


class JobTrainingDataLoader:
    """
    Loads the NSW experimental treated sample and a non-experimental comparison group.

    The treated men of the National Supported Work demonstration are combined with
    controls drawn from the PSID or CPS, giving an observational dataset in which
    selection into training depends on the covariates.
    """

    def __init__(self, comparison_group: str = 'psid', data_dir: Optional[str] = None):
        """
        Initialize the data loader.

        Args:
            comparison_group: 'psid' or 'cps' for observational controls, 'nsw_control'
                for the experimental benchmark
            data_dir: Optional local directory holding the raw text files. If None,
                the files are read from the NBER mirror
        """
        if comparison_group not in ('psid', 'cps', 'nsw_control'):
            raise DataError(f"Unknown comparison group {comparison_group!r}")
        self.comparison_group = comparison_group
        self.data_dir = data_dir
        self._raw_data = None

    def _source(self, key: str) -> str:
        filename = DATA_FILES[key]
        if self.data_dir is not None:
            return f"{self.data_dir.rstrip('/')}/{filename}"
        return f"{BASE_URL}/{filename}"

    def _read(self, key: str) -> pd.DataFrame:
        source = self._source(key)
        logger.info(f"Reading {key} from {source}")
        df = pd.read_csv(source, sep=r"\s+", header=None, names=COLUMNS)
        if df.shape[1] != len(COLUMNS) or df.isna().all(axis=1).any():
            raise DataError(f"Unexpected layout in {source}")
        return df

    def load_data(self, remove_duplicates: bool = False) -> pd.DataFrame:
        """
        Load the treated sample and the comparison group.

        Args:
            remove_duplicates: Whether to drop exact duplicate rows

        Returns:
            Combined dataset with a 'sample' column naming the source file
        """
        treated = self._read('nsw_treated').assign(sample='nsw_treated')
        controls = self._read(self.comparison_group).assign(sample=self.comparison_group)
        # Comparison files are coded treat=0 already; enforce it for the mixed dataset
        controls['treat'] = 0

        df = pd.concat([treated, controls], axis=0, ignore_index=True)

        if remove_duplicates:
            initial_size = len(df)
            df = df.drop_duplicates(subset=COLUMNS, keep="first").reset_index(drop=True)
            logger.info(f"Removed {initial_size - len(df)} duplicate rows")

        int_cols = ['treat', 'age', 'educ', 'black', 'hisp', 'married', 'nodegree']
        df[int_cols] = df[int_cols].astype(int)

        self._raw_data = df
        logger.info(f"Loaded dataset with {len(df)} observations "
                    f"({int(df['treat'].sum())} treated, {int((df['treat'] == 0).sum())} controls)")

        return df

    def get_sample_sizes(self) -> Optional[Dict[str, int]]:
        """Number of observations per source sample."""
        if self._raw_data is None:
            return None
        return self._raw_data['sample'].value_counts().to_dict()

    def describe_dataset(self) -> None:
        """Print dataset description and basic statistics."""
        if self._raw_data is None:
            logger.error("No data loaded. Call load_data() first.")
            return

        print("Dataset Overview:")
        print("=" * 50)
        print(f"Shape: {self._raw_data.shape}")
        print(f"Comparison group: {self.comparison_group}")

        print("\nSample composition:")
        for sample, count in self._raw_data['sample'].value_counts().items():
            print(f"  {sample}: {count}")

        print("\nCovariate means by treatment status:")
        means = self._raw_data.groupby('treat')[COLUMNS[1:]].mean().T
        for col, row in means.iterrows():
            print(f"  {col:>9}: control={row.get(0, float('nan')):10.2f}  treated={row.get(1, float('nan')):10.2f}")
