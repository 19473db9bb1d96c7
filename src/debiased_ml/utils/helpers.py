"""
Utility functions for the job-training analysis.
"""

import pandas as pd
import numpy as np
import logging
from pathlib import Path
from typing import Dict, List, Any, Optional
import json
import pickle


logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """
    Set up logging configuration.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file to write logs to
    """
    log_level = getattr(logging, level.upper())

    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )


def _to_serializable(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k): _to_serializable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_serializable(v) for v in value]
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, (np.integer, np.bool_)):
        return value.item()
    if isinstance(value, np.floating):
        return float(value)
    if isinstance(value, pd.DataFrame):
        return value.to_dict(orient='index')
    return value


def save_results(results: Dict[str, Any], filepath: str) -> None:
    """
    Save analysis results to file.

    Args:
        results: Dictionary containing analysis results
        filepath: Path to save results (.json or .pkl)
    """
    filepath = Path(filepath)

    if filepath.suffix == '.json':
        serializable_results = {}
        for key, value in results.items():
            value = _to_serializable(value)
            try:
                json.dumps(value)
                serializable_results[key] = value
            except (TypeError, ValueError):
                serializable_results[key] = str(value)

        with open(filepath, 'w') as f:
            json.dump(serializable_results, f, indent=2)

    elif filepath.suffix == '.pkl':
        with open(filepath, 'wb') as f:
            pickle.dump(results, f)

    else:
        raise ValueError(f"Unsupported file format: {filepath.suffix}")

    logger.info(f"Results saved to {filepath}")


def load_results(filepath: str) -> Dict[str, Any]:
    """
    Load analysis results from file.

    Args:
        filepath: Path to results file

    Returns:
        Dictionary containing analysis results
    """
    filepath = Path(filepath)

    if filepath.suffix == '.json':
        with open(filepath, 'r') as f:
            results = json.load(f)

    elif filepath.suffix == '.pkl':
        with open(filepath, 'rb') as f:
            results = pickle.load(f)

    else:
        raise ValueError(f"Unsupported file format: {filepath.suffix}")

    logger.info(f"Results loaded from {filepath}")
    return results


def calculate_summary_statistics(
    df: pd.DataFrame,
    group_col: Optional[str] = None,
    columns: Optional[List[str]] = None
) -> pd.DataFrame:
    """
    Describe outcome and covariates, optionally by treatment arm.

    Next to count/mean/median/std the share of exact zeros is reported, since
    earnings columns are zero for everyone out of work in that year.

    Args:
        df: Dataset
        group_col: Optional column to group by (e.g. the treatment indicator)
        columns: Columns to describe; defaults to every numeric column

    Returns:
        DataFrame with one row per column, or one row per group with
        (column, statistic) columns when grouped
    """
    if columns is None:
        columns = df.select_dtypes(include=[np.number]).columns.tolist()
    else:
        missing = [col for col in columns if col not in df.columns]
        if missing:
            raise ValueError(f"Columns not found: {missing}")
    columns = [col for col in columns if col != group_col]

    stats = ['count', 'mean', 'median', 'std']
    zeros = df[columns] == 0
    if group_col and group_col in df.columns:
        summary = df.groupby(group_col)[columns].agg(stats)
        zero_share = zeros.groupby(df[group_col]).mean()
        return pd.concat(
            {col: summary[col].assign(zero_share=zero_share[col]) for col in columns}, axis=1
        )

    summary = df[columns].agg(stats).T
    summary['zero_share'] = zeros.mean()
    return summary


def check_balance(df: pd.DataFrame, treatment_col: str, covariates: List[str]) -> pd.DataFrame:
    """
    Check covariate balance between treatment and control groups.

    Args:
        df: Dataset
        treatment_col: Name of treatment variable
        covariates: List of covariate columns

    Returns:
        DataFrame with balance statistics
    """
    balance_stats = []

    for covariate in covariates:
        if covariate not in df.columns:
            continue

        treated = df[df[treatment_col] == 1][covariate]
        control = df[df[treatment_col] == 0][covariate]

        # Standardized mean difference
        if treated.std() + control.std() > 0:
            smd = (treated.mean() - control.mean()) / np.sqrt((treated.var() + control.var()) / 2)
        else:
            smd = 0

        balance_stats.append({
            'covariate': covariate,
            'treated_mean': treated.mean(),
            'control_mean': control.mean(),
            'treated_std': treated.std(),
            'control_std': control.std(),
            'standardized_mean_diff': smd
        })

    return pd.DataFrame(balance_stats)


def create_age_groups(df: pd.DataFrame, age_col: str = 'age') -> pd.DataFrame:
    """
    Create age group categories for heterogeneous analysis.

    Args:
        df: Dataset
        age_col: Name of age column

    Returns:
        DataFrame with age groups added
    """
    df = df.copy()
    df['age_group'] = pd.cut(
        df[age_col],
        bins=[0, 24, 34, np.inf],
        labels=['under_25', '25_to_34', '35_and_over']
    ).astype(str)
    return df


def validate_data_quality(
    df: pd.DataFrame,
    treatment_col: str = 'treat',
    outcome_col: str = 're78'
) -> Dict[str, Any]:
    """
    Validate data quality and return quality metrics.

    Args:
        df: Dataset to validate
        treatment_col: Name of treatment variable
        outcome_col: Name of outcome variable

    Returns:
        Dictionary with data quality metrics
    """
    quality_metrics = {}

    quality_metrics['n_observations'] = len(df)
    quality_metrics['n_features'] = len(df.columns)

    missing_counts = df.isnull().sum()
    quality_metrics['missing_data'] = {
        'total_missing': int(missing_counts.sum()),
        'features_with_missing': int((missing_counts > 0).sum()),
        'max_missing_feature': missing_counts.idxmax() if missing_counts.sum() > 0 else None,
        'max_missing_count': int(missing_counts.max()) if len(missing_counts) else 0
    }

    quality_metrics['duplicates'] = int(df.duplicated().sum())

    if treatment_col in df.columns:
        treatment_dist = df[treatment_col].value_counts(normalize=True)
        quality_metrics['treatment_distribution'] = treatment_dist.to_dict()

    if outcome_col in df.columns:
        quality_metrics['outcome_zero_share'] = float((df[outcome_col] == 0).mean())
        quality_metrics['outcome_mean_by_treatment'] = (
            df.groupby(treatment_col)[outcome_col].mean().to_dict()
            if treatment_col in df.columns else {}
        )

    return quality_metrics


def format_results_table(estimates: Dict[str, Any], title: str = "Treatment Effect Estimates") -> str:
    """
    Format results as a table for reporting.

    Args:
        estimates: Dictionary of causal estimates
        title: Title for the table

    Returns:
        Formatted table string
    """
    table_lines = [f"\n{title}", "=" * len(title)]

    headers = ["Method", "Coefficient", "Std Error", "95% CI", "P-value", "Significant"]
    widths = [22, 12, 12, 24, 10, 11]
    table_lines.append(" | ".join(f"{h:>{w}}" for h, w in zip(headers, widths)))
    table_lines.append("-" * (sum(widths) + 3 * (len(widths) - 1)))

    for method, est in estimates.items():
        if hasattr(est, 'coefficient'):
            significance = "Yes" if est.is_significant else "No"
            ci_str = f"[{est.ci_lower:.1f}, {est.ci_upper:.1f}]"

            row = [
                method[:22],
                f"{est.coefficient:.2f}",
                f"{est.std_error:.2f}",
                ci_str,
                f"{est.p_value:.4f}",
                significance
            ]
            table_lines.append(" | ".join(f"{cell:>{w}}" for cell, w in zip(row, widths)))

    return "\n".join(table_lines)


def ensure_directory(path: str) -> Path:
    """
    Ensure directory exists, create if it doesn't.

    Args:
        path: Directory path

    Returns:
        Path object
    """
    path_obj = Path(path)
    path_obj.mkdir(parents=True, exist_ok=True)
    return path_obj
