"""
Quick analysis script to generate results without hyperparameter tuning or bootstrap.
"""

import sys
from pathlib import Path
import pandas as pd
import logging

# Add src to path for imports
sys.path.append(str(Path(__file__).parent / "src"))

from debiased_ml.data.loader import JobTrainingDataLoader
from debiased_ml.data.preprocessor import JobTrainingPreprocessor
from debiased_ml.models.causal_models import CausalInferenceEngine
from debiased_ml.utils.helpers import setup_logging, save_results, ensure_directory


def main():
    """Run a quick causal inference analysis without hyperparameter tuning."""

    # Setup
    setup_logging(level="INFO")
    logger = logging.getLogger(__name__)

    results_dir = ensure_directory("results")
    data_dir = ensure_directory("data/processed")

    logger.info("Starting quick causal inference analysis")

    # Load existing processed data if available
    processed_data_path = data_dir / "processed_job_training_data.csv"
    if processed_data_path.exists():
        logger.info("Loading existing processed data")
        processed_data = pd.read_csv(processed_data_path)
    else:
        logger.info("Processing data from scratch")
        loader = JobTrainingDataLoader(comparison_group='psid')
        raw_data = loader.load_data()

        preprocessor = JobTrainingPreprocessor()
        processed_data = preprocessor.preprocess(raw_data)

        processed_data.to_csv(processed_data_path, index=False)

    logger.info(f"Dataset shape: {processed_data.shape}")

    causal_engine = CausalInferenceEngine(n_folds=3, random_state=42)  # Reduced folds for speed

    dml_data = causal_engine.prepare_data(processed_data)

    logger.info("Estimating treatment effects (no hyperparameter tuning)")
    treatment_effects = causal_engine.estimate_treatment_effects(
        dml_data,
        methods=['linear', 'random_forest', 'xgboost'],
        tune_hyperparameters=False
    )

    logger.info("\n" + "=" * 50)
    logger.info("TREATMENT EFFECT RESULTS")
    logger.info("=" * 50)

    for method, estimate in treatment_effects.items():
        logger.info(f"\n{method.upper()}:")
        logger.info(f"  Coefficient: {estimate.coefficient:.2f}")
        logger.info(f"  Std Error: {estimate.std_error:.2f}")
        logger.info(f"  95% CI: [{estimate.ci_lower:.2f}, {estimate.ci_upper:.2f}]")
        logger.info(f"  P-value: {estimate.p_value:.6f}")
        logger.info(f"  Significant: {'Yes' if estimate.is_significant else 'No'}")

    logger.info("Evaluating model performance")
    performance = causal_engine.evaluate_learner_performance()

    logger.info("\nMODEL PERFORMANCE (out-of-fold RMSE):")
    for method, metrics in performance.items():
        if 'error' not in metrics:
            logger.info(f"{method}: {metrics}")

    results = {
        'treatment_effects': {k: {
            'coefficient': v.coefficient,
            'std_error': v.std_error,
            'ci_lower': v.ci_lower,
            'ci_upper': v.ci_upper,
            'p_value': v.p_value,
            'method': v.method
        } for k, v in treatment_effects.items()},
        'model_performance': performance,
        'dataset_info': {
            'n_observations': len(processed_data),
            'n_features': len(processed_data.columns),
            'treatment_rate': processed_data['treat'].mean(),
            'mean_outcome': processed_data['re78'].mean()
        }
    }

    save_results(results, results_dir / "dml_job_training_results.json")
    logger.info("Results saved to JSON file")

    logger.info("Quick analysis completed!")


if __name__ == "__main__":
    main()
