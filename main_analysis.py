"""
Main analysis script: the effect of the NSW job-training program on 1978 earnings.

This script walks through Double Machine Learning on observational job-training data:
the NSW treated men are compared with PSID controls, nuisance functions are learned
with several machine learning methods, and the partially linear model is estimated
under both scores and both solving procedures, with bootstrap inference.
"""

import sys
from pathlib import Path
import logging

# Add src to path for imports
sys.path.append(str(Path(__file__).parent / "src"))

from debiased_ml.data.loader import JobTrainingDataLoader
from debiased_ml.data.preprocessor import JobTrainingPreprocessor
from debiased_ml.models.causal_models import CausalInferenceEngine
from debiased_ml.utils.helpers import (
    setup_logging, save_results, calculate_summary_statistics, check_balance, create_age_groups,
    validate_data_quality, format_results_table, ensure_directory
)


def main():
    """Run the complete causal inference analysis pipeline."""

    # Setup
    setup_logging(level="INFO")
    logger = logging.getLogger(__name__)

    results_dir = ensure_directory("results")
    data_dir = ensure_directory("data/processed")

    logger.info("Starting DML analysis of the NSW job-training program")

    # Step 1: Load and preprocess data
    logger.info("Step 1: Loading and preprocessing data")

    loader = JobTrainingDataLoader(comparison_group='psid')
    raw_data = loader.load_data()
    loader.describe_dataset()

    quality_metrics = validate_data_quality(raw_data)
    logger.info(f"Data quality: {quality_metrics['n_observations']} observations, "
                f"{quality_metrics['n_features']} features")

    preprocessor = JobTrainingPreprocessor()
    processed_data = preprocessor.preprocess(raw_data)

    processed_data.to_csv(data_dir / "processed_job_training_data.csv", index=False)
    logger.info("Processed data saved")

    # Step 2: Covariate balance analysis
    logger.info("Step 2: Checking covariate balance")

    feature_groups = preprocessor.get_feature_groups(processed_data)
    covariates = [var for group_vars in feature_groups.values() for var in group_vars]

    summary_stats = calculate_summary_statistics(
        processed_data, 'treat', columns=['re78', 're74', 're75', 'age', 'educ']
    )
    balance_stats = check_balance(processed_data, 'treat', covariates)

    # Observational controls differ sharply from the treated (|SMD| > 0.1)
    imbalanced = balance_stats[balance_stats['standardized_mean_diff'].abs() > 0.1]
    logger.info(f"Found {len(imbalanced)} imbalanced covariates (|SMD| > 0.1)")

    # Step 3: Causal inference with several learners
    logger.info("Step 3: Causal inference using Double Machine Learning")

    causal_engine = CausalInferenceEngine(n_folds=5, n_rep=3, random_state=42)
    dml_data = causal_engine.prepare_data(processed_data)

    treatment_effects = causal_engine.estimate_treatment_effects(
        dml_data,
        methods=['linear', 'random_forest', 'decision_tree', 'xgboost'],
        tune_hyperparameters=True
    )

    model_performance = causal_engine.evaluate_learner_performance()

    # Step 4: Bootstrap inference on the random forest model
    logger.info("Step 4: Multiplier bootstrap")

    bootstrap_intervals = {
        boot_method: causal_engine.bootstrap_inference(
            'random_forest', bootstrap_method=boot_method, n_rep_boot=1000
        )
        for boot_method in ('normal', 'wild', 'Bayes')
    }

    # Step 5: Scores and procedures
    logger.info("Step 5: Comparing scores and DML procedures")

    specification_effects = causal_engine.compare_specifications(dml_data, method='random_forest')

    # Step 6: Placebo test
    logger.info("Step 6: Placebo test on pre-treatment earnings")

    placebo_result = causal_engine.run_placebo_test(processed_data, placebo_outcome='re74')
    logger.info(f"Placebo test result: coefficient={placebo_result.coefficient:.2f}, "
                f"p-value={placebo_result.p_value:.4f}")

    # Step 7: Heterogeneous effects
    logger.info("Step 7: Analyzing heterogeneous treatment effects")

    grouped_data = create_age_groups(processed_data)
    heterogeneous_effects = causal_engine.analyze_heterogeneous_effects(
        grouped_data,
        ['age_group'],
        method='random_forest'
    )

    # Step 8: Results summary
    logger.info("Step 8: Generating results summary")

    results = {
        'data_summary': {
            'n_observations': len(processed_data),
            'n_treated': int(processed_data['treat'].sum()),
            'mean_re78_treated': processed_data.loc[processed_data['treat'] == 1, 're78'].mean(),
            'mean_re78_control': processed_data.loc[processed_data['treat'] == 0, 're78'].mean()
        },
        'treatment_effects': {
            method: {
                'coefficient': est.coefficient,
                'std_error': est.std_error,
                'ci_lower': est.ci_lower,
                'ci_upper': est.ci_upper,
                'p_value': est.p_value,
                'significant': est.is_significant
            } for method, est in treatment_effects.items()
        },
        'specifications': {
            label: {'coefficient': est.coefficient, 'std_error': est.std_error}
            for label, est in specification_effects.items()
        },
        'bootstrap_intervals': bootstrap_intervals,
        'model_performance': model_performance,
        'heterogeneous_effects': {
            var: {
                subgroup: {
                    'coefficient': est.coefficient,
                    'p_value': est.p_value,
                    'significant': est.is_significant
                } for subgroup, est in effects.items()
            } for var, effects in heterogeneous_effects.items()
        },
        'placebo_test': {
            'coefficient': placebo_result.coefficient,
            'p_value': placebo_result.p_value,
            'significant': placebo_result.is_significant
        },
        're78_by_arm': summary_stats['re78'].round(3),
        'balance_analysis': {
            'n_imbalanced_covariates': len(imbalanced),
            'max_imbalance': balance_stats['standardized_mean_diff'].abs().max()
        }
    }

    save_results(results, results_dir / "dml_job_training_results.json")

    print("\n" + "=" * 80)
    print("DOUBLE MACHINE LEARNING: NSW JOB TRAINING")
    print("=" * 80)

    print("\nEarnings and demographics by treatment arm:")
    print(summary_stats.round(2).to_string())

    print(format_results_table(treatment_effects, "Effect of Training on 1978 Earnings (USD)"))
    print(format_results_table(specification_effects, "Random Forest: Scores and Procedures"))

    for boot_method, intervals in bootstrap_intervals.items():
        print(f"\nBootstrap ({boot_method}) 95% intervals:")
        print(intervals.round(1).to_string())

    print(f"\nPlacebo Test (1974 earnings as outcome):")
    print(f"Coefficient: {placebo_result.coefficient:.2f}, P-value: {placebo_result.p_value:.4f}")
    print(f"Significant: {'Yes' if placebo_result.is_significant else 'No'}")

    if heterogeneous_effects:
        print(f"\nHeterogeneous Effects Summary:")
        for var, effects in heterogeneous_effects.items():
            print(f"\n{var.upper()}:")
            for subgroup, est in effects.items():
                sig_marker = "*" if est.is_significant else ""
                print(f"  {subgroup}: {est.coefficient:.2f} (p={est.p_value:.4f}){sig_marker}")

    logger.info("Analysis complete! Check the results/ directory for outputs.")


if __name__ == "__main__":
    main()
