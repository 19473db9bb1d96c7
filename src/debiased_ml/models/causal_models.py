"""
Causal inference runs on job-training data using the Double Machine Learning estimator.
"""

import pandas as pd
from typing import Dict, List, Optional, Any
import logging

from sklearn.base import clone

from ..data.dml_data import DMLData
from ..exceptions import DMLError
from .estimator import CausalEstimate, DoubleMLEstimator
from .learners import get_base_learners, get_hyperparameter_grids


logger = logging.getLogger(__name__)


class CausalInferenceEngine:
    """
    Estimates the effect of job training on earnings with the partially linear DML model
    under several learners, scores and solving procedures.
    """

    def __init__(
        self,
        n_folds: int = 5,
        n_rep: int = 1,
        random_state: int = 42,
        n_jobs: Optional[int] = None
    ):
        """
        Initialize the causal inference engine.

        Args:
            n_folds: Number of folds for cross-fitting
            n_rep: Number of repetitions of the sample splitting
            random_state: Random seed for reproducibility
            n_jobs: Parallel workers for the fold fits
        """
        self.n_folds = n_folds
        self.n_rep = n_rep
        self.random_state = random_state
        self.n_jobs = n_jobs
        self.models: Dict[str, DoubleMLEstimator] = {}
        self.results: Dict[str, CausalEstimate] = {}

    def prepare_data(
        self,
        df: pd.DataFrame,
        treatment_col: str = 'treat',
        outcome_col: str = 're78',
        exclude_cols: Optional[List[str]] = None,
        missing: str = 'raise'
    ) -> DMLData:
        """
        Prepare data for Double ML analysis.

        Args:
            df: Preprocessed dataset
            treatment_col: Name of treatment variable
            outcome_col: Name of outcome variable
            exclude_cols: Additional columns to exclude from covariates
            missing: 'raise' or 'drop' (listwise deletion)

        Returns:
            DMLData object ready for analysis
        """
        if exclude_cols is None:
            exclude_cols = []

        # Post-treatment transforms of the outcome are never covariates
        default_exclude = [treatment_col, outcome_col, 'log_re78', 'sample']
        all_exclude = default_exclude + exclude_cols

        x_cols = [col for col in df.columns if col not in all_exclude]

        logger.info(f"Prepared data with {len(x_cols)} covariates, treatment: {treatment_col}, outcome: {outcome_col}")

        return DMLData(
            df,
            y_col=outcome_col,
            d_cols=treatment_col,
            x_cols=x_cols,
            missing=missing
        )

    def _get_base_learners(self, binary_treatment: bool = True) -> Dict[str, Dict[str, Any]]:
        """Get base machine learning learners for nuisance estimation."""
        return get_base_learners(random_state=self.random_state, binary_treatment=binary_treatment)

    def _get_hyperparameter_grids(self) -> Dict[str, Dict[str, Any]]:
        """Get hyperparameter grids for model tuning."""
        return get_hyperparameter_grids()

    def build_model(
        self,
        dml_data: DMLData,
        method: str,
        score: str = 'partialling out',
        dml_procedure: str = 'dml2'
    ) -> DoubleMLEstimator:
        """
        Create an unfitted estimator for one of the preset learners.

        Args:
            dml_data: Prepared data
            method: Preset learner name ('linear', 'random_forest', 'decision_tree', 'xgboost')
            score: 'partialling out' or 'IV-type'
            dml_procedure: 'dml1' or 'dml2'
        """
        learners = self._get_base_learners(binary_treatment=dml_data.is_binary_treatment(0))
        if method not in learners:
            raise KeyError(f"Unknown learner preset {method!r}; choose from {sorted(learners)}")

        ml_l = learners[method]['ml_l']
        return DoubleMLEstimator(
            dml_data,
            ml_l=clone(ml_l),
            ml_m=clone(learners[method]['ml_m']),
            ml_g=clone(ml_l) if score == 'IV-type' else None,
            n_folds=self.n_folds,
            n_rep=self.n_rep,
            score=score,
            dml_procedure=dml_procedure,
            n_jobs=self.n_jobs,
            random_state=self.random_state,
            on_convergence_warning='warn'
        )

    def estimate_treatment_effects(
        self,
        dml_data: DMLData,
        methods: Optional[List[str]] = None,
        tune_hyperparameters: bool = True,
        score: str = 'partialling out',
        dml_procedure: str = 'dml2'
    ) -> Dict[str, CausalEstimate]:
        """
        Estimate treatment effects using multiple methods.

        Args:
            dml_data: Prepared DML data
            methods: List of methods to use. If None, uses all available methods
            tune_hyperparameters: Whether to tune hyperparameters
            score: Score function passed to every model
            dml_procedure: Solving procedure passed to every model

        Returns:
            Dictionary mapping method names to causal estimates
        """
        if methods is None:
            methods = ['linear', 'random_forest', 'decision_tree', 'xgboost']

        param_grids = self._get_hyperparameter_grids()

        estimates = {}

        for method in methods:
            logger.info(f"Estimating treatment effects using {method} ({score}, {dml_procedure})")

            dml_model = self.build_model(dml_data, method, score=score, dml_procedure=dml_procedure)

            if tune_hyperparameters and method in param_grids:
                logger.info(f"Tuning hyperparameters for {method}")
                grids = dict(param_grids[method])
                if score == 'IV-type':
                    grids['ml_g'] = grids['ml_l']
                dml_model.tune(grids, search_mode='grid_search')

            dml_model.fit(store_predictions=True)

            self.models[method] = dml_model
            estimates[method] = dml_model.to_estimate(method)

            logger.info(f"{method} - Coefficient: {estimates[method].coefficient:.6f}, "
                        f"P-value: {estimates[method].p_value:.6f}")

        self.results = estimates
        return estimates

    def compare_specifications(
        self,
        dml_data: DMLData,
        method: str = 'random_forest'
    ) -> Dict[str, CausalEstimate]:
        """
        Fit one learner under every combination of score and procedure.

        Returns:
            Dictionary keyed by '<score> / <procedure>'
        """
        estimates = {}
        for score in ('partialling out', 'IV-type'):
            for dml_procedure in ('dml1', 'dml2'):
                label = f"{score} / {dml_procedure}"
                model = self.build_model(dml_data, method, score=score, dml_procedure=dml_procedure)
                model.fit()
                estimates[label] = model.to_estimate(label)
                logger.info(f"{label}: coefficient={estimates[label].coefficient:.2f}, "
                            f"se={estimates[label].std_error:.2f}")
        return estimates

    def evaluate_learner_performance(self) -> Dict[str, Dict[str, float]]:
        """
        Evaluate the out-of-fold RMSE of the nuisance learners.

        Returns:
            Dictionary with performance metrics for each method
        """
        performance = {}

        for method, model in self.models.items():
            try:
                metrics = model.evaluate_learners()
                performance[method] = {
                    f"{name}_rmse": float(values[0][0]) for name, values in metrics.items()
                }
            except DMLError as e:
                logger.warning(f"Could not evaluate learners for {method}: {e}")
                performance[method] = {'error': str(e)}

        return performance

    def run_placebo_test(
        self,
        df: pd.DataFrame,
        placebo_outcome: str = 're74',
        treatment_col: str = 'treat'
    ) -> CausalEstimate:
        """
        Run placebo test using pre-treatment earnings as outcome, which training cannot affect.

        Args:
            df: Preprocessed dataset
            placebo_outcome: Pre-treatment column used as outcome
            treatment_col: Name of treatment variable

        Returns:
            Causal estimate for the placebo outcome
        """
        logger.info(f"Running placebo test with {placebo_outcome} as outcome")

        # Everything derived from the placebo outcome has to leave the covariate set
        derived = [col for col in df.columns if col != placebo_outcome and placebo_outcome in col]
        derived += [col for col in ('u74',) if placebo_outcome == 're74' and col in df.columns]
        placebo_data = self.prepare_data(
            df,
            treatment_col=treatment_col,
            outcome_col=placebo_outcome,
            exclude_cols=['re78'] + derived
        )

        dml_model = self.build_model(placebo_data, 'linear')
        dml_model.fit()

        return dml_model.to_estimate('placebo_test')

    def bootstrap_inference(
        self,
        method: str,
        bootstrap_method: str = 'normal',
        n_rep_boot: int = 1000,
        level: float = 0.95
    ) -> pd.DataFrame:
        """
        Bootstrap a fitted model and return pointwise and joint intervals side by side.

        Args:
            method: Name of a model fitted by estimate_treatment_effects
            bootstrap_method: 'normal', 'wild' or 'Bayes'
            n_rep_boot: Number of bootstrap draws
            level: Confidence level
        """
        model = self.models[method]
        model.bootstrap(method=bootstrap_method, n_rep_boot=n_rep_boot, random_state=self.random_state)
        pointwise = model.confint(joint=False, level=level).add_prefix('pointwise ')
        joint = model.confint(joint=True, level=level).add_prefix('joint ')
        return pd.concat([pointwise, joint], axis=1)

    def analyze_heterogeneous_effects(
        self,
        df: pd.DataFrame,
        subgroup_vars: List[str],
        method: str = 'random_forest'
    ) -> Dict[str, Dict[str, CausalEstimate]]:
        """
        Analyze heterogeneous treatment effects across subgroups.

        Args:
            df: Preprocessed dataset
            subgroup_vars: Variables to define subgroups
            method: Method to use for estimation

        Returns:
            Dictionary mapping subgroup variables to their effect estimates
        """
        heterogeneous_results = {}

        for var in subgroup_vars:
            logger.info(f"Analyzing heterogeneous effects by {var}")
            subgroup_results = {}

            for value in df[var].unique():
                if pd.isna(value):
                    continue

                subgroup_df = df[df[var] == value].copy()

                if len(subgroup_df) < 100:
                    logger.warning(f"Skipping subgroup {var}={value} (n={len(subgroup_df)})")
                    continue

                try:
                    subgroup_data = self.prepare_data(subgroup_df, exclude_cols=[var])
                    estimates = self.estimate_treatment_effects(
                        subgroup_data,
                        methods=[method],
                        tune_hyperparameters=False
                    )
                    subgroup_results[str(value)] = estimates[method]

                except DMLError as e:
                    logger.error(f"Error analyzing subgroup {var}={value}: {e}")

            heterogeneous_results[var] = subgroup_results

        return heterogeneous_results
