"""
Double Machine Learning estimator for the partially linear regression model.

    Y = theta * D + g0(X) + zeta,   E[zeta | D, X] = 0
    D = m0(X) + V,                  E[V | X] = 0

The causal parameter theta is estimated from an orthogonal score with
cross-fitted nuisance predictions, following Chernozhukov et al. (2018),
"Double/debiased machine learning for treatment and structural parameters".
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import numpy as np
import pandas as pd
from sklearn.base import clone
from sklearn.model_selection import GridSearchCV, KFold, RandomizedSearchCV, cross_val_predict

from ..config import BOOTSTRAP_METHODS, DMLConfig, validate_settings
from ..data.dml_data import DMLData
from ..exceptions import ConfigurationError, DataError, NotFittedError
from .inference import (
    aggregate_repetitions, boot_dml1, boot_dml2, bootstrap_seed_sequence, draw_weights,
    joint_confint, pointwise_confint, t_stat_and_pval, var_dml1, var_dml2
)
from .learners import LearnerAdapter, check_binary
from .nuisance import NUISANCE_SPECS, check_folds, cross_fit_nuisance
from .resampling import DMLResampling, check_partition, no_split, normalize_splits
from .scores import preliminary_theta, score_values, solve_dml1, solve_dml2


logger = logging.getLogger(__name__)

SIGNIFICANCE_LEVEL = 0.05


@dataclass
class CausalEstimate:
    """Container for causal effect estimates."""
    coefficient: float
    std_error: float
    ci_lower: float
    ci_upper: float
    p_value: float
    method: str

    @property
    def is_significant(self) -> bool:
        """Check if effect is significant at the 5% level."""
        return self.significant_at(SIGNIFICANCE_LEVEL)

    def significant_at(self, alpha: float) -> bool:
        """Check if effect is significant at level alpha."""
        return self.p_value < alpha


@dataclass
class BootstrapResult:
    """
    Bootstrapped coefficients and t statistics.

    Both arrays have shape (n_rep_boot, n_treat, n_rep).
    """
    method: str
    n_rep_boot: int
    coef: np.ndarray
    t_stat: np.ndarray


class DoubleMLEstimator:
    """
    Partially linear DML estimator with a selectable score and solving procedure.

    Lifecycle: 'unfit' -> 'fitting' -> 'fit'. A failure while fitting leaves the
    model in the 'failed' state and re-raises the error.
    """

    def __init__(
        self,
        data: DMLData,
        ml_l: Any,
        ml_m: Any,
        ml_g: Optional[Any] = None,
        n_folds: int = 5,
        n_rep: int = 1,
        score: str = 'partialling out',
        dml_procedure: str = 'dml2',
        draw_sample_splitting: bool = True,
        apply_cross_fitting: bool = True,
        n_jobs: Optional[int] = None,
        random_state: Optional[int] = None,
        on_convergence_warning: str = 'raise'
    ):
        """
        Initialize the estimator.

        Args:
            data: Observation set
            ml_l: Learner for E[Y|X]
            ml_m: Learner for E[D|X]; a classifier estimates the propensity of a binary treatment
            ml_g: Learner for E[Y - theta D | X], IV-type score only. Defaults to a clone of ml_l
            n_folds: Number of folds
            n_rep: Number of repetitions of the sample splitting
            score: 'partialling out' or 'IV-type'
            dml_procedure: 'dml1' (fold-wise solve, averaged) or 'dml2' (pooled solve)
            draw_sample_splitting: Draw the folds now. If False, call set_sample_splitting() before fit(),
                unless n_folds == 1 (no sample splitting)
            apply_cross_fitting: Use every fold as held-out sample. If False only the first fold is scored
            n_jobs: Number of parallel joblib workers for the fold fits
            random_state: Seed for the sample splitting
            on_convergence_warning: 'raise' or 'warn' when a learner does not converge

        Raises:
            ConfigurationError: For invalid settings
            DataError: If the data is incompatible with the learners
        """
        if not isinstance(data, DMLData):
            raise DataError(f"data must be a DMLData object, got {type(data).__name__}")

        if n_folds == 1 and apply_cross_fitting:
            logger.warning("apply_cross_fitting is set to False. Cross-fitting is not supported for n_folds = 1.")
            apply_cross_fitting = False
        validate_settings(n_folds, n_rep, score, dml_procedure, apply_cross_fitting, on_convergence_warning)
        if n_folds > data.n_obs:
            raise ConfigurationError(
                f"n_folds ({n_folds}) cannot exceed the number of observations ({data.n_obs})"
            )
        if n_folds == 1 and n_rep > 1:
            raise ConfigurationError("Repeated sample splitting requires n_folds >= 2")

        self._dml_data = data
        self.n_folds = n_folds
        self.n_rep = n_rep
        self.score = score
        self.dml_procedure = dml_procedure
        self.apply_cross_fitting = apply_cross_fitting
        self.n_jobs = n_jobs
        self.random_state = random_state
        self.on_convergence_warning = on_convergence_warning
        self._spec = NUISANCE_SPECS[score]

        if ml_g is None and 'ml_g' in self._spec.learners:
            logger.warning("For score = 'IV-type', learners ml_l and ml_g should be specified. "
                           "Set ml_g = clone(ml_l).")
            ml_g = clone(ml_l)
        self._learners = {'ml_l': ml_l, 'ml_m': ml_m}
        if 'ml_g' in self._spec.learners:
            self._learners['ml_g'] = ml_g
        self._check_learners()

        # Tuned hyperparameters per learner and treatment column
        self._params: Dict[str, Dict[str, Dict[str, Any]]] = {name: {} for name in self._learners}

        self._smpls: Optional[List[List]] = None
        if n_folds == 1:
            self._smpls = no_split(data.n_obs)
        elif draw_sample_splitting:
            self.draw_sample_splitting()

        self._state = 'unfit'
        self._reset_results()

    @classmethod
    def from_config(
        cls,
        data: DMLData,
        config: DMLConfig,
        ml_l: Any,
        ml_m: Any,
        ml_g: Optional[Any] = None
    ) -> 'DoubleMLEstimator':
        """Build an estimator from a DMLConfig."""
        return cls(data, ml_l, ml_m, ml_g, **config.to_dict())

    def _check_learners(self) -> None:
        for name, learner in self._learners.items():
            adapter = LearnerAdapter(learner, name=name, on_convergence_warning=self.on_convergence_warning)
            if name != 'ml_m' and not adapter.is_regressor:
                raise ConfigurationError(f"{name} must be a regressor; got classifier {type(learner).__name__}")
            if name == 'ml_m' and adapter.is_classifier:
                for i_d, d_col in enumerate(self._dml_data.d_cols):
                    check_binary(self._dml_data.d[:, i_d], f"ml_m (treatment {d_col})")

    def _reset_results(self) -> None:
        n_treat = self._dml_data.n_treat
        self.coef = np.full(n_treat, np.nan)
        self.se = np.full(n_treat, np.nan)
        self.t_stat = np.full(n_treat, np.nan)
        self.pval = np.full(n_treat, np.nan)
        self.all_coef = np.full((n_treat, self.n_rep), np.nan)
        self.all_se = np.full((n_treat, self.n_rep), np.nan)
        self.all_fold_coef: Dict[tuple, np.ndarray] = {}
        self.psi = None
        self.psi_a = None
        self.psi_b = None
        self.predictions: Optional[Dict[str, np.ndarray]] = None
        self.models: Optional[Dict[str, Dict[str, List[List[Any]]]]] = None
        self._theta_initial = np.full((n_treat, self.n_rep), np.nan)
        self.boot_result: Optional[BootstrapResult] = None

    @property
    def state(self) -> str:
        return self._state

    @property
    def data(self) -> DMLData:
        return self._dml_data

    @property
    def learners(self) -> Dict[str, Any]:
        return dict(self._learners)

    @property
    def smpls(self) -> List[List]:
        if self._smpls is None:
            raise ConfigurationError("Sample splitting has not been drawn or set")
        return self._smpls

    @property
    def params(self) -> Dict[str, Dict[str, Dict[str, Any]]]:
        return self._params

    def draw_sample_splitting(self) -> 'DoubleMLEstimator':
        """Draw fresh folds for every repetition."""
        resampling = DMLResampling(
            n_folds=self.n_folds,
            n_rep=self.n_rep,
            n_obs=self._dml_data.n_obs,
            cluster_ids=self._dml_data.cluster_ids,
            random_state=self.random_state
        )
        self._smpls = resampling.split_samples()
        self._invalidate()
        return self

    def set_sample_splitting(self, all_smpls: List[List]) -> 'DoubleMLEstimator':
        """
        Use externally supplied folds.

        Args:
            all_smpls: One list of (train_idx, test_idx) pairs per repetition. A single
                list of pairs is accepted as one repetition. Pairs may be tuples or
                two-element lists.

        Raises:
            ConfigurationError: If the folds are malformed or do not partition the sample
        """
        all_smpls = normalize_splits(all_smpls)
        check_partition(all_smpls, self._dml_data.n_obs, self.apply_cross_fitting)

        n_folds = len(all_smpls[0])
        if any(len(rep) != n_folds for rep in all_smpls):
            raise ConfigurationError("Every repetition must contain the same number of folds")
        if not self.apply_cross_fitting and n_folds > 2:
            raise ConfigurationError(
                "Estimation without cross-fitting is only supported for n_folds = 1 or n_folds = 2."
            )

        self.n_folds = n_folds
        self.n_rep = len(all_smpls)
        self._smpls = all_smpls
        self._invalidate()
        return self

    def _invalidate(self) -> None:
        self._state = 'unfit'
        if hasattr(self, 'coef'):
            self._reset_results()

    def _scored_folds(self, i_rep: int) -> List:
        smpls = self.smpls[i_rep]
        if self.apply_cross_fitting:
            return smpls
        return smpls[:1]

    def _adapter(self, name: str, d_col: str) -> LearnerAdapter:
        learner = self._learners[name]
        params = self._params[name].get(d_col)
        if params:
            learner = clone(learner).set_params(**params)
        return LearnerAdapter(learner, name=name, on_convergence_warning=self.on_convergence_warning)

    def fit(self, store_predictions: bool = False, store_models: bool = False) -> 'DoubleMLEstimator':
        """
        Estimate the causal parameter(s).

        Args:
            store_predictions: Keep the out-of-fold nuisance predictions (needed by evaluate_learners)
            store_models: Keep the fitted nuisance models of every fold

        Returns:
            self

        Raises:
            DegenerateFoldError: If a fold cannot identify the parameter
            EstimationError: If a learner fails on any fold
        """
        smpls = self.smpls
        self._reset_results()
        self._state = 'fitting'
        data = self._dml_data
        n_obs, n_treat = data.n_obs, data.n_treat

        psi = np.full((n_obs, self.n_rep, n_treat), np.nan)
        psi_a = np.full_like(psi, np.nan)
        psi_b = np.full_like(psi, np.nan)
        predictions = {name: np.full_like(psi, np.nan) for name in self._learners}
        models = {name: {d_col: [] for d_col in data.d_cols} for name in self._learners}

        logger.info(f"Fitting DML ({self.score}, {self.dml_procedure}) with {self.n_folds} folds "
                    f"and {self.n_rep} repetition(s)")
        try:
            y = data.y
            for i_d, d_col in enumerate(data.d_cols):
                x = data.xd(i_d)
                d = data.d[:, i_d]
                for i_rep in range(self.n_rep):
                    folds = self._scored_folds(i_rep)
                    test_folds = [test for _, test in folds]
                    check_folds(d, folds, i_rep)

                    rep_preds, rep_models = self._cross_fit(x, y, d, d_col, folds, i_rep, i_d)
                    a, b = self._spec.score_elements(y, d, rep_preds)

                    if self.dml_procedure == 'dml1':
                        theta, fold_thetas = solve_dml1(a, b, test_folds)
                        self.all_fold_coef[(i_d, i_rep)] = fold_thetas
                        rep_psi = score_values(a, b, theta)
                        variance = var_dml1(rep_psi, a, test_folds)
                    else:
                        theta = solve_dml2(a, b, test_folds)
                        rep_psi = score_values(a, b, theta)
                        scored = np.concatenate(test_folds)
                        variance = var_dml2(rep_psi[scored], a[scored])

                    self.all_coef[i_d, i_rep] = theta
                    self.all_se[i_d, i_rep] = np.sqrt(variance)
                    psi[:, i_rep, i_d] = rep_psi
                    psi_a[:, i_rep, i_d] = a
                    psi_b[:, i_rep, i_d] = b
                    for name, preds in rep_preds.items():
                        predictions[name][:, i_rep, i_d] = preds
                        models[name][d_col].append(rep_models[name])

                self.coef[i_d], self.se[i_d] = aggregate_repetitions(self.all_coef[i_d], self.all_se[i_d])
                logger.info(f"{d_col}: coef={self.coef[i_d]:.6f}, se={self.se[i_d]:.6f}")
        except Exception:
            self._state = 'failed'
            raise

        self.t_stat, self.pval = t_stat_and_pval(self.coef, self.se)
        self.psi, self.psi_a, self.psi_b = psi, psi_a, psi_b
        if store_predictions:
            self.predictions = predictions
        if store_models:
            self.models = models
        self._state = 'fit'
        return self

    def _cross_fit(self, x, y, d, d_col, folds, i_rep, i_d):
        adapters = {name: self._adapter(name, d_col) for name in self._learners}
        targets = {'ml_l': y, 'ml_m': d}
        preds, models = cross_fit_nuisance(x, targets, adapters, folds, self.n_jobs, i_rep)

        if self._spec.second_stage:
            scored = np.concatenate([test for _, test in folds])
            theta_initial = preliminary_theta(y, d, preds, scored)
            self._theta_initial[i_d, i_rep] = theta_initial
            second_targets = {name: y - theta_initial * d for name in self._spec.second_stage}
            second_preds, second_models = cross_fit_nuisance(x, second_targets, adapters, folds, self.n_jobs, i_rep)
            preds.update(second_preds)
            models.update(second_models)
        return preds, models

    def _check_fitted(self) -> None:
        if self._state != 'fit':
            raise NotFittedError(f"Model is in state {self._state!r}; call fit() first")

    def bootstrap(
        self,
        method: str = 'normal',
        n_rep_boot: int = 500,
        random_state: Optional[int] = None
    ) -> BootstrapResult:
        """
        Multiplier bootstrap of the coefficients and t statistics.

        Args:
            method: 'normal', 'wild' or 'Bayes'
            n_rep_boot: Number of bootstrap draws
            random_state: Seed for the multiplier weights

        Returns:
            BootstrapResult with arrays of shape (n_rep_boot, n_treat, n_rep)
        """
        self._check_fitted()
        if method not in BOOTSTRAP_METHODS:
            raise ConfigurationError(
                f"Invalid bootstrap method {method!r}. Valid methods are {', '.join(BOOTSTRAP_METHODS)}."
            )
        if not isinstance(n_rep_boot, int) or isinstance(n_rep_boot, bool) or n_rep_boot < 1:
            raise ConfigurationError(f"n_rep_boot must be a positive integer, got {n_rep_boot!r}")

        n_treat = self._dml_data.n_treat
        boot_coef = np.full((n_rep_boot, n_treat, self.n_rep), np.nan)
        boot_t_stat = np.full_like(boot_coef, np.nan)
        rngs = bootstrap_seed_sequence(random_state, self.n_rep)

        for i_rep in range(self.n_rep):
            test_folds = [test for _, test in self._scored_folds(i_rep)]
            scored = np.concatenate(test_folds)
            # Same weights for all treatments so that joint intervals use one draw
            weights = draw_weights(method, n_rep_boot, len(scored), rngs[i_rep])
            for i_d in range(n_treat):
                psi = self.psi[:, i_rep, i_d]
                psi_a = self.psi_a[:, i_rep, i_d]
                se = self.all_se[i_d, i_rep]
                if self.dml_procedure == 'dml1':
                    positions, start = [], 0
                    for test in test_folds:
                        positions.append(np.arange(start, start + len(test)))
                        start += len(test)
                    coef, t_stat = boot_dml1(psi, psi_a, se, weights, test_folds, positions)
                else:
                    coef, t_stat = boot_dml2(psi[scored], psi_a[scored], se, weights)
                boot_coef[:, i_d, i_rep] = coef
                boot_t_stat[:, i_d, i_rep] = t_stat

        self.boot_result = BootstrapResult(method=method, n_rep_boot=n_rep_boot,
                                           coef=boot_coef, t_stat=boot_t_stat)
        logger.info(f"Bootstrap ({method}) with {n_rep_boot} draws complete")
        return self.boot_result

    def confint(self, joint: bool = False, level: float = 0.95) -> pd.DataFrame:
        """
        Confidence intervals for the causal parameter(s).

        Args:
            joint: Simultaneous intervals over all treatments from the bootstrap
                (requires bootstrap() first); otherwise pointwise normal intervals
            level: Confidence level

        Returns:
            DataFrame indexed by treatment with lower and upper bound columns
        """
        self._check_fitted()
        names = self._dml_data.d_cols
        if joint:
            if self.boot_result is None:
                raise NotFittedError("Apply bootstrap() before confint(joint=True)")
            return joint_confint(self.coef, self.se, self.boot_result.t_stat, level, names)
        return pointwise_confint(self.coef, self.se, level, names)

    @property
    def summary(self) -> pd.DataFrame:
        """Coefficient table with standard errors, t statistics, p-values and 95% intervals."""
        self._check_fitted()
        table = pd.DataFrame({
            'coef': self.coef,
            'std err': self.se,
            't': self.t_stat,
            'P>|t|': self.pval
        }, index=self._dml_data.d_cols)
        return pd.concat([table, self.confint(level=0.95)], axis=1)

    def to_estimate(self, method: str, treatment: Optional[str] = None) -> CausalEstimate:
        """Collapse the result for one treatment into a CausalEstimate."""
        self._check_fitted()
        summary = self.summary
        row = summary.loc[treatment] if treatment is not None else summary.iloc[0]
        return CausalEstimate(
            coefficient=float(row['coef']),
            std_error=float(row['std err']),
            ci_lower=float(row['2.5 %']),
            ci_upper=float(row['97.5 %']),
            p_value=float(row['P>|t|']),
            method=method
        )

    def evaluate_learners(
        self,
        metric: Optional[Callable[[np.ndarray, np.ndarray], float]] = None
    ) -> Dict[str, np.ndarray]:
        """
        Out-of-fold prediction error of each nuisance learner.

        Args:
            metric: Callable (y_true, y_pred) -> float. Defaults to RMSE

        Returns:
            Mapping of learner name to an array of shape (n_treat, n_rep)
        """
        self._check_fitted()
        if self.predictions is None:
            raise NotFittedError("Apply fit() with store_predictions=True before evaluate_learners()")
        if metric is None:
            def metric(y_true, y_pred):
                return float(np.sqrt(np.mean((y_true - y_pred) ** 2)))

        data = self._dml_data
        y = data.y
        errors = {}
        for name, preds in self.predictions.items():
            errors[name] = np.full((data.n_treat, self.n_rep), np.nan)
            for i_d in range(data.n_treat):
                d = data.d[:, i_d]
                for i_rep in range(self.n_rep):
                    if name == 'ml_l':
                        target = y
                    elif name == 'ml_m':
                        target = d
                    else:
                        target = y - self._theta_initial[i_d, i_rep] * d
                    scored = np.concatenate([test for _, test in self._scored_folds(i_rep)])
                    errors[name][i_d, i_rep] = metric(target[scored], preds[scored, i_rep, i_d])
        return errors

    def tune(
        self,
        param_grids: Dict[str, Dict[str, List[Any]]],
        n_folds_tune: int = 5,
        search_mode: str = 'grid_search',
        n_iter_randomized_search: int = 100,
        scoring_methods: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Dict[str, Dict[str, Any]]]:
        """
        Tune learner hyperparameters on the full sample with scikit-learn search.

        The ml_g target needs a preliminary estimate of theta, obtained from
        cross-validated predictions of the tuned ml_l and ml_m.

        Args:
            param_grids: Parameter grid per learner name; learners without a grid are left as they are
            n_folds_tune: Number of folds for the search
            search_mode: 'grid_search' or 'randomized_search'
            n_iter_randomized_search: Number of candidates for randomized search
            scoring_methods: Optional scikit-learn scoring per learner name

        Returns:
            Per learner and treatment column the best parameters and score
        """
        if search_mode not in ('grid_search', 'randomized_search'):
            raise ConfigurationError(f"search_mode must be 'grid_search' or 'randomized_search', got {search_mode!r}")
        unknown = set(param_grids) - set(self._learners)
        if unknown:
            raise ConfigurationError(f"No learners named {sorted(unknown)} in score {self.score!r}")
        scoring_methods = scoring_methods or {}

        data = self._dml_data
        y = data.y
        cv = KFold(n_splits=n_folds_tune, shuffle=True, random_state=self.random_state)
        results: Dict[str, Dict[str, Dict[str, Any]]] = {name: {} for name in param_grids}

        for i_d, d_col in enumerate(data.d_cols):
            x = data.xd(i_d)
            d = data.d[:, i_d]
            targets = {'ml_l': y, 'ml_m': d}
            for name in self._spec.first_stage:
                if name in param_grids:
                    results[name][d_col] = self._search(name, d_col, x, targets[name], param_grids[name],
                                                        cv, search_mode, n_iter_randomized_search,
                                                        scoring_methods.get(name))

            if 'ml_g' in param_grids and 'ml_g' in self._learners:
                preds = {
                    name: self._cv_predict(name, d_col, x, targets[name], cv)
                    for name in ('ml_l', 'ml_m')
                }
                theta_initial = preliminary_theta(y, d, preds, np.arange(data.n_obs))
                results['ml_g'][d_col] = self._search('ml_g', d_col, x, y - theta_initial * d,
                                                      param_grids['ml_g'], cv, search_mode,
                                                      n_iter_randomized_search, scoring_methods.get('ml_g'))

        self._invalidate()
        return results

    def _search(self, name, d_col, x, target, grid, cv, search_mode, n_iter, scoring) -> Dict[str, Any]:
        adapter = self._adapter(name, d_col)
        if scoring is None:
            scoring = 'neg_log_loss' if adapter.is_classifier else 'neg_mean_squared_error'
        if search_mode == 'grid_search':
            search = GridSearchCV(clone(self._learners[name]), grid, scoring=scoring, cv=cv, n_jobs=self.n_jobs)
        else:
            search = RandomizedSearchCV(clone(self._learners[name]), grid, n_iter=n_iter, scoring=scoring,
                                        cv=cv, n_jobs=self.n_jobs, random_state=self.random_state)
        search.fit(x, target)
        self._params[name][d_col] = search.best_params_
        logger.info(f"Tuned {name} for {d_col}: {search.best_params_} (score {search.best_score_:.4f})")
        return {'params': search.best_params_, 'score': float(search.best_score_)}

    def _cv_predict(self, name, d_col, x, target, cv) -> np.ndarray:
        adapter = self._adapter(name, d_col)
        method = 'predict_proba' if adapter.is_classifier else 'predict'
        preds = cross_val_predict(adapter.learner, x, target, cv=cv, method=method, n_jobs=self.n_jobs)
        return preds[:, 1] if adapter.is_classifier else preds

    def __repr__(self) -> str:
        return (f"DoubleMLEstimator(score={self.score!r}, dml_procedure={self.dml_procedure!r}, "
                f"n_folds={self.n_folds}, n_rep={self.n_rep}, state={self._state!r})")
