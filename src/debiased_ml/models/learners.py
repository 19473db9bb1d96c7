"""
Uniform fit/predict wrapper around scikit-learn compatible learners.
"""

import warnings
import logging
from typing import Any, Dict, Optional

import numpy as np
from sklearn.base import clone, is_classifier, is_regressor
from sklearn.exceptions import ConvergenceWarning
from sklearn.ensemble import RandomForestClassifier, RandomForestRegressor
from sklearn.tree import DecisionTreeClassifier, DecisionTreeRegressor
from sklearn.linear_model import LassoCV, LogisticRegressionCV
from sklearn.pipeline import make_pipeline
from sklearn.preprocessing import StandardScaler
from xgboost import XGBClassifier, XGBRegressor

from ..exceptions import ConfigurationError, DataError, EstimationError, LearnerConvergenceError


logger = logging.getLogger(__name__)


class LearnerAdapter:
    """
    Wraps a regression or classification learner behind a single fit/predict contract.

    Classifiers are fit on binary 0/1 targets and predict the probability of class 1.
    Every call to ``fit`` works on a fresh clone of the template learner.
    """

    def __init__(self, learner: Any, name: str = 'learner', on_convergence_warning: str = 'raise'):
        """
        Initialize the adapter.

        Args:
            learner: Unfitted estimator exposing fit() and predict() (and predict_proba() for classifiers)
            name: Nuisance name used in log and error messages (e.g. 'ml_l')
            on_convergence_warning: 'raise' turns a ConvergenceWarning into LearnerConvergenceError,
                'warn' logs it and keeps the fit
        """
        if not (hasattr(learner, 'fit') and hasattr(learner, 'predict')):
            raise ConfigurationError(
                f"{name} must provide fit() and predict(); got {type(learner).__name__}"
            )
        if is_classifier(learner) and not hasattr(learner, 'predict_proba'):
            raise ConfigurationError(f"Classifier {name} must provide predict_proba()")
        if on_convergence_warning not in ('raise', 'warn'):
            raise ConfigurationError(
                f"on_convergence_warning must be 'raise' or 'warn', got {on_convergence_warning!r}"
            )

        self.learner = learner
        self.name = name
        self.on_convergence_warning = on_convergence_warning
        self.fitted_ = None

    @property
    def is_classifier(self) -> bool:
        return is_classifier(self.learner)

    @property
    def is_regressor(self) -> bool:
        # Plain fit/predict objects without sklearn tags are treated as regressors
        return is_regressor(self.learner) or not self.is_classifier

    def set_params(self, **params) -> 'LearnerAdapter':
        self.learner = clone(self.learner).set_params(**params)
        return self

    def get_params(self) -> Dict[str, Any]:
        return self.learner.get_params()

    def fit(self, X: np.ndarray, y: np.ndarray) -> 'LearnerAdapter':
        """
        Fit a fresh clone of the learner.

        Args:
            X: Training covariates
            y: Training target

        Returns:
            self, with the fitted learner in ``fitted_``

        Raises:
            DataError: If a classifier receives a non-binary target
            LearnerConvergenceError: If the learner does not converge and warnings are escalated
            EstimationError: If the learner raises during fitting
        """
        if self.is_classifier:
            check_binary(y, self.name)

        model = clone(self.learner)
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter('always', ConvergenceWarning)
            try:
                model.fit(X, y)
            except (ValueError, ArithmeticError, np.linalg.LinAlgError) as e:
                raise EstimationError(f"{self.name} ({type(model).__name__}) failed to fit: {e}") from e

        convergence = [w for w in caught if issubclass(w.category, ConvergenceWarning)]
        for w in caught:
            if not issubclass(w.category, ConvergenceWarning):
                warnings.warn_explicit(w.message, w.category, w.filename, w.lineno)
        if convergence:
            message = f"{self.name} ({type(model).__name__}) did not converge: {convergence[0].message}"
            if self.on_convergence_warning == 'raise':
                raise LearnerConvergenceError(message)
            logger.warning(message)

        self.fitted_ = model
        return self

    def predict(self, X: np.ndarray) -> np.ndarray:
        """Predict the conditional mean (regressors) or P(y=1 | X) (classifiers)."""
        if self.fitted_ is None:
            raise EstimationError(f"{self.name} must be fitted before predicting")
        if self.is_classifier:
            classes = list(self.fitted_.classes_)
            return np.asarray(self.fitted_.predict_proba(X))[:, classes.index(1)]
        return np.asarray(self.fitted_.predict(X), dtype=float).ravel()

    def __repr__(self) -> str:
        return f"LearnerAdapter(name={self.name!r}, learner={self.learner!r})"


def check_binary(y: np.ndarray, name: str) -> None:
    """Raise DataError unless y only holds 0 and 1."""
    values = np.unique(y)
    if not np.all(np.isin(values, [0, 1])):
        raise DataError(
            f"{name} is a classifier but the target is not binary 0/1 "
            f"(found {len(values)} distinct values)"
        )


def get_base_learners(random_state: Optional[int] = 42, binary_treatment: bool = True) -> Dict[str, Dict[str, Any]]:
    """
    Preset learner pairs for the outcome (ml_l) and treatment (ml_m) nuisances.

    Args:
        random_state: Seed passed to randomized learners
        binary_treatment: Use classifiers for ml_m when the treatment is binary

    Returns:
        Mapping of method name to {'ml_l': ..., 'ml_m': ...}
    """
    if binary_treatment:
        treatment_learners = {
            'linear': make_pipeline(StandardScaler(), LogisticRegressionCV(cv=5, max_iter=1000)),
            'random_forest': RandomForestClassifier(n_estimators=500, max_depth=5, min_samples_leaf=5,
                                                    random_state=random_state),
            'decision_tree': DecisionTreeClassifier(max_depth=5, min_samples_leaf=10,
                                                    random_state=random_state),
            'xgboost': XGBClassifier(n_estimators=100, max_depth=3, learning_rate=0.1,
                                     objective="binary:logistic", eval_metric="logloss",
                                     random_state=random_state, n_jobs=1),
        }
    else:
        treatment_learners = {
            'linear': make_pipeline(StandardScaler(), LassoCV(cv=5, max_iter=10000)),
            'random_forest': RandomForestRegressor(n_estimators=500, max_depth=5, min_samples_leaf=5,
                                                   random_state=random_state),
            'decision_tree': DecisionTreeRegressor(max_depth=5, min_samples_leaf=10,
                                                   random_state=random_state),
            'xgboost': XGBRegressor(n_estimators=100, max_depth=3, learning_rate=0.1,
                                    objective="reg:squarederror", random_state=random_state, n_jobs=1),
        }

    outcome_learners = {
        'linear': make_pipeline(StandardScaler(), LassoCV(cv=5, max_iter=10000)),
        'random_forest': RandomForestRegressor(n_estimators=500, max_depth=5, min_samples_leaf=5,
                                               random_state=random_state),
        'decision_tree': DecisionTreeRegressor(max_depth=5, min_samples_leaf=10,
                                               random_state=random_state),
        'xgboost': XGBRegressor(n_estimators=100, max_depth=3, learning_rate=0.1,
                                objective="reg:squarederror", random_state=random_state, n_jobs=1),
    }

    return {
        method: {'ml_l': outcome_learners[method], 'ml_m': treatment_learners[method]}
        for method in outcome_learners
    }


def get_hyperparameter_grids() -> Dict[str, Dict[str, Any]]:
    """Hyperparameter grids for tuning the preset learners."""
    forest_grid = {
        'n_estimators': [100, 300],
        'max_depth': [3, 5, 8],
        'min_samples_leaf': [5, 10],
        'max_features': ['sqrt', 1.0]
    }
    tree_grid = {
        'max_depth': [3, 5, 8],
        'min_samples_split': [20, 50],
        'min_samples_leaf': [10, 20],
        'ccp_alpha': [0.0, 0.01]
    }
    xgb_grid = {
        'n_estimators': [100, 300],
        'max_depth': [2, 4],
        'learning_rate': [0.03, 0.1],
        'subsample': [0.8, 1.0]
    }
    return {
        'random_forest': {'ml_l': forest_grid, 'ml_m': forest_grid},
        'decision_tree': {'ml_l': tree_grid, 'ml_m': tree_grid},
        'xgboost': {'ml_l': xgb_grid, 'ml_m': xgb_grid},
    }
