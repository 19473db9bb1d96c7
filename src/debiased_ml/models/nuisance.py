"""
Nuisance specifications and cross-fitted nuisance estimation.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np
from joblib import Parallel, delayed

from .learners import LearnerAdapter
from .resampling import Split
from .scores import partialling_out_elements, iv_type_elements
from ..exceptions import DegenerateFoldError, EstimationError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NuisanceSpec:
    """
    Which nuisance functions a score needs and how they enter the moment equation.

    Attributes:
        score: Score name
        first_stage: Nuisances fit on the raw outcome and treatment
        second_stage: Nuisances whose target depends on a preliminary estimate of theta
        score_elements: Maps (y, d, predictions) to the score elements (psi_a, psi_b)
    """
    score: str
    first_stage: Tuple[str, ...]
    second_stage: Tuple[str, ...]
    score_elements: Callable[[np.ndarray, np.ndarray, Dict[str, np.ndarray]], Tuple[np.ndarray, np.ndarray]]

    @property
    def learners(self) -> Tuple[str, ...]:
        return self.first_stage + self.second_stage


PARTIALLING_OUT = NuisanceSpec(
    score='partialling out',
    first_stage=('ml_l', 'ml_m'),
    second_stage=(),
    score_elements=partialling_out_elements
)

IV_TYPE = NuisanceSpec(
    score='IV-type',
    first_stage=('ml_l', 'ml_m'),
    second_stage=('ml_g',),
    score_elements=iv_type_elements
)

NUISANCE_SPECS = {spec.score: spec for spec in (PARTIALLING_OUT, IV_TYPE)}


@dataclass
class FoldFit:
    """Out-of-fold predictions of one learner on one fold."""
    name: str
    i_fold: int
    test_idx: np.ndarray
    predictions: np.ndarray
    model: object


def check_folds(d: np.ndarray, smpls: List[Split], i_rep: int = 0) -> None:
    """
    Reject folds in which the treatment does not vary.

    Raises:
        DegenerateFoldError: If the treatment is constant in a training or held-out subset
    """
    for i_fold, (train, test) in enumerate(smpls):
        for part, idx in (('training', train), ('held-out', test)):
            if np.ptp(d[idx]) == 0:
                raise DegenerateFoldError(
                    f"Treatment is constant (= {d[idx][0]:g}) in the {part} sample of "
                    f"repetition {i_rep}, fold {i_fold}"
                )


def _fit_predict(
    adapter: LearnerAdapter,
    x: np.ndarray,
    target: np.ndarray,
    train: np.ndarray,
    test: np.ndarray,
    i_fold: int
) -> FoldFit:
    # A fresh adapter per unit keeps fitted state out of the shared template
    unit = LearnerAdapter(adapter.learner, name=adapter.name,
                          on_convergence_warning=adapter.on_convergence_warning)
    try:
        unit.fit(x[train], target[train])
    except EstimationError as e:
        raise type(e)(f"fold {i_fold}: {e}") from e
    return FoldFit(
        name=adapter.name,
        i_fold=i_fold,
        test_idx=test,
        predictions=unit.predict(x[test]),
        model=unit.fitted_
    )


def cross_fit_nuisance(
    x: np.ndarray,
    targets: Dict[str, np.ndarray],
    learners: Dict[str, LearnerAdapter],
    smpls: List[Split],
    n_jobs: Optional[int] = None,
    i_rep: int = 0
) -> Tuple[Dict[str, np.ndarray], Dict[str, List[object]]]:
    """
    Fit every learner on the training part of each fold and predict the held-out part.

    Args:
        x: Covariates
        targets: Target vector per nuisance name
        learners: Adapter per nuisance name
        smpls: (train_idx, test_idx) pairs of one repetition
        n_jobs: Number of parallel joblib workers
        i_rep: Repetition index, used in error messages

    Returns:
        Out-of-fold predictions per nuisance (NaN where an observation was never held out)
        and the fitted models per nuisance in fold order

    Raises:
        EstimationError: If a learner fails on any fold; the whole repetition is invalid
    """
    n_obs = x.shape[0]
    units = [
        (name, i_fold, train, test)
        for name in targets
        for i_fold, (train, test) in enumerate(smpls)
    ]

    try:
        fold_fits = Parallel(n_jobs=n_jobs)(
            delayed(_fit_predict)(learners[name], x, targets[name], train, test, i_fold)
            for name, i_fold, train, test in units
        )
    except EstimationError as e:
        raise type(e)(f"Repetition {i_rep}: {e}") from e

    predictions = {name: np.full(n_obs, np.nan) for name in targets}
    models = {name: [None] * len(smpls) for name in targets}
    for fold_fit in fold_fits:
        predictions[fold_fit.name][fold_fit.test_idx] = fold_fit.predictions
        models[fold_fit.name][fold_fit.i_fold] = fold_fit.model

    scored = np.concatenate([test for _, test in smpls])
    for name, preds in predictions.items():
        if not np.all(np.isfinite(preds[scored])):
            raise EstimationError(f"Repetition {i_rep}: {name} produced non-finite predictions")

    logger.debug(f"Cross-fitted {sorted(targets)} on {len(smpls)} folds (repetition {i_rep})")
    return predictions, models
