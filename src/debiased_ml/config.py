"""
Estimator configuration for Double Machine Learning models.
"""

import json
import logging
from dataclasses import dataclass, asdict, fields
from pathlib import Path
from typing import Any, Dict, Optional

from .exceptions import ConfigurationError


logger = logging.getLogger(__name__)


SCORES = ('partialling out', 'IV-type')
DML_PROCEDURES = ('dml1', 'dml2')
BOOTSTRAP_METHODS = ('normal', 'wild', 'Bayes')


@dataclass
class DMLConfig:
    """Settings shared by every DoubleMLEstimator run."""
    n_folds: int = 5
    n_rep: int = 1
    score: str = 'partialling out'
    dml_procedure: str = 'dml2'
    draw_sample_splitting: bool = True
    apply_cross_fitting: bool = True
    n_jobs: Optional[int] = None
    random_state: Optional[int] = None
    on_convergence_warning: str = 'raise'

    def __post_init__(self):
        validate_settings(
            n_folds=self.n_folds,
            n_rep=self.n_rep,
            score=self.score,
            dml_procedure=self.dml_procedure,
            apply_cross_fitting=self.apply_cross_fitting,
            on_convergence_warning=self.on_convergence_warning
        )

    @classmethod
    def from_dict(cls, settings: Dict[str, Any]) -> 'DMLConfig':
        """
        Build a configuration from a plain dictionary.

        Args:
            settings: Mapping of field names to values. Unknown keys are rejected.

        Returns:
            Validated configuration
        """
        known = {f.name for f in fields(cls)}
        unknown = set(settings) - known
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {sorted(unknown)}")
        return cls(**settings)

    @classmethod
    def from_json(cls, filepath: str) -> 'DMLConfig':
        """Load a configuration from a JSON file."""
        filepath = Path(filepath)
        with open(filepath, 'r') as f:
            settings = json.load(f)
        logger.info(f"Loaded estimator configuration from {filepath}")
        return cls.from_dict(settings)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def validate_settings(
    n_folds: int,
    n_rep: int,
    score: str,
    dml_procedure: str,
    apply_cross_fitting: bool = True,
    on_convergence_warning: str = 'raise'
) -> None:
    """
    Check estimator settings before any data is touched.

    Args:
        n_folds: Number of folds for cross-fitting
        n_rep: Number of repetitions of the sample splitting
        score: Score function name
        dml_procedure: 'dml1' or 'dml2'
        apply_cross_fitting: Whether every fold is used once as held-out sample
        on_convergence_warning: 'raise' or 'warn'

    Raises:
        ConfigurationError: If any of the settings is invalid
    """
    if not isinstance(n_folds, int) or isinstance(n_folds, bool) or n_folds < 1:
        raise ConfigurationError(f"n_folds must be a positive integer, got {n_folds!r}")
    if not isinstance(n_rep, int) or isinstance(n_rep, bool) or n_rep < 1:
        raise ConfigurationError(f"n_rep must be a positive integer, got {n_rep!r}")
    if score not in SCORES:
        raise ConfigurationError(f"Invalid score {score!r}. Valid scores are {' or '.join(SCORES)}.")
    if dml_procedure not in DML_PROCEDURES:
        raise ConfigurationError(
            f"Invalid dml_procedure {dml_procedure!r}. Valid procedures are {' or '.join(DML_PROCEDURES)}."
        )
    if not apply_cross_fitting and n_folds > 2:
        raise ConfigurationError(
            "Estimation without cross-fitting is only supported for n_folds = 1 or n_folds = 2."
        )
    if on_convergence_warning not in ('raise', 'warn'):
        raise ConfigurationError(
            f"on_convergence_warning must be 'raise' or 'warn', got {on_convergence_warning!r}"
        )
