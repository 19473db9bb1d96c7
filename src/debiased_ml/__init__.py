"""
Double/Debiased Machine Learning for the effect of job training on earnings.

This package implements the partially linear DML estimator (cross-fitted nuisance
learners, orthogonal scores, repeated sample splitting and multiplier bootstrap) and
applies it to the NSW job-training data combined with observational comparison groups.
"""

__version__ = "1.0.0"
__author__ = "Data Science Research"

from .data.dml_data import DMLData
from .models.estimator import DoubleMLEstimator, CausalEstimate, BootstrapResult
from .config import DMLConfig
